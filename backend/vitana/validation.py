from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .models import MOVEMENT_TYPES, AMBIENTES


# Maximum price: R$ 9.999.999,99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

MIN_JUSTIFICATION_LENGTH = 15
MAX_JUSTIFICATION_LENGTH = 255

UF_SIGLAS = {
    "AC", "AL", "AP", "AM", "BA", "CE", "DF", "ES", "GO", "MA", "MT", "MS", "MG", "PA",
    "PB", "PR", "PE", "PI", "RJ", "RN", "RS", "RO", "RR", "SC", "SP", "SE", "TO",
}


class ValidationError(ValueError):
    """400-level input problem."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., sale already has an NFCe)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class JustificationTooShort(ValidationError):
    """Cancellation justification outside 15..255 characters."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "sim")
        return bool(value)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def parse_money_cents(key: str, value: Any) -> int:
    """
    Decimal amount in reais ("8.50", 8.5) -> integer cents, half-up.

    Floats go through str() so 8.5 becomes Decimal("8.5"), not its binary
    expansion.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{key} is required")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{key} must be a decimal amount")
    if not amount.is_finite():
        raise ValidationError(f"{key} must be a decimal amount")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _amount_cents(data: dict, cents_key: str, decimal_key: str) -> int | None:
    if data.get(cents_key) is not None:
        return _coerce_int(cents_key, data[cents_key])
    if data.get(decimal_key) is not None:
        return parse_money_cents(decimal_key, data[decimal_key])
    return None


def validate_sale_items(items: Any) -> list[dict]:
    """
    Normalize cart lines to {product_id, product_name, quantity,
    unit_price_cents, total_cents}. Client-supplied line totals must match.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("Sale must have at least one item")

    lines = []
    for index, raw in enumerate(items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {index} must be an object")

        product_id = raw.get("product_id")
        if not product_id or not str(product_id).strip():
            raise ValidationError(f"Item {index}: product_id is required")

        quantity = _coerce_int("quantity", raw.get("quantity"))
        if quantity <= 0:
            raise ValidationError(
                f"Item {index}: quantity must be > 0",
                details={"product_id": product_id, "quantity": quantity},
            )

        unit_price_cents = _amount_cents(raw, "unit_price_cents", "unit_price")
        if unit_price_cents is None:
            raise ValidationError(f"Item {index}: unit_price_cents or unit_price is required")
        if unit_price_cents < 0 or unit_price_cents > MAX_PRICE_CENTS:
            raise ValidationError(f"Item {index}: unit price out of range")

        total_cents = quantity * unit_price_cents
        claimed = _amount_cents(raw, "total_cents", "total")
        if claimed is not None and claimed != total_cents:
            raise ValidationError(
                f"Item {index}: total does not match quantity x unit price",
                details={"expected_cents": total_cents, "received_cents": claimed},
            )

        name = raw.get("product_name")
        lines.append({
            "product_id": str(product_id).strip(),
            "product_name": str(name).strip() if name else None,
            "quantity": quantity,
            "unit_price_cents": unit_price_cents,
            "total_cents": total_cents,
        })
    return lines


def validate_sale_total(lines: list[dict], payload: dict) -> int:
    total_cents = sum(line["total_cents"] for line in lines)
    claimed = _amount_cents(payload, "total_cents", "total")
    if claimed is not None and claimed != total_cents:
        raise ValidationError(
            "Sale total does not match the sum of its items",
            details={"expected_cents": total_cents, "received_cents": claimed},
        )
    return total_cents


def validate_payment_method(value: Any) -> str:
    method = str(value or "").strip().lower()
    if not method:
        raise ValidationError("payment_method is required")
    if len(method) > 32:
        raise ValidationError("payment_method exceeds max length 32")
    return method


def enforce_rules_stock_movement(patch: dict) -> None:
    if patch.get("type") not in MOVEMENT_TYPES:
        raise ValidationError('type must be "entrada" or "saida"')

    if patch.get("quantity") is None or patch["quantity"] <= 0:
        raise ValidationError("quantity must be > 0")

    unit_cost = patch.get("unit_cost_cents")
    if unit_cost is not None and unit_cost < 0:
        raise ValidationError("unit_cost_cents must be >= 0")


def enforce_rules_fiscal_config(patch: dict) -> None:
    if "cnpj" in patch:
        digits = re.sub(r"\D", "", patch["cnpj"])
        if len(digits) != 14:
            raise ValidationError("cnpj must have 14 digits")
        patch["cnpj"] = digits

    if "uf" in patch:
        patch["uf"] = patch["uf"].upper()
        if patch["uf"] not in UF_SIGLAS:
            raise ValidationError("uf must be a valid state abbreviation")

    if "cep" in patch:
        digits = re.sub(r"\D", "", patch["cep"])
        if len(digits) != 8:
            raise ValidationError("cep must have 8 digits")
        patch["cep"] = digits

    if "codigo_municipio" in patch and not re.fullmatch(r"\d{7}", patch["codigo_municipio"]):
        raise ValidationError("codigo_municipio must be the 7-digit IBGE code")

    if "serie" in patch and not (0 <= patch["serie"] <= 999):
        raise ValidationError("serie must be between 0 and 999")

    if "proximo_numero" in patch and not (1 <= patch["proximo_numero"] <= 999_999_999):
        raise ValidationError("proximo_numero must be between 1 and 999999999")

    if "ambiente" in patch and patch["ambiente"] not in AMBIENTES:
        raise ValidationError('ambiente must be "homologacao" or "producao"')


def validate_justification(value: Any) -> str:
    text = str(value or "").strip()
    if len(text) < MIN_JUSTIFICATION_LENGTH:
        raise JustificationTooShort(
            f"Justificativa deve ter pelo menos {MIN_JUSTIFICATION_LENGTH} caracteres",
            details={"length": len(text)},
        )
    if len(text) > MAX_JUSTIFICATION_LENGTH:
        raise ValidationError(
            f"Justificativa deve ter no maximo {MAX_JUSTIFICATION_LENGTH} caracteres",
            details={"length": len(text)},
        )
    return text
