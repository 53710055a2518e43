"""Display helpers for fiscal documents (BRL, CNPJ, CEP, access key)."""

from __future__ import annotations

import re
from datetime import datetime

from .time_utils import to_brt


def cents_to_decimal_str(cents: int) -> str:
    """1234 -> '12.34' (the XML decimal format)."""
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"


def format_brl(cents: int) -> str:
    """1234567 -> 'R$ 12.345,67'."""
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    reais = f"{cents // 100:,}".replace(",", ".")
    return f"{sign}R$ {reais},{cents % 100:02d}"


def format_cnpj(cnpj: str) -> str:
    digits = re.sub(r"\D", "", cnpj or "")
    if len(digits) != 14:
        return cnpj
    return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:]}"


def format_cep(cep: str) -> str:
    digits = re.sub(r"\D", "", cep or "")
    if len(digits) != 8:
        return cep
    return f"{digits[:5]}-{digits[5:]}"


def group_access_key(key: str) -> str:
    """Access key printed in blocks of 4 digits."""
    return " ".join(key[i:i + 4] for i in range(0, len(key or ""), 4))


def format_datetime_br(dt: datetime | None) -> str:
    if dt is None:
        return ""
    return to_brt(dt).strftime("%d/%m/%Y %H:%M:%S")
