# Overview: Fiscal Document Engine; NFCe numbering, access keys and the authorization state machine.

from __future__ import annotations

import unicodedata
from dataclasses import replace
from datetime import datetime

from flask import current_app, render_template
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..formatting import format_brl
from ..models import FiscalConfig, FiscalDocument, FiscalDocumentItem, new_id
from ..time_utils import utcnow, yymm
from ..validation import ConflictError, validate_justification
from .access_key import MAX_NUMERO, build_access_key, generate_codigo_numerico, uf_code
from .concurrency import begin_write, lock_for_update, run_with_retry
from .ledger_store import Statement, TransactionFailed, execute_atomic
from .nfce_xml import build_authorized_xml, build_nfe_xml
from .sales_service import get_sale
from .transmitters import get_transmitter
"""
NFCe Invariants (authoritative)

- numero = FiscalConfig.proximo_numero at generation; the counter is
  advanced by exactly 1 in the same locked transaction that inserts the
  document. A persisted document keeps its number forever, whatever its
  later status, so numbers are never reused (gaps are legal, repeats are not).
- chave_acesso[43] is the modulo-11 digit of chave_acesso[:43].
- Forward-only lifecycle:
    pendente -> autorizada | rejeitada
    autorizada -> cancelada
  Status writes are conditional on the expected current status, so two
  racing transmits/cancels cannot both apply.
- SEFAZ is called outside any database transaction. A transport failure
  leaves the document pendente; only an authority decision moves it.
"""

# Placeholder classification until a real tax table is plugged in
DEFAULT_NCM = "22021000"
DEFAULT_CFOP = "5102"
DEFAULT_CST = "00"
DEFAULT_UNIDADE = "UN"

PAYMENT_CODES = {
    "dinheiro": "01",
    "cheque": "02",
    "cartao": "03",
    "credito": "03",
    "cartao de credito": "03",
    "debito": "04",
    "cartao de debito": "04",
    "pix": "17",
}

PAYMENT_NAMES = {
    "01": "Dinheiro",
    "02": "Cheque",
    "03": "Cartão de Crédito",
    "04": "Cartão de Débito",
    "17": "PIX",
    "99": "Outros",
}

AMBIENTE_CODES = {"producao": 1, "homologacao": 2}


class NFCeError(Exception):
    """Raised for fiscal document operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class DocumentNotFound(NFCeError):
    pass


class FiscalConfigMissing(NFCeError):
    pass


class InvalidState(NFCeError):
    """Transition not allowed from the document's current status."""


class AlreadyTransmitted(InvalidState):
    pass


class CancellationRefused(NFCeError):
    """SEFAZ did not register the cancellation event."""


def payment_code(method: str) -> str:
    normalized = unicodedata.normalize("NFKD", method or "").encode("ascii", "ignore").decode().lower().strip()
    return PAYMENT_CODES.get(normalized, "99")


def icms_cents(total_cents: int, rate_bps: int) -> int:
    """Flat ICMS over the line total, half-up to the cent."""
    return (total_cents * rate_bps + 5000) // 10000


def _tax_note(icms: int, total: int) -> str:
    pct = (icms * 10000 // total) if total else 0
    return (
        f"Valor aproximado dos tributos: {format_brl(icms)} "
        f"({pct // 100},{pct % 100:02d}%) Fonte: IBPT"
    )


def get_config(business_id: str) -> FiscalConfig:
    config = db.session.get(FiscalConfig, business_id)
    if not config:
        raise FiscalConfigMissing("Fiscal configuration not found", details={"business_id": business_id})
    return config


def save_config(business_id: str, patch: dict) -> FiscalConfig:
    """
    Create or update the issuer configuration.

    proximo_numero may be raised (e.g. continuing a numbering started
    elsewhere) but never lowered.
    """
    def _op() -> FiscalConfig:
        begin_write()
        config = lock_for_update(db.session.query(FiscalConfig).filter_by(business_id=business_id)).first()
        try:
            if config is None:
                config = FiscalConfig(business_id=business_id, **patch)
                db.session.add(config)
            else:
                requested = patch.get("proximo_numero")
                if requested is not None and requested < config.proximo_numero:
                    raise ConflictError(
                        "proximo_numero cannot be lowered",
                        details={"current": config.proximo_numero, "requested": requested},
                    )
                for key, value in patch.items():
                    setattr(config, key, value)
            db.session.commit()
        except (OperationalError, StaleDataError):
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error("Fiscal config save aborted: %s", exc)
            raise TransactionFailed() from exc
        except Exception:
            db.session.rollback()
            raise
        return config

    try:
        return run_with_retry(_op)
    except (OperationalError, StaleDataError) as exc:
        raise TransactionFailed() from exc


def get_document(business_id: str, nfce_id: str) -> FiscalDocument:
    doc = db.session.query(FiscalDocument).filter_by(id=nfce_id, business_id=business_id).first()
    if not doc:
        raise DocumentNotFound("NFCe not found", details={"nfce_id": nfce_id})
    return doc


def list_documents(business_id: str, *, status: str | None = None, limit: int = 50) -> list[FiscalDocument]:
    q = db.session.query(FiscalDocument).filter(FiscalDocument.business_id == business_id)
    if status:
        q = q.filter(FiscalDocument.status == status)
    return q.order_by(FiscalDocument.numero.desc()).limit(limit).all()


def _build_items(sale, rate_bps: int) -> list[FiscalDocumentItem]:
    items = []
    for index, line in enumerate(sale.items, start=1):
        items.append(FiscalDocumentItem(
            id=new_id(),
            numero_item=index,
            codigo=f"{index:03d}",
            descricao=line.product_name,
            ncm=DEFAULT_NCM,
            cfop=DEFAULT_CFOP,
            cst=DEFAULT_CST,
            unidade=DEFAULT_UNIDADE,
            quantidade=line.quantity,
            valor_unitario_cents=line.unit_price_cents,
            valor_total_cents=line.total_cents,
            aliquota_icms_bps=rate_bps,
            valor_icms_cents=icms_cents(line.total_cents, rate_bps),
        ))
    return items


def generate(
    business_id: str,
    sale_id: str,
    *,
    codigo_numerico: str | None = None,
    now: datetime | None = None,
) -> FiscalDocument:
    """
    Issue a pending NFCe for a completed sale.

    Number allocation and document insert share one locked transaction, so
    concurrent calls never see the same proximo_numero. Once this returns,
    the number is spent even if SEFAZ later rejects the document.
    """
    sale = get_sale(business_id, sale_id)
    rate_bps = current_app.config.get("FISCAL_ICMS_RATE_BPS", 1800)

    def _op() -> FiscalDocument:
        begin_write()
        try:
            config = lock_for_update(
                db.session.query(FiscalConfig).filter_by(business_id=business_id)
            ).first()
            if not config:
                raise FiscalConfigMissing(
                    "Fiscal configuration not found", details={"business_id": business_id}
                )

            existing = db.session.query(FiscalDocument.id).filter_by(sale_id=sale.id).first()
            if existing:
                raise ConflictError("Sale already has an NFCe", details={"nfce_id": existing.id})

            numero = config.proximo_numero
            if numero > MAX_NUMERO:
                raise ConflictError(
                    "NFCe numbering exhausted for this serie",
                    details={"serie": config.serie, "proximo_numero": numero},
                )
            emitted_at = now or utcnow()
            cnf = codigo_numerico or generate_codigo_numerico(numero)
            tipo_emissao = 9 if config.contingencia else 1
            chave, digito = build_access_key(
                cuf=uf_code(config.uf),
                yymm=yymm(emitted_at),
                cnpj=config.cnpj,
                serie=config.serie,
                numero=numero,
                tipo_emissao=tipo_emissao,
                codigo_numerico=cnf,
            )

            items = _build_items(sale, rate_bps)
            total_icms = sum(item.valor_icms_cents for item in items)
            doc = FiscalDocument(
                id=new_id(),
                business_id=business_id,
                sale_id=sale.id,
                numero=numero,
                serie=config.serie,
                modelo="65",
                codigo_numerico=cnf,
                digito_verificador=digito,
                tipo_emissao=tipo_emissao,
                ambiente=AMBIENTE_CODES[config.ambiente],
                chave_acesso=chave,
                status="pendente",
                valor_total_cents=sale.total_cents,
                valor_icms_cents=total_icms,
                forma_pagamento=payment_code(sale.payment_method),
                informacoes_tributarias=_tax_note(total_icms, sale.total_cents),
                emitted_at=emitted_at,
                items=items,
            )
            doc.xml_gerado = build_nfe_xml(doc, config, emitted_at)

            # Compare-and-swap on the counter; the row lock makes a miss unexpected
            advanced = db.session.execute(
                update(FiscalConfig.__table__)
                .where(
                    FiscalConfig.__table__.c.business_id == business_id,
                    FiscalConfig.__table__.c.proximo_numero == numero,
                )
                .values(proximo_numero=numero + 1, updated_at=utcnow())
            )
            if advanced.rowcount != 1:
                raise StaleDataError("fiscal counter moved during allocation")

            db.session.add(doc)
            db.session.commit()
            return doc
        except (OperationalError, StaleDataError):
            raise
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError("NFCe already exists for this sale or number") from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error("NFCe generation aborted: %s", exc)
            raise TransactionFailed() from exc
        except Exception:
            db.session.rollback()
            raise

    try:
        doc = run_with_retry(_op)
    except (OperationalError, StaleDataError) as exc:
        current_app.logger.error("NFCe generation gave up: %s", exc)
        raise TransactionFailed() from exc

    current_app.logger.info(
        "NFCe %s serie %s generated for sale %s (chave %s)", doc.numero, doc.serie, sale.id, doc.chave_acesso
    )
    return doc


def transmit(business_id: str, nfce_id: str) -> FiscalDocument:
    """
    Submit a pending NFCe and record the authority's decision.

    Not idempotent: callers check status first. ExternalTransmissionError
    propagates with the document still pendente.
    """
    doc = get_document(business_id, nfce_id)
    if doc.status != "pendente":
        raise AlreadyTransmitted(
            f"NFCe already processed (status {doc.status})",
            details={"nfce_id": doc.id, "status": doc.status},
        )

    result = get_transmitter().authorize(doc)
    if result.received_at is None:
        result = replace(result, received_at=utcnow())

    table = FiscalDocument.__table__
    if result.authorized:
        values = {
            "status": "autorizada",
            "codigo_status": result.status_code,
            "protocolo_autorizacao": result.protocol,
            "authorized_at": result.received_at,
            "xml_autorizado": build_authorized_xml(
                doc.xml_gerado, chave=doc.chave_acesso, tp_amb=doc.ambiente, result=result
            ),
        }
    else:
        values = {
            "status": "rejeitada",
            "codigo_status": result.status_code,
            "motivo_rejeicao": (result.reason or "Rejeitada")[:255],
        }

    execute_atomic([
        Statement(
            clause=update(table)
            .where(table.c.id == doc.id, table.c.business_id == business_id, table.c.status == "pendente")
            .values(**values),
            expect_rows=1,
            on_shortfall=lambda: AlreadyTransmitted(
                "NFCe was processed concurrently", details={"nfce_id": nfce_id}
            ),
            label="nfce:transmit",
        )
    ])

    current_app.logger.info(
        "NFCe %s %s (cStat %s)", nfce_id, values["status"], result.status_code
    )
    return get_document(business_id, nfce_id)


def cancel(business_id: str, nfce_id: str, justificativa: str) -> FiscalDocument:
    """Cancel an authorized NFCe. Terminal."""
    doc = get_document(business_id, nfce_id)
    if doc.status != "autorizada":
        raise InvalidState(
            "Apenas NFCe autorizadas podem ser canceladas",
            details={"nfce_id": doc.id, "status": doc.status},
        )
    text = validate_justification(justificativa)

    result = get_transmitter().cancel(doc, text)
    if not result.authorized:
        raise CancellationRefused(
            result.reason or "Cancelamento não homologado",
            details={"codigo_status": result.status_code},
        )

    note = f"CANCELADA - {text}"
    observacoes = f"{doc.observacoes}\n{note}" if doc.observacoes else note
    table = FiscalDocument.__table__
    execute_atomic([
        Statement(
            clause=update(table)
            .where(table.c.id == doc.id, table.c.business_id == business_id, table.c.status == "autorizada")
            .values(
                status="cancelada",
                protocolo_cancelamento=result.protocol,
                cancelled_at=result.received_at or utcnow(),
                observacoes=observacoes,
            ),
            expect_rows=1,
            on_shortfall=lambda: InvalidState(
                "NFCe was modified concurrently", details={"nfce_id": nfce_id}
            ),
            label="nfce:cancel",
        )
    ])

    current_app.logger.info("NFCe %s cancelada", nfce_id)
    return get_document(business_id, nfce_id)


def get_authorized_xml(business_id: str, nfce_id: str) -> str:
    doc = get_document(business_id, nfce_id)
    if doc.status not in ("autorizada", "cancelada") or not doc.xml_autorizado:
        raise InvalidState(
            "Authorized XML is only available after authorization",
            details={"status": doc.status},
        )
    return doc.xml_autorizado


def render_danfce(business_id: str, nfce_id: str) -> str:
    """Printable DANFC-e (HTML) for an authorized NFCe."""
    doc = get_document(business_id, nfce_id)
    if doc.status != "autorizada":
        raise InvalidState(
            "DANFC-e is only printable for authorized NFCe",
            details={"status": doc.status},
        )
    config = get_config(business_id)
    return render_template(
        "danfce.html",
        doc=doc,
        config=config,
        payment_name=PAYMENT_NAMES.get(doc.forma_pagamento, "Não informado"),
    )
