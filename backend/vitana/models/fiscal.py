from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .tenancy import new_id

NFCE_STATUSES = ("pendente", "autorizada", "rejeitada", "cancelada")
AMBIENTES = ("homologacao", "producao")


class FiscalConfig(db.Model):
    """
    Per-business NFCe issuer configuration and numbering counter.

    COUNTER INVARIANT: proximo_numero is only advanced by the fiscal engine,
    by exactly 1, in the same transaction that inserts the document holding
    the allocated number. It is never decremented, so numbers of rejected or
    cancelled documents are never reused.
    """
    __tablename__ = "fiscal_configs"
    __table_args__ = (
        db.CheckConstraint("proximo_numero >= 1", name="ck_fiscal_configs_numero_positive"),
        db.CheckConstraint("ambiente IN ('homologacao', 'producao')", name="ck_fiscal_configs_ambiente"),
    )

    business_id = db.Column(
        db.String(36), db.ForeignKey("businesses.id", ondelete="CASCADE"), primary_key=True
    )

    # Emitente
    cnpj = db.Column(db.String(18), nullable=False)
    inscricao_estadual = db.Column(db.String(32), nullable=False)
    razao_social = db.Column(db.String(255), nullable=False)
    nome_fantasia = db.Column(db.String(255), nullable=True)
    telefone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    # Endereco
    logradouro = db.Column(db.String(255), nullable=False)
    numero = db.Column(db.String(16), nullable=False)
    bairro = db.Column(db.String(120), nullable=False)
    municipio = db.Column(db.String(120), nullable=False)
    codigo_municipio = db.Column(db.String(7), nullable=False)
    uf = db.Column(db.String(2), nullable=False)
    cep = db.Column(db.String(9), nullable=False)

    serie = db.Column(db.Integer, nullable=False, default=1)
    proximo_numero = db.Column(db.Integer, nullable=False, default=1)
    ambiente = db.Column(db.String(16), nullable=False, default="homologacao")
    contingencia = db.Column(db.Boolean, nullable=False, default=False)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "business_id": self.business_id,
            "cnpj": self.cnpj,
            "inscricao_estadual": self.inscricao_estadual,
            "razao_social": self.razao_social,
            "nome_fantasia": self.nome_fantasia,
            "telefone": self.telefone,
            "email": self.email,
            "logradouro": self.logradouro,
            "numero": self.numero,
            "bairro": self.bairro,
            "municipio": self.municipio,
            "codigo_municipio": self.codigo_municipio,
            "uf": self.uf,
            "cep": self.cep,
            "serie": self.serie,
            "proximo_numero": self.proximo_numero,
            "ambiente": self.ambiente,
            "contingencia": self.contingencia,
            "updated_at": to_utc_z(self.updated_at),
        }


class FiscalDocument(db.Model):
    """
    NFCe (modelo 65) issued for a sale.

    Lifecycle:
        pendente --transmit ok-------> autorizada --cancel--> cancelada
        pendente --transmit rejected-> rejeitada
    rejeitada and cancelada are terminal.
    """
    __tablename__ = "nfce"
    __table_args__ = (
        db.UniqueConstraint("sale_id", name="uq_nfce_sale"),
        db.UniqueConstraint("business_id", "serie", "numero", name="uq_nfce_business_serie_numero"),
        db.UniqueConstraint("chave_acesso", name="uq_nfce_chave_acesso"),
        db.CheckConstraint(
            "status IN ('pendente', 'autorizada', 'rejeitada', 'cancelada')", name="ck_nfce_status"
        ),
        db.Index("ix_nfce_business_status", "business_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    business_id = db.Column(
        db.String(36), db.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sale_id = db.Column(db.String(36), db.ForeignKey("sales.id"), nullable=False)

    # Identificacao
    numero = db.Column(db.Integer, nullable=False)
    serie = db.Column(db.Integer, nullable=False)
    modelo = db.Column(db.String(2), nullable=False, default="65")
    codigo_numerico = db.Column(db.String(8), nullable=False)
    digito_verificador = db.Column(db.Integer, nullable=False)
    tipo_emissao = db.Column(db.Integer, nullable=False, default=1)  # 1 normal, 9 contingencia
    ambiente = db.Column(db.Integer, nullable=False, default=2)  # 1 producao, 2 homologacao
    chave_acesso = db.Column(db.String(44), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pendente")
    codigo_status = db.Column(db.String(8), nullable=True)  # cStat
    protocolo_autorizacao = db.Column(db.String(32), nullable=True)
    motivo_rejeicao = db.Column(db.String(255), nullable=True)
    protocolo_cancelamento = db.Column(db.String(32), nullable=True)
    observacoes = db.Column(db.Text, nullable=True)

    # Totais
    valor_total_cents = db.Column(db.Integer, nullable=False)
    valor_icms_cents = db.Column(db.Integer, nullable=False, default=0)
    forma_pagamento = db.Column(db.String(2), nullable=False)
    informacoes_tributarias = db.Column(db.String(500), nullable=True)

    xml_gerado = db.Column(db.Text, nullable=True)
    xml_autorizado = db.Column(db.Text, nullable=True)

    emitted_at = db.Column(db.DateTime(timezone=True), nullable=False)
    authorized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "FiscalDocumentItem",
        backref="document",
        lazy=True,
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="FiscalDocumentItem.numero_item",
    )
    sale = db.relationship("Sale", backref=db.backref("nfce", uselist=False, lazy=True))

    def to_dict(self, include_xml: bool = False) -> dict:
        data = {
            "id": self.id,
            "business_id": self.business_id,
            "sale_id": self.sale_id,
            "numero": self.numero,
            "serie": self.serie,
            "modelo": self.modelo,
            "codigo_numerico": self.codigo_numerico,
            "digito_verificador": self.digito_verificador,
            "tipo_emissao": self.tipo_emissao,
            "ambiente": self.ambiente,
            "chave_acesso": self.chave_acesso,
            "status": self.status,
            "codigo_status": self.codigo_status,
            "protocolo_autorizacao": self.protocolo_autorizacao,
            "motivo_rejeicao": self.motivo_rejeicao,
            "protocolo_cancelamento": self.protocolo_cancelamento,
            "observacoes": self.observacoes,
            "valor_total_cents": self.valor_total_cents,
            "valor_icms_cents": self.valor_icms_cents,
            "forma_pagamento": self.forma_pagamento,
            "informacoes_tributarias": self.informacoes_tributarias,
            "emitted_at": to_utc_z(self.emitted_at),
            "authorized_at": to_utc_z(self.authorized_at) if self.authorized_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }
        if include_xml:
            data["xml_gerado"] = self.xml_gerado
            data["xml_autorizado"] = self.xml_autorizado
        return data


class FiscalDocumentItem(db.Model):
    """Fiscal line (det) derived from a sale item, with placeholder tax classification."""
    __tablename__ = "nfce_items"
    __table_args__ = (
        db.UniqueConstraint("nfce_id", "numero_item", name="uq_nfce_items_nfce_numero"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    nfce_id = db.Column(
        db.String(36), db.ForeignKey("nfce.id", ondelete="CASCADE"), nullable=False, index=True
    )
    numero_item = db.Column(db.Integer, nullable=False)

    codigo = db.Column(db.String(60), nullable=False)
    descricao = db.Column(db.String(255), nullable=False)
    ncm = db.Column(db.String(8), nullable=False)
    cfop = db.Column(db.String(4), nullable=False)
    cst = db.Column(db.String(3), nullable=False)
    unidade = db.Column(db.String(6), nullable=False)

    quantidade = db.Column(db.Integer, nullable=False)
    valor_unitario_cents = db.Column(db.Integer, nullable=False)
    valor_total_cents = db.Column(db.Integer, nullable=False)
    aliquota_icms_bps = db.Column(db.Integer, nullable=False)
    valor_icms_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "numero_item": self.numero_item,
            "codigo": self.codigo,
            "descricao": self.descricao,
            "ncm": self.ncm,
            "cfop": self.cfop,
            "cst": self.cst,
            "unidade": self.unidade,
            "quantidade": self.quantidade,
            "valor_unitario_cents": self.valor_unitario_cents,
            "valor_total_cents": self.valor_total_cents,
            "aliquota_icms_bps": self.aliquota_icms_bps,
            "valor_icms_cents": self.valor_icms_cents,
        }
