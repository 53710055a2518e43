# Overview: Pytest coverage for NFCe numbering, access keys and the authorization state machine.

"""
NFCe Engine Tests

Covers:
- Number allocation is gapless under normal flow and never reused
- Access keys carry a valid modulo-11 digit
- Forward-only lifecycle: pendente -> autorizada | rejeitada, autorizada -> cancelada
- Transport failures leave the document pendente
"""

from datetime import datetime

import pytest

from vitana.models import FiscalConfig, FiscalDocument
from vitana.services import nfce_service, sales_service
from vitana.services.access_key import modulo11_digit, verify_access_key
from vitana.services.nfce_service import (
    AlreadyTransmitted,
    DocumentNotFound,
    FiscalConfigMissing,
    InvalidState,
    icms_cents,
    payment_code,
)
from vitana.services.sales_service import SaleNotFound
from vitana.services.transmitters import (
    ExternalTransmissionError,
    FiscalTransmitter,
    MockTransmitter,
    TransmissionResult,
)
from vitana.validation import ConflictError, JustificationTooShort, ValidationError

from conftest import make_fiscal_config, sale_line

JUSTIFICATIVA_OK = "Cliente desistiu da compra"


def _sell(business, *lines, payment_method="dinheiro"):
    return sales_service.complete_sale(
        business_id=business.id, user_id="cashier-1", lines=list(lines), payment_method=payment_method,
    )


@pytest.fixture
def sale(db_session, business_a, coca, skol):
    return _sell(business_a, sale_line(coca, 2), sale_line(skol, 1))


@pytest.fixture
def pending(db_session, business_a, fiscal_config, sale, transmitter):
    return nfce_service.generate(business_a.id, sale.id)


@pytest.fixture
def authorized(business_a, pending, transmitter):
    return nfce_service.transmit(business_a.id, pending.id)


class TestGenerate:
    def test_pending_document(self, db_session, business_a, fiscal_config, sale, transmitter):
        doc = nfce_service.generate(business_a.id, sale.id)

        assert doc.status == "pendente"
        assert doc.numero == 1
        assert doc.serie == 1
        assert doc.modelo == "65"
        assert doc.ambiente == 2
        assert doc.tipo_emissao == 1
        assert doc.valor_total_cents == 2020
        assert doc.forma_pagamento == "01"
        assert doc.sale_id == sale.id
        assert db_session.get(FiscalConfig, business_a.id).proximo_numero == 2
        assert transmitter.calls == []

    def test_access_key_is_valid(self, db_session, business_a, fiscal_config, sale):
        doc = nfce_service.generate(business_a.id, sale.id)

        key = doc.chave_acesso
        assert len(key) == 44
        assert modulo11_digit(key[:43]) == int(key[43]) == doc.digito_verificador
        assert verify_access_key(key)
        assert key[:2] == "35"
        assert key[6:20] == fiscal_config.cnpj
        assert key[25:34] == "000000001"
        assert key[35:43] == doc.codigo_numerico
        assert doc.codigo_numerico != "00000001"

    def test_key_uses_brasilia_emission_month(self, db_session, business_a, fiscal_config, sale):
        # 01:00 UTC on June 1st is still May 31st in Brasilia
        doc = nfce_service.generate(
            business_a.id, sale.id, codigo_numerico="12345678", now=datetime(2024, 6, 1, 1, 0),
        )
        assert doc.chave_acesso[2:6] == "2405"
        assert doc.chave_acesso[35:43] == "12345678"
        assert "2024-05-31T22:00:00-03:00" in doc.xml_gerado

    def test_items_and_icms(self, db_session, business_a, fiscal_config, sale):
        doc = nfce_service.generate(business_a.id, sale.id)

        assert [item.numero_item for item in doc.items] == [1, 2]
        assert [item.descricao for item in doc.items] == ["Coca-Cola 2L", "Cerveja Skol Lata 350ml"]
        first, second = doc.items
        assert (first.ncm, first.cfop, first.cst, first.unidade) == ("22021000", "5102", "00", "UN")
        assert first.valor_icms_cents == 306
        # 320 * 18% = 57.6 -> 58
        assert second.valor_icms_cents == 58
        assert doc.valor_icms_cents == 364
        assert "IBPT" in doc.informacoes_tributarias

    def test_xml_content(self, db_session, business_a, fiscal_config, sale):
        doc = nfce_service.generate(business_a.id, sale.id)

        assert f'Id="NFe{doc.chave_acesso}"' in doc.xml_gerado
        assert "<vNF>20.20</vNF>" in doc.xml_gerado
        assert "<tPag>01</tPag>" in doc.xml_gerado
        assert "<mod>65</mod>" in doc.xml_gerado

    def test_numbers_are_sequential(self, db_session, business_a, fiscal_config, coca, transmitter):
        first = nfce_service.generate(business_a.id, _sell(business_a, sale_line(coca, 1)).id)
        second = nfce_service.generate(business_a.id, _sell(business_a, sale_line(coca, 1)).id)
        assert second.numero == first.numero + 1

    def test_rejected_number_is_not_reused(self, db_session, business_a, fiscal_config, coca, transmitter):
        transmitter.reject_with = ("539", "Rejeicao: Duplicidade de NF-e")
        first = nfce_service.generate(business_a.id, _sell(business_a, sale_line(coca, 1)).id)
        assert nfce_service.transmit(business_a.id, first.id).status == "rejeitada"

        second = nfce_service.generate(business_a.id, _sell(business_a, sale_line(coca, 1)).id)
        assert second.numero == first.numero + 1

    def test_continues_from_configured_number(self, db_session, business_a, sale):
        make_fiscal_config(db_session, business_a, proximo_numero=1500, serie=3)
        doc = nfce_service.generate(business_a.id, sale.id)
        assert doc.numero == 1500
        assert doc.chave_acesso[22:25] == "003"
        assert doc.chave_acesso[25:34] == "000001500"

    def test_last_number_of_the_serie(self, db_session, business_a, coca, transmitter):
        make_fiscal_config(db_session, business_a, proximo_numero=999_999_999)
        last = nfce_service.generate(business_a.id, _sell(business_a, sale_line(coca, 1)).id)
        assert last.chave_acesso[25:34] == "999999999"

        with pytest.raises(ConflictError) as exc:
            nfce_service.generate(business_a.id, _sell(business_a, sale_line(coca, 1)).id)

        assert exc.value.details["proximo_numero"] == 1_000_000_000
        assert db_session.query(FiscalDocument).count() == 1
        db_session.expire_all()
        assert db_session.get(FiscalConfig, business_a.id).proximo_numero == 1_000_000_000

    def test_contingency_emission_type(self, db_session, business_a, sale):
        make_fiscal_config(db_session, business_a, contingencia=True)
        doc = nfce_service.generate(business_a.id, sale.id)
        assert doc.tipo_emissao == 9
        assert doc.chave_acesso[34] == "9"

    def test_sale_can_only_have_one_document(self, db_session, business_a, fiscal_config, sale):
        nfce_service.generate(business_a.id, sale.id)
        with pytest.raises(ConflictError):
            nfce_service.generate(business_a.id, sale.id)
        assert db_session.get(FiscalConfig, business_a.id).proximo_numero == 2

    def test_missing_config(self, db_session, business_a, sale):
        with pytest.raises(FiscalConfigMissing):
            nfce_service.generate(business_a.id, sale.id)

    def test_foreign_sale(self, db_session, business_a, business_b, fiscal_config, sale):
        make_fiscal_config(db_session, business_b)
        with pytest.raises(SaleNotFound):
            nfce_service.generate(business_b.id, sale.id)

    def test_payment_codes(self):
        assert payment_code("dinheiro") == "01"
        assert payment_code("Cartão de Crédito") == "03"
        assert payment_code("debito") == "04"
        assert payment_code("PIX") == "17"
        assert payment_code("vale") == "99"

    def test_icms_rounds_half_up(self):
        assert icms_cents(1000, 1800) == 180
        assert icms_cents(25, 1800) == 5  # 4.5 -> 5
        assert icms_cents(0, 1800) == 0


class TestTransmit:
    def test_authorizes(self, business_a, pending, transmitter):
        doc = nfce_service.transmit(business_a.id, pending.id)

        assert doc.status == "autorizada"
        assert doc.codigo_status == "100"
        assert doc.protocolo_autorizacao.startswith("135")
        assert len(doc.protocolo_autorizacao) == 15
        assert doc.authorized_at is not None
        assert "<nfeProc" in doc.xml_autorizado
        assert f"<chNFe>{doc.chave_acesso}</chNFe>" in doc.xml_autorizado
        assert transmitter.calls == [("authorize", doc.chave_acesso)]

    def test_rejection(self, business_a, pending, transmitter):
        transmitter.reject_with = ("225", "Rejeicao: Falha no Schema XML")
        doc = nfce_service.transmit(business_a.id, pending.id)

        assert doc.status == "rejeitada"
        assert doc.codigo_status == "225"
        assert doc.motivo_rejeicao == "Rejeicao: Falha no Schema XML"
        assert doc.protocolo_autorizacao is None

    def test_transport_failure_keeps_pending(self, db_session, business_a, pending, transmitter):
        transmitter.fail_times = 1

        with pytest.raises(ExternalTransmissionError):
            nfce_service.transmit(business_a.id, pending.id)

        doc = nfce_service.get_document(business_a.id, pending.id)
        assert doc.status == "pendente"
        assert db_session.get(FiscalConfig, business_a.id).proximo_numero == 2

        retried = nfce_service.transmit(business_a.id, pending.id)
        assert retried.status == "autorizada"
        assert retried.numero == pending.numero

    def test_authorization_without_receipt_time(self, app, business_a, pending):
        class UntimedTransmitter(FiscalTransmitter):
            def authorize(self, document):
                return TransmissionResult(authorized=True, status_code="100", reason="ok", protocol="1")

        app.extensions["fiscal_transmitter"] = UntimedTransmitter()
        try:
            doc = nfce_service.transmit(business_a.id, pending.id)
        finally:
            app.extensions["fiscal_transmitter"] = MockTransmitter()

        assert doc.status == "autorizada"
        assert doc.authorized_at is not None
        assert "<dhRecbto>" in doc.xml_autorizado
        assert "<nProt>1</nProt>" in doc.xml_autorizado

    def test_cannot_transmit_twice(self, business_a, authorized, transmitter):
        with pytest.raises(AlreadyTransmitted):
            nfce_service.transmit(business_a.id, authorized.id)
        assert len(transmitter.calls) == 1

    def test_cannot_transmit_rejected(self, business_a, pending, transmitter):
        transmitter.reject_with = ("225", "Rejeicao")
        nfce_service.transmit(business_a.id, pending.id)
        with pytest.raises(AlreadyTransmitted):
            nfce_service.transmit(business_a.id, pending.id)

    def test_unknown_document(self, db_session, business_a, transmitter):
        with pytest.raises(DocumentNotFound):
            nfce_service.transmit(business_a.id, "missing")


class TestCancel:
    def test_cancels_authorized(self, business_a, authorized, transmitter):
        doc = nfce_service.cancel(business_a.id, authorized.id, f"  {JUSTIFICATIVA_OK}  ")

        assert doc.status == "cancelada"
        assert doc.protocolo_cancelamento
        assert doc.cancelled_at is not None
        assert doc.observacoes.endswith(f"CANCELADA - {JUSTIFICATIVA_OK}")
        assert transmitter.calls[-1] == ("cancel", doc.chave_acesso)

    def test_ten_characters_fail_fifteen_pass(self, business_a, authorized, transmitter):
        with pytest.raises(JustificationTooShort):
            nfce_service.cancel(business_a.id, authorized.id, "0123456789")
        assert nfce_service.get_document(business_a.id, authorized.id).status == "autorizada"

        doc = nfce_service.cancel(business_a.id, authorized.id, "012345678901234")
        assert doc.status == "cancelada"

        with pytest.raises(AlreadyTransmitted):
            nfce_service.transmit(business_a.id, authorized.id)

    def test_justification_too_long(self, business_a, authorized):
        with pytest.raises(ValidationError):
            nfce_service.cancel(business_a.id, authorized.id, "x" * 256)

    def test_cannot_cancel_pending(self, business_a, pending, transmitter):
        with pytest.raises(InvalidState):
            nfce_service.cancel(business_a.id, pending.id, JUSTIFICATIVA_OK)
        assert transmitter.calls == []

    def test_state_is_checked_before_justification(self, business_a, pending):
        with pytest.raises(InvalidState):
            nfce_service.cancel(business_a.id, pending.id, "curta")

    def test_cannot_cancel_rejected(self, business_a, pending, transmitter):
        transmitter.reject_with = ("225", "Rejeicao")
        nfce_service.transmit(business_a.id, pending.id)
        with pytest.raises(InvalidState):
            nfce_service.cancel(business_a.id, pending.id, JUSTIFICATIVA_OK)

    def test_cannot_cancel_twice(self, business_a, authorized):
        nfce_service.cancel(business_a.id, authorized.id, JUSTIFICATIVA_OK)
        with pytest.raises(InvalidState):
            nfce_service.cancel(business_a.id, authorized.id, JUSTIFICATIVA_OK)

    def test_transport_failure_keeps_authorized(self, business_a, authorized, transmitter):
        transmitter.fail_times = 1
        with pytest.raises(ExternalTransmissionError):
            nfce_service.cancel(business_a.id, authorized.id, JUSTIFICATIVA_OK)
        assert nfce_service.get_document(business_a.id, authorized.id).status == "autorizada"


class TestOutputs:
    def test_danfce(self, business_a, authorized):
        html = nfce_service.render_danfce(business_a.id, authorized.id)

        assert "11.222.333/0001-81" in html
        assert "01001-000" in html
        assert "R$ 20,20" in html
        assert "R$ 8,50" in html
        assert authorized.chave_acesso[:4] + " " + authorized.chave_acesso[4:8] in html
        assert "HOMOLOGACAO" in html
        assert authorized.protocolo_autorizacao in html

    def test_danfce_requires_authorized(self, business_a, pending):
        with pytest.raises(InvalidState):
            nfce_service.render_danfce(business_a.id, pending.id)

    def test_authorized_xml(self, business_a, authorized):
        xml = nfce_service.get_authorized_xml(business_a.id, authorized.id)
        assert "<protNFe" in xml

    def test_authorized_xml_requires_authorization(self, business_a, pending):
        with pytest.raises(InvalidState):
            nfce_service.get_authorized_xml(business_a.id, pending.id)

    def test_list_documents_by_status(self, db_session, business_a, fiscal_config, coca, transmitter):
        docs = [
            nfce_service.generate(business_a.id, _sell(business_a, sale_line(coca, 1)).id)
            for _ in range(3)
        ]
        nfce_service.transmit(business_a.id, docs[0].id)

        assert [d.numero for d in nfce_service.list_documents(business_a.id)] == [3, 2, 1]
        assert len(nfce_service.list_documents(business_a.id, status="pendente")) == 2
        assert len(nfce_service.list_documents(business_a.id, status="autorizada")) == 1

    def test_documents_are_business_scoped(self, business_b, pending):
        with pytest.raises(DocumentNotFound):
            nfce_service.get_document(business_b.id, pending.id)


class TestConfig:
    def test_create(self, db_session, business_b):
        config = nfce_service.save_config(business_b.id, {
            "cnpj": "99888777000166",
            "inscricao_estadual": "ISENTO",
            "razao_social": "Mercadinho B LTDA",
            "logradouro": "Av. Brasil",
            "numero": "2000",
            "bairro": "Centro",
            "municipio": "Rio de Janeiro",
            "codigo_municipio": "3304557",
            "uf": "RJ",
            "cep": "20040002",
        })
        assert config.proximo_numero == 1
        assert config.serie == 1
        assert config.ambiente == "homologacao"

    def test_counter_can_move_forward(self, db_session, business_a, fiscal_config):
        config = nfce_service.save_config(business_a.id, {"proximo_numero": 100})
        assert config.proximo_numero == 100

    def test_counter_cannot_go_back(self, db_session, business_a, fiscal_config, sale):
        nfce_service.generate(business_a.id, sale.id)
        with pytest.raises(ConflictError):
            nfce_service.save_config(business_a.id, {"proximo_numero": 1})
        assert db_session.get(FiscalConfig, business_a.id).proximo_numero == 2

    def test_get_missing(self, db_session, business_b):
        with pytest.raises(FiscalConfigMissing):
            nfce_service.get_config(business_b.id)
