# Overview: NFCe 4.00 XML layout (unsigned), authorized nfeProc wrapper, cancellation event, SEFAZ replies.

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime

from ..formatting import cents_to_decimal_str
from ..time_utils import to_sefaz_datetime

NFE_NS = "http://www.portalfiscal.inf.br/nfe"
VERSAO = "4.00"
VERSAO_APLICACAO = "VITANA-PDV-1.0"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'

ET.register_namespace("", NFE_NS)


class SefazResponseError(ValueError):
    """Reply body is not a usable SEFAZ XML document."""


def _q(tag: str) -> str:
    return f"{{{NFE_NS}}}{tag}"


def _sub(parent: ET.Element, tag: str, text=None, **attrib) -> ET.Element:
    el = ET.SubElement(parent, _q(tag), attrib)
    if text is not None:
        el.text = str(text)
    return el


def _serialize(root: ET.Element) -> str:
    return XML_DECLARATION + ET.tostring(root, encoding="unicode")


def build_nfe_xml(document, config, emitted_at: datetime) -> str:
    """
    Unsigned <NFe> for a pending document. `document` carries its items;
    issuer data comes from the FiscalConfig as of emission.
    """
    nfe = ET.Element(_q("NFe"))
    inf = _sub(nfe, "infNFe", versao=VERSAO, Id=f"NFe{document.chave_acesso}")

    ide = _sub(inf, "ide")
    _sub(ide, "cUF", document.chave_acesso[:2])
    _sub(ide, "cNF", document.codigo_numerico)
    _sub(ide, "natOp", "Venda")
    _sub(ide, "mod", document.modelo)
    _sub(ide, "serie", document.serie)
    _sub(ide, "nNF", document.numero)
    _sub(ide, "dhEmi", to_sefaz_datetime(emitted_at))
    _sub(ide, "tpNF", 1)
    _sub(ide, "idDest", 1)
    _sub(ide, "cMunFG", config.codigo_municipio)
    _sub(ide, "tpImp", 4)
    _sub(ide, "tpEmis", document.tipo_emissao)
    _sub(ide, "cDV", document.digito_verificador)
    _sub(ide, "tpAmb", document.ambiente)
    _sub(ide, "finNFe", 1)
    _sub(ide, "indFinal", 1)
    _sub(ide, "indPres", 1)
    _sub(ide, "procEmi", 0)
    _sub(ide, "verProc", VERSAO_APLICACAO)

    emit = _sub(inf, "emit")
    _sub(emit, "CNPJ", config.cnpj)
    _sub(emit, "xNome", config.razao_social)
    if config.nome_fantasia:
        _sub(emit, "xFant", config.nome_fantasia)
    ender = _sub(emit, "enderEmit")
    _sub(ender, "xLgr", config.logradouro)
    _sub(ender, "nro", config.numero)
    _sub(ender, "xBairro", config.bairro)
    _sub(ender, "cMun", config.codigo_municipio)
    _sub(ender, "xMun", config.municipio)
    _sub(ender, "UF", config.uf)
    _sub(ender, "CEP", config.cep)
    if config.telefone:
        _sub(ender, "fone", "".join(ch for ch in config.telefone if ch.isdigit()))
    _sub(emit, "IE", config.inscricao_estadual)
    _sub(emit, "CRT", 1)

    total_produtos = 0
    for item in document.items:
        total_produtos += item.valor_total_cents
        det = _sub(inf, "det", nItem=str(item.numero_item))
        prod = _sub(det, "prod")
        _sub(prod, "cProd", item.codigo)
        _sub(prod, "cEAN", "SEM GTIN")
        _sub(prod, "xProd", item.descricao)
        _sub(prod, "NCM", item.ncm)
        _sub(prod, "CFOP", item.cfop)
        _sub(prod, "uCom", item.unidade)
        _sub(prod, "qCom", f"{item.quantidade}.0000")
        _sub(prod, "vUnCom", cents_to_decimal_str(item.valor_unitario_cents))
        _sub(prod, "vProd", cents_to_decimal_str(item.valor_total_cents))
        _sub(prod, "cEANTrib", "SEM GTIN")
        _sub(prod, "uTrib", item.unidade)
        _sub(prod, "qTrib", f"{item.quantidade}.0000")
        _sub(prod, "vUnTrib", cents_to_decimal_str(item.valor_unitario_cents))
        _sub(prod, "indTot", 1)
        icms = _sub(_sub(_sub(det, "imposto"), "ICMS"), "ICMS00")
        _sub(icms, "orig", 0)
        _sub(icms, "CST", item.cst)
        _sub(icms, "modBC", 3)
        _sub(icms, "vBC", cents_to_decimal_str(item.valor_total_cents))
        _sub(icms, "pICMS", cents_to_decimal_str(item.aliquota_icms_bps))
        _sub(icms, "vICMS", cents_to_decimal_str(item.valor_icms_cents))

    tot = _sub(_sub(inf, "total"), "ICMSTot")
    _sub(tot, "vBC", cents_to_decimal_str(total_produtos))
    _sub(tot, "vICMS", cents_to_decimal_str(document.valor_icms_cents))
    for zero_tag in ("vICMSDeson", "vFCP", "vBCST", "vST", "vFCPST", "vFCPSTRet"):
        _sub(tot, zero_tag, "0.00")
    _sub(tot, "vProd", cents_to_decimal_str(total_produtos))
    for zero_tag in ("vFrete", "vSeg", "vDesc", "vII", "vIPI", "vIPIDevol", "vPIS", "vCOFINS", "vOutro"):
        _sub(tot, zero_tag, "0.00")
    _sub(tot, "vNF", cents_to_decimal_str(document.valor_total_cents))
    _sub(tot, "vTotTrib", cents_to_decimal_str(document.valor_icms_cents))

    _sub(_sub(inf, "transp"), "modFrete", 9)

    det_pag = _sub(_sub(inf, "pag"), "detPag")
    _sub(det_pag, "tPag", document.forma_pagamento)
    _sub(det_pag, "vPag", cents_to_decimal_str(document.valor_total_cents))

    if document.informacoes_tributarias:
        _sub(_sub(inf, "infAdic"), "infCpl", document.informacoes_tributarias)

    return _serialize(nfe)


def _inf_prot(parent: ET.Element, *, tp_amb: int, chave: str, result) -> None:
    inf = _sub(parent, "infProt")
    _sub(inf, "tpAmb", tp_amb)
    _sub(inf, "verAplic", VERSAO_APLICACAO)
    _sub(inf, "chNFe", chave)
    _sub(inf, "dhRecbto", to_sefaz_datetime(result.received_at))
    _sub(inf, "nProt", result.protocol)
    _sub(inf, "cStat", result.status_code)
    _sub(inf, "xMotivo", result.reason)


def build_authorized_xml(xml_gerado: str, *, chave: str, tp_amb: int, result) -> str:
    """<nfeProc> = the emitted <NFe> plus the authorization protocol."""
    try:
        nfe = ET.fromstring(xml_gerado.encode("utf-8"))
    except ET.ParseError as exc:
        raise SefazResponseError("Stored NFe XML is malformed") from exc
    proc = ET.Element(_q("nfeProc"), {"versao": VERSAO})
    proc.append(nfe)
    _inf_prot(_sub(proc, "protNFe", versao=VERSAO), tp_amb=tp_amb, chave=chave, result=result)
    return _serialize(proc)


def build_cancel_event_xml(document, justificativa: str, requested_at: datetime) -> str:
    """Cancellation event (tpEvento 110111) for an authorized NFCe."""
    evento = ET.Element(_q("evento"), {"versao": "1.00"})
    inf = _sub(evento, "infEvento", Id=f"ID110111{document.chave_acesso}01")
    _sub(inf, "cOrgao", document.chave_acesso[:2])
    _sub(inf, "tpAmb", document.ambiente)
    _sub(inf, "CNPJ", document.chave_acesso[6:20])
    _sub(inf, "chNFe", document.chave_acesso)
    _sub(inf, "dhEvento", to_sefaz_datetime(requested_at))
    _sub(inf, "tpEvento", "110111")
    _sub(inf, "nSeqEvento", 1)
    _sub(inf, "verEvento", "1.00")
    det = _sub(inf, "detEvento", versao="1.00")
    _sub(det, "descEvento", "Cancelamento")
    _sub(det, "nProt", document.protocolo_autorizacao)
    _sub(det, "xJust", justificativa)
    return _serialize(evento)


def parse_sefaz_reply(body: str) -> dict:
    """
    Pull cStat/xMotivo/nProt/dhRecbto out of a SEFAZ reply, whatever the
    envelope. The innermost protocol (infProt / infEvento) wins over the
    batch-level status when both are present.
    """
    try:
        root = ET.fromstring(body.encode("utf-8") if isinstance(body, str) else body)
    except ET.ParseError as exc:
        raise SefazResponseError("SEFAZ reply is not valid XML") from exc

    node = root.find(".//{*}infProt")
    if node is None:
        node = root.find(".//{*}retEvento/{*}infEvento")
    if node is None:
        node = root

    def _text(tag: str):
        el = node.find(f".//{{*}}{tag}")
        if el is None and node is not root:
            el = root.find(f".//{{*}}{tag}")
        return el.text.strip() if el is not None and el.text else None

    status_code = _text("cStat")
    if not status_code:
        raise SefazResponseError("SEFAZ reply has no cStat")
    return {
        "status_code": status_code,
        "reason": _text("xMotivo") or "",
        "protocol": _text("nProt"),
        "received_at": _text("dhRecbto") or _text("dhRegEvento"),
    }
