# Overview: Flask API routes for NFCe issuance, transmission, cancellation and printing.

# backend/vitana/routes/nfce.py
"""
NFCe routes. Admin only.

Status codes:
- 404 document, sale or fiscal configuration not found
- 409 state machine violation, duplicate document or unusable key components
- 503 SEFAZ unreachable; the document stays pendente and can be retried
"""

from flask import Blueprint, Response, request, jsonify, g, current_app

from ..extensions import db
from ..models import FiscalConfig, NFCE_STATUSES
from ..services import nfce_service
from ..services.access_key import AccessKeyError
from ..services.ledger_store import TransactionFailed
from ..services.nfce_service import (
    CancellationRefused,
    DocumentNotFound,
    FiscalConfigMissing,
    InvalidState,
)
from ..services.sales_service import SaleNotFound
from ..services.transmitters import ExternalTransmissionError
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_fiscal_config,
    validate_payload,
)
from ..decorators import require_auth, require_role


nfce_bp = Blueprint("nfce", __name__, url_prefix="/api/nfce")

FISCAL_CONFIG_POLICY = ModelValidationPolicy(
    writable_fields={
        "cnpj", "inscricao_estadual", "razao_social", "nome_fantasia", "telefone", "email",
        "logradouro", "numero", "bairro", "municipio", "codigo_municipio", "uf", "cep",
        "serie", "proximo_numero", "ambiente", "contingencia",
    },
    required_on_create={
        "cnpj", "inscricao_estadual", "razao_social", "logradouro", "numero",
        "bairro", "municipio", "codigo_municipio", "uf", "cep",
    },
)

# Checked in order; subclasses before their bases
ERROR_STATUS = (
    (ValidationError, 400),
    (DocumentNotFound, 404),
    (FiscalConfigMissing, 404),
    (SaleNotFound, 404),
    (InvalidState, 409),
    (ConflictError, 409),
    (AccessKeyError, 409),
    (CancellationRefused, 409),
    (ExternalTransmissionError, 503),
)


def _error_response(e: Exception):
    for error_type, status in ERROR_STATUS:
        if isinstance(e, error_type):
            return jsonify({"error": str(e), "details": getattr(e, "details", {})}), status
    if isinstance(e, TransactionFailed):
        return jsonify({"error": "Transaction failed", "details": e.details}), 500
    current_app.logger.exception("Unhandled NFCe error")
    return jsonify({"error": "Internal server error"}), 500


@nfce_bp.get("")
@require_auth
@require_role("admin")
def list_documents_route():
    status = request.args.get("status")
    if status and status not in NFCE_STATUSES:
        return jsonify({"error": f"status must be one of {', '.join(NFCE_STATUSES)}"}), 400
    limit = max(1, min(request.args.get("limit", 50, type=int), 500))

    docs = nfce_service.list_documents(g.business_id, status=status, limit=limit)
    return jsonify({"nfce": [d.to_dict() for d in docs]}), 200


@nfce_bp.post("")
@require_auth
@require_role("admin")
def generate_route():
    """
    Issue a pending NFCe for a sale. Body: {"sale_id"}.

    The fiscal number is consumed here, whatever happens on transmit.
    """
    data = request.get_json(silent=True) or {}
    sale_id = data.get("sale_id")
    if not sale_id:
        return jsonify({"error": "sale_id required"}), 400

    try:
        doc = nfce_service.generate(g.business_id, str(sale_id))
        return jsonify({"nfce": doc.to_dict()}), 201
    except Exception as e:
        return _error_response(e)


@nfce_bp.get("/config")
@require_auth
@require_role("admin")
def get_config_route():
    try:
        config = nfce_service.get_config(g.business_id)
    except FiscalConfigMissing as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    return jsonify({"config": config.to_dict()}), 200


@nfce_bp.put("/config")
@require_auth
@require_role("admin")
def save_config_route():
    """Create or update the issuer configuration. proximo_numero can only go up."""
    payload = request.get_json(silent=True) or {}
    exists = db.session.get(FiscalConfig, g.business_id) is not None

    try:
        patch = validate_payload(
            model=FiscalConfig,
            payload=payload,
            policy=FISCAL_CONFIG_POLICY,
            partial=exists,
        )
        enforce_rules_fiscal_config(patch)
    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400

    try:
        config = nfce_service.save_config(g.business_id, patch)
        return jsonify({"config": config.to_dict()}), 200 if exists else 201
    except Exception as e:
        return _error_response(e)


@nfce_bp.get("/<nfce_id>")
@require_auth
@require_role("admin")
def get_document_route(nfce_id: str):
    include_xml = request.args.get("include_xml", "false").lower() == "true"
    try:
        doc = nfce_service.get_document(g.business_id, nfce_id)
    except DocumentNotFound as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    return jsonify({"nfce": doc.to_dict(include_xml=include_xml)}), 200


@nfce_bp.post("/<nfce_id>/transmit")
@require_auth
@require_role("admin")
def transmit_route(nfce_id: str):
    try:
        doc = nfce_service.transmit(g.business_id, nfce_id)
        return jsonify({"nfce": doc.to_dict()}), 200
    except Exception as e:
        return _error_response(e)


@nfce_bp.post("/<nfce_id>/cancel")
@require_auth
@require_role("admin")
def cancel_route(nfce_id: str):
    """Body: {"justificativa"} with 15 to 255 characters."""
    data = request.get_json(silent=True) or {}
    try:
        doc = nfce_service.cancel(g.business_id, nfce_id, data.get("justificativa"))
        return jsonify({"nfce": doc.to_dict()}), 200
    except Exception as e:
        return _error_response(e)


@nfce_bp.get("/<nfce_id>/danfce")
@require_auth
@require_role("admin")
def danfce_route(nfce_id: str):
    try:
        html = nfce_service.render_danfce(g.business_id, nfce_id)
    except Exception as e:
        return _error_response(e)
    return Response(html, status=200, mimetype="text/html")


@nfce_bp.get("/<nfce_id>/xml")
@require_auth
@require_role("admin")
def authorized_xml_route(nfce_id: str):
    try:
        xml = nfce_service.get_authorized_xml(g.business_id, nfce_id)
    except Exception as e:
        return _error_response(e)
    return Response(
        xml,
        status=200,
        mimetype="application/xml",
        headers={"Content-Disposition": f'attachment; filename="NFCe{nfce_id}.xml"'},
    )
