from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from suprimentos.contexts.sourcing.application.service import SourcingService
from suprimentos.domain.contracts import ReplyInput, SendQuotationInput, ServiceOutput
from suprimentos.errors import ValidationError


sourcing_bp = Blueprint("sourcing", __name__, url_prefix="/api/sourcing")


def _service() -> SourcingService:
    return current_app.extensions["sourcing_service"]


def _respond(result: ServiceOutput):
    return jsonify(result.payload), result.status_code


def _invalid(field_name: str) -> ValidationError:
    return ValidationError(
        code="validation_error",
        message_key="payload_invalid",
        http_status=400,
        critical=False,
        payload={"field": field_name},
    )


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise _invalid("body")
    return payload


def _required_string(payload: dict, field_name: str) -> str:
    value = payload.get(field_name)
    if not isinstance(value, str) or not value.strip():
        raise _invalid(field_name)
    return value.strip()


def _optional_string(payload: dict, field_name: str) -> str | None:
    value = payload.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise _invalid(field_name)
    return value.strip() or None


def _record_list(payload: object, field_name: str) -> list:
    if isinstance(payload, dict):
        payload = payload.get(field_name)
    if not isinstance(payload, list):
        raise _invalid(field_name)
    return [entry for entry in payload if isinstance(entry, dict)]


@sourcing_bp.get("/quotations")
def list_quotations():
    return _respond(_service().list_quotations(request.args.get("tab")))


@sourcing_bp.get("/quotations/<quotation_id>")
def get_quotation(quotation_id: str):
    return _respond(_service().get_quotation(quotation_id))


@sourcing_bp.post("/quotations")
def send_quotation():
    payload = _json_body()
    items = payload.get("items")
    if not isinstance(items, list):
        raise _invalid("items")
    data = SendQuotationInput(
        supplier_id=_optional_string(payload, "supplierId"),
        supplier_name=_optional_string(payload, "supplierName") or "",
        supplier_email=_optional_string(payload, "supplierEmail") or "",
        items=[item for item in items if isinstance(item, dict)],
        subject=_optional_string(payload, "subject"),
        body=_optional_string(payload, "body"),
    )
    return _respond(_service().send_quotation(data))


@sourcing_bp.post("/quotations/<quotation_id>/resend")
def resend_quotation(quotation_id: str):
    return _respond(_service().resend_quotation(quotation_id))


@sourcing_bp.delete("/quotations/<quotation_id>")
def delete_quotation(quotation_id: str):
    return _respond(_service().delete_quotation(quotation_id))


@sourcing_bp.post("/quotations/<quotation_id>/confirm")
def confirm_quotation(quotation_id: str):
    return _respond(_service().confirm_quotation(quotation_id, manual=True))


@sourcing_bp.post("/quotations/<quotation_id>/receipt")
def confirm_receipt(quotation_id: str):
    return _respond(_service().confirm_receipt(quotation_id))


@sourcing_bp.get("/orders")
def list_orders():
    return _respond(_service().active_orders())


@sourcing_bp.post("/orders/<order_id>/approve")
def approve_order(order_id: str):
    return _respond(_service().approve_order(order_id))


@sourcing_bp.get("/alerts")
def list_alerts():
    return _respond(_service().alerts())


@sourcing_bp.get("/stats")
def dashboard_stats():
    return _respond(_service().stats())


@sourcing_bp.put("/inventory")
def replace_inventory():
    return _respond(_service().update_inventory(_record_list(request.get_json(silent=True), "items")))


@sourcing_bp.put("/suppliers")
def replace_suppliers():
    return _respond(_service().update_suppliers(_record_list(request.get_json(silent=True), "suppliers")))


@sourcing_bp.post("/snapshots")
def push_snapshot():
    return _respond(_service().handle_remote_snapshot(_record_list(request.get_json(silent=True), "documents")))


@sourcing_bp.post("/poll")
def poll_remote():
    return _respond(_service().poll())


@sourcing_bp.post("/replies")
def ingest_reply():
    payload = _json_body()
    data = ReplyInput(
        quotation_id=_required_string(payload, "quotationId"),
        reply_from=_optional_string(payload, "from"),
        reply_body=_required_string(payload, "body"),
        received_at=_optional_string(payload, "receivedAt"),
    )
    return _respond(_service().ingest_reply(data))


@sourcing_bp.get("/notifications")
def list_notifications():
    limit = request.args.get("limit", type=int)
    return _respond(_service().list_notifications(limit))


@sourcing_bp.get("/email")
def email_status():
    return _respond(_service().email_status())


@sourcing_bp.post("/email")
def connect_email():
    return _respond(_service().connect_email(_optional_string(_json_body(), "token")))


@sourcing_bp.delete("/email")
def disconnect_email():
    return _respond(_service().disconnect_email())
