"""Configuration audit blueprint: filtered trail, review queue and sign-off."""

import logging
from datetime import datetime

from flask import Blueprint, jsonify, request

from syncbridge.blueprints import actor, int_arg, json_body, register_error_handlers, tenant_id
from syncbridge.core.exceptions import NotFoundError, ValidationError
from syncbridge.models.base import as_utc
from syncbridge.services import audit_service

logger = logging.getLogger(__name__)

audit_bp = Blueprint("config_audit", __name__, url_prefix="/api/v1/config-audit")
register_error_handlers(audit_bp)


def _date_arg(name):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return as_utc(datetime.fromisoformat(raw))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 timestamp", details={name: raw}) from None


@audit_bp.route("", methods=["GET"])
def list_audit_logs():
    """
    Query params: entity_type, action, performed_by, risk_level,
    start_date, end_date (ISO-8601), limit (max 100).
    """
    logs = audit_service.get_audit_logs(
        tenant_id(),
        entity_type=request.args.get("entity_type"),
        action=request.args.get("action"),
        performed_by=request.args.get("performed_by"),
        risk_level=request.args.get("risk_level"),
        start_date=_date_arg("start_date"),
        end_date=_date_arg("end_date"),
        limit=int_arg("limit", audit_service.MAX_AUDIT_PAGE),
    )
    return jsonify({"items": [log.to_dict() for log in logs], "total": len(logs)}), 200


@audit_bp.route("/pending-reviews", methods=["GET"])
def pending_reviews():
    logs = audit_service.get_pending_reviews(tenant_id())
    return jsonify({"items": [log.to_dict() for log in logs], "total": len(logs)}), 200


@audit_bp.route("/<int:log_id>/review", methods=["POST"])
def review(log_id):
    reviewer = json_body().get("reviewed_by") or actor()
    log = audit_service.mark_reviewed(log_id, reviewer)
    if log is None:
        raise NotFoundError("ConfigurationAuditLog", log_id)
    return jsonify(log.to_dict()), 200
