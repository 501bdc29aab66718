"""Transfer queue blueprint.

Endpoint groups:
  Review       GET  /api/v1/transfer-queue/pending
               POST /api/v1/transfer-queue/<id>/approve
               POST /api/v1/transfer-queue/<id>/reject
               POST /api/v1/transfer-queue/bulk-approve
  Worker pull  GET  /api/v1/transfer-queue/approved
               POST /api/v1/transfer-queue/<id>/transferred
               POST /api/v1/transfer-queue/<id>/failed
  Operations   POST /api/v1/transfer-queue/process-changes
               GET  /api/v1/transfer-queue/summary
               POST /api/v1/transfer-queue/cleanup

Reviewer identity comes from the X-User header unless given in the body.
When X-Tenant-ID is present, transfer outcomes also feed that tenant's
accounting circuit breaker.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from syncbridge.blueprints import actor, int_arg, json_body, register_error_handlers, tenant_id
from syncbridge.core.exceptions import NotFoundError, ValidationError
from syncbridge.services.registry import get_registry
from syncbridge.utils.errors import E, api_error

logger = logging.getLogger(__name__)

queue_bp = Blueprint("transfer_queue", __name__, url_prefix="/api/v1/transfer-queue")
register_error_handlers(queue_bp)


def _manager():
    return get_registry().transfer_queue(tenant_id())


def _entry_or_404(entry, entry_id):
    if entry is None:
        raise NotFoundError("TransferQueueEntry", entry_id)
    return jsonify(entry.to_dict()), 200


# ── Review ───────────────────────────────────────────────────────────────────


@queue_bp.route("/pending", methods=["GET"])
def list_pending():
    """Pending entries, oldest first.  Query: limit?, entity_type?"""
    entries = _manager().get_pending_entries(
        limit=int_arg("limit"),
        entity_type=request.args.get("entity_type") or None,
    )
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)}), 200


@queue_bp.route("/<int:entry_id>/approve", methods=["POST"])
def approve(entry_id):
    data = json_body()
    entry = _manager().approve(entry_id, data.get("approved_by") or actor(), data.get("notes"))
    return _entry_or_404(entry, entry_id)


@queue_bp.route("/<int:entry_id>/reject", methods=["POST"])
def reject(entry_id):
    data = json_body()
    entry = _manager().reject(
        entry_id,
        data.get("rejected_by") or actor(),
        data.get("reason") or "",
        data.get("notes"),
    )
    return _entry_or_404(entry, entry_id)


@queue_bp.route("/bulk-approve", methods=["POST"])
def bulk_approve():
    """Body: {entry_ids: [int], notes?}.  Always 200; per-id results inside."""
    data = json_body()
    entry_ids = data.get("entry_ids")
    if not isinstance(entry_ids, list) or not entry_ids:
        return api_error(E.VALIDATION_REQUIRED, "entry_ids must be a non-empty list")
    result = _manager().bulk_approve(entry_ids, data.get("approved_by") or actor(), data.get("notes"))
    return jsonify(result), 200


# ── Worker contract ──────────────────────────────────────────────────────────


@queue_bp.route("/approved", methods=["GET"])
def list_approved():
    entries = _manager().get_approved_entries(limit=int_arg("limit"))
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)}), 200


@queue_bp.route("/<int:entry_id>/transferred", methods=["POST"])
def mark_transferred(entry_id):
    data = json_body()
    entry = _manager().mark_as_transferred(entry_id, data.get("external_id") or "")
    return _entry_or_404(entry, entry_id)


@queue_bp.route("/<int:entry_id>/failed", methods=["POST"])
def mark_failed(entry_id):
    """Body: {error, increment_retry?: bool = true}"""
    data = json_body()
    error = data.get("error")
    if not error:
        return api_error(E.VALIDATION_REQUIRED, "error is required")
    increment = data.get("increment_retry", True)
    if not isinstance(increment, bool):
        raise ValidationError("increment_retry must be a boolean")
    entry = _manager().mark_as_failed(entry_id, error, increment_retry=increment)
    return _entry_or_404(entry, entry_id)


# ── Operations ───────────────────────────────────────────────────────────────


@queue_bp.route("/process-changes", methods=["POST"])
def process_changes():
    registry = get_registry()
    if registry.change_detector is None or registry.entity_repository is None:
        return api_error(E.UNAVAILABLE, "Change detection is not configured for this deployment")
    result = _manager().process_changes()
    return jsonify(result), 200


@queue_bp.route("/summary", methods=["GET"])
def summary():
    return jsonify(_manager().get_queue_summary()), 200


@queue_bp.route("/cleanup", methods=["POST"])
def cleanup():
    data = json_body()
    days = data.get("older_than_days", current_app.config["QUEUE_RETENTION_DAYS"])
    if isinstance(days, bool) or not isinstance(days, int):
        raise ValidationError("older_than_days must be an integer")
    deleted = _manager().cleanup_old_entries(days)
    return jsonify({"deleted": deleted, "older_than_days": days}), 200
