"""
Integration configuration blueprint.

Endpoints (tenant from X-Tenant-ID header or ``tenant_id`` query/body):
    GET    /api/v1/integrations/<platform>                 active config (no secrets)
    PUT    /api/v1/integrations/<platform>                 create / update
    DELETE /api/v1/integrations/<platform>                 soft delete
    GET    /api/v1/integrations/<platform>/circuit         breaker snapshot
    POST   /api/v1/integrations/<platform>/outcome         record one call outcome
    POST   /api/v1/integrations/<platform>/rate-limit      store advertised window
    POST   /api/v1/integrations/configs/<id>/validate      live health probe
    POST   /api/v1/integrations/configs/<id>/revoke        wipe credentials
    GET    /api/v1/integrations/webhooks                   list (``platform`` filter)
    PUT    /api/v1/integrations/<platform>/webhooks        create / update
    POST   /api/v1/integrations/webhooks/<id>/outcome      webhook delivery outcome
"""

import logging
from datetime import datetime

from flask import Blueprint, jsonify, request

from syncbridge.blueprints import actor, json_body, register_error_handlers, tenant_id
from syncbridge.core.exceptions import NotFoundError, ValidationError
from syncbridge.models.base import as_utc
from syncbridge.services.registry import get_registry
from syncbridge.utils.errors import E, api_error

logger = logging.getLogger(__name__)

config_bp = Blueprint("integrations", __name__, url_prefix="/api/v1/integrations")
register_error_handlers(config_bp)


def _manager():
    return get_registry().configuration_manager


def _tenant_required():
    """Return (tenant_id, error_response)."""
    tid = tenant_id()
    if not tid:
        return None, api_error(E.VALIDATION_REQUIRED, "tenant_id is required (X-Tenant-ID header)")
    return tid, None


def _parse_datetime(raw, field):
    if raw in (None, ""):
        return None
    try:
        return as_utc(datetime.fromisoformat(raw))
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 timestamp", details={field: raw}) from None


# ── Integration configs ──────────────────────────────────────────────────────


@config_bp.route("/<platform>", methods=["GET"])
def get_config(platform):
    tid, err = _tenant_required()
    if err:
        return err
    config = _manager().get_active_config(tid, platform.upper())
    if config is None:
        raise NotFoundError("IntegrationConfig", platform.upper(), tid)
    return jsonify(config.to_dict()), 200


@config_bp.route("/<platform>", methods=["PUT"])
def upsert_config(platform):
    tid, err = _tenant_required()
    if err:
        return err
    data = json_body()
    data.pop("tenant_id", None)
    config = _manager().upsert_config(tid, platform.upper(), data, actor())
    return jsonify(config.to_dict()), 200


@config_bp.route("/<platform>", methods=["DELETE"])
def delete_config(platform):
    tid, err = _tenant_required()
    if err:
        return err
    deleted = _manager().delete_config(tid, platform.upper(), actor())
    if not deleted:
        raise NotFoundError("IntegrationConfig", platform.upper(), tid)
    return jsonify({"deleted": deleted}), 200


@config_bp.route("/<platform>/circuit", methods=["GET"])
def circuit_state(platform):
    tid, err = _tenant_required()
    if err:
        return err
    snapshot = _manager().get_circuit_state(tid, platform.upper())
    if snapshot is None:
        raise NotFoundError("IntegrationConfig", platform.upper(), tid)
    return jsonify(snapshot), 200


@config_bp.route("/<platform>/outcome", methods=["POST"])
def record_outcome(platform):
    """Body: {success: bool}.  Feeds the (tenant, platform) circuit breaker."""
    tid, err = _tenant_required()
    if err:
        return err
    success = json_body().get("success")
    if not isinstance(success, bool):
        return api_error(E.VALIDATION_REQUIRED, "success (boolean) is required")
    state = _manager().record_integration_outcome(tid, platform.upper(), success)
    if state is None:
        raise NotFoundError("IntegrationConfig", platform.upper(), tid)
    return jsonify({"circuit_breaker_state": state}), 200


@config_bp.route("/<platform>/rate-limit", methods=["POST"])
def update_rate_limit(platform):
    tid, err = _tenant_required()
    if err:
        return err
    data = json_body()
    remaining = data.get("remaining")
    if isinstance(remaining, bool) or not isinstance(remaining, int):
        return api_error(E.VALIDATION_REQUIRED, "remaining (integer) is required")
    config = _manager().update_rate_limit(
        tid,
        platform.upper(),
        remaining,
        _parse_datetime(data.get("reset_at"), "reset_at"),
        data.get("per_minute"),
    )
    if config is None:
        raise NotFoundError("IntegrationConfig", platform.upper(), tid)
    return jsonify(config.to_dict()), 200


@config_bp.route("/configs/<int:config_id>/validate", methods=["POST"])
def validate_config(config_id):
    timeout = json_body().get("timeout")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
        raise ValidationError("timeout must be a positive number of seconds")
    result = _manager().validate_config(config_id, actor(), timeout=timeout)
    if result is None:
        raise NotFoundError("IntegrationConfig", config_id)
    return jsonify(result), 200


@config_bp.route("/configs/<int:config_id>/revoke", methods=["POST"])
def revoke_credentials(config_id):
    config = _manager().revoke_credentials(config_id, actor())
    if config is None:
        raise NotFoundError("IntegrationConfig", config_id)
    return jsonify(config.to_dict()), 200


# ── Webhooks ─────────────────────────────────────────────────────────────────


@config_bp.route("/webhooks", methods=["GET"])
def list_webhooks():
    tid, err = _tenant_required()
    if err:
        return err
    platform = request.args.get("platform")
    webhooks = _manager().get_webhook_configs(tid, platform.upper() if platform else None)
    return jsonify({"items": [w.to_dict() for w in webhooks], "total": len(webhooks)}), 200


@config_bp.route("/<platform>/webhooks", methods=["PUT"])
def upsert_webhook(platform):
    tid, err = _tenant_required()
    if err:
        return err
    data = json_body()
    data.pop("tenant_id", None)
    webhook = _manager().upsert_webhook_config(tid, platform.upper(), data, actor())
    return jsonify(webhook.to_dict()), 200


@config_bp.route("/webhooks/<int:webhook_id>/outcome", methods=["POST"])
def webhook_outcome(webhook_id):
    """Body: {success: bool, error?: str}"""
    data = json_body()
    success = data.get("success")
    if not isinstance(success, bool):
        return api_error(E.VALIDATION_REQUIRED, "success (boolean) is required")
    webhook = _manager().update_webhook_circuit_breaker(webhook_id, success, data.get("error"))
    if webhook is None:
        raise NotFoundError("WebhookConfig", webhook_id)
    return jsonify(webhook.to_dict()), 200
