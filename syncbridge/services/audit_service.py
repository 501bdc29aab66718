"""
Configuration audit queries, review sign-off and the risk policy.

Rows are written by ``write_config_audit`` inside the caller's transaction;
this module only classifies, reads and signs off.
"""

from __future__ import annotations

import logging
from datetime import datetime

from syncbridge.core.exceptions import ValidationError
from syncbridge.models import db
from syncbridge.models.audit import (
    AUDIT_ACTION_DELETE,
    AUDIT_ACTION_REVOKE,
    REVIEW_RISK_LEVELS,
    RISK_HIGH,
    RISK_LOW,
    RISK_MEDIUM,
    ConfigurationAuditLog,
)
from syncbridge.models.base import utcnow

logger = logging.getLogger(__name__)

MAX_AUDIT_PAGE = 100

SECRET_FIELDS = frozenset({"api_key", "api_secret", "signing_secret"})
ROUTING_FIELDS = frozenset({"sync_direction", "environment"})


def assess_risk_level(action: str, changes: dict | None) -> str:
    """Classify a configuration change.

    First match wins:
        DELETE / REVOKE                       → HIGH
        ``environment`` set to production     → HIGH
        any credential field touched          → MEDIUM
        sync direction or environment touched → MEDIUM
        anything else                         → LOW
    """
    changes = changes or {}
    if action in (AUDIT_ACTION_DELETE, AUDIT_ACTION_REVOKE):
        return RISK_HIGH
    if changes.get("environment") == "production":
        return RISK_HIGH
    if any(changes.get(key) for key in SECRET_FIELDS):
        return RISK_MEDIUM
    if any(changes.get(key) for key in ROUTING_FIELDS):
        return RISK_MEDIUM
    return RISK_LOW


def get_audit_logs(
    tenant_id: str | None = None,
    *,
    entity_type: str | None = None,
    action: str | None = None,
    performed_by: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    risk_level: str | None = None,
    limit: int = MAX_AUDIT_PAGE,
) -> list[ConfigurationAuditLog]:
    """Filtered audit trail, newest first, at most 100 rows."""
    q = ConfigurationAuditLog.query
    if tenant_id is not None:
        q = q.filter(ConfigurationAuditLog.tenant_id == tenant_id)
    if entity_type:
        q = q.filter(ConfigurationAuditLog.entity_type == entity_type)
    if action:
        q = q.filter(ConfigurationAuditLog.action == action)
    if performed_by:
        q = q.filter(ConfigurationAuditLog.performed_by == performed_by)
    if risk_level:
        q = q.filter(ConfigurationAuditLog.risk_level == risk_level)
    if start_date:
        q = q.filter(ConfigurationAuditLog.created_at >= start_date)
    if end_date:
        q = q.filter(ConfigurationAuditLog.created_at <= end_date)

    limit = max(1, min(limit or MAX_AUDIT_PAGE, MAX_AUDIT_PAGE))
    return (
        q.order_by(ConfigurationAuditLog.created_at.desc(), ConfigurationAuditLog.id.desc())
        .limit(limit)
        .all()
    )


def get_pending_reviews(tenant_id: str | None = None) -> list[ConfigurationAuditLog]:
    """High-risk entries still waiting for a reviewer, newest first."""
    q = ConfigurationAuditLog.query.filter(
        ConfigurationAuditLog.risk_level.in_(REVIEW_RISK_LEVELS),
        ConfigurationAuditLog.requires_review.is_(True),
        ConfigurationAuditLog.reviewed_at.is_(None),
    )
    if tenant_id is not None:
        q = q.filter(ConfigurationAuditLog.tenant_id == tenant_id)
    return q.order_by(ConfigurationAuditLog.created_at.desc(), ConfigurationAuditLog.id.desc()).all()


def mark_reviewed(log_id: int, reviewed_by: str) -> ConfigurationAuditLog | None:
    """Sign off one audit entry.  Returns None when the entry does not exist.

    Raises:
        ValidationError: reviewer missing, or the entry was already reviewed.
    """
    if not reviewed_by:
        raise ValidationError("reviewed_by is required")
    log = db.session.get(ConfigurationAuditLog, log_id)
    if log is None:
        return None
    if log.is_reviewed:
        raise ValidationError(
            f"Audit entry {log_id} was already reviewed by {log.reviewed_by}",
            details={"reviewed_at": log.to_dict()["reviewed_at"]},
        )
    log.reviewed_at = utcnow()
    log.reviewed_by = reviewed_by
    db.session.commit()
    logger.info("Audit entry %s reviewed by %s", log_id, reviewed_by)
    return log
