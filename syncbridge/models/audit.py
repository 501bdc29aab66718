"""
SyncBridge: Configuration audit model.

Models:
    - ConfigurationAuditLog: append-only trail of every mutating operation
      on integration configs, webhook configs and transfer queue entries.

The only permitted mutation after insert is the review sign-off
(``reviewed_at`` / ``reviewed_by``), which is set once.
"""

from syncbridge.models import db
from syncbridge.models.base import isoformat, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_INTEGRATION_CONFIG = "INTEGRATION_CONFIG"
AUDIT_ENTITY_WEBHOOK_CONFIG = "WEBHOOK_CONFIG"
AUDIT_ENTITY_TRANSFER_QUEUE_ENTRY = "TRANSFER_QUEUE_ENTRY"

AUDIT_ENTITY_TYPES = {
    AUDIT_ENTITY_INTEGRATION_CONFIG,
    AUDIT_ENTITY_WEBHOOK_CONFIG,
    AUDIT_ENTITY_TRANSFER_QUEUE_ENTRY,
}

AUDIT_ACTION_CREATE = "CREATE"
AUDIT_ACTION_UPDATE = "UPDATE"
AUDIT_ACTION_DELETE = "DELETE"
AUDIT_ACTION_VALIDATE = "VALIDATE"
AUDIT_ACTION_REVOKE = "REVOKE"

AUDIT_ACTIONS = {
    AUDIT_ACTION_CREATE,
    AUDIT_ACTION_UPDATE,
    AUDIT_ACTION_DELETE,
    AUDIT_ACTION_VALIDATE,
    AUDIT_ACTION_REVOKE,
}

RISK_LOW = "LOW"
RISK_MEDIUM = "MEDIUM"
RISK_HIGH = "HIGH"
RISK_CRITICAL = "CRITICAL"

RISK_LEVELS = (RISK_LOW, RISK_MEDIUM, RISK_HIGH, RISK_CRITICAL)

REVIEW_RISK_LEVELS = {RISK_HIGH, RISK_CRITICAL}


class ConfigurationAuditLog(db.Model):
    """
    One row per mutating configuration or queue operation.

    ``metadata_json`` carries a summary of what changed; secret values are
    reduced to the names of the fields that were touched.
    """

    __tablename__ = "configuration_audit_logs"
    __table_args__ = (
        db.Index("idx_config_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_config_audit_tenant_created", "tenant_id", "created_at"),
        db.Index("idx_config_audit_risk", "risk_level", "requires_review"),
        db.Index("idx_config_audit_actor", "performed_by"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=True, index=True)

    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="INTEGRATION_CONFIG | WEBHOOK_CONFIG | TRANSFER_QUEUE_ENTRY",
    )
    entity_id = db.Column(db.String(64), nullable=False)
    action = db.Column(
        db.String(10), nullable=False,
        comment="CREATE | UPDATE | DELETE | VALIDATE | REVOKE",
    )
    performed_by = db.Column(db.String(150), nullable=False, default="system")

    risk_level = db.Column(db.String(10), nullable=False, default=RISK_LOW)
    platform = db.Column(db.String(20), nullable=True)
    environment = db.Column(db.String(30), nullable=True)
    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    requires_review = db.Column(db.Boolean, nullable=False, default=False)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_by = db.Column(db.String(150), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def is_reviewed(self) -> bool:
        return self.reviewed_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "performed_by": self.performed_by,
            "risk_level": self.risk_level,
            "platform": self.platform,
            "environment": self.environment,
            "metadata": self.metadata_json or {},
            "requires_review": self.requires_review,
            "reviewed_at": isoformat(self.reviewed_at),
            "reviewed_by": self.reviewed_by,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<ConfigurationAuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id} [{self.risk_level}]>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_config_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    performed_by: str = "system",
    risk_level: str = RISK_LOW,
    tenant_id: str | None = None,
    platform: str | None = None,
    environment: str | None = None,
    metadata: dict | None = None,
) -> ConfigurationAuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control: the row commits or rolls back together with the
    change it describes.

    Returns the (flushed) ConfigurationAuditLog instance.
    """
    log = ConfigurationAuditLog(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        performed_by=performed_by or "system",
        risk_level=risk_level,
        platform=platform,
        environment=environment,
        metadata_json=metadata or {},
        requires_review=risk_level in REVIEW_RISK_LEVELS,
    )
    db.session.add(log)
    db.session.flush()
    return log
