"""
SyncBridge: Transfer queue domain model.

Models:
    - TransferQueueEntry: one detected entity change awaiting human review
      and transfer to the accounting platform.

Lifecycle:
    PENDING_REVIEW → APPROVED → TRANSFERRED
    PENDING_REVIEW → REJECTED
    APPROVED → APPROVED (retry scheduled) → FAILED (retries exhausted)
    FAILED → APPROVED (human re-approval)
"""

from syncbridge.models import db
from syncbridge.models.base import isoformat, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

ENTITY_CONTACT = "CONTACT"
ENTITY_COMPANY = "COMPANY"
ENTITY_INVOICE = "INVOICE"
ENTITY_LINE_ITEM = "LINE_ITEM"

ENTITY_TYPES = (ENTITY_CONTACT, ENTITY_COMPANY, ENTITY_INVOICE, ENTITY_LINE_ITEM)

# Invoices and their line items carry money; reviewers see them first in stats.
HIGH_PRIORITY_ENTITY_TYPES = {ENTITY_INVOICE, ENTITY_LINE_ITEM}

ACTION_CREATE = "CREATE"
ACTION_UPDATE = "UPDATE"
ACTION_DELETE = "DELETE"

ACTION_TYPES = {ACTION_CREATE, ACTION_UPDATE, ACTION_DELETE}

# change_type reported by the change detector → queued action
CHANGE_TYPE_ACTIONS = {
    "created": ACTION_CREATE,
    "updated": ACTION_UPDATE,
    "deleted": ACTION_DELETE,
}

STATUS_PENDING_REVIEW = "PENDING_REVIEW"
STATUS_APPROVED = "APPROVED"
STATUS_REJECTED = "REJECTED"
STATUS_TRANSFERRED = "TRANSFERRED"
STATUS_FAILED = "FAILED"

QUEUE_STATUSES = (
    STATUS_PENDING_REVIEW,
    STATUS_APPROVED,
    STATUS_REJECTED,
    STATUS_TRANSFERRED,
    STATUS_FAILED,
)

# At most one row per (tenant, entity) may sit in these statuses.
ACTIVE_STATUSES = (STATUS_PENDING_REVIEW, STATUS_APPROVED)

# Rows in these statuses are eligible for retention cleanup.
PURGEABLE_STATUSES = (STATUS_TRANSFERRED, STATUS_REJECTED)

TRIGGER_DIRECT_CHANGE = "direct_change"
TRIGGER_CASCADE_PREFIX = "cascade_from_"

_ACTIVE_STATUS_SQL = "status IN ('PENDING_REVIEW', 'APPROVED')"


class TransferQueueEntry(db.Model):
    """
    A pending transfer of one entity snapshot to the accounting platform.

    ``entity_data`` is the full snapshot taken at enqueue time; the transfer
    worker sends exactly what the reviewer approved.  ``version`` is bumped on
    every UPDATE so concurrent approve/reject calls cannot silently overwrite
    each other.
    """

    __tablename__ = "transfer_queue_entries"
    __table_args__ = (
        db.Index("idx_tq_status_created", "status", "created_at"),
        db.Index("idx_tq_status_approved", "status", "approved_at"),
        db.Index("idx_tq_entity", "entity_type", "entity_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=True, index=True)

    entity_type = db.Column(
        db.String(20), nullable=False,
        comment="CONTACT | COMPANY | INVOICE | LINE_ITEM",
    )
    entity_id = db.Column(db.String(64), nullable=False)
    action_type = db.Column(
        db.String(10), nullable=False, default=ACTION_UPDATE,
        comment="CREATE | UPDATE | DELETE",
    )
    status = db.Column(
        db.String(20), nullable=False, default=STATUS_PENDING_REVIEW,
        comment="PENDING_REVIEW → APPROVED → TRANSFERRED | REJECTED | FAILED",
    )
    trigger_reason = db.Column(
        db.String(60), nullable=False, default=TRIGGER_DIRECT_CHANGE,
        comment="direct_change | cascade_from_<ENTITY_TYPE>",
    )

    # ── Payload
    entity_data = db.Column(db.JSON, nullable=False, default=dict)
    original_data = db.Column(db.JSON, nullable=True)

    # ── Review
    approved_by = db.Column(db.String(150), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.String(150), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    validation_notes = db.Column(db.Text, nullable=True)

    # ── Transfer result
    transferred_at = db.Column(db.DateTime(timezone=True), nullable=True)
    external_transfer_id = db.Column(
        db.String(100), nullable=True,
        comment="Id assigned by the accounting platform",
    )
    transfer_error = db.Column(db.Text, nullable=True)

    # ── Retry state
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    next_retry_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow,
    )

    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_high_priority(self) -> bool:
        return self.entity_type in HIGH_PRIORITY_ENTITY_TYPES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action_type": self.action_type,
            "status": self.status,
            "trigger_reason": self.trigger_reason,
            "entity_data": self.entity_data or {},
            "original_data": self.original_data,
            "approved_by": self.approved_by,
            "approved_at": isoformat(self.approved_at),
            "rejected_by": self.rejected_by,
            "rejected_at": isoformat(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "validation_notes": self.validation_notes,
            "transferred_at": isoformat(self.transferred_at),
            "external_transfer_id": self.external_transfer_id,
            "transfer_error": self.transfer_error,
            "retry_count": self.retry_count,
            "next_retry_at": isoformat(self.next_retry_at),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<TransferQueueEntry {self.id}: {self.entity_type}/{self.entity_id} {self.status}>"


# Untenanted rows share the '' owner key so they still deduplicate.
db.Index(
    "uq_tq_active_entity",
    db.func.coalesce(TransferQueueEntry.tenant_id, ""),
    TransferQueueEntry.entity_type,
    TransferQueueEntry.entity_id,
    unique=True,
    sqlite_where=db.text(_ACTIVE_STATUS_SQL),
    postgresql_where=db.text(_ACTIVE_STATUS_SQL),
)
