"""
Soft Delete Mixin

Adds ``deleted_at`` / ``is_active`` columns and query helpers.  Integration
and webhook configs are never hard-deleted: removal marks the row inactive
and stamps ``deleted_at`` so audit rows keep pointing at something.

Usage:
    class IntegrationConfig(SoftDeleteMixin, TenantModel):
        ...

    cfg.soft_delete()
    db.session.commit()

    IntegrationConfig.query_active().all()
"""

from syncbridge.models import db
from syncbridge.models.base import utcnow


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    def soft_delete(self):
        """Mark this record as deleted and inactive."""
        self.deleted_at = utcnow()
        self.is_active = False

    def restore(self):
        """Restore a soft-deleted record."""
        self.deleted_at = None
        self.is_active = True

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def query_active(cls):
        """Return a query over active, non-deleted records."""
        return cls.query.filter(cls.deleted_at.is_(None), cls.is_active.is_(True))
