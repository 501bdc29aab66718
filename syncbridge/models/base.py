"""
TenantModel: Abstract base class for tenant-scoped models.

Tenants are owned by the external auth/session layer, so ``tenant_id`` is a
plain indexed string rather than a foreign key.  Adds:
  - tenant_id column with index
  - query_for_tenant(tenant_id) classmethod
  - utcnow() / as_utc() timestamp helpers shared by all model modules
"""

from datetime import datetime, timezone

from syncbridge.models import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(db.String(64), nullable=False, index=True)

    @classmethod
    def query_for_tenant(cls, tenant_id):
        """Return a query filtered by tenant_id."""
        return cls.query.filter_by(tenant_id=tenant_id)
