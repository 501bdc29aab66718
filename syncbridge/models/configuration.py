"""
SyncBridge: Integration configuration models.

Models:
    - IntegrationConfig: per-tenant connection settings for one platform,
      with encrypted credentials, health and circuit breaker state.
    - WebhookConfig: inbound/outbound webhook endpoint with its own
      encrypted signing secret and circuit breaker.

Secrets live only in the ``*_iv`` column pairs written by the credential
vault.  Decrypted values are attached to transient attributes by the
configuration manager and are never persisted or serialised.
"""

from syncbridge.models import db
from syncbridge.models.base import TenantModel, isoformat, utcnow
from syncbridge.models.soft_delete import SoftDeleteMixin

# ── Constants ────────────────────────────────────────────────────────────────

PLATFORM_HUBSPOT = "HUBSPOT"
PLATFORM_STRIPE = "STRIPE"
PLATFORM_QUICKBOOKS = "QUICKBOOKS"

PLATFORMS = {PLATFORM_HUBSPOT, PLATFORM_STRIPE, PLATFORM_QUICKBOOKS}

# Transfers always land in the accounting platform.
ACCOUNTING_PLATFORM = PLATFORM_QUICKBOOKS

CONFIG_TYPE_API_KEY = "API_KEY"
CONFIG_TYPES = {CONFIG_TYPE_API_KEY, "WEBHOOK", "OAUTH", "SETTINGS"}

SYNC_DIRECTIONS = {"INBOUND", "OUTBOUND", "BIDIRECTIONAL"}

WEBHOOK_TYPES = {"INBOUND", "OUTBOUND"}

HEALTH_HEALTHY = "HEALTHY"
HEALTH_DEGRADED = "DEGRADED"
HEALTH_UNHEALTHY = "UNHEALTHY"
HEALTH_UNKNOWN = "UNKNOWN"

HEALTH_STATUSES = {HEALTH_HEALTHY, HEALTH_DEGRADED, HEALTH_UNHEALTHY, HEALTH_UNKNOWN}

BREAKER_CLOSED = "CLOSED"
BREAKER_OPEN = "OPEN"
BREAKER_HALF_OPEN = "HALF_OPEN"

DEFAULT_ENVIRONMENT = "production"
DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_MAX_RETRIES = 3
DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RESET_AFTER_MS = 300_000

# Secret attributes and the IV column paired with each.
INTEGRATION_SECRET_FIELDS = {"api_key": "api_key_iv", "api_secret": "api_secret_iv"}
WEBHOOK_SECRET_FIELDS = {"signing_secret": "signing_secret_iv"}


class CircuitBreakerMixin:
    """Breaker columns shared by integration and webhook configs."""

    circuit_breaker_enabled = db.Column(db.Boolean, nullable=False, default=True)
    circuit_breaker_status = db.Column(
        db.String(10), nullable=False, default=BREAKER_CLOSED,
        comment="CLOSED | OPEN | HALF_OPEN",
    )
    consecutive_failures = db.Column(db.Integer, nullable=False, default=0)
    circuit_breaker_threshold = db.Column(
        db.Integer, nullable=False, default=DEFAULT_FAILURE_THRESHOLD,
    )
    circuit_breaker_opened_at = db.Column(db.DateTime(timezone=True), nullable=True)
    circuit_breaker_reset_after_ms = db.Column(
        db.Integer, nullable=False, default=DEFAULT_RESET_AFTER_MS,
    )

    total_trigger_count = db.Column(db.Integer, nullable=False, default=0)
    total_success_count = db.Column(db.Integer, nullable=False, default=0)
    total_failure_count = db.Column(db.Integer, nullable=False, default=0)
    last_trigger_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_success_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_failure_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def breaker_dict(self) -> dict:
        return {
            "enabled": self.circuit_breaker_enabled,
            "status": self.circuit_breaker_status,
            "consecutive_failures": self.consecutive_failures,
            "threshold": self.circuit_breaker_threshold,
            "opened_at": isoformat(self.circuit_breaker_opened_at),
            "reset_after_ms": self.circuit_breaker_reset_after_ms,
            "total_trigger_count": self.total_trigger_count,
            "total_success_count": self.total_success_count,
            "total_failure_count": self.total_failure_count,
            "last_trigger_at": isoformat(self.last_trigger_at),
            "last_success_at": isoformat(self.last_success_at),
            "last_failure_at": isoformat(self.last_failure_at),
        }


class IntegrationConfig(SoftDeleteMixin, CircuitBreakerMixin, TenantModel):
    """Connection settings for one (tenant, platform, config type, environment)."""

    __tablename__ = "integration_configs"
    __table_args__ = (
        db.UniqueConstraint(
            "tenant_id", "platform", "config_type", "environment",
            name="uq_integration_config_scope",
        ),
        db.Index("idx_integration_config_tenant_platform", "tenant_id", "platform"),
        db.Index("idx_integration_config_health", "health_status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    platform = db.Column(db.String(20), nullable=False, comment="HUBSPOT | STRIPE | QUICKBOOKS")
    config_type = db.Column(db.String(20), nullable=False, default=CONFIG_TYPE_API_KEY)
    environment = db.Column(db.String(30), nullable=False, default=DEFAULT_ENVIRONMENT)
    is_primary = db.Column(db.Boolean, nullable=False, default=True)

    # ── Encrypted credentials
    api_key = db.Column(db.Text, nullable=True)
    api_key_iv = db.Column(db.String(32), nullable=True)
    api_secret = db.Column(db.Text, nullable=True)
    api_secret_iv = db.Column(db.String(32), nullable=True)

    # ── Connection settings
    api_endpoint = db.Column(db.String(500), nullable=True)
    api_version = db.Column(db.String(20), nullable=True)
    hubspot_portal_id = db.Column(db.String(50), nullable=True)
    stripe_account_id = db.Column(db.String(100), nullable=True)
    quickbooks_company_id = db.Column(db.String(100), nullable=True)
    timeout_ms = db.Column(db.Integer, nullable=False, default=DEFAULT_TIMEOUT_MS)
    max_retries = db.Column(db.Integer, nullable=False, default=DEFAULT_MAX_RETRIES)

    # ── Sync settings
    sync_enabled = db.Column(db.Boolean, nullable=False, default=True)
    sync_interval = db.Column(db.Integer, nullable=True, comment="Seconds between syncs")
    sync_direction = db.Column(
        db.String(15), nullable=False, default="BIDIRECTIONAL",
        comment="INBOUND | OUTBOUND | BIDIRECTIONAL",
    )
    features = db.Column(db.JSON, nullable=True)
    mapping_rules = db.Column(db.JSON, nullable=True)
    metadata_json = db.Column(db.JSON, nullable=True)

    # ── Health
    health_status = db.Column(db.String(10), nullable=False, default=HEALTH_UNKNOWN)
    last_health_check_at = db.Column(db.DateTime(timezone=True), nullable=True)
    health_message = db.Column(db.Text, nullable=True)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    validated_by = db.Column(db.String(150), nullable=True)

    # ── Rate limit window advertised by the platform
    rate_limit_per_minute = db.Column(db.Integer, nullable=True)
    rate_limit_remaining = db.Column(db.Integer, nullable=True)
    rate_limit_reset_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(150), nullable=True)
    updated_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow,
    )

    webhooks = db.relationship("WebhookConfig", back_populates="integration_config", lazy="dynamic")

    # Set by ConfigurationManager after decryption; never stored.
    decrypted_api_key = None
    decrypted_api_secret = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "platform": self.platform,
            "config_type": self.config_type,
            "environment": self.environment,
            "is_active": self.is_active,
            "is_primary": self.is_primary,
            "has_api_key": bool(self.api_key),
            "has_api_secret": bool(self.api_secret),
            "api_endpoint": self.api_endpoint,
            "api_version": self.api_version,
            "hubspot_portal_id": self.hubspot_portal_id,
            "stripe_account_id": self.stripe_account_id,
            "quickbooks_company_id": self.quickbooks_company_id,
            "timeout_ms": self.timeout_ms,
            "max_retries": self.max_retries,
            "sync_enabled": self.sync_enabled,
            "sync_interval": self.sync_interval,
            "sync_direction": self.sync_direction,
            "features": self.features,
            "mapping_rules": self.mapping_rules,
            "metadata": self.metadata_json,
            "health_status": self.health_status,
            "last_health_check_at": isoformat(self.last_health_check_at),
            "health_message": self.health_message,
            "validated_at": isoformat(self.validated_at),
            "validated_by": self.validated_by,
            "rate_limit_per_minute": self.rate_limit_per_minute,
            "rate_limit_remaining": self.rate_limit_remaining,
            "rate_limit_reset_at": isoformat(self.rate_limit_reset_at),
            "circuit_breaker": self.breaker_dict(),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "deleted_at": isoformat(self.deleted_at),
        }

    def __repr__(self):
        return f"<IntegrationConfig {self.id}: {self.tenant_id}/{self.platform} {self.environment}>"


class WebhookConfig(SoftDeleteMixin, CircuitBreakerMixin, TenantModel):
    """Webhook endpoint registered for a tenant's platform integration."""

    __tablename__ = "webhook_configs"
    __table_args__ = (
        db.Index("idx_webhook_config_tenant_platform", "tenant_id", "platform"),
    )

    id = db.Column(db.Integer, primary_key=True)
    integration_config_id = db.Column(
        db.Integer,
        db.ForeignKey("integration_configs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    platform = db.Column(db.String(20), nullable=False)
    webhook_type = db.Column(db.String(10), nullable=False, comment="INBOUND | OUTBOUND")
    endpoint_url = db.Column(db.String(500), nullable=False)
    http_method = db.Column(db.String(10), nullable=False, default="POST")

    signing_secret = db.Column(db.Text, nullable=True)
    signing_secret_iv = db.Column(db.String(32), nullable=True)

    subscribed_events = db.Column(db.JSON, nullable=False, default=list)
    max_retries = db.Column(db.Integer, nullable=False, default=DEFAULT_MAX_RETRIES)
    timeout_ms = db.Column(db.Integer, nullable=False, default=DEFAULT_TIMEOUT_MS)
    last_error_message = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(150), nullable=True)
    updated_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow,
    )

    integration_config = db.relationship("IntegrationConfig", back_populates="webhooks")

    decrypted_signing_secret = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "integration_config_id": self.integration_config_id,
            "platform": self.platform,
            "webhook_type": self.webhook_type,
            "endpoint_url": self.endpoint_url,
            "http_method": self.http_method,
            "has_signing_secret": bool(self.signing_secret),
            "subscribed_events": self.subscribed_events or [],
            "max_retries": self.max_retries,
            "timeout_ms": self.timeout_ms,
            "last_error_message": self.last_error_message,
            "is_active": self.is_active,
            "circuit_breaker": self.breaker_dict(),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<WebhookConfig {self.id}: {self.platform} {self.webhook_type} {self.endpoint_url}>"
