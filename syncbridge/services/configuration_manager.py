"""
SyncBridge: Configuration Manager.

Per-tenant, per-platform integration settings and webhook settings:
  - Secrets encrypted through the CredentialVault before they touch the DB
  - Every mutation audited in the same transaction (risk classified)
  - Health validation via HealthProbeGateway (probe errors → UNHEALTHY)
  - Circuit breaker outcomes for integrations and webhook endpoints

All outbound HTTP is delegated to ``syncbridge.integrations.health_probes``.

Tenant isolation:
  Every lookup is scoped by tenant_id; the (tenant, platform, config type,
  environment) scope is unique at DB level.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from syncbridge.core.exceptions import (
    ConfigurationDecryptionError,
    ConflictError,
    DecryptionError,
    ValidationError,
)
from syncbridge.integrations.health_probes import HealthProbeGateway
from syncbridge.models import db
from syncbridge.models.audit import (
    AUDIT_ACTION_CREATE,
    AUDIT_ACTION_DELETE,
    AUDIT_ACTION_REVOKE,
    AUDIT_ACTION_UPDATE,
    AUDIT_ACTION_VALIDATE,
    AUDIT_ENTITY_INTEGRATION_CONFIG,
    AUDIT_ENTITY_WEBHOOK_CONFIG,
    RISK_LOW,
    write_config_audit,
)
from syncbridge.models.base import isoformat, utcnow
from syncbridge.models.configuration import (
    CONFIG_TYPE_API_KEY,
    CONFIG_TYPES,
    DEFAULT_ENVIRONMENT,
    HEALTH_UNHEALTHY,
    HEALTH_UNKNOWN,
    INTEGRATION_SECRET_FIELDS,
    PLATFORMS,
    SYNC_DIRECTIONS,
    WEBHOOK_SECRET_FIELDS,
    WEBHOOK_TYPES,
    IntegrationConfig,
    WebhookConfig,
)
from syncbridge.services.audit_service import assess_risk_level
from syncbridge.services.circuit_breaker import CircuitBreaker
from syncbridge.utils.crypto import CredentialVault

logger = logging.getLogger(__name__)

# request key → model attribute
_CONFIG_FIELDS = {
    "is_primary": "is_primary",
    "is_active": "is_active",
    "api_endpoint": "api_endpoint",
    "api_version": "api_version",
    "hubspot_portal_id": "hubspot_portal_id",
    "stripe_account_id": "stripe_account_id",
    "quickbooks_company_id": "quickbooks_company_id",
    "timeout_ms": "timeout_ms",
    "max_retries": "max_retries",
    "sync_enabled": "sync_enabled",
    "sync_interval": "sync_interval",
    "sync_direction": "sync_direction",
    "features": "features",
    "mapping_rules": "mapping_rules",
    "metadata": "metadata_json",
    "rate_limit_per_minute": "rate_limit_per_minute",
    "circuit_breaker_enabled": "circuit_breaker_enabled",
    "circuit_breaker_threshold": "circuit_breaker_threshold",
    "circuit_breaker_reset_after_ms": "circuit_breaker_reset_after_ms",
}
_CONFIG_SCOPE_FIELDS = {"config_type", "environment"}

_WEBHOOK_FIELDS = {
    "integration_config_id",
    "http_method",
    "subscribed_events",
    "max_retries",
    "timeout_ms",
    "is_active",
    "circuit_breaker_enabled",
    "circuit_breaker_threshold",
    "circuit_breaker_reset_after_ms",
}
_WEBHOOK_SCOPE_FIELDS = {"endpoint_url", "webhook_type"}

_POSITIVE_INT_FIELDS = {"timeout_ms", "circuit_breaker_threshold", "circuit_breaker_reset_after_ms", "sync_interval"}
_NON_NEGATIVE_INT_FIELDS = {"max_retries", "rate_limit_per_minute"}


def _validate_platform(platform: str) -> None:
    if platform not in PLATFORMS:
        raise ValidationError(
            f"Unsupported platform: {platform}",
            details={"platform": platform, "allowed": sorted(PLATFORMS)},
        )


def _validate_numbers(data: dict) -> None:
    for key in _POSITIVE_INT_FIELDS | _NON_NEGATIVE_INT_FIELDS:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{key} must be an integer", details={key: value})
        floor = 1 if key in _POSITIVE_INT_FIELDS else 0
        if value < floor:
            raise ValidationError(f"{key} must be >= {floor}", details={key: value})


class ConfigurationManager:
    """Integration and webhook settings for every tenant and platform.

    Usage:
        cm = ConfigurationManager(vault)
        cm.upsert_config("acme", "STRIPE", {"api_key": "sk_live_..."}, "ops@acme.io")
        cfg = cm.get_active_config("acme", "STRIPE")
        cfg.decrypted_api_key
    """

    def __init__(self, vault: CredentialVault, probe_gateway: HealthProbeGateway | None = None) -> None:
        self.vault = vault
        self.probe_gateway = probe_gateway or HealthProbeGateway()

    # ── Integration configs ──────────────────────────────────────────────

    def upsert_config(self, tenant_id: str, platform: str, data: dict, performed_by: str) -> IntegrationConfig:
        """Create or update the config for (tenant, platform, config type, environment).

        Secrets in ``data`` are encrypted before storage.  Omitted secrets keep
        their stored value.  One audit row is written in the same transaction.

        Raises:
            ValidationError: unknown platform, config type, sync direction or field.
            ConflictError: a concurrent create claimed the same scope.
        """
        if not tenant_id:
            raise ValidationError("tenant_id is required")
        _validate_platform(platform)
        data = dict(data or {})
        unknown = set(data) - set(_CONFIG_FIELDS) - _CONFIG_SCOPE_FIELDS - set(INTEGRATION_SECRET_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown configuration fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )
        config_type = data.get("config_type") or CONFIG_TYPE_API_KEY
        if config_type not in CONFIG_TYPES:
            raise ValidationError(f"Unsupported config type: {config_type}")
        if data.get("sync_direction") is not None and data["sync_direction"] not in SYNC_DIRECTIONS:
            raise ValidationError(f"Unsupported sync direction: {data['sync_direction']}")
        _validate_numbers(data)
        environment = data.get("environment") or DEFAULT_ENVIRONMENT

        config = IntegrationConfig.query.filter_by(
            tenant_id=tenant_id,
            platform=platform,
            config_type=config_type,
            environment=environment,
        ).first()

        if config is None:
            # A new scope row only takes over as primary when none exists yet.
            config = IntegrationConfig(
                tenant_id=tenant_id,
                platform=platform,
                config_type=config_type,
                environment=environment,
                is_primary=self._find_active(tenant_id, platform) is None,
                created_by=performed_by,
            )
            db.session.add(config)
            action = AUDIT_ACTION_CREATE
        else:
            if config.is_deleted:
                config.restore()
            action = AUDIT_ACTION_UPDATE

        for key, attr in _CONFIG_FIELDS.items():
            if key in data:
                setattr(config, attr, data[key])

        rotated = self._store_secrets(config, data, INTEGRATION_SECRET_FIELDS)
        if rotated and action == AUDIT_ACTION_UPDATE:
            CircuitBreaker(config).reset()
        config.updated_by = performed_by

        self._flush("IntegrationConfig", f"{tenant_id}/{platform}/{config_type}/{environment}")
        if config.is_primary:
            self._demote_other_primaries(config)
        write_config_audit(
            entity_type=AUDIT_ENTITY_INTEGRATION_CONFIG,
            entity_id=config.id,
            action=action,
            performed_by=performed_by,
            risk_level=assess_risk_level(action, data),
            tenant_id=tenant_id,
            platform=platform,
            environment=environment,
            metadata={"changes": sorted(data), "rotated_secrets": rotated},
        )
        db.session.commit()
        logger.info(
            "Integration config %s %s for tenant=%s platform=%s env=%s by %s",
            config.id, action.lower(), tenant_id, platform, environment, performed_by,
        )
        return config

    def get_active_config(self, tenant_id: str, platform: str) -> IntegrationConfig | None:
        """Active primary config with secrets decrypted onto transient attributes.

        Raises:
            ConfigurationDecryptionError: a stored secret does not decrypt.
        """
        config = self._find_active(tenant_id, platform)
        if config is None:
            return None
        self._decrypt_secrets(config)
        return config

    def validate_config(self, config_id: int, performed_by: str, timeout: float | None = None) -> dict | None:
        """Probe the platform and persist the resulting health status.

        ``timeout`` is in seconds; defaults to the config's ``timeout_ms``.
        Probe failures are recorded as UNHEALTHY, never raised.
        """
        config = db.session.get(IntegrationConfig, config_id)
        if config is None or config.is_deleted:
            return None
        self._decrypt_secrets(config)

        timeout = timeout or (config.timeout_ms or 0) / 1000 or None
        now = utcnow()
        try:
            result = self.probe_gateway.probe(config, timeout=timeout)
            status, message = result.status, result.message
            config.validated_at = now
            config.validated_by = performed_by
        except Exception as exc:
            logger.warning(
                "Health probe failed for config=%s platform=%s: %s",
                config.id, config.platform, exc,
            )
            status, message = HEALTH_UNHEALTHY, f"Validation error: {exc}"

        config.health_status = status
        config.health_message = message
        config.last_health_check_at = now

        write_config_audit(
            entity_type=AUDIT_ENTITY_INTEGRATION_CONFIG,
            entity_id=config.id,
            action=AUDIT_ACTION_VALIDATE,
            performed_by=performed_by,
            risk_level=RISK_LOW,
            tenant_id=config.tenant_id,
            platform=config.platform,
            environment=config.environment,
            metadata={"status": status, "message": message},
        )
        db.session.commit()
        return {
            "config_id": config.id,
            "status": status,
            "message": message,
            "checked_at": isoformat(now),
        }

    def delete_config(self, tenant_id: str, platform: str, performed_by: str) -> int:
        """Soft delete the tenant's configs for a platform and deactivate its webhooks."""
        _validate_platform(platform)
        configs = IntegrationConfig.query_active().filter_by(tenant_id=tenant_id, platform=platform).all()
        if not configs:
            return 0
        webhooks = WebhookConfig.query_active().filter_by(tenant_id=tenant_id, platform=platform).all()
        for webhook in webhooks:
            webhook.soft_delete()
            webhook.updated_by = performed_by

        for config in configs:
            config.soft_delete()
            config.updated_by = performed_by
            write_config_audit(
                entity_type=AUDIT_ENTITY_INTEGRATION_CONFIG,
                entity_id=config.id,
                action=AUDIT_ACTION_DELETE,
                performed_by=performed_by,
                risk_level=assess_risk_level(AUDIT_ACTION_DELETE, None),
                tenant_id=tenant_id,
                platform=platform,
                environment=config.environment,
                metadata={"webhooks_deactivated": len(webhooks)},
            )
        db.session.commit()
        logger.warning(
            "Deleted %d %s config(s) and %d webhook(s) for tenant=%s by %s",
            len(configs), platform, len(webhooks), tenant_id, performed_by,
        )
        return len(configs)

    def revoke_credentials(self, config_id: int, performed_by: str) -> IntegrationConfig | None:
        """Wipe stored secrets; the config stays but can no longer authenticate."""
        config = db.session.get(IntegrationConfig, config_id)
        if config is None or config.is_deleted:
            return None
        revoked = [field for field in INTEGRATION_SECRET_FIELDS if getattr(config, field)]
        for field, iv_field in INTEGRATION_SECRET_FIELDS.items():
            setattr(config, field, None)
            setattr(config, iv_field, None)
        config.health_status = HEALTH_UNKNOWN
        config.health_message = "Credentials revoked"
        config.updated_by = performed_by

        write_config_audit(
            entity_type=AUDIT_ENTITY_INTEGRATION_CONFIG,
            entity_id=config.id,
            action=AUDIT_ACTION_REVOKE,
            performed_by=performed_by,
            risk_level=assess_risk_level(AUDIT_ACTION_REVOKE, None),
            tenant_id=config.tenant_id,
            platform=config.platform,
            environment=config.environment,
            metadata={"revoked_fields": sorted(revoked)},
        )
        db.session.commit()
        logger.warning("Credentials revoked on config %s by %s", config.id, performed_by)
        return config

    # ── Integration circuit breaker & rate limit ─────────────────────────

    def record_integration_outcome(self, tenant_id: str, platform: str, success: bool) -> str | None:
        """Record one call outcome on the (tenant, platform) breaker.  Returns the new state."""
        config = self._find_active(tenant_id, platform)
        if config is None:
            logger.debug("No active %s config for tenant=%s; outcome not recorded", platform, tenant_id)
            return None
        state = CircuitBreaker(config).record(success)
        db.session.commit()
        return state

    def get_circuit_state(self, tenant_id: str, platform: str) -> dict | None:
        config = self._find_active(tenant_id, platform)
        if config is None:
            return None
        breaker = CircuitBreaker(config)
        snapshot = breaker.snapshot()
        snapshot["allows_request"] = breaker.allows_request()
        if db.session.is_modified(config):
            db.session.commit()
        return snapshot

    def update_rate_limit(
        self,
        tenant_id: str,
        platform: str,
        remaining: int,
        reset_at: datetime | None,
        per_minute: int | None = None,
    ) -> IntegrationConfig | None:
        """Persist the rate-limit window a platform advertised in its response headers."""
        config = self._find_active(tenant_id, platform)
        if config is None:
            return None
        config.rate_limit_remaining = remaining
        config.rate_limit_reset_at = reset_at
        if per_minute is not None:
            config.rate_limit_per_minute = per_minute
        db.session.commit()
        if remaining is not None and remaining <= 0:
            logger.warning("Rate limit exhausted for tenant=%s platform=%s until %s", tenant_id, platform, reset_at)
        return config

    # ── Webhooks ─────────────────────────────────────────────────────────

    def upsert_webhook_config(self, tenant_id: str, platform: str, data: dict, performed_by: str) -> WebhookConfig:
        """Create or update a webhook identified by (tenant, platform, endpoint_url, webhook_type)."""
        if not tenant_id:
            raise ValidationError("tenant_id is required")
        _validate_platform(platform)
        data = dict(data or {})
        unknown = set(data) - _WEBHOOK_FIELDS - _WEBHOOK_SCOPE_FIELDS - set(WEBHOOK_SECRET_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown webhook fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )
        endpoint_url = data.get("endpoint_url")
        if not endpoint_url:
            raise ValidationError("endpoint_url is required")
        webhook_type = data.get("webhook_type")
        if webhook_type not in WEBHOOK_TYPES:
            raise ValidationError(f"Unsupported webhook type: {webhook_type}")
        events = data.get("subscribed_events")
        if events is not None and not isinstance(events, list):
            raise ValidationError("subscribed_events must be a list")
        _validate_numbers(data)

        webhook = WebhookConfig.query.filter_by(
            tenant_id=tenant_id,
            platform=platform,
            endpoint_url=endpoint_url,
            webhook_type=webhook_type,
        ).filter(WebhookConfig.deleted_at.is_(None)).first()

        if webhook is None:
            webhook = WebhookConfig(
                tenant_id=tenant_id,
                platform=platform,
                endpoint_url=endpoint_url,
                webhook_type=webhook_type,
                created_by=performed_by,
            )
            if "integration_config_id" not in data:
                parent = self._find_active(tenant_id, platform)
                webhook.integration_config_id = parent.id if parent else None
            db.session.add(webhook)
            action = AUDIT_ACTION_CREATE
        else:
            action = AUDIT_ACTION_UPDATE

        for key in _WEBHOOK_FIELDS:
            if key in data:
                setattr(webhook, key, data[key])
        rotated = self._store_secrets(webhook, data, WEBHOOK_SECRET_FIELDS)
        webhook.updated_by = performed_by

        self._flush("WebhookConfig", f"{tenant_id}/{platform}/{webhook_type}/{endpoint_url}")
        write_config_audit(
            entity_type=AUDIT_ENTITY_WEBHOOK_CONFIG,
            entity_id=webhook.id,
            action=action,
            performed_by=performed_by,
            risk_level=assess_risk_level(action, data),
            tenant_id=tenant_id,
            platform=platform,
            metadata={"changes": sorted(data), "rotated_secrets": rotated},
        )
        db.session.commit()
        logger.info("Webhook config %s %s for tenant=%s platform=%s", webhook.id, action.lower(), tenant_id, platform)
        return webhook

    def get_webhook_configs(self, tenant_id: str, platform: str | None = None) -> list[WebhookConfig]:
        """Active webhooks with signing secrets decrypted.

        Raises:
            ConfigurationDecryptionError: a signing secret does not decrypt.
        """
        q = WebhookConfig.query_active().filter(WebhookConfig.tenant_id == tenant_id)
        if platform:
            q = q.filter(WebhookConfig.platform == platform)
        webhooks = q.order_by(WebhookConfig.id.asc()).all()
        for webhook in webhooks:
            self._decrypt_secrets(webhook)
        return webhooks

    def update_webhook_circuit_breaker(
        self, webhook_id: int, success: bool, error: str | None = None,
    ) -> WebhookConfig | None:
        webhook = db.session.get(WebhookConfig, webhook_id)
        if webhook is None or not webhook.circuit_breaker_enabled:
            return webhook
        CircuitBreaker(webhook).record(success)
        if not success and error:
            webhook.last_error_message = error
        db.session.commit()
        return webhook

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _find_active(tenant_id: str, platform: str) -> IntegrationConfig | None:
        return (
            IntegrationConfig.query_active()
            .filter_by(tenant_id=tenant_id, platform=platform, is_primary=True)
            .order_by(IntegrationConfig.id.asc())
            .first()
        )

    @staticmethod
    def _demote_other_primaries(config: IntegrationConfig) -> None:
        others = IntegrationConfig.query.filter(
            IntegrationConfig.tenant_id == config.tenant_id,
            IntegrationConfig.platform == config.platform,
            IntegrationConfig.id != config.id,
            IntegrationConfig.is_primary.is_(True),
        ).all()
        for other in others:
            other.is_primary = False
            logger.info(
                "Config %s (%s) is no longer primary for tenant=%s platform=%s",
                other.id, other.environment, config.tenant_id, config.platform,
            )

    def _store_secrets(self, row, data: dict, fields: dict) -> list[str]:
        rotated = []
        for field, iv_field in fields.items():
            plaintext = data.get(field)
            if not plaintext:
                continue
            ciphertext, iv = self.vault.encrypt(plaintext)
            setattr(row, field, ciphertext)
            setattr(row, iv_field, iv)
            rotated.append(field)
        return rotated

    def _decrypt_secrets(self, row) -> None:
        fields = INTEGRATION_SECRET_FIELDS if isinstance(row, IntegrationConfig) else WEBHOOK_SECRET_FIELDS
        for field, iv_field in fields.items():
            ciphertext = getattr(row, field)
            plaintext = None
            if ciphertext:
                try:
                    plaintext = self.vault.decrypt(ciphertext, getattr(row, iv_field) or "")
                except DecryptionError as exc:
                    logger.error(
                        "Secret %s on %s id=%s failed to decrypt",
                        field, type(row).__name__, row.id,
                    )
                    raise ConfigurationDecryptionError(type(row).__name__, row.id, field) from exc
            setattr(row, f"decrypted_{field}", plaintext)

    @staticmethod
    def _flush(resource: str, scope: str) -> None:
        try:
            db.session.flush()
        except IntegrityError as exc:
            db.session.rollback()
            raise ConflictError(resource, "scope", scope) from exc
