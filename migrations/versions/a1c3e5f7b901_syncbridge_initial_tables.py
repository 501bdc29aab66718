"""SyncBridge initial schema: integration configs, webhooks, audit log, transfer queue.

Revision ID: a1c3e5f7b901
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "a1c3e5f7b901"
down_revision = None
branch_labels = None
depends_on = None

_ACTIVE_STATUS_SQL = "status IN ('PENDING_REVIEW', 'APPROVED')"


def _breaker_columns():
    return [
        sa.Column("circuit_breaker_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("circuit_breaker_status", sa.String(10), nullable=False, server_default="CLOSED"),
        sa.Column("consecutive_failures", sa.Integer, nullable=False, server_default="0"),
        sa.Column("circuit_breaker_threshold", sa.Integer, nullable=False, server_default="5"),
        sa.Column("circuit_breaker_opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("circuit_breaker_reset_after_ms", sa.Integer, nullable=False, server_default="300000"),
        sa.Column("total_trigger_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_success_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_failure_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_trigger_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_failure_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _soft_delete_columns():
    return [
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True, index=True),
    ]


def _stamp_columns():
    return [
        sa.Column("created_by", sa.String(150), nullable=True),
        sa.Column("updated_by", sa.String(150), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    # ── Integration configs ──
    op.create_table(
        "integration_configs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False, index=True),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("config_type", sa.String(20), nullable=False, server_default="API_KEY"),
        sa.Column("environment", sa.String(30), nullable=False, server_default="production"),
        sa.Column("is_primary", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("api_key", sa.Text, nullable=True),
        sa.Column("api_key_iv", sa.String(32), nullable=True),
        sa.Column("api_secret", sa.Text, nullable=True),
        sa.Column("api_secret_iv", sa.String(32), nullable=True),
        sa.Column("api_endpoint", sa.String(500), nullable=True),
        sa.Column("api_version", sa.String(20), nullable=True),
        sa.Column("hubspot_portal_id", sa.String(50), nullable=True),
        sa.Column("stripe_account_id", sa.String(100), nullable=True),
        sa.Column("quickbooks_company_id", sa.String(100), nullable=True),
        sa.Column("timeout_ms", sa.Integer, nullable=False, server_default="30000"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("sync_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("sync_interval", sa.Integer, nullable=True),
        sa.Column("sync_direction", sa.String(15), nullable=False, server_default="BIDIRECTIONAL"),
        sa.Column("features", sa.JSON, nullable=True),
        sa.Column("mapping_rules", sa.JSON, nullable=True),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        sa.Column("health_status", sa.String(10), nullable=False, server_default="UNKNOWN"),
        sa.Column("last_health_check_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("health_message", sa.Text, nullable=True),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("validated_by", sa.String(150), nullable=True),
        sa.Column("rate_limit_per_minute", sa.Integer, nullable=True),
        sa.Column("rate_limit_remaining", sa.Integer, nullable=True),
        sa.Column("rate_limit_reset_at", sa.DateTime(timezone=True), nullable=True),
        *_breaker_columns(),
        *_soft_delete_columns(),
        *_stamp_columns(),
        sa.UniqueConstraint(
            "tenant_id", "platform", "config_type", "environment",
            name="uq_integration_config_scope",
        ),
    )
    op.create_index("idx_integration_config_tenant_platform", "integration_configs", ["tenant_id", "platform"])
    op.create_index("idx_integration_config_health", "integration_configs", ["health_status"])

    # ── Webhook configs ──
    op.create_table(
        "webhook_configs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=False, index=True),
        sa.Column("integration_config_id", sa.Integer,
                  sa.ForeignKey("integration_configs.id", ondelete="SET NULL"),
                  nullable=True, index=True),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("webhook_type", sa.String(10), nullable=False),
        sa.Column("endpoint_url", sa.String(500), nullable=False),
        sa.Column("http_method", sa.String(10), nullable=False, server_default="POST"),
        sa.Column("signing_secret", sa.Text, nullable=True),
        sa.Column("signing_secret_iv", sa.String(32), nullable=True),
        sa.Column("subscribed_events", sa.JSON, nullable=False),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("timeout_ms", sa.Integer, nullable=False, server_default="30000"),
        sa.Column("last_error_message", sa.Text, nullable=True),
        *_breaker_columns(),
        *_soft_delete_columns(),
        *_stamp_columns(),
    )
    op.create_index("idx_webhook_config_tenant_platform", "webhook_configs", ["tenant_id", "platform"])

    # ── Configuration audit log ──
    op.create_table(
        "configuration_audit_logs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=True, index=True),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(10), nullable=False),
        sa.Column("performed_by", sa.String(150), nullable=False, server_default="system"),
        sa.Column("risk_level", sa.String(10), nullable=False, server_default="LOW"),
        sa.Column("platform", sa.String(20), nullable=True),
        sa.Column("environment", sa.String(30), nullable=True),
        sa.Column("metadata", sa.JSON, nullable=True),
        sa.Column("requires_review", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(150), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_config_audit_entity", "configuration_audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_config_audit_tenant_created", "configuration_audit_logs", ["tenant_id", "created_at"])
    op.create_index("idx_config_audit_risk", "configuration_audit_logs", ["risk_level", "requires_review"])
    op.create_index("idx_config_audit_actor", "configuration_audit_logs", ["performed_by"])

    # ── Transfer queue ──
    op.create_table(
        "transfer_queue_entries",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("tenant_id", sa.String(64), nullable=True, index=True),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("action_type", sa.String(10), nullable=False, server_default="UPDATE"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING_REVIEW"),
        sa.Column("trigger_reason", sa.String(60), nullable=False, server_default="direct_change"),
        sa.Column("entity_data", sa.JSON, nullable=False),
        sa.Column("original_data", sa.JSON, nullable=True),
        sa.Column("approved_by", sa.String(150), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.String(150), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("validation_notes", sa.Text, nullable=True),
        sa.Column("transferred_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_transfer_id", sa.String(100), nullable=True),
        sa.Column("transfer_error", sa.Text, nullable=True),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
    )
    op.create_index("idx_tq_status_created", "transfer_queue_entries", ["status", "created_at"])
    op.create_index("idx_tq_status_approved", "transfer_queue_entries", ["status", "approved_at"])
    op.create_index("idx_tq_entity", "transfer_queue_entries", ["entity_type", "entity_id"])
    op.create_index(
        "uq_tq_active_entity",
        "transfer_queue_entries",
        [sa.text("coalesce(tenant_id, '')"), "entity_type", "entity_id"],
        unique=True,
        sqlite_where=sa.text(_ACTIVE_STATUS_SQL),
        postgresql_where=sa.text(_ACTIVE_STATUS_SQL),
    )


def downgrade():
    op.drop_table("transfer_queue_entries")
    op.drop_table("configuration_audit_logs")
    op.drop_table("webhook_configs")
    op.drop_table("integration_configs")
