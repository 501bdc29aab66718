"""
SyncBridge: Integration Transfer & Resilience Controller.
Flask Application Factory.

Usage:
    from syncbridge import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing", change_detector=detector, entity_repository=repo)
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from syncbridge.config import config
from syncbridge.middleware.logging_config import configure_logging
from syncbridge.middleware.rate_limiter import init_rate_limits, tenant_or_ip_key
from syncbridge.models import db
from syncbridge.services.registry import (
    EXTENSION_KEY,
    ServiceRegistry,
    queue_settings_from_config,
)
from syncbridge.utils.crypto import CredentialVault, VaultKey

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=tenant_or_ip_key,
    default_limits=[],                     # no global limit: apply per-blueprint
    storage_uri=os.getenv("REDIS_URL") or "memory://",
)


def _build_vault(app, vault_key):
    if vault_key is None:
        secret = app.config.get("ENCRYPTION_KEY")
        if not secret:
            raise RuntimeError("ENCRYPTION_KEY is required to build the credential vault")
        vault_key = VaultKey.derive(secret, app.config["ENCRYPTION_SALT"])
    return CredentialVault(vault_key)


def create_app(
    config_name=None,
    *,
    vault_key=None,
    probe_gateway=None,
    change_detector=None,
    entity_repository=None,
):
    """
    Create and configure the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        vault_key: VaultKey to use instead of deriving one from ENCRYPTION_KEY.
        probe_gateway: HealthProbeGateway override (tests pass a mocked session).
        change_detector: ChangeDetector used by the process-changes sweep.
        entity_repository: EntityRepository supplying entity snapshots.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = config[config_name]
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    app.extensions[EXTENSION_KEY] = ServiceRegistry(
        _build_vault(app, vault_key),
        probe_gateway=probe_gateway,
        change_detector=change_detector,
        entity_repository=entity_repository,
        queue_settings=queue_settings_from_config(app.config),
    )

    # ── Ensure all models are registered before create_all ───────────────
    from syncbridge.models import audit as _audit_models                  # noqa: F401
    from syncbridge.models import configuration as _configuration_models  # noqa: F401
    from syncbridge.models import transfer_queue as _queue_models         # noqa: F401

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
        os.makedirs(app.instance_path, exist_ok=True)

    with app.app_context():
        db.create_all()

    # ── Register blueprints ──────────────────────────────────────────────
    from syncbridge.blueprints.audit_bp import audit_bp
    from syncbridge.blueprints.config_bp import config_bp
    from syncbridge.blueprints.health_bp import health_bp
    from syncbridge.blueprints.queue_bp import queue_bp

    app.register_blueprint(queue_bp)
    app.register_blueprint(config_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(health_bp)

    init_rate_limits(app, limiter)

    logger.info("SyncBridge app created (config=%s)", config_name)
    return app
