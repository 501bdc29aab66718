"""App factory, configuration classes and rate-limit keying."""

import json
import logging

import pytest

from syncbridge import create_app
from syncbridge.config import ProductionConfig
from syncbridge.middleware.logging_config import JSONFormatter, SecretRedactionFilter
from syncbridge.middleware.rate_limiter import tenant_or_ip_key
from syncbridge.services.registry import EXTENSION_KEY


def test_blueprints_registered(app):
    assert {"transfer_queue", "integrations", "config_audit", "health"} <= set(app.blueprints)
    assert app.config["TESTING"] is True


def test_vault_derived_from_encryption_key():
    other = create_app("testing")
    vault = other.extensions[EXTENSION_KEY].vault

    ciphertext, iv = vault.encrypt("secret")
    assert vault.decrypt(ciphertext, iv) == "secret"


def test_queue_settings_come_from_config(app):
    manager = app.extensions[EXTENSION_KEY].transfer_queue("acme")
    assert manager.max_retries == app.config["TRANSFER_MAX_RETRIES"]
    assert manager.retry_base_seconds == 60
    assert manager.tenant_id == "acme"


def test_production_requires_database_url(monkeypatch):
    monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        ProductionConfig()


def test_production_requires_encryption_key(monkeypatch):
    monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", "postgresql://db/syncbridge")
    monkeypatch.setattr(ProductionConfig, "ENCRYPTION_KEY", "")
    with pytest.raises(RuntimeError, match="ENCRYPTION_KEY"):
        ProductionConfig()


def test_rate_limit_key_prefers_tenant(app):
    with app.test_request_context("/", headers={"X-Tenant-ID": "acme"}):
        assert tenant_or_ip_key() == "tenant:acme"
    with app.test_request_context("/", environ_base={"REMOTE_ADDR": "10.0.0.8"}):
        assert tenant_or_ip_key() == "10.0.0.8"


def _record(msg, **extra):
    record = logging.LogRecord("syncbridge.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_redaction_filter_masks_credential_attributes():
    record = _record("probe", api_key="sk-live-123", platform="hubspot")
    assert SecretRedactionFilter().filter(record) is True
    assert record.api_key == "***"
    assert record.platform == "hubspot"


def test_redaction_filter_masks_bearer_tokens():
    record = _record("calling with Authorization: Bearer abc.def-123")
    SecretRedactionFilter().filter(record)
    assert "abc.def-123" not in record.getMessage()
    assert "Bearer ***" in record.getMessage()


def test_json_formatter_includes_context_fields():
    line = JSONFormatter().format(_record("entry approved", entry_id=7, tenant_id="acme"))
    payload = json.loads(line)
    assert payload["msg"] == "entry approved"
    assert payload["entry_id"] == 7
    assert payload["tenant_id"] == "acme"
    assert "platform" not in payload
