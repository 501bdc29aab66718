"""
Shared pytest fixtures for the SyncBridge test suite.

Provides:
    - app: Flask application (session-scoped) wired to in-memory fakes
    - session: Per-test app context, DB rollback + recreate (autouse)
    - client: Flask test client
    - registry / vault / config_manager / queue: service handles
    - detector / repository: fake change detector and entity repository
    - probe_session: MagicMock standing in for the requests.Session used by
      health probes (configure ``.get.return_value`` / ``.get.side_effect``)
"""

from unittest.mock import MagicMock

import pytest

from syncbridge import create_app
from syncbridge.integrations.change_detection import (
    ChangeDetectionResult,
    ChangeDetector,
    EntityRepository,
)
from syncbridge.integrations.health_probes import HealthProbeGateway
from syncbridge.models import db as _db
from syncbridge.services.registry import get_registry
from syncbridge.utils.crypto import VaultKey

TEST_TENANT = "acme"
TEST_KEY = VaultKey(b"\x01" * 32)


class FakeChangeDetector(ChangeDetector):
    """Returns whatever ``result`` the test staged."""

    def __init__(self):
        self.result = ChangeDetectionResult()
        self.calls = 0

    def detect_changes_and_cascade_impacts(self):
        self.calls += 1
        return self.result


class FakeEntityRepository(EntityRepository):
    """Snapshots keyed by (entity_type, entity_id)."""

    def __init__(self):
        self.snapshots = {}

    def put(self, entity_type, entity_id, **data):
        self.snapshots[(entity_type, entity_id)] = {"id": entity_id, **data}

    def get_contact(self, entity_id):
        return self.snapshots.get(("CONTACT", entity_id))

    def get_company(self, entity_id):
        return self.snapshots.get(("COMPANY", entity_id))

    def get_invoice(self, entity_id):
        return self.snapshots.get(("INVOICE", entity_id))

    def get_line_item(self, entity_id):
        return self.snapshots.get(("LINE_ITEM", entity_id))


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app(
        "testing",
        vault_key=TEST_KEY,
        probe_gateway=HealthProbeGateway(session=MagicMock()),
        change_detector=FakeChangeDetector(),
        entity_repository=FakeEntityRepository(),
    )


@pytest.fixture(autouse=True)
def session(app):
    """Per-test: open app context, reset fakes, recreate tables afterwards."""
    with app.app_context():
        registry = get_registry()
        registry.change_detector.result = ChangeDetectionResult()
        registry.change_detector.calls = 0
        registry.entity_repository.snapshots.clear()
        registry.configuration_manager.probe_gateway.session.reset_mock(
            return_value=True, side_effect=True,
        )
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Service handles ──────────────────────────────────────────────────────


@pytest.fixture()
def registry():
    return get_registry()


@pytest.fixture()
def vault(registry):
    return registry.vault


@pytest.fixture()
def config_manager(registry):
    return registry.configuration_manager


@pytest.fixture()
def queue(registry):
    """Queue manager not bound to a tenant: the system-wide worker view."""
    return registry.transfer_queue()


@pytest.fixture()
def tenant_queue(registry):
    """Queue manager bound to TEST_TENANT, as the API sees it under X-Tenant-ID: acme."""
    return registry.transfer_queue(TEST_TENANT)


@pytest.fixture()
def detector(registry):
    return registry.change_detector


@pytest.fixture()
def repository(registry):
    return registry.entity_repository


@pytest.fixture()
def probe_session(registry):
    return registry.configuration_manager.probe_gateway.session
