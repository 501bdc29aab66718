"""Tests for the configuration audit trail (risk policy, queries, sign-off)."""

from datetime import timedelta

import pytest
from sqlalchemy import update

from syncbridge.core.exceptions import ValidationError
from syncbridge.models import db
from syncbridge.models.audit import ConfigurationAuditLog, write_config_audit
from syncbridge.models.base import utcnow
from syncbridge.services import audit_service


def _log(action="UPDATE", risk="LOW", tenant="acme", performed_by="ops", entity_type="INTEGRATION_CONFIG", **kw):
    log = write_config_audit(
        entity_type=entity_type,
        entity_id=kw.pop("entity_id", 1),
        action=action,
        performed_by=performed_by,
        risk_level=risk,
        tenant_id=tenant,
        **kw,
    )
    db.session.commit()
    return log


@pytest.mark.parametrize(
    "action, changes, expected",
    [
        ("DELETE", None, "HIGH"),
        ("REVOKE", {}, "HIGH"),
        ("UPDATE", {"environment": "production"}, "HIGH"),
        ("CREATE", {"environment": "production", "api_key": "k"}, "HIGH"),
        ("UPDATE", {"api_key": "k"}, "MEDIUM"),
        ("UPDATE", {"api_secret": "s"}, "MEDIUM"),
        ("UPDATE", {"signing_secret": "w"}, "MEDIUM"),
        ("UPDATE", {"sync_direction": "INBOUND"}, "MEDIUM"),
        ("UPDATE", {"environment": "sandbox"}, "MEDIUM"),
        ("UPDATE", {"api_key": None}, "LOW"),
        ("UPDATE", {"timeout_ms": 1000}, "LOW"),
        ("VALIDATE", None, "LOW"),
    ],
)
def test_assess_risk_level(action, changes, expected):
    assert audit_service.assess_risk_level(action, changes) == expected


def test_write_config_audit_flags_high_risk_for_review():
    assert _log(risk="HIGH").requires_review is True
    assert _log(risk="CRITICAL").requires_review is True
    assert _log(risk="MEDIUM").requires_review is False


def test_write_config_audit_only_flushes():
    write_config_audit(entity_type="INTEGRATION_CONFIG", entity_id=1, action="UPDATE")
    assert ConfigurationAuditLog.query.count() == 1
    db.session.rollback()
    assert ConfigurationAuditLog.query.count() == 0


class TestGetAuditLogs:
    def test_newest_first(self):
        first = _log(entity_id=1)
        second = _log(entity_id=2)

        logs = audit_service.get_audit_logs("acme")
        assert [log.id for log in logs] == [second.id, first.id]

    def test_filters_combine(self):
        _log(action="DELETE", risk="HIGH", performed_by="alice")
        _log(action="UPDATE", risk="LOW", performed_by="alice")
        _log(action="DELETE", risk="HIGH", performed_by="bob")
        _log(action="DELETE", risk="HIGH", performed_by="alice", tenant="globex")
        _log(action="UPDATE", entity_type="TRANSFER_QUEUE_ENTRY", performed_by="system")

        logs = audit_service.get_audit_logs("acme", action="DELETE", performed_by="alice")
        assert len(logs) == 1
        assert len(audit_service.get_audit_logs("acme", risk_level="HIGH")) == 2
        assert len(audit_service.get_audit_logs("acme", entity_type="TRANSFER_QUEUE_ENTRY")) == 1
        assert len(audit_service.get_audit_logs()) == 5

    def test_date_range(self):
        old = _log(entity_id=1)
        recent = _log(entity_id=2)
        db.session.execute(
            update(ConfigurationAuditLog)
            .where(ConfigurationAuditLog.id == old.id)
            .values(created_at=utcnow() - timedelta(days=10)),
            execution_options={"synchronize_session": False},
        )
        db.session.commit()

        since = utcnow() - timedelta(days=1)
        assert [log.id for log in audit_service.get_audit_logs("acme", start_date=since)] == [recent.id]
        assert [log.id for log in audit_service.get_audit_logs("acme", end_date=since)] == [old.id]

    def test_limit_is_capped_at_100(self):
        for i in range(105):
            write_config_audit(entity_type="INTEGRATION_CONFIG", entity_id=i, action="UPDATE", tenant_id="acme")
        db.session.commit()

        assert len(audit_service.get_audit_logs("acme", limit=500)) == 100
        assert len(audit_service.get_audit_logs("acme", limit=10)) == 10
        assert len(audit_service.get_audit_logs("acme", limit=0)) == 100


class TestReviews:
    def test_pending_reviews_lists_unreviewed_high_risk(self):
        high = _log(action="DELETE", risk="HIGH")
        _log(risk="MEDIUM")
        _log(risk="HIGH", tenant="globex")

        pending = audit_service.get_pending_reviews("acme")
        assert [log.id for log in pending] == [high.id]
        assert len(audit_service.get_pending_reviews()) == 2

    def test_mark_reviewed_removes_from_queue(self):
        high = _log(action="REVOKE", risk="HIGH")

        reviewed = audit_service.mark_reviewed(high.id, "security@acme.io")

        assert reviewed.reviewed_by == "security@acme.io"
        assert reviewed.reviewed_at is not None
        assert audit_service.get_pending_reviews("acme") == []

    def test_review_is_set_once(self):
        high = _log(risk="HIGH")
        audit_service.mark_reviewed(high.id, "first")

        with pytest.raises(ValidationError):
            audit_service.mark_reviewed(high.id, "second")
        assert db.session.get(ConfigurationAuditLog, high.id).reviewed_by == "first"

    def test_reviewer_required(self):
        high = _log(risk="HIGH")
        with pytest.raises(ValidationError):
            audit_service.mark_reviewed(high.id, "")

    def test_missing_entry_returns_none(self):
        assert audit_service.mark_reviewed(12345, "someone") is None
