"""
Tests for syncbridge.services.circuit_breaker.

Breaker state lives on the config row, so each test persists a real
IntegrationConfig and drives it with explicit timestamps.
"""

from datetime import datetime, timedelta, timezone

import pytest

from syncbridge.models import db
from syncbridge.models.configuration import (
    BREAKER_CLOSED,
    BREAKER_HALF_OPEN,
    BREAKER_OPEN,
    IntegrationConfig,
)
from syncbridge.services.circuit_breaker import CircuitBreaker

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def config():
    cfg = IntegrationConfig(
        tenant_id="acme",
        platform="HUBSPOT",
        circuit_breaker_threshold=3,
        circuit_breaker_reset_after_ms=60_000,
    )
    db.session.add(cfg)
    db.session.flush()
    return cfg


def _fail(breaker, times, now=T0):
    for _ in range(times):
        state = breaker.record_failure(now)
    return state


def test_new_breaker_is_closed_and_allows_requests(config):
    breaker = CircuitBreaker(config)
    assert breaker.current_state(T0) == BREAKER_CLOSED
    assert breaker.allows_request(T0) is True


def test_opens_when_threshold_reached(config):
    breaker = CircuitBreaker(config)

    assert _fail(breaker, 2) == BREAKER_CLOSED
    assert breaker.record_failure(T0) == BREAKER_OPEN
    assert config.consecutive_failures == 3
    assert config.circuit_breaker_opened_at == T0
    assert breaker.allows_request(T0) is False


def test_success_resets_consecutive_failures(config):
    breaker = CircuitBreaker(config)
    _fail(breaker, 2)
    breaker.record_success(T0)

    assert config.consecutive_failures == 0
    assert _fail(breaker, 2) == BREAKER_CLOSED


def test_counters_track_every_outcome(config):
    breaker = CircuitBreaker(config)
    breaker.record_success(T0)
    breaker.record_failure(T0 + timedelta(seconds=1))

    assert config.total_trigger_count == 2
    assert config.total_success_count == 1
    assert config.total_failure_count == 1
    assert config.last_success_at == T0
    assert config.last_failure_at == T0 + timedelta(seconds=1)


def test_open_moves_to_half_open_after_reset_window(config):
    breaker = CircuitBreaker(config)
    _fail(breaker, 3)

    assert breaker.current_state(T0 + timedelta(seconds=60)) == BREAKER_OPEN
    assert breaker.current_state(T0 + timedelta(seconds=61)) == BREAKER_HALF_OPEN
    assert breaker.allows_request(T0 + timedelta(seconds=61)) is True


def test_half_open_success_closes(config):
    breaker = CircuitBreaker(config)
    _fail(breaker, 3)
    later = T0 + timedelta(minutes=5)

    assert breaker.record_success(later) == BREAKER_CLOSED
    assert config.circuit_breaker_opened_at is None


def test_half_open_failure_reopens_with_new_timestamp(config):
    breaker = CircuitBreaker(config)
    _fail(breaker, 3)
    later = T0 + timedelta(minutes=5)

    assert breaker.record_failure(later) == BREAKER_OPEN
    assert config.circuit_breaker_opened_at == later


def test_failure_while_open_keeps_original_open_time(config):
    breaker = CircuitBreaker(config)
    _fail(breaker, 3)
    breaker.record_failure(T0 + timedelta(seconds=10))

    assert config.circuit_breaker_status == BREAKER_OPEN
    assert config.circuit_breaker_opened_at == T0
    assert config.consecutive_failures == 4


def test_disabled_breaker_records_nothing_and_always_allows(config):
    config.circuit_breaker_enabled = False
    breaker = CircuitBreaker(config)
    _fail(breaker, 10)

    assert config.circuit_breaker_status == BREAKER_CLOSED
    assert config.total_failure_count == 0
    assert breaker.allows_request(T0) is True


def test_reset_forces_closed(config):
    breaker = CircuitBreaker(config)
    _fail(breaker, 3)
    breaker.reset()

    assert config.circuit_breaker_status == BREAKER_CLOSED
    assert config.consecutive_failures == 0
    assert config.circuit_breaker_opened_at is None


def test_snapshot_reports_lazy_state(config):
    breaker = CircuitBreaker(config)
    _fail(breaker, 3)

    snap = breaker.snapshot(T0 + timedelta(minutes=2))
    assert snap["status"] == BREAKER_HALF_OPEN
    assert snap["consecutive_failures"] == 3
    assert snap["threshold"] == 3
