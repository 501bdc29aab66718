"""
Circuit breaker controller for integration and webhook configs.

State lives in the breaker columns of the row itself (see
``CircuitBreakerMixin``), so every (tenant, platform) integration and every
webhook endpoint has its own breaker that survives restarts.

Transitions:
    CLOSED    ── failure, consecutive_failures reaches threshold ──► OPEN
    OPEN      ── read after opened_at + reset_after_ms ───────────► HALF_OPEN
    HALF_OPEN ── failure (still at/over threshold) ───────────────► OPEN
    OPEN | HALF_OPEN ── success ──────────────────────────────────► CLOSED

The OPEN → HALF_OPEN move is evaluated lazily whenever the state is read;
nothing runs in the background.  The breaker is advisory: it reports whether
a caller should proceed and never blocks a call itself.

The controller mutates the row but does not commit; the calling service owns
the transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from syncbridge.models.base import as_utc, utcnow
from syncbridge.models.configuration import (
    BREAKER_CLOSED,
    BREAKER_HALF_OPEN,
    BREAKER_OPEN,
)

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Apply breaker transitions to a row carrying the breaker mixin columns.

    Usage:
        breaker = CircuitBreaker(config)
        if breaker.allows_request():
            ...
        breaker.record_failure()
        db.session.commit()
    """

    def __init__(self, row) -> None:
        self.row = row

    # ── Reads ────────────────────────────────────────────────────────────────

    def current_state(self, now: datetime | None = None) -> str:
        """Return the breaker state, promoting OPEN to HALF_OPEN once the reset window has passed."""
        row = self.row
        if row.circuit_breaker_status == BREAKER_OPEN and row.circuit_breaker_opened_at:
            now = now or utcnow()
            reopen_at = as_utc(row.circuit_breaker_opened_at) + timedelta(
                milliseconds=row.circuit_breaker_reset_after_ms or 0
            )
            if now > reopen_at:
                row.circuit_breaker_status = BREAKER_HALF_OPEN
                logger.info(
                    "Circuit half-open for %r after %s ms",
                    row, row.circuit_breaker_reset_after_ms,
                )
        return row.circuit_breaker_status

    def allows_request(self, now: datetime | None = None) -> bool:
        if not self.row.circuit_breaker_enabled:
            return True
        return self.current_state(now) in (BREAKER_CLOSED, BREAKER_HALF_OPEN)

    # ── Writes ───────────────────────────────────────────────────────────────

    def record_success(self, now: datetime | None = None) -> str:
        row = self.row
        if not row.circuit_breaker_enabled:
            return row.circuit_breaker_status
        now = now or utcnow()
        previous = self.current_state(now)

        row.total_trigger_count = (row.total_trigger_count or 0) + 1
        row.total_success_count = (row.total_success_count or 0) + 1
        row.last_trigger_at = now
        row.last_success_at = now
        row.consecutive_failures = 0

        if previous != BREAKER_CLOSED:
            row.circuit_breaker_status = BREAKER_CLOSED
            row.circuit_breaker_opened_at = None
            logger.info("Circuit closed for %r (was %s)", row, previous)
        return row.circuit_breaker_status

    def record_failure(self, now: datetime | None = None) -> str:
        row = self.row
        if not row.circuit_breaker_enabled:
            return row.circuit_breaker_status
        now = now or utcnow()
        previous = self.current_state(now)

        row.total_trigger_count = (row.total_trigger_count or 0) + 1
        row.total_failure_count = (row.total_failure_count or 0) + 1
        row.last_trigger_at = now
        row.last_failure_at = now
        row.consecutive_failures = (row.consecutive_failures or 0) + 1

        if previous != BREAKER_OPEN and row.consecutive_failures >= row.circuit_breaker_threshold:
            row.circuit_breaker_status = BREAKER_OPEN
            row.circuit_breaker_opened_at = now
            logger.error(
                "Circuit opened for %r: %d consecutive failures (threshold %d)",
                row, row.consecutive_failures, row.circuit_breaker_threshold,
            )
        return row.circuit_breaker_status

    def record(self, success: bool, now: datetime | None = None) -> str:
        if success:
            return self.record_success(now)
        return self.record_failure(now)

    def reset(self) -> None:
        """Force the breaker closed, e.g. after an operator fixes credentials."""
        row = self.row
        row.circuit_breaker_status = BREAKER_CLOSED
        row.circuit_breaker_opened_at = None
        row.consecutive_failures = 0

    def snapshot(self, now: datetime | None = None) -> dict:
        self.current_state(now)
        return self.row.breaker_dict()
