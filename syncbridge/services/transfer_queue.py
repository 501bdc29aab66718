"""
SyncBridge: Transfer Queue Manager.

Human-in-the-loop workflow for pushing detected entity changes to the
accounting platform:

    PENDING_REVIEW → APPROVED → TRANSFERRED
    PENDING_REVIEW → REJECTED
    APPROVED → APPROVED (retry scheduled, backoff 60 s, 120 s, 240 s … ≤ 24 h)
    APPROVED → FAILED (retries exhausted; re-approve to resume)

Review order is strictly FIFO by creation time.  Priority only feeds the
statistics returned by ``process_changes``; it never reorders the queue.

A manager bound to a tenant reads, deduplicates and transitions only that
tenant's entries; an unbound manager is the system-wide transfer worker and
sees every tenant.

Every transition writes a ConfigurationAuditLog row in the same transaction.
Transfer results are recorded on the circuit breaker of the accounting
integration owned by the entry's tenant.

Usage:
    from syncbridge.services.transfer_queue import TransferQueueManager
    tqm = TransferQueueManager(detector, repository, tenant_id="acme")
    tqm.process_changes()
    tqm.approve(entry.id, approved_by="alice@example.com")
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from syncbridge.core.exceptions import ConflictError, TransitionError, ValidationError
from syncbridge.integrations.change_detection import (
    CHANGE_UPDATED,
    HIGH_CASCADE_PRIORITIES,
    ChangeDetector,
    EntityChange,
    EntityRepository,
)
from syncbridge.models import db
from syncbridge.models.audit import (
    AUDIT_ACTION_UPDATE,
    AUDIT_ENTITY_TRANSFER_QUEUE_ENTRY,
    RISK_LOW,
    write_config_audit,
)
from syncbridge.models.base import isoformat, utcnow
from syncbridge.models.configuration import ACCOUNTING_PLATFORM
from syncbridge.models.transfer_queue import (
    ACTIVE_STATUSES,
    CHANGE_TYPE_ACTIONS,
    ENTITY_COMPANY,
    ENTITY_CONTACT,
    ENTITY_INVOICE,
    ENTITY_LINE_ITEM,
    ENTITY_TYPES,
    HIGH_PRIORITY_ENTITY_TYPES,
    PURGEABLE_STATUSES,
    STATUS_APPROVED,
    STATUS_FAILED,
    STATUS_PENDING_REVIEW,
    STATUS_REJECTED,
    STATUS_TRANSFERRED,
    TRIGGER_CASCADE_PREFIX,
    TRIGGER_DIRECT_CHANGE,
    TransferQueueEntry,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_SECONDS = 60
DEFAULT_RETRY_MAX_SECONDS = 24 * 60 * 60
DEFAULT_RETENTION_DAYS = 30

# Heuristics surfaced to reviewers.
TRANSFER_MS_PER_ENTRY = 2000
REVIEW_MINUTES_PER_ENTRY = 2

# entity type → EntityRepository reader
_SNAPSHOT_READERS = {
    ENTITY_CONTACT: "get_contact",
    ENTITY_COMPANY: "get_company",
    ENTITY_INVOICE: "get_invoice",
    ENTITY_LINE_ITEM: "get_line_item",
}

if set(_SNAPSHOT_READERS) != set(ENTITY_TYPES):
    raise RuntimeError(
        "Snapshot reader table does not cover every entity type: "
        f"{sorted(set(ENTITY_TYPES) ^ set(_SNAPSHOT_READERS))}"
    )

_SUMMARY_STATUS_KEYS = {
    STATUS_PENDING_REVIEW: "pending",
    STATUS_APPROVED: "approved",
    STATUS_REJECTED: "rejected",
    STATUS_TRANSFERRED: "transferred",
    STATUS_FAILED: "failed",
}


def _utcnow() -> datetime:
    return utcnow()


def retry_delay(retry_count: int, base_seconds: int = DEFAULT_RETRY_BASE_SECONDS,
                max_seconds: int = DEFAULT_RETRY_MAX_SECONDS) -> timedelta:
    """Backoff before the next attempt, given retries already spent."""
    return timedelta(seconds=min((2 ** retry_count) * base_seconds, max_seconds))


def _json_snapshot(data) -> dict:
    """Normalise a repository snapshot into plain JSON types."""
    return json.loads(json.dumps(data, default=str))


class TransferQueueManager:
    """Approval workflow for entity transfers to the accounting platform."""

    def __init__(
        self,
        change_detector: ChangeDetector | None = None,
        entity_repository: EntityRepository | None = None,
        *,
        tenant_id: str | None = None,
        configuration_manager=None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_seconds: int = DEFAULT_RETRY_BASE_SECONDS,
        retry_max_seconds: int = DEFAULT_RETRY_MAX_SECONDS,
    ) -> None:
        self.change_detector = change_detector
        self.entity_repository = entity_repository
        self.tenant_id = tenant_id or None
        self.configuration_manager = configuration_manager
        self.max_retries = max_retries
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds

    # ── Intake ────────────────────────────────────────────────────────────

    def process_changes(self) -> dict:
        """Run one detection sweep and queue direct changes and cascade impacts.

        Individual changes that fail validation or snapshot lookup are logged
        and skipped; the sweep itself always completes.
        """
        if self.change_detector is None:
            raise ValidationError("No change detector configured")

        start = time.monotonic()
        result = self.change_detector.detect_changes_and_cascade_impacts()

        new_entries = 0
        cascade_entries = 0
        high_priority = 0
        skipped = 0

        for change in result.detected_changes:
            entry = self._enqueue_quietly(change, TRIGGER_DIRECT_CHANGE)
            if entry is None:
                skipped += 1
                continue
            new_entries += 1
            if entry.entity_type in HIGH_PRIORITY_ENTITY_TYPES:
                high_priority += 1

        for impact in result.cascade_impacts:
            reason = f"{TRIGGER_CASCADE_PREFIX}{impact.source_change.entity_type}"
            for impacted in impact.impacted_entities:
                if not impacted.requires_sync:
                    continue
                change = EntityChange(
                    entity_type=impacted.entity_type,
                    entity_id=impacted.entity_id,
                    change_type=CHANGE_UPDATED,
                )
                entry = self._enqueue_quietly(change, reason)
                if entry is None:
                    skipped += 1
                    continue
                cascade_entries += 1
                if (impacted.priority in HIGH_CASCADE_PRIORITIES
                        or entry.entity_type in HIGH_PRIORITY_ENTITY_TYPES):
                    high_priority += 1

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Queue sweep completed in %dms: %d direct, %d cascade, %d high priority, %d skipped",
            duration_ms, new_entries, cascade_entries, high_priority, skipped,
        )
        return {
            "new_queue_entries": new_entries,
            "cascade_entries_added": cascade_entries,
            "high_priority_entries": high_priority,
            "skipped_changes": skipped,
            "processing_duration_ms": duration_ms,
        }

    def _enqueue_quietly(self, change: EntityChange, trigger_reason: str) -> TransferQueueEntry | None:
        try:
            return self.enqueue(change, trigger_reason)
        except ValidationError as exc:
            logger.warning(
                "Skipping change %s/%s: %s", change.entity_type, change.entity_id, exc,
            )
        except Exception:
            db.session.rollback()
            logger.exception(
                "Failed to queue change %s/%s", change.entity_type, change.entity_id,
            )
        return None

    def enqueue(self, change: EntityChange, trigger_reason: str = TRIGGER_DIRECT_CHANGE) -> TransferQueueEntry | None:
        """Queue one change for review.

        Returns None when an active entry already exists for the entity or
        the repository has no snapshot for it.

        Raises:
            ValidationError: unsupported entity type or change type.
        """
        reader = _SNAPSHOT_READERS.get(change.entity_type)
        if reader is None:
            raise ValidationError(
                f"Unsupported entity type: {change.entity_type}",
                details={"entity_type": change.entity_type},
            )
        action_type = CHANGE_TYPE_ACTIONS.get(change.change_type)
        if action_type is None:
            raise ValidationError(
                f"Unsupported change type: {change.change_type}",
                details={"change_type": change.change_type},
            )
        if not change.entity_id:
            raise ValidationError("entity_id is required")
        entity_id = str(change.entity_id)

        if self._active_entry(change.entity_type, entity_id) is not None:
            logger.debug("Queue entry already active for %s/%s", change.entity_type, entity_id)
            return None

        if self.entity_repository is None:
            raise ValidationError("No entity repository configured")
        snapshot = getattr(self.entity_repository, reader)(entity_id)
        if snapshot is None:
            logger.warning("No snapshot available for %s/%s", change.entity_type, entity_id)
            return None

        entry = TransferQueueEntry(
            tenant_id=self.tenant_id,
            entity_type=change.entity_type,
            entity_id=entity_id,
            action_type=action_type,
            status=STATUS_PENDING_REVIEW,
            trigger_reason=trigger_reason,
            entity_data=_json_snapshot(snapshot),
            original_data=_json_snapshot(change.previous_data) if change.previous_data else None,
        )
        db.session.add(entry)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            if self._active_entry(change.entity_type, entity_id) is not None:
                logger.info(
                    "Concurrent enqueue for %s/%s lost the race; keeping existing entry",
                    change.entity_type, entity_id,
                )
                return None
            raise

        logger.debug("Queued %s/%s (%s, %s)", entry.entity_type, entity_id, action_type, trigger_reason)
        return entry

    def _active_entry(self, entity_type: str, entity_id: str) -> TransferQueueEntry | None:
        if self.tenant_id is None:
            owner = TransferQueueEntry.tenant_id.is_(None)
        else:
            owner = TransferQueueEntry.tenant_id == self.tenant_id
        return TransferQueueEntry.query.filter(
            owner,
            TransferQueueEntry.entity_type == entity_type,
            TransferQueueEntry.entity_id == entity_id,
            TransferQueueEntry.status.in_(ACTIVE_STATUSES),
        ).first()

    def _scoped(self, query):
        """Restrict *query* to the bound tenant; unbound managers see every tenant."""
        if self.tenant_id is None:
            return query
        return query.filter(TransferQueueEntry.tenant_id == self.tenant_id)

    def _load(self, entry_id: int) -> TransferQueueEntry | None:
        entry = db.session.get(TransferQueueEntry, entry_id)
        if entry is None:
            return None
        if self.tenant_id is not None and entry.tenant_id != self.tenant_id:
            logger.warning("Queue entry %s is not visible to tenant=%s", entry_id, self.tenant_id)
            return None
        return entry

    # ── Review ────────────────────────────────────────────────────────────

    def approve(self, entry_id: int, approved_by: str, notes: str | None = None) -> TransferQueueEntry | None:
        """Approve a pending entry, or re-approve a FAILED one (retry state is reset)."""
        if not approved_by:
            raise ValidationError("approved_by is required")
        entry = self._load(entry_id)
        if entry is None:
            return None
        previous = entry.status
        if previous not in (STATUS_PENDING_REVIEW, STATUS_FAILED):
            raise TransitionError(entry_id, "approve", previous)

        now = _utcnow()
        if previous == STATUS_FAILED:
            entry.retry_count = 0
            entry.next_retry_at = None
        entry.status = STATUS_APPROVED
        entry.approved_by = approved_by
        entry.approved_at = now
        if notes is not None:
            entry.validation_notes = notes

        self._save_transition(entry, previous, "approve", approved_by)
        logger.info("Queue entry %s approved by %s (was %s)", entry_id, approved_by, previous)
        return entry

    def reject(self, entry_id: int, rejected_by: str, reason: str, notes: str | None = None) -> TransferQueueEntry | None:
        if not rejected_by:
            raise ValidationError("rejected_by is required")
        if not reason:
            raise ValidationError("A rejection reason is required")
        entry = self._load(entry_id)
        if entry is None:
            return None
        if entry.status != STATUS_PENDING_REVIEW:
            raise TransitionError(entry_id, "reject", entry.status)

        entry.status = STATUS_REJECTED
        entry.rejected_by = rejected_by
        entry.rejected_at = _utcnow()
        entry.rejection_reason = reason
        if notes is not None:
            entry.validation_notes = notes

        self._save_transition(entry, STATUS_PENDING_REVIEW, "reject", rejected_by, reason=reason)
        logger.info("Queue entry %s rejected by %s: %s", entry_id, rejected_by, reason)
        return entry

    def bulk_approve(self, entry_ids: list[int], approved_by: str, notes: str | None = None) -> dict:
        """Approve each id independently; one failure never blocks the rest."""
        if not approved_by:
            raise ValidationError("approved_by is required")

        results = []
        failed = []
        approved = 0
        for entry_id in entry_ids:
            try:
                entry = self.approve(entry_id, approved_by, notes)
            except (ValidationError, ConflictError) as exc:
                error = str(exc)
            else:
                if entry is not None:
                    approved += 1
                    results.append({"entry_id": entry_id, "success": True})
                    continue
                error = f"Transfer queue entry {entry_id} not found"
            logger.warning("Bulk approve skipped entry %s: %s", entry_id, error)
            failed.append({"entry_id": entry_id, "error": error})
            results.append({"entry_id": entry_id, "success": False, "error": error})

        logger.info("Bulk approval: %d/%d approved by %s", approved, len(entry_ids), approved_by)
        return {
            "total_processed": len(entry_ids),
            "successfully_approved": approved,
            "failed": failed,
            "results": results,
            "estimated_transfer_time_ms": approved * TRANSFER_MS_PER_ENTRY,
        }

    # ── Worker contract ───────────────────────────────────────────────────

    def get_pending_entries(self, limit: int | None = None, entity_type: str | None = None) -> list[TransferQueueEntry]:
        """Entries awaiting review, oldest first."""
        q = self._scoped(TransferQueueEntry.query).filter(TransferQueueEntry.status == STATUS_PENDING_REVIEW)
        if entity_type:
            if entity_type not in ENTITY_TYPES:
                raise ValidationError(f"Unsupported entity type: {entity_type}")
            q = q.filter(TransferQueueEntry.entity_type == entity_type)
        q = q.order_by(TransferQueueEntry.created_at.asc(), TransferQueueEntry.id.asc())
        if limit:
            q = q.limit(limit)
        return q.all()

    def get_approved_entries(self, limit: int | None = None) -> list[TransferQueueEntry]:
        """Approved entries due for transfer now, in approval order."""
        now = _utcnow()
        q = self._scoped(TransferQueueEntry.query).filter(
            TransferQueueEntry.status == STATUS_APPROVED,
            db.or_(
                TransferQueueEntry.next_retry_at.is_(None),
                TransferQueueEntry.next_retry_at <= now,
            ),
        ).order_by(TransferQueueEntry.approved_at.asc(), TransferQueueEntry.id.asc())
        if limit:
            q = q.limit(limit)
        return q.all()

    def mark_as_transferred(self, entry_id: int, external_id: str) -> TransferQueueEntry | None:
        if not external_id:
            raise ValidationError("external_id is required")
        entry = self._load(entry_id)
        if entry is None:
            return None
        if entry.status != STATUS_APPROVED:
            raise TransitionError(entry_id, "mark_as_transferred", entry.status)

        entry.status = STATUS_TRANSFERRED
        entry.transferred_at = _utcnow()
        entry.external_transfer_id = str(external_id)
        entry.transfer_error = None
        entry.next_retry_at = None

        self._save_transition(entry, STATUS_APPROVED, "transferred", "system", external_id=str(external_id))
        logger.info("Queue entry %s transferred (external id %s)", entry_id, external_id)
        self._record_transfer_outcome(entry, success=True)
        return entry

    def mark_as_failed(self, entry_id: int, error: str, increment_retry: bool = True) -> TransferQueueEntry | None:
        """Record a failed transfer attempt and schedule the next retry.

        The backoff uses the retry count *before* this failure, so successive
        failures wait 60 s, 120 s, 240 s.  Once ``max_retries`` attempts have
        failed the entry moves to FAILED.  ``increment_retry=False`` marks it
        FAILED immediately.
        """
        entry = self._load(entry_id)
        if entry is None:
            return None
        previous = entry.status
        if previous in (STATUS_TRANSFERRED, STATUS_REJECTED, STATUS_FAILED):
            raise TransitionError(entry_id, "mark_as_failed", previous)

        now = _utcnow()
        entry.transfer_error = error
        if increment_retry:
            delay = retry_delay(entry.retry_count or 0, self.retry_base_seconds, self.retry_max_seconds)
            entry.retry_count = (entry.retry_count or 0) + 1
            entry.next_retry_at = now + delay
            if entry.retry_count >= self.max_retries:
                entry.status = STATUS_FAILED
        else:
            entry.status = STATUS_FAILED

        self._save_transition(
            entry, previous, "failed", "system",
            retry_count=entry.retry_count,
            next_retry_at=isoformat(entry.next_retry_at),
        )
        logger.error(
            "Queue entry %s transfer failed (retry %d/%d, status %s): %s",
            entry_id, entry.retry_count, self.max_retries, entry.status, error,
        )
        self._record_transfer_outcome(entry, success=False)
        return entry

    # ── Housekeeping ──────────────────────────────────────────────────────

    def get_queue_summary(self) -> dict:
        by_entity_type = {
            entity_type: {key: 0 for key in _SUMMARY_STATUS_KEYS.values()}
            for entity_type in ENTITY_TYPES
        }
        totals = {status: 0 for status in _SUMMARY_STATUS_KEYS}

        rows = self._scoped(db.session.query(
            TransferQueueEntry.entity_type,
            TransferQueueEntry.status,
            db.func.count(TransferQueueEntry.id),
        )).group_by(TransferQueueEntry.entity_type, TransferQueueEntry.status).all()
        for entity_type, status, count in rows:
            if status in totals:
                totals[status] += count
            if entity_type in by_entity_type and status in _SUMMARY_STATUS_KEYS:
                by_entity_type[entity_type][_SUMMARY_STATUS_KEYS[status]] = count

        oldest_pending = self._scoped(
            db.session.query(db.func.min(TransferQueueEntry.created_at)),
        ).filter(
            TransferQueueEntry.status == STATUS_PENDING_REVIEW,
        ).scalar()

        return {
            "total_pending_review": totals[STATUS_PENDING_REVIEW],
            "total_approved": totals[STATUS_APPROVED],
            "total_rejected": totals[STATUS_REJECTED],
            "total_transferred": totals[STATUS_TRANSFERRED],
            "total_failed": totals[STATUS_FAILED],
            "by_entity_type": by_entity_type,
            "oldest_pending_entry": isoformat(oldest_pending),
            "estimated_review_time_minutes": totals[STATUS_PENDING_REVIEW] * REVIEW_MINUTES_PER_ENTRY,
        }

    def cleanup_old_entries(self, older_than_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Hard-delete TRANSFERRED / REJECTED entries untouched since the cutoff."""
        if older_than_days < 0:
            raise ValidationError("older_than_days must not be negative")
        cutoff = _utcnow() - timedelta(days=older_than_days)
        deleted = self._scoped(TransferQueueEntry.query).filter(
            TransferQueueEntry.status.in_(PURGEABLE_STATUSES),
            TransferQueueEntry.updated_at < cutoff,
        ).delete(synchronize_session=False)
        db.session.commit()
        logger.info("Cleaned up %d queue entries older than %d days", deleted, older_than_days)
        return deleted

    # ── Internals ─────────────────────────────────────────────────────────

    def _save_transition(
        self,
        entry: TransferQueueEntry,
        previous: str,
        transition: str,
        performed_by: str,
        **extra,
    ) -> None:
        """Write the audit row and commit.

        Raises:
            ConflictError: the row changed underneath us (version mismatch), or
                re-activating it would give the entity a second active entry.
        """
        entry_id = entry.id
        entity_key = f"{entry.entity_type}/{entry.entity_id}"
        try:
            write_config_audit(
                entity_type=AUDIT_ENTITY_TRANSFER_QUEUE_ENTRY,
                entity_id=entry_id,
                action=AUDIT_ACTION_UPDATE,
                performed_by=performed_by,
                risk_level=RISK_LOW,
                tenant_id=entry.tenant_id or self.tenant_id,
                platform=ACCOUNTING_PLATFORM,
                metadata={
                    "transition": transition,
                    "from_status": previous,
                    "to_status": entry.status,
                    "entity_type": entry.entity_type,
                    "entity_id": entry.entity_id,
                    **extra,
                },
            )
            db.session.commit()
        except StaleDataError as exc:
            db.session.rollback()
            logger.warning("Concurrent update on queue entry %s (%s)", entry_id, transition)
            raise ConflictError("TransferQueueEntry", "id", str(entry_id)) from exc
        except IntegrityError as exc:
            db.session.rollback()
            logger.warning("Queue entry %s would duplicate an active entry for %s", entry_id, entity_key)
            raise ConflictError("TransferQueueEntry", "entity", entity_key) from exc

    def _record_transfer_outcome(self, entry: TransferQueueEntry, success: bool) -> None:
        """Feed the owning tenant's accounting breaker, whoever reported the result."""
        owner = entry.tenant_id or self.tenant_id
        if self.configuration_manager is None or owner is None:
            return
        self.configuration_manager.record_integration_outcome(
            owner, ACCOUNTING_PLATFORM, success,
        )
