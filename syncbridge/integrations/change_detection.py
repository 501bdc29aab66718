"""Contracts for the change-detection engine and the entity repositories.

Both collaborators live outside SyncBridge.  The transfer queue only needs:

  - ChangeDetector.detect_changes_and_cascade_impacts() → ChangeDetectionResult
  - EntityRepository.get_<entity>(entity_id) → full snapshot dict or None

Snapshots include the nested relations (line items, associations) that the
accounting transfer needs, so the queue never re-reads the source later.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

CHANGE_CREATED = "created"
CHANGE_UPDATED = "updated"
CHANGE_DELETED = "deleted"

CASCADE_PRIORITIES = ("low", "medium", "high", "critical")
HIGH_CASCADE_PRIORITIES = {"high", "critical"}


@dataclass
class EntityChange:
    """One entity delta reported by the detector."""

    entity_type: str
    entity_id: str
    change_type: str
    previous_data: dict[str, Any] | None = None


@dataclass
class ImpactedEntity:
    entity_type: str
    entity_id: str
    requires_sync: bool = True
    priority: str = "medium"


@dataclass
class CascadeImpact:
    """Entities that must re-sync because ``source_change`` touched them."""

    source_change: EntityChange
    impacted_entities: list[ImpactedEntity] = field(default_factory=list)


@dataclass
class ChangeDetectionResult:
    detected_changes: list[EntityChange] = field(default_factory=list)
    cascade_impacts: list[CascadeImpact] = field(default_factory=list)


class ChangeDetector(ABC):
    """Discovers entity deltas and their cascade impacts."""

    @abstractmethod
    def detect_changes_and_cascade_impacts(self) -> ChangeDetectionResult:
        """Run one detection sweep."""


class EntityRepository(ABC):
    """Materialises full entity snapshots by id.  Absent entities return None."""

    @abstractmethod
    def get_contact(self, entity_id: str) -> dict | None: ...

    @abstractmethod
    def get_company(self, entity_id: str) -> dict | None: ...

    @abstractmethod
    def get_invoice(self, entity_id: str) -> dict | None:
        """Invoice snapshot including its line items."""

    @abstractmethod
    def get_line_item(self, entity_id: str) -> dict | None: ...
