"""Per-item results, mapping deltas and batch reports"""

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from incident_bridge.services.mapping_repository import DataMapping


@dataclass
class MappingDelta:
    """Identity changes produced while processing items of one phase."""

    incidents_added: List[DataMapping] = field(default_factory=list)
    releases_added: List[DataMapping] = field(default_factory=list)
    releases_removed: List[DataMapping] = field(default_factory=list)

    def merge(self, other: "MappingDelta") -> None:
        self.incidents_added.extend(other.incidents_added)
        self.releases_added.extend(other.releases_added)
        self.releases_removed.extend(other.releases_removed)

    def is_empty(self) -> bool:
        return not (self.incidents_added or self.releases_added or self.releases_removed)


class ItemStatus(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ItemResult:
    """Outcome of processing a single incident or issue."""

    status: ItemStatus
    key: str
    reason: Optional[str] = None
    error: Optional[str] = None
    delta: MappingDelta = field(default_factory=MappingDelta)

    @classmethod
    def created(cls, key: str, delta: MappingDelta) -> "ItemResult":
        return cls(ItemStatus.CREATED, key, delta=delta)

    @classmethod
    def updated(cls, key: str, delta: MappingDelta) -> "ItemResult":
        return cls(ItemStatus.UPDATED, key, delta=delta)

    @classmethod
    def skipped(cls, key: str, reason: str, delta: Optional[MappingDelta] = None) -> "ItemResult":
        return cls(ItemStatus.SKIPPED, key, reason=reason, delta=delta or MappingDelta())

    @classmethod
    def failed(cls, key: str, error: str, delta: Optional[MappingDelta] = None) -> "ItemResult":
        return cls(ItemStatus.FAILED, key, error=error, delta=delta or MappingDelta())


@dataclass
class SyncReport:
    """Aggregated item results for a whole run."""

    results: List[ItemResult] = field(default_factory=list)
    skipped_projects: List[int] = field(default_factory=list)

    def add(self, result: ItemResult) -> None:
        self.results.append(result)

    def counts(self) -> Dict[str, int]:
        stats = {status.value: 0 for status in ItemStatus}
        for result in self.results:
            stats[result.status.value] += 1
        return stats

    @property
    def failed(self) -> List[ItemResult]:
        return [r for r in self.results if r.status == ItemStatus.FAILED]

    def has_problems(self) -> bool:
        return bool(self.skipped_projects or self.failed)
