"""Reconciliation results shared by compare mode and migrate mode."""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple
from enum import Enum

from .environment import EnvironmentHandle


class ItemStatus(str, Enum):
    """Classification of one natural key across two environments."""
    CHANGED = "changed"
    SOURCE_ONLY = "source_only"
    TARGET_ONLY = "target_only"
    MATCHED = "matched"

    @property
    def rank(self) -> int:
        """Position in the output order."""
        return _STATUS_ORDER[self]


_STATUS_ORDER = {
    ItemStatus.CHANGED: 0,
    ItemStatus.SOURCE_ONLY: 1,
    ItemStatus.TARGET_ONLY: 2,
    ItemStatus.MATCHED: 3,
}


def _plain(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass(frozen=True)
class ReconciliationItem:
    """One natural key and how it differs between source and target."""
    key: Any
    status: ItemStatus
    source_values: Mapping[str, Any]
    target_values: Mapping[str, Any]
    changed_attributes: Tuple[str, ...] = ()
    details: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    kind: Optional[str] = None

    @property
    def display_key(self) -> str:
        if isinstance(self.key, tuple):
            return ".".join(str(k) for k in self.key)
        return str(self.key)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result = {
            "key": list(self.key) if isinstance(self.key, tuple) else self.key,
            "status": self.status.value,
            "source_values": _plain(self.source_values),
            "target_values": _plain(self.target_values),
            "changed_attributes": list(self.changed_attributes),
        }
        if self.details:
            result["details"] = _plain(self.details)
        if self.kind:
            result["kind"] = self.kind
        return result


@dataclass(frozen=True)
class Summary:
    """Counters of a reconciliation."""
    total_items: int = 0
    matches: int = 0
    differences: int = 0
    source_only: int = 0
    target_only: int = 0

    def __add__(self, other: "Summary") -> "Summary":
        return Summary(
            total_items=self.total_items + other.total_items,
            matches=self.matches + other.matches,
            differences=self.differences + other.differences,
            source_only=self.source_only + other.source_only,
            target_only=self.target_only + other.target_only,
        )

    @property
    def match_percent(self) -> int:
        if self.total_items == 0:
            return 0
        return round(self.matches / self.total_items * 100)

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_items": self.total_items,
            "matches": self.matches,
            "differences": self.differences,
            "source_only": self.source_only,
            "target_only": self.target_only,
        }


@dataclass(frozen=True)
class ReconciliationResult:
    """
    Ordered, immutable outcome of comparing two collections.

    Items are already in their final order: changed, source_only,
    target_only, matched, each group sorted by key.
    """
    items: Tuple[ReconciliationItem, ...] = ()
    warnings: Tuple[Any, ...] = ()

    @property
    def summary(self) -> Summary:
        counts = {status: 0 for status in ItemStatus}
        for item in self.items:
            counts[item.status] += 1
        return Summary(
            total_items=len(self.items),
            matches=counts[ItemStatus.MATCHED],
            differences=counts[ItemStatus.CHANGED],
            source_only=counts[ItemStatus.SOURCE_ONLY],
            target_only=counts[ItemStatus.TARGET_ONLY],
        )

    @property
    def total_items(self) -> int:
        return len(self.items)

    @property
    def matches(self) -> int:
        return self.summary.matches

    @property
    def differences(self) -> int:
        return self.summary.differences

    @property
    def source_only(self) -> int:
        return self.summary.source_only

    @property
    def target_only(self) -> int:
        return self.summary.target_only

    def keys_with_status(self, status: ItemStatus) -> List[Any]:
        return [item.key for item in self.items if item.status == status]

    def get(self, key: Any) -> Optional[ReconciliationItem]:
        for item in self.items:
            if item.key == key:
                return item
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result = self.summary.to_dict()
        result["items"] = [item.to_dict() for item in self.items]
        if self.warnings:
            result["warnings"] = [
                w.to_dict() if hasattr(w, "to_dict") else str(w) for w in self.warnings
            ]
        return result


@dataclass(frozen=True)
class PermissionComparison:
    """Object-level and field-level grant reconciliation for one permission holder."""
    object: ReconciliationResult
    field: ReconciliationResult

    @property
    def combined_summary(self) -> Summary:
        return self.object.summary + self.field.summary

    @property
    def items(self) -> Tuple[ReconciliationItem, ...]:
        return self.object.items + self.field.items

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result = self.combined_summary.to_dict()
        result["items"] = [item.to_dict() for item in self.items]
        result["object_comparison"] = self.object.to_dict()
        result["field_comparison"] = self.field.to_dict()
        return result


@dataclass
class ComparisonReport:
    """Result of comparing several metadata types between two environments."""
    source: EnvironmentHandle
    target: EnvironmentHandle
    comparison_date: datetime = field(default_factory=datetime.utcnow)
    comparisons: Dict[str, Any] = field(default_factory=dict)  # type -> result
    errors: Dict[str, str] = field(default_factory=dict)  # type -> message

    @property
    def summary(self) -> Summary:
        total = Summary()
        for comparison in self.comparisons.values():
            if isinstance(comparison, PermissionComparison):
                total = total + comparison.combined_summary
            else:
                total = total + comparison.summary
        return total

    def summary_stats(self) -> Dict[str, Any]:
        summary = self.summary
        stats = summary.to_dict()
        stats["match_percent"] = summary.match_percent
        stats["metadata_types"] = len(self.comparisons) + len(self.errors)
        return stats

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        comparisons = {name: result.to_dict() for name, result in self.comparisons.items()}
        for name, message in self.errors.items():
            comparisons[name] = {**Summary().to_dict(), "items": [], "error": message}

        return {
            "source": self.source.to_dict(),
            "target": self.target.to_dict(),
            "comparison_date": self.comparison_date.isoformat(),
            "summary": self.summary.to_dict(),
            "comparisons": comparisons,
        }
