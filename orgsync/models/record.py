"""Record-level outcomes and findings."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from datetime import datetime


@dataclass
class ValidationError:
    """
    A non-fatal finding attached to an item.

    Raised for malformed bitfields, dependent values missing from the
    dependent field's value set and unmapped lookup references. Processing
    continues; the finding travels with the result.
    """
    field: str
    message: str
    error_type: str = "validation"
    severity: str = "warning"  # error, warning, info
    value: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "field": self.field,
            "message": self.message,
            "error_type": self.error_type,
            "severity": self.severity,
            "value": self.value,
        }

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


@dataclass(frozen=True)
class WriteOutcome:
    """Per-record result reported by a bulk write."""
    success: bool
    id: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return ", ".join(self.errors) if self.errors else "Unknown error"

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "id": self.id, "errors": list(self.errors)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WriteOutcome":
        """Create from a collections API result entry."""
        errors = []
        for error in data.get("errors") or []:
            if isinstance(error, dict):
                code = error.get("statusCode")
                message = error.get("message", "")
                errors.append(f"{code}: {message}" if code else message)
            else:
                errors.append(str(error))

        return cls(
            success=bool(data.get("success", False)),
            id=data.get("id"),
            errors=errors,
        )


@dataclass
class PartialWriteFailure:
    """One record rejected by the remote system inside a bulk batch."""
    entity_type: str
    source_id: Optional[str]
    message: str
    batch_index: int = 0
    position: int = 0  # 1-based position inside the batch
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "entity_type": self.entity_type,
            "source_id": self.source_id,
            "message": self.message,
            "batch_index": self.batch_index,
            "position": self.position,
            "occurred_at": self.occurred_at.isoformat(),
        }

    def __str__(self) -> str:
        source = f" ({self.source_id})" if self.source_id else ""
        return f"{self.entity_type} record {self.position}{source}: {self.message}"
