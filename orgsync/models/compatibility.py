"""Pre-flight field and picklist compatibility findings."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum


class Severity(str, Enum):
    """Blocking findings stop a migration; advisory findings do not."""
    BLOCKING = "blocking"
    ADVISORY = "advisory"


@dataclass(frozen=True)
class Recommendation:
    """One pre-flight finding about a field or value."""
    severity: Severity
    field: str
    message: str
    action: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "field": self.field,
            "message": self.message,
            "action": self.action,
        }


@dataclass(frozen=True)
class FieldPair:
    """A field present in both environments."""
    source_field: str
    target_field: str
    label: str
    source_type: str
    target_type: str

    @property
    def status(self) -> str:
        return "exact" if self.source_type == self.target_type else "type_mismatch"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_field": self.source_field,
            "target_field": self.target_field,
            "label": self.label,
            "source_type": self.source_type,
            "target_type": self.target_type,
            "status": self.status,
        }


@dataclass(frozen=True)
class FieldSummary:
    """A field present in only one environment."""
    name: str
    label: str
    type: str
    required: bool = False
    createable: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "type": self.type,
            "required": self.required,
            "createable": self.createable,
        }


@dataclass
class FieldMappingReport:
    """Classification of source fields against target fields."""
    exact: List[FieldPair] = field(default_factory=list)
    compatible: List[FieldPair] = field(default_factory=list)  # present, but not exact
    missing_in_target: List[FieldSummary] = field(default_factory=list)
    additional_in_target: List[FieldSummary] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)

    @property
    def blocking(self) -> List[Recommendation]:
        return [r for r in self.recommendations if r.severity == Severity.BLOCKING]

    @property
    def advisory(self) -> List[Recommendation]:
        return [r for r in self.recommendations if r.severity == Severity.ADVISORY]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "exact": [f.to_dict() for f in self.exact],
            "compatible": [f.to_dict() for f in self.compatible],
            "missing_in_target": [f.to_dict() for f in self.missing_in_target],
            "additional_in_target": [f.to_dict() for f in self.additional_in_target],
            "recommendations": [r.to_dict() for r in self.recommendations],
        }


@dataclass
class PicklistMappingReport:
    """Value-level comparison of one picklist field."""
    field_name: str
    exact_matches: List[str] = field(default_factory=list)
    missing_in_target: List[Dict[str, Any]] = field(default_factory=list)
    additional_in_target: List[Dict[str, Any]] = field(default_factory=list)
    value_map: Dict[str, str] = field(default_factory=dict)  # source value -> target value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_name": self.field_name,
            "exact_matches": list(self.exact_matches),
            "missing_in_target": list(self.missing_in_target),
            "additional_in_target": list(self.additional_in_target),
            "value_map": dict(self.value_map),
        }


@dataclass
class MappingValidation:
    """Go/no-go verdict derived from the recommendations."""
    valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    picklists: Optional[List[PicklistMappingReport]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
        if self.picklists is not None:
            result["picklists"] = [p.to_dict() for p in self.picklists]
        return result


@dataclass
class PreflightResult:
    """Field and picklist compatibility of one entity type."""
    entity_type: str
    fields: FieldMappingReport
    validation: MappingValidation

    @property
    def blocked(self) -> bool:
        return not self.validation.valid

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "blocked": self.blocked,
            "fields": self.fields.to_dict(),
            "validation": self.validation.to_dict(),
        }
