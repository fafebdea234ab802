"""Controlling/dependent picklist relationships."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .record import ValidationError
from .schema import PicklistValue


@dataclass(frozen=True)
class DependencyEntry:
    """Dependent values enabled for one controlling value."""
    controlling_value: str
    enabled_dependent_values: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "controlling_value": self.controlling_value,
            "enabled_dependent_values": list(self.enabled_dependent_values),
        }


@dataclass(frozen=True)
class DependencyMapping:
    """
    Normalized "controlling value -> enabled dependent values" structure.

    Both source encodings decode to this shape. Findings raised while
    decoding are carried in ``warnings`` and do not take part in equality.
    """
    dependent_field: str
    controlling_field: str
    entries: Tuple[DependencyEntry, ...] = ()
    warnings: Tuple[ValidationError, ...] = field(default=(), compare=False)

    def as_value_map(self) -> Dict[str, List[str]]:
        """Order-insensitive view used for comparison."""
        return {
            entry.controlling_value: sorted(entry.enabled_dependent_values)
            for entry in sorted(self.entries, key=lambda e: e.controlling_value)
        }

    def to_record(self) -> Dict[str, Any]:
        """Flat attribute form consumed by the reconciler."""
        return {
            "dependentField": self.dependent_field,
            "controllingField": self.controlling_field,
            "valueMappings": self.as_value_map(),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "dependent_field": self.dependent_field,
            "controlling_field": self.controlling_field,
            "entries": [entry.to_dict() for entry in self.entries],
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass(frozen=True)
class BitfieldEncoding:
    """Dependent values carrying a base64 ``validFor`` bitfield each."""
    dependent_field: str
    controlling_field: str
    controlling_values: Tuple[PicklistValue, ...]
    dependent_values: Tuple[PicklistValue, ...]


@dataclass(frozen=True)
class ValueSetting:
    """One explicit setting: a dependent value and the controlling values enabling it."""
    value_name: str
    controlling_values: Tuple[str, ...]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ValueSetting":
        controlling = data.get("controllingFieldValue", data.get("controlling_values", ()))
        if isinstance(controlling, str):
            controlling = (controlling,)
        return cls(
            value_name=data.get("valueName", data.get("value_name", "")),
            controlling_values=tuple(controlling or ()),
        )


@dataclass(frozen=True)
class ExplicitEncoding:
    """
    Field definition with explicit value settings.

    ``dependent_values`` is the dependent field's own value set when known;
    it is used to report settings that reference unknown values.
    """
    dependent_field: str
    controlling_field: str
    value_settings: Tuple[ValueSetting, ...]
    dependent_values: Optional[Tuple[str, ...]] = None


DependencyEncoding = Union[BitfieldEncoding, ExplicitEncoding]
