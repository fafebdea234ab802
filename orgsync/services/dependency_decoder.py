"""Decoding of controlling/dependent picklist relationships."""

import base64
import binascii
import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from ..models.config import EngineConfig
from ..models.dependency import (
    BitfieldEncoding,
    DependencyEncoding,
    DependencyEntry,
    DependencyMapping,
    ExplicitEncoding,
    ValueSetting,
)
from ..models.record import ValidationError
from ..models.schema import FieldDefinition, PicklistValue

logger = logging.getLogger(__name__)

# Checkbox controllers have no picklist values; index 0 is unchecked, 1 is checked
CHECKBOX_CONTROLLING_VALUES = (
    PicklistValue(value="false", label="Unchecked"),
    PicklistValue(value="true", label="Checked"),
)


def is_bit_set(bits: bytes, index: int) -> bool:
    """
    Whether bit ``index`` of a bitfield is set.

    Byte ``index // 8``, bit ``index % 8`` counted from the least
    significant bit. Indexes past the end of the bitfield are unset.
    """
    byte_index, bit_index = divmod(index, 8)
    if byte_index >= len(bits):
        return False
    return bool(bits[byte_index] & (1 << bit_index))


class DependencyDecoder:
    """
    Normalizes both dependency encodings to ``DependencyMapping``.

    Malformed input never raises: the affected value is treated as
    disabled and a ``ValidationError`` warning is attached to the mapping.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def decode(self, encoding: DependencyEncoding) -> DependencyMapping:
        if isinstance(encoding, BitfieldEncoding):
            return self.decode_bitfield(encoding)
        if isinstance(encoding, ExplicitEncoding):
            return self.decode_explicit(encoding)
        raise TypeError(f"Unsupported dependency encoding: {type(encoding).__name__}")

    def decode_bitfield(self, encoding: BitfieldEncoding) -> DependencyMapping:
        """Decode per-value ``validFor`` bitfields."""
        warnings: List[ValidationError] = []
        decoded: Dict[int, bytes] = {}

        for position, dependent in enumerate(encoding.dependent_values):
            bits = self._decode_bits(dependent, encoding.dependent_field, warnings)
            if bits:
                decoded[position] = bits

        entries = []
        for index, controlling in enumerate(encoding.controlling_values):
            enabled = tuple(
                dependent.value
                for position, dependent in enumerate(encoding.dependent_values)
                if position in decoded and is_bit_set(decoded[position], index)
            )
            if enabled:
                entries.append(DependencyEntry(
                    controlling_value=controlling.value,
                    enabled_dependent_values=enabled,
                ))

        return DependencyMapping(
            dependent_field=encoding.dependent_field,
            controlling_field=encoding.controlling_field,
            entries=tuple(entries),
            warnings=tuple(warnings),
        )

    def decode_explicit(self, encoding: ExplicitEncoding) -> DependencyMapping:
        """Decode explicit value settings, grouped by controlling value in first-seen order."""
        warnings: List[ValidationError] = []
        known = set(encoding.dependent_values) if encoding.dependent_values is not None else None
        grouped: "OrderedDict[str, List[str]]" = OrderedDict()

        for setting in encoding.value_settings:
            if known is not None and setting.value_name not in known:
                warnings.append(ValidationError(
                    field=encoding.dependent_field,
                    message=f"Value '{setting.value_name}' is not in the dependent field's value set",
                    error_type="unknown_dependent_value",
                    value=setting.value_name,
                ))

            for controlling_value in setting.controlling_values:
                values = grouped.setdefault(controlling_value, [])
                if setting.value_name not in values:
                    values.append(setting.value_name)

        entries = tuple(
            DependencyEntry(controlling_value=value, enabled_dependent_values=tuple(dependents))
            for value, dependents in grouped.items()
            if dependents
        )

        return DependencyMapping(
            dependent_field=encoding.dependent_field,
            controlling_field=encoding.controlling_field,
            entries=entries,
            warnings=tuple(warnings),
        )

    def _decode_bits(
        self,
        dependent: PicklistValue,
        field_name: str,
        warnings: List[ValidationError]
    ) -> Optional[bytes]:
        if not dependent.valid_for:
            return None

        try:
            return base64.b64decode(dependent.valid_for, validate=True)
        except (binascii.Error, ValueError) as e:
            logger.warning(f"Undecodable validFor on {field_name}.{dependent.value}: {e}")
            warnings.append(ValidationError(
                field=field_name,
                message=f"Malformed validFor bitfield for value '{dependent.value}'; treated as disabled",
                error_type="malformed_bitfield",
                value=dependent.valid_for,
            ))
            return None


def bitfield_encoding_from_fields(
    dependent: FieldDefinition,
    controlling: FieldDefinition
) -> BitfieldEncoding:
    """Build a bitfield encoding from two described fields."""
    if controlling.type == "boolean":
        controlling_values = CHECKBOX_CONTROLLING_VALUES
    else:
        controlling_values = tuple(controlling.picklist_values)

    return BitfieldEncoding(
        dependent_field=dependent.name,
        controlling_field=controlling.name,
        controlling_values=controlling_values,
        dependent_values=tuple(dependent.picklist_values),
    )


def encoding_from_record(record: Dict[str, Any]) -> DependencyEncoding:
    """
    Build the tagged encoding for a fetched FIELD_DEPENDENCY record.

    Records carry ``encoding`` set to ``bitfield`` (with
    ``controllingValues``/``dependentValues`` describe entries) or
    ``explicit`` (with ``valueSettings`` and optionally ``values``).
    """
    kind = record.get("encoding", "bitfield")
    dependent_field = record.get("dependentField", "")
    controlling_field = record.get("controllingField", "")

    if kind == "explicit":
        values = record.get("values")
        return ExplicitEncoding(
            dependent_field=dependent_field,
            controlling_field=controlling_field,
            value_settings=tuple(ValueSetting.from_dict(vs) for vs in record.get("valueSettings") or []),
            dependent_values=tuple(values) if values is not None else None,
        )
    if kind == "bitfield":
        return BitfieldEncoding(
            dependent_field=dependent_field,
            controlling_field=controlling_field,
            controlling_values=tuple(
                PicklistValue.from_dict(v) for v in record.get("controllingValues") or []
            ),
            dependent_values=tuple(
                PicklistValue.from_dict(v) for v in record.get("dependentValues") or []
            ),
        )
    raise ValueError(f"Unknown dependency encoding: {kind}")
