"""Pre-flight field and picklist value compatibility checks."""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ..models.compatibility import (
    FieldMappingReport,
    FieldPair,
    FieldSummary,
    MappingValidation,
    PicklistMappingReport,
    Recommendation,
    Severity,
)
from ..models.config import EngineConfig
from ..models.reconciliation import ItemStatus
from ..models.schema import FieldDefinition, PicklistValue
from .reconciler import KeyBasedReconciler

logger = logging.getLogger(__name__)

FieldLike = Union[FieldDefinition, Mapping[str, Any]]

_STRING_TYPES = {"string", "textarea", "email", "url", "phone"}
_NUMBER_TYPES = {"int", "double", "currency", "percent"}


def as_field(field: FieldLike) -> FieldDefinition:
    if isinstance(field, FieldDefinition):
        return field
    return FieldDefinition.from_dict(field)


def fields_compatible(source: FieldDefinition, target: FieldDefinition) -> bool:
    """
    Whether a field present in both environments is an exact match.

    Types must be equal. Reference fields must also point at the same set
    of types. Picklists count as exact here; their values are checked
    separately by ``PicklistMapper``.
    """
    if source.type != target.type:
        return False
    if source.is_reference:
        return sorted(source.reference_to) == sorted(target.reference_to)
    return True


class CompatibilityMapper:
    """
    Classifies source fields against target fields before a migration.

    A required field missing in the target is blocking. Optional missing
    fields and type mismatches are advisory.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def map(self, source_fields: Iterable[FieldLike], target_fields: Iterable[FieldLike]) -> FieldMappingReport:
        """
        Build the field mapping report.

        Args:
            source_fields: Field definitions or describe entries from the source
            target_fields: Field definitions or describe entries from the target

        Returns:
            FieldMappingReport with recommendations
        """
        report = FieldMappingReport()
        remaining: Dict[str, FieldDefinition] = {}
        for field in target_fields:
            definition = as_field(field)
            remaining[definition.name] = definition

        for field in source_fields:
            source = as_field(field)
            target = remaining.pop(source.name, None)

            if target is None:
                report.missing_in_target.append(FieldSummary(
                    name=source.name,
                    label=source.label,
                    type=source.type,
                    required=source.required,
                    createable=source.createable,
                ))
                continue

            pair = FieldPair(
                source_field=source.name,
                target_field=target.name,
                label=source.label,
                source_type=source.type,
                target_type=target.type,
            )
            if fields_compatible(source, target):
                report.exact.append(pair)
            else:
                report.compatible.append(pair)

        for target in remaining.values():
            if target.createable and not target.calculated:
                report.additional_in_target.append(FieldSummary(
                    name=target.name,
                    label=target.label,
                    type=target.type,
                    required=target.required,
                    createable=target.createable,
                ))

        report.recommendations = self.recommend(report)
        logger.info(
            f"Field mapping: {len(report.exact)} exact, {len(report.compatible)} mismatched, "
            f"{len(report.missing_in_target)} missing, {len(report.blocking)} blocking"
        )
        return report

    def recommend(self, report: FieldMappingReport) -> List[Recommendation]:
        recommendations = []

        for field in report.missing_in_target:
            if field.required:
                recommendations.append(Recommendation(
                    severity=Severity.BLOCKING,
                    field=field.name,
                    message=f'Required field "{field.label}" ({field.name}) is missing in target',
                    action="Create this field in the target before migrating",
                ))
            else:
                recommendations.append(Recommendation(
                    severity=Severity.ADVISORY,
                    field=field.name,
                    message=f'Field "{field.label}" ({field.name}) is missing in target',
                    action="Data in this field will be skipped",
                ))

        for pair in report.compatible:
            if pair.source_type != pair.target_type:
                message = f'Type mismatch for "{pair.label}": {pair.source_type} -> {pair.target_type}'
            else:
                message = f'Reference targets differ for "{pair.label}"'
            recommendations.append(Recommendation(
                severity=Severity.ADVISORY,
                field=pair.source_field,
                message=message,
                action="Data may be lost or converted during migration",
            ))

        return recommendations

    def validate(
        self,
        report: FieldMappingReport,
        picklists: Optional[Sequence[PicklistMappingReport]] = None
    ) -> MappingValidation:
        """Go/no-go verdict: valid unless a blocking recommendation exists."""
        validation = MappingValidation()

        for recommendation in report.recommendations:
            if recommendation.severity == Severity.BLOCKING:
                validation.errors.append(recommendation.message)
            else:
                validation.warnings.append(recommendation.message)

        if picklists is not None:
            validation.picklists = list(picklists)
            picklist_mapper = PicklistMapper(self.config)
            for picklist in picklists:
                result = picklist_mapper.validate_picklist_mapping(picklist)
                validation.errors.extend(result.errors)
                validation.warnings.extend(result.warnings)

        validation.valid = not validation.errors
        return validation

    def map_record(self, record: Mapping[str, Any], target_fields: Iterable[FieldLike]) -> Dict[str, Any]:
        """
        Keep only the attributes the target can accept, converted to its types.

        System attributes, fields missing in the target and fields the
        target does not allow on create are dropped.
        """
        targets = {f.name: f for f in (as_field(t) for t in target_fields)}
        system_fields = set(self.config.system_fields)
        mapped = {}

        for name, value in record.items():
            if name in system_fields:
                continue
            target = targets.get(name)
            if target is None or not target.createable:
                continue
            mapped[name] = convert_value(value, target)

        return mapped


def convert_value(value: Any, target: FieldDefinition) -> Any:
    """Coerce a value to the target field's type."""
    if value is None:
        return None
    if target.type in _STRING_TYPES:
        return str(value)
    if target.type == "boolean":
        return bool(value)
    if target.type in _NUMBER_TYPES:
        try:
            return float(value) if target.type != "int" else int(value)
        except (TypeError, ValueError):
            logger.warning(f"Cannot convert {value!r} for {target.name} ({target.type})")
            return None
    return value


class PicklistMapper:
    """Value-level comparison of picklist fields present in both environments."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        reconciler: Optional[KeyBasedReconciler] = None
    ):
        self.config = config or EngineConfig()
        self.reconciler = reconciler or KeyBasedReconciler(self.config)

    @staticmethod
    def active_values(field: FieldDefinition) -> List[PicklistValue]:
        return [v for v in field.picklist_values if v.active]

    def detect_picklist_fields(
        self,
        source_fields: Iterable[FieldLike],
        target_fields: Iterable[FieldLike]
    ) -> List[Dict[str, Any]]:
        """Picklist fields present as picklists in both environments, with their active values."""
        targets = {f.name: f for f in (as_field(t) for t in target_fields)}
        detected = []

        for field in source_fields:
            source = as_field(field)
            target = targets.get(source.name)
            if not source.is_picklist or target is None or not target.is_picklist:
                continue
            detected.append({
                "name": source.name,
                "label": source.label,
                "type": source.type,
                "source_values": self.active_values(source),
                "target_values": self.active_values(target),
            })

        return detected

    def build_picklist_mapping(
        self,
        field_name: str,
        source_values: Iterable[Union[PicklistValue, Mapping[str, Any]]],
        target_values: Iterable[Union[PicklistValue, Mapping[str, Any]]]
    ) -> PicklistMappingReport:
        """
        Compare picklist values by value code.

        Values present on both sides map to themselves; the rest are
        reported as missing in or additional to the target.
        """
        result = self.reconciler.reconcile(
            [_value_record(v) for v in source_values],
            [_value_record(v) for v in target_values],
            "value",
            ["label", "default"],
        )

        report = PicklistMappingReport(field_name=field_name)
        for item in result.items:
            if item.status in (ItemStatus.MATCHED, ItemStatus.CHANGED):
                report.exact_matches.append(item.key)
                report.value_map[item.key] = item.key
            elif item.status == ItemStatus.SOURCE_ONLY:
                report.missing_in_target.append({
                    "value": item.key,
                    "label": item.source_values.get("label") or item.key,
                    "default": bool(item.source_values.get("default")),
                })
            else:
                report.additional_in_target.append({
                    "value": item.key,
                    "label": item.target_values.get("label") or item.key,
                })

        report.exact_matches.sort()
        return report

    def validate_picklist_mapping(self, report: PicklistMappingReport) -> MappingValidation:
        """A missing default value is blocking; other missing values are advisory."""
        validation = MappingValidation()

        for value in report.missing_in_target:
            description = f'"{value["label"]}" ({value["value"]})'
            if value.get("default"):
                validation.errors.append(
                    f"Default picklist value {description} is missing in target for field {report.field_name}"
                )
            else:
                validation.warnings.append(
                    f"Picklist value {description} is missing in target for field {report.field_name}"
                )

        validation.valid = not validation.errors
        return validation

    def map_field_values(
        self,
        source_fields: Iterable[FieldLike],
        target_fields: Iterable[FieldLike]
    ) -> List[PicklistMappingReport]:
        """Build a value mapping for every picklist present in both environments."""
        return [
            self.build_picklist_mapping(f["name"], f["source_values"], f["target_values"])
            for f in self.detect_picklist_fields(source_fields, target_fields)
        ]

    @staticmethod
    def apply(record: Mapping[str, Any], value_maps: Mapping[str, Mapping[str, str]]) -> Dict[str, Any]:
        """Translate picklist values in a record. Multi-select values are split on ``;``."""
        mapped = dict(record)
        for field_name, value_map in value_maps.items():
            value = record.get(field_name)
            if not value:
                continue
            mapped[field_name] = ";".join(value_map.get(v, v) for v in str(value).split(";"))
        return mapped


def _value_record(value: Union[PicklistValue, Mapping[str, Any]]) -> Mapping[str, Any]:
    if isinstance(value, PicklistValue):
        return value.to_dict()
    return {
        "value": value.get("value"),
        "label": value.get("label") or value.get("value"),
        "default": bool(value.get("default", value.get("defaultValue", False))),
    }
