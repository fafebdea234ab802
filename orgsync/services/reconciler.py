"""Key-based reconciliation of two record collections."""

import logging
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ..models.config import EngineConfig
from ..models.record import ValidationError
from ..models.reconciliation import ItemStatus, ReconciliationItem, ReconciliationResult
from ..models.schema import AttributeType, EntityCollection, EntitySchema

logger = logging.getLogger(__name__)

KeySpec = Union[str, Sequence[str], Callable[[Mapping[str, Any]], Any], EntitySchema]
Annotator = Callable[[Mapping[str, Any], Mapping[str, Any]], Mapping[str, Any]]


def _key_function(key: KeySpec) -> Callable[[Mapping[str, Any]], Any]:
    if isinstance(key, EntitySchema):
        return key.key_of
    if isinstance(key, str):
        return lambda record: record.get(key)
    if callable(key):
        return key

    fields = tuple(key)

    def composite(record: Mapping[str, Any]) -> Any:
        values = tuple(record.get(f) for f in fields)
        return None if any(v is None for v in values) else values

    return composite


def _normalize(value: Any) -> Any:
    """Structural form used for equality: mappings to dicts, sequences to lists."""
    if isinstance(value, Mapping):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def _sort_key(key: Any) -> Any:
    if isinstance(key, tuple):
        return tuple(str(k) for k in key)
    return (str(key),)


def empty_value_like(value: Any) -> Any:
    """Default for an absent side, inferred from the present side's value."""
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        return ""
    if isinstance(value, (list, tuple)):
        return []
    if isinstance(value, Mapping):
        return {}
    return None


class KeyBasedReconciler:
    """
    Diff engine for two collections joined on a natural key.

    Produces a ``ReconciliationResult`` whose items are ordered changed,
    source_only, target_only, matched and then by key. The reconciler has
    no side effects and touches neither network nor storage.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def reconcile(
        self,
        source: Iterable[Mapping[str, Any]],
        target: Iterable[Mapping[str, Any]],
        key: KeySpec,
        compare_fields: Sequence[str],
        defaults: Optional[Mapping[str, Any]] = None,
        schema: Optional[EntitySchema] = None,
        annotate: Optional[Annotator] = None,
        kind: Optional[str] = None
    ) -> ReconciliationResult:
        """
        Reconcile two collections.

        Args:
            source: Records from the source environment
            target: Records from the target environment
            key: Attribute name, attribute names, key function or schema
            compare_fields: Attributes compared for keys present on both sides
            defaults: Explicit values for attributes of an absent side
            schema: Declared schema used to type the absent-side defaults
            annotate: Optional callable adding details to items present on both sides
            kind: Optional tag copied onto every item

        Returns:
            ReconciliationResult with ordered items
        """
        key_fn = _key_function(key)
        if schema is None and isinstance(key, EntitySchema):
            schema = key

        warnings: List[ValidationError] = []
        source_map = self._index(source, key_fn, "source", warnings)
        target_map = self._index(target, key_fn, "target", warnings)

        items = []
        for item_key in set(source_map) | set(target_map):
            source_record = source_map.get(item_key)
            target_record = target_map.get(item_key)

            if source_record is not None and target_record is not None:
                items.append(self._compare_pair(
                    item_key, source_record, target_record, compare_fields, annotate, kind
                ))
            elif source_record is not None:
                present, absent = self._one_sided(source_record, compare_fields, defaults, schema)
                items.append(ReconciliationItem(
                    key=item_key,
                    status=ItemStatus.SOURCE_ONLY,
                    source_values=present,
                    target_values=absent,
                    kind=kind,
                ))
            else:
                present, absent = self._one_sided(target_record, compare_fields, defaults, schema)
                items.append(ReconciliationItem(
                    key=item_key,
                    status=ItemStatus.TARGET_ONLY,
                    source_values=absent,
                    target_values=present,
                    kind=kind,
                ))

        items.sort(key=lambda item: (item.status.rank, _sort_key(item.key)))
        return ReconciliationResult(items=tuple(items), warnings=tuple(warnings))

    def reconcile_collections(
        self,
        source: EntityCollection,
        target: EntityCollection,
        compare_fields: Sequence[str],
        **kwargs
    ) -> ReconciliationResult:
        """Reconcile two collections of the same entity type using its declared schema."""
        if source.entity_type != target.entity_type:
            raise ValueError(
                f"Cannot reconcile {source.entity_type.value} against {target.entity_type.value}"
            )
        return self.reconcile(source, target, source.schema, compare_fields, **kwargs)

    def _index(
        self,
        records: Iterable[Mapping[str, Any]],
        key_fn: Callable[[Mapping[str, Any]], Any],
        side: str,
        warnings: List[ValidationError]
    ) -> Dict[Any, Mapping[str, Any]]:
        index: Dict[Any, Mapping[str, Any]] = {}
        for position, record in enumerate(records):
            record_key = key_fn(record)
            if record_key is None:
                logger.warning(f"Skipping {side} record {position} without a natural key")
                warnings.append(ValidationError(
                    field="key",
                    message=f"{side} record {position} has no natural key",
                    error_type="missing_key",
                ))
                continue
            index[record_key] = record
        return index

    def _compare_pair(
        self,
        item_key: Any,
        source_record: Mapping[str, Any],
        target_record: Mapping[str, Any],
        compare_fields: Sequence[str],
        annotate: Optional[Annotator],
        kind: Optional[str]
    ) -> ReconciliationItem:
        source_values = {}
        target_values = {}
        changed = []

        for name in compare_fields:
            source_value = source_record.get(name)
            target_value = target_record.get(name)
            source_values[name] = source_value
            target_values[name] = target_value

            if _normalize(source_value) != _normalize(target_value):
                changed.append(name)

        details = annotate(source_record, target_record) if annotate else {}

        return ReconciliationItem(
            key=item_key,
            status=ItemStatus.CHANGED if changed else ItemStatus.MATCHED,
            source_values=MappingProxyType(source_values),
            target_values=MappingProxyType(target_values),
            changed_attributes=tuple(changed),
            details=MappingProxyType(dict(details or {})),
            kind=kind,
        )

    def _one_sided(
        self,
        record: Mapping[str, Any],
        compare_fields: Sequence[str],
        defaults: Optional[Mapping[str, Any]],
        schema: Optional[EntitySchema]
    ) -> Tuple[Mapping[str, Any], Mapping[str, Any]]:
        present = {}
        absent = {}

        for name in compare_fields:
            value = record.get(name)
            present[name] = value
            absent[name] = self._absent_default(name, value, defaults, schema)

        return MappingProxyType(present), MappingProxyType(absent)

    @staticmethod
    def _absent_default(
        name: str,
        value: Any,
        defaults: Optional[Mapping[str, Any]],
        schema: Optional[EntitySchema]
    ) -> Any:
        if defaults and name in defaults:
            return defaults[name]

        declared: Optional[AttributeType] = schema.attribute_type(name) if schema else None
        if declared is not None:
            return declared.empty_value()

        return empty_value_like(value)
