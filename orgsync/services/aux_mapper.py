"""Cross-environment remapping of lookup references by natural name."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional

from ..extractors.base import MetadataFetcher, RecordQuery
from ..models.config import EngineConfig
from ..models.environment import EnvironmentHandle
from ..models.migration import AuxiliaryReference
from ..models.record import ValidationError
from .batching import chunked

logger = logging.getLogger(__name__)


@dataclass
class AuxiliaryMap:
    """Identifier map for one auxiliary reference field."""
    reference: AuxiliaryReference
    mapping: Dict[str, str] = field(default_factory=dict)  # source id -> target id
    unmapped: List[str] = field(default_factory=list)
    warnings: List[ValidationError] = field(default_factory=list)


def referenced_ids(records: Iterable[Mapping[str, Any]], field_name: str) -> List[str]:
    """Distinct non-empty values of ``field_name``, in first-seen order."""
    seen: Dict[str, None] = {}
    for record in records:
        value = record.get(field_name)
        if value:
            seen.setdefault(value, None)
    return list(seen)


class AuxiliaryMapper:
    """
    Builds ``source id -> target id`` maps for lookup fields whose targets
    are matched across environments by a name attribute.

    Zero matches on either side give an empty map; the caller decides
    whether unmapped ids are fatal.
    """

    def __init__(self, fetcher: MetadataFetcher, config: Optional[EngineConfig] = None):
        self.fetcher = fetcher
        self.config = config or EngineConfig()

    async def build_map(
        self,
        source: EnvironmentHandle,
        target: EnvironmentHandle,
        reference: AuxiliaryReference,
        records: Iterable[Mapping[str, Any]]
    ) -> AuxiliaryMap:
        """
        Resolve the lookup ids referenced by ``records`` in the target.

        Args:
            source: Environment the records were exported from
            target: Environment the records will be written to
            reference: Lookup field and the type/name attribute it points at
            records: Exported records carrying ``reference.field``

        Returns:
            AuxiliaryMap with the resolved ids and any unmapped ones
        """
        result = AuxiliaryMap(reference=reference)
        ids = referenced_ids(records, reference.field)
        if not ids:
            logger.info(f"No records reference {reference.field}; nothing to map")
            return result

        names_by_id = await self._resolve(
            source, reference, "Id", ids, key="Id", value=reference.name_field
        )
        names = list(dict.fromkeys(n for n in names_by_id.values() if n))
        target_ids_by_name = (
            await self._resolve(target, reference, reference.name_field, names,
                                key=reference.name_field, value="Id")
            if names else {}
        )

        for source_id in ids:
            name = names_by_id.get(source_id)
            target_id = target_ids_by_name.get(name) if name else None
            if target_id:
                result.mapping[source_id] = target_id
                continue

            result.unmapped.append(source_id)
            reason = (
                f"no {reference.lookup_type} named '{name}' in target"
                if name else f"{reference.lookup_type} not found in source"
            )
            result.warnings.append(ValidationError(
                field=reference.field,
                message=f"Cannot map {source_id}: {reason}",
                error_type="unmapped_aux_reference",
                value=source_id,
            ))

        logger.info(
            f"Mapped {len(result.mapping)}/{len(ids)} {reference.lookup_type} references "
            f"for {reference.field}"
        )
        return result

    async def _resolve(
        self,
        env: EnvironmentHandle,
        reference: AuxiliaryReference,
        filter_field: str,
        values: List[str],
        key: str,
        value: str
    ) -> Dict[str, str]:
        resolved: Dict[str, str] = {}
        fields = ["Id", reference.name_field] if reference.name_field != "Id" else ["Id"]

        for chunk in chunked(values, self.config.query_chunk_size):
            records = await self.fetcher.query(env, RecordQuery(
                entity_type=reference.lookup_type,
                fields=fields,
                filter_field=filter_field,
                filter_values=chunk,
            ))
            for record in records:
                record_key, record_value = record.get(key), record.get(value)
                if record_key is None:
                    continue
                if record_key in resolved and resolved[record_key] != record_value:
                    logger.warning(
                        f"Duplicate {reference.lookup_type} '{record_key}' in {env.name or env.instance_url}; "
                        f"keeping the first match"
                    )
                    continue
                resolved[record_key] = record_value

        return resolved

    @staticmethod
    def apply(record: MutableMapping[str, Any], aux_map: AuxiliaryMap) -> bool:
        """Replace the lookup id in ``record`` when it is mapped. Returns True when changed."""
        field_name = aux_map.reference.field
        current = record.get(field_name)
        if current and current in aux_map.mapping:
            record[field_name] = aux_map.mapping[current]
            return True
        return False
