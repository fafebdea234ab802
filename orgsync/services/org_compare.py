"""Metadata comparison between two environments."""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..exceptions import ConfigurationError, MetadataNotFoundError, describe_error
from ..extractors.base import MetadataFetcher
from ..models.config import EngineConfig
from ..models.dependency import DependencyMapping
from ..models.environment import EnvironmentHandle
from ..models.reconciliation import ComparisonReport, PermissionComparison, ReconciliationResult
from ..models.schema import EntityCollection, EntityType, schema_for
from .dependency_decoder import DependencyDecoder, encoding_from_record
from .permission_reconciler import PermissionReconciler
from .reconciler import KeyBasedReconciler

logger = logging.getLogger(__name__)

# metadata type -> (entity type, compared attributes)
COMPARE_FIELDS: Dict[str, Tuple[EntityType, List[str]]] = {
    "objects": (EntityType.OBJECT, ["label", "custom", "queryable"]),
    "fields": (EntityType.FIELD, ["label", "type", "length", "required", "unique", "custom"]),
    "validationRules": (EntityType.VALIDATION_RULE, ["active", "errorMessage", "description"]),
    "flows": (EntityType.FLOW, ["label", "type", "status", "version"]),
    "picklists": (EntityType.PICKLIST_VALUE, ["label", "active", "default"]),
    "dependencies": (EntityType.FIELD_DEPENDENCY, ["controllingField", "valueMappings"]),
    "permissions": (EntityType.OBJECT_PERMISSION, []),
}

REQUIRED_OPTIONS: Dict[str, Tuple[str, ...]] = {
    "fields": ("object_name",),
    "picklists": ("object_name", "field_name"),
    "dependencies": ("object_name",),
    "permissions": ("permission_name", "permission_type"),
}

PERMISSION_HOLDER_TYPES = ("Profile", "PermissionSet")


def value_mapping_differences(
    source_mappings: Mapping[str, Sequence[str]],
    target_mappings: Mapping[str, Sequence[str]]
) -> List[Dict[str, Any]]:
    """Per controlling value, the dependent values enabled on only one side."""
    differences = []
    for controlling_value in sorted(set(source_mappings) | set(target_mappings)):
        source_values = list(source_mappings.get(controlling_value) or [])
        target_values = list(target_mappings.get(controlling_value) or [])

        only_in_source = [v for v in source_values if v not in target_values]
        only_in_target = [v for v in target_values if v not in source_values]
        if only_in_source or only_in_target:
            differences.append({
                "controllingValue": controlling_value,
                "onlyInSource": only_in_source,
                "onlyInTarget": only_in_target,
                "sourceCount": len(source_values),
                "targetCount": len(target_values),
            })
    return differences


def _annotate_dependencies(source: Mapping[str, Any], target: Mapping[str, Any]) -> Dict[str, Any]:
    differences = value_mapping_differences(
        source.get("valueMappings") or {}, target.get("valueMappings") or {}
    )
    return {"valueMappingDifferences": differences} if differences else {}


class OrgComparer:
    """
    Compares selected metadata types between a source and a target environment.

    Each type is compared independently: a failure while comparing one
    type is recorded in the report's ``errors`` and the others still run.
    Source and target are fetched concurrently for every type.
    """

    def __init__(
        self,
        fetcher: MetadataFetcher,
        config: Optional[EngineConfig] = None
    ):
        self.fetcher = fetcher
        self.config = config or EngineConfig()
        self.reconciler = KeyBasedReconciler(self.config)
        self.decoder = DependencyDecoder(self.config)
        self.permission_reconciler = PermissionReconciler(self.config, self.reconciler)

    def validate_request(
        self,
        source: EnvironmentHandle,
        target: EnvironmentHandle,
        metadata_types: Sequence[str],
        options: Mapping[str, Any]
    ) -> None:
        """Raise ``ConfigurationError`` for a request that cannot run."""
        if source.same_environment(target):
            raise ConfigurationError("Source and target must be different environments")
        if not metadata_types:
            raise ConfigurationError("Select at least one metadata type to compare")

        for metadata_type in metadata_types:
            if metadata_type not in COMPARE_FIELDS:
                raise ConfigurationError(f"Unknown metadata type: {metadata_type}")
            missing = [o for o in REQUIRED_OPTIONS.get(metadata_type, ()) if not options.get(o)]
            if missing:
                raise ConfigurationError(
                    f"Comparing {metadata_type} requires option(s): {', '.join(missing)}"
                )

        if "permissions" in metadata_types and options["permission_type"] not in PERMISSION_HOLDER_TYPES:
            raise ConfigurationError(
                f"permission_type must be one of {', '.join(PERMISSION_HOLDER_TYPES)}"
            )

    async def compare(
        self,
        source: EnvironmentHandle,
        target: EnvironmentHandle,
        metadata_types: Sequence[str],
        options: Optional[Mapping[str, Any]] = None
    ) -> ComparisonReport:
        """
        Compare metadata types between two environments.

        Args:
            source: Source environment
            target: Target environment
            metadata_types: Keys of ``COMPARE_FIELDS`` to compare
            options: ``object_name``, ``field_name``, ``permission_name``,
                ``permission_type`` and ``dependency_encoding`` as the types require

        Returns:
            ComparisonReport with one result or error per type
        """
        options = dict(options or {})
        self.validate_request(source, target, metadata_types, options)

        report = ComparisonReport(source=source, target=target)
        for metadata_type in metadata_types:
            try:
                report.comparisons[metadata_type] = await self.compare_type(
                    source, target, metadata_type, options
                )
            except Exception as e:
                logger.error(f"Comparison of {metadata_type} failed: {e}")
                report.errors[metadata_type] = describe_error(e)

        stats = report.summary_stats()
        logger.info(
            f"Compared {stats['metadata_types']} metadata types: {stats['total_items']} items, "
            f"{stats['match_percent']}% matching"
        )
        return report

    async def compare_type(
        self,
        source: EnvironmentHandle,
        target: EnvironmentHandle,
        metadata_type: str,
        options: Mapping[str, Any]
    ) -> Any:
        if metadata_type == "permissions":
            return await self.compare_permissions(
                source, target, options["permission_name"], options["permission_type"]
            )
        if metadata_type == "dependencies":
            return await self.compare_dependencies(
                source, target, options["object_name"], options.get("dependency_encoding", "bitfield")
            )

        entity_type, compare_fields = COMPARE_FIELDS[metadata_type]
        fetch_filter = self._filter_for(metadata_type, options)
        source_records, target_records = await asyncio.gather(
            self.fetcher.fetch(source, entity_type, fetch_filter),
            self.fetcher.fetch(target, entity_type, fetch_filter),
        )
        return self.reconciler.reconcile_collections(source_records, target_records, compare_fields)

    async def compare_dependencies(
        self,
        source: EnvironmentHandle,
        target: EnvironmentHandle,
        object_name: str,
        encoding: str = "bitfield"
    ) -> ReconciliationResult:
        """Compare decoded controlling/dependent value mappings of one object."""
        fetch_filter = {"object": object_name, "encoding": encoding}
        source_raw, target_raw = await asyncio.gather(
            self.fetcher.fetch(source, EntityType.FIELD_DEPENDENCY, fetch_filter),
            self.fetcher.fetch(target, EntityType.FIELD_DEPENDENCY, fetch_filter),
        )

        source_mappings = self.decode_all(source_raw)
        target_mappings = self.decode_all(target_raw)
        _, compare_fields = COMPARE_FIELDS["dependencies"]

        result = self.reconciler.reconcile(
            [m.to_record() for m in source_mappings],
            [m.to_record() for m in target_mappings],
            schema_for(EntityType.FIELD_DEPENDENCY),
            compare_fields,
            annotate=_annotate_dependencies,
        )

        warnings = tuple(w for m in source_mappings + target_mappings for w in m.warnings)
        return ReconciliationResult(items=result.items, warnings=result.warnings + warnings)

    def decode_all(self, records: EntityCollection) -> List[DependencyMapping]:
        return [self.decoder.decode(encoding_from_record(dict(r))) for r in records]

    async def compare_permissions(
        self,
        source: EnvironmentHandle,
        target: EnvironmentHandle,
        holder_name: str,
        holder_type: str
    ) -> PermissionComparison:
        """
        Compare the grants of a profile or permission set matched by name.

        The holder is looked up by name in each environment, since its
        identifier differs between them.
        """
        source_grants, target_grants = await asyncio.gather(
            self.fetch_grants(source, holder_name, holder_type),
            self.fetch_grants(target, holder_name, holder_type),
        )
        return self.permission_reconciler.reconcile(source_grants, target_grants)

    async def fetch_grants(
        self,
        env: EnvironmentHandle,
        holder_name: str,
        holder_type: str
    ) -> Dict[str, EntityCollection]:
        parent_id = await self._permission_set_id(env, holder_name, holder_type)
        object_grants, field_grants = await asyncio.gather(
            self.fetcher.fetch(env, EntityType.OBJECT_PERMISSION, {"parent_id": parent_id}),
            self.fetcher.fetch(env, EntityType.FIELD_PERMISSION, {"parent_id": parent_id}),
        )
        return {"object_permissions": object_grants, "field_permissions": field_grants}

    async def _permission_set_id(self, env: EnvironmentHandle, holder_name: str, holder_type: str) -> str:
        label = env.name or env.instance_url

        if holder_type == "Profile":
            profiles = await self.fetcher.fetch(env, EntityType.PROFILE)
            profile = _find_by_name(profiles, holder_name)
            if profile is None:
                raise MetadataNotFoundError(f"Profile {holder_name} not found in {label}")

            owned = await self.fetcher.fetch(
                env, EntityType.PERMISSION_SET, {"profile_id": profile["id"]}
            )
            if not len(owned):
                raise MetadataNotFoundError(f"No permission set found for profile {holder_name} in {label}")
            return owned[0]["id"]

        permission_sets = await self.fetcher.fetch(env, EntityType.PERMISSION_SET)
        permission_set = _find_by_name(permission_sets, holder_name)
        if permission_set is None:
            raise MetadataNotFoundError(f"Permission set {holder_name} not found in {label}")
        return permission_set["id"]

    @staticmethod
    def _filter_for(metadata_type: str, options: Mapping[str, Any]) -> Dict[str, Any]:
        if metadata_type == "fields":
            return {"object": options["object_name"]}
        if metadata_type == "picklists":
            return {"object": options["object_name"], "field": options["field_name"]}
        if metadata_type == "validationRules" and options.get("object_name"):
            return {"object": options["object_name"]}
        return {}


def _find_by_name(records: EntityCollection, name: str) -> Optional[Mapping[str, Any]]:
    for record in records:
        if record.get("name") == name:
            return record
    return None
