"""Migration orchestrator - moves a root record set and its children between environments."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .exceptions import ConfigurationError, OrgSyncError, TransportError, describe_error
from .extractors.base import MetadataFetcher, RecordQuery
from .loaders.base import BulkWriter
from .models.compatibility import PreflightResult
from .models.config import MAX_BATCH_SIZE, EngineConfig
from .models.environment import EnvironmentHandle
from .models.migration import (
    MigrationRequest,
    MigrationSession,
    MigrationState,
    MigrationStep,
    OutcomeStatus,
    ProgressEvent,
    RelationshipDescriptor,
)
from .models.record import PartialWriteFailure, WriteOutcome
from .models.schema import EntityType, FieldDefinition
from .services.aux_mapper import AuxiliaryMap, AuxiliaryMapper
from .services.batching import batch_count, chunked
from .services.compatibility_mapper import CompatibilityMapper, PicklistMapper
from .services.progress import ProgressChannel
from .services.relationship_discoverer import RelationshipDiscoverer

logger = logging.getLogger(__name__)


class MigrationFailed(OrgSyncError):
    """Unrecoverable condition inside a run. Caught by ``run``; never escapes it."""


@dataclass
class WritePhaseResult:
    """Counters of one entity type's batched write."""
    entity_type: str
    succeeded: int = 0
    failed: int = 0
    batches: int = 0
    transport_failures: int = 0
    id_map: Dict[str, str] = field(default_factory=dict)

    @property
    def unreachable(self) -> bool:
        """Every batch failed at the transport level."""
        return self.batches > 0 and self.transport_failures == self.batches


@dataclass
class EntityMapping:
    """How records of one entity type are exported and shaped for the target."""
    entity_type: str
    export_fields: List[str]
    target_fields: List[FieldDefinition]
    value_maps: Dict[str, Dict[str, str]] = field(default_factory=dict)  # field -> source value -> target value


class MigrationOrchestrator:
    """
    Orchestrates one record migration.

    Phases:
    - Export the root records from the source
    - Map auxiliary lookup references by name
    - Write the root records to the target and capture old -> new ids
    - Export, remap and write the children of each selected relationship

    A run only fails on an unrecoverable condition: the root export
    failing or returning nothing, strict auxiliary mapping finding gaps,
    or the target being unreachable for every root batch. Everything else
    degrades to partial success with the errors listed on the session.

    An instance handles a single run: the progress channel is closed when
    the run ends, so create a new orchestrator for every run.
    """

    def __init__(
        self,
        source: EnvironmentHandle,
        target: EnvironmentHandle,
        fetcher: MetadataFetcher,
        writer: BulkWriter,
        config: Optional[EngineConfig] = None,
        progress: Optional[ProgressChannel] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            source: Environment records are read from
            target: Environment records are written to
            fetcher: Metadata and record fetcher, used for both environments
            writer: Bulk writer for the target
            config: Engine configuration
            progress: Channel receiving progress events
        """
        self.source = source
        self.target = target
        self.fetcher = fetcher
        self.writer = writer
        self.config = config or EngineConfig()
        self.progress = progress or ProgressChannel()

        self.aux_mapper = AuxiliaryMapper(fetcher, self.config)
        self.discoverer = RelationshipDiscoverer(fetcher, self.config)
        self.compatibility = CompatibilityMapper(self.config)
        self.picklists = PicklistMapper(self.config)

        # Runtime state
        self.session: Optional[MigrationSession] = None
        self._aux_maps: List[AuxiliaryMap] = []
        self._root_ids: List[str] = []
        self._mappings: Dict[str, EntityMapping] = {}

    def validate(self, request: MigrationRequest) -> None:
        """Raise ``ConfigurationError`` for a request that cannot run."""
        if self.source.same_environment(self.target):
            raise ConfigurationError("Source and target must be different environments")
        if not request.root_type:
            raise ConfigurationError("A root type is required")
        if not request.record_ids:
            raise ConfigurationError("Select at least one root record to migrate")
        if not request.relationships and not request.allow_root_only:
            raise ConfigurationError(
                "Select at least one child relationship, or allow a root-only migration"
            )
        for size_name in ("batch_size", "query_chunk_size"):
            size = getattr(self.config, size_name)
            if not 1 <= size <= MAX_BATCH_SIZE:
                raise ConfigurationError(f"{size_name} must be between 1 and {MAX_BATCH_SIZE}, got {size}")
        for relationship in request.relationships:
            if not relationship.child_type or not relationship.foreign_key_field:
                raise ConfigurationError(f"Incomplete relationship: {relationship.to_dict()}")

    async def discover_relationships(self, root_type: str) -> List[RelationshipDescriptor]:
        return await self.discoverer.discover(self.source, root_type)

    async def preflight(self, request: MigrationRequest) -> List[PreflightResult]:
        """
        Check field and picklist compatibility of the root and child types.

        Returns:
            One PreflightResult per entity type, root first
        """
        entity_types = [request.root_type] + [r.child_type for r in request.relationships]
        results = []

        for entity_type in dict.fromkeys(entity_types):
            source_fields, target_fields = await asyncio.gather(
                self.fetcher.fetch(self.source, EntityType.FIELD, {"object": entity_type}),
                self.fetcher.fetch(self.target, EntityType.FIELD, {"object": entity_type}),
            )
            source_defs = [FieldDefinition.from_dict(f) for f in source_fields]
            target_defs = [FieldDefinition.from_dict(f) for f in target_fields]

            report = self.compatibility.map(
                [f for f in source_defs if f.createable and not f.calculated],
                target_defs,
            )
            picklists = self.picklists.map_field_values(source_defs, target_defs)
            validation = self.compatibility.validate(report, picklists)

            results.append(PreflightResult(entity_type=entity_type, fields=report, validation=validation))
            logger.info(
                f"Preflight {entity_type}: {'blocked' if not validation.valid else 'ok'} "
                f"({len(validation.errors)} errors, {len(validation.warnings)} warnings)"
            )

        return results

    async def run(self, request: MigrationRequest) -> MigrationSession:
        """
        Run the complete migration.

        Raises ``ConfigurationError`` before any remote call when the
        request cannot run or this instance has already run. Any later
        problem is recorded on the returned session instead of being raised.

        Returns:
            MigrationSession with results and statistics
        """
        if self.session is not None:
            raise ConfigurationError("This orchestrator has already run; create a new one for each run")
        self.validate(request)

        self.session = MigrationSession(request=request)
        self.session.started_at = datetime.utcnow()

        try:
            # Phase 1: Root export
            logger.info("=== PHASE 1: ROOT EXPORT ===")
            root_records = await self._export_roots(request)
            self._root_ids = [r["Id"] for r in root_records if r.get("Id")]
            self._transition(MigrationState.ROOT_EXPORTED, f"Exported {len(root_records)} {request.root_type} records")

            # Phase 2: Auxiliary mapping
            logger.info("=== PHASE 2: AUXILIARY MAPPING ===")
            await self._map_auxiliary(request, root_records)
            self._transition(MigrationState.AUX_MAPPED)

            # Phase 3: Root write
            logger.info("=== PHASE 3: ROOT WRITE ===")
            await self._write_roots(request, root_records)
            self._transition(MigrationState.ROOT_WRITTEN, f"{self.session.root_success} {request.root_type} records created")

            # Phase 4: Children
            logger.info("=== PHASE 4: CHILD RELATIONSHIPS ===")
            self._transition(MigrationState.CHILDREN_PROCESSING)
            for relationship in request.relationships:
                await self._process_relationship(request, relationship)

            self._transition(MigrationState.DONE)
            logger.info("=== MIGRATION COMPLETED ===")

        except MigrationFailed as e:
            logger.error(f"Migration failed: {e}")
            self.session.errors.append(str(e))
            self._transition(MigrationState.FAILED, str(e))

        except Exception as e:
            logger.error(f"Migration failed: {e}")
            self.session.errors.append(describe_error(e))
            self._transition(MigrationState.FAILED, str(e))

        finally:
            self.session.completed_at = datetime.utcnow()
            self.progress.close()

        logger.info(
            f"Migration {self.session.state.value}: {self.session.success} created, "
            f"{self.session.failed} failed, {self.session.skipped} skipped"
        )
        return self.session

    async def _export_roots(self, request: MigrationRequest) -> List[Dict[str, Any]]:
        step = self.session.add_step(f"Export {request.root_type}", request.root_type)
        record_ids = list(dict.fromkeys(request.record_ids))

        try:
            mapping = await self._describe(request, request.root_type)
            records = await self._query_chunked(request.root_type, mapping.export_fields, "Id", record_ids)
        except Exception as e:
            step.errors.append(str(e))
            raise MigrationFailed(f"Export of {request.root_type} failed: {describe_error(e)}") from e
        finally:
            step.completed_at = datetime.utcnow()

        step.records_processed = len(records)
        step.records_succeeded = len(records)
        if not records:
            raise MigrationFailed(f"No {request.root_type} records found to migrate")

        missing = len(record_ids) - len(records)
        if missing > 0:
            logger.warning(f"{missing} requested {request.root_type} records were not found in the source")
        logger.info(f"Exported {len(records)} {request.root_type} records")
        return records

    async def _map_auxiliary(self, request: MigrationRequest, records: List[Dict[str, Any]]) -> None:
        for reference in request.aux_references:
            try:
                aux_map = await self.aux_mapper.build_map(self.source, self.target, reference, records)
            except TransportError as e:
                if self.config.strict_aux_mapping:
                    raise MigrationFailed(
                        f"Cannot map {reference.field} references: {describe_error(e)}"
                    ) from e
                logger.warning(f"Mapping of {reference.field} failed, continuing without it: {e}")
                aux_map = AuxiliaryMap(reference=reference)

            self._aux_maps.append(aux_map)
            self.session.aux_maps[reference.field] = dict(aux_map.mapping)
            self.session.warnings.extend(aux_map.warnings)

            if aux_map.unmapped and self.config.strict_aux_mapping:
                raise MigrationFailed(
                    f"{len(aux_map.unmapped)} {reference.field} references have no match in the target"
                )
            for warning in aux_map.warnings:
                logger.warning(f"Auxiliary mapping: {warning}")

    async def _extend_auxiliary(self, entity_type: str, records: List[Dict[str, Any]]) -> None:
        """Map lookup ids first seen on ``records``, such as a lookup only the children carry."""
        for aux_map in self._aux_maps:
            field_name = aux_map.reference.field
            known = set(aux_map.mapping) | set(aux_map.unmapped)
            pending = [r for r in records if r.get(field_name) and r[field_name] not in known]
            if not pending:
                continue

            try:
                extra = await self.aux_mapper.build_map(self.source, self.target, aux_map.reference, pending)
            except TransportError as e:
                if self.config.strict_aux_mapping:
                    raise
                logger.warning(f"Mapping of {entity_type}.{field_name} failed, continuing without it: {e}")
                continue

            aux_map.mapping.update(extra.mapping)
            aux_map.unmapped.extend(extra.unmapped)
            aux_map.warnings.extend(extra.warnings)
            self.session.aux_maps[field_name] = dict(aux_map.mapping)
            self.session.warnings.extend(extra.warnings)

            if extra.unmapped and self.config.strict_aux_mapping:
                raise MigrationFailed(
                    f"{len(extra.unmapped)} {entity_type}.{field_name} references have no match in the target"
                )
            for warning in extra.warnings:
                logger.warning(f"Auxiliary mapping: {warning}")

    async def _write_roots(self, request: MigrationRequest, records: List[Dict[str, Any]]) -> None:
        mapping = self._mappings[request.root_type]
        prepared = []
        for record in records:
            clean = self._prepare(record, mapping)
            if request.external_id_field:
                clean[request.external_id_field] = record.get("Id")
            prepared.append((record.get("Id"), clean))

        result = await self._write_batched(request.root_type, prepared, is_root=True)
        self.session.id_map.update(result.id_map)

        if result.unreachable:
            raise MigrationFailed(f"Target unreachable: every {request.root_type} batch failed to send")

    async def _process_relationship(self, request: MigrationRequest, relationship: RelationshipDescriptor) -> None:
        """Migrate one relationship's children. Any failure is recorded and the run goes on."""
        child_type = relationship.child_type
        step = self.session.add_step(f"Migrate {child_type}", child_type)

        try:
            await self._migrate_children(request, relationship, step)
        except Exception as e:
            message = f"Failed to migrate {child_type}: {describe_error(e)}"
            logger.error(message)
            self.session.errors.append(message)
            step.errors.append(message)
        finally:
            step.completed_at = datetime.utcnow()

    async def _migrate_children(
        self,
        request: MigrationRequest,
        relationship: RelationshipDescriptor,
        step: MigrationStep
    ) -> None:
        child_type = relationship.child_type
        foreign_key = relationship.foreign_key_field

        mapping = await self._describe(request, child_type, required=[foreign_key])
        records = await self._query_chunked(child_type, mapping.export_fields, foreign_key, self._root_ids)

        logger.info(f"Exported {len(records)} {child_type} records")
        if not records:
            return
        await self._extend_auxiliary(child_type, records)

        prepared = []
        for record in records:
            source_id = record.get("Id")
            old_parent = record.get(foreign_key)
            new_parent = self.session.id_map.get(old_parent)

            if new_parent is None:
                self.session.skipped += 1
                step.records_skipped += 1
                self.session.record(
                    child_type,
                    OutcomeStatus.SKIPPED,
                    source_id=source_id,
                    message=f"Parent {old_parent} was not migrated",
                )
                continue

            clean = self._prepare(record, mapping)
            clean[foreign_key] = new_parent
            prepared.append((source_id, clean))

        if step.records_skipped:
            logger.warning(f"Skipped {step.records_skipped} orphaned {child_type} records")

        result = await self._write_batched(child_type, prepared, is_root=False, step=step)
        self.session.child_id_maps.setdefault(child_type, {}).update(result.id_map)

    async def _write_batched(
        self,
        entity_type: str,
        prepared: Sequence[tuple],
        is_root: bool,
        step: Optional[MigrationStep] = None
    ) -> WritePhaseResult:
        """Write ``(source_id, record)`` pairs in batches, one batch at a time."""
        result = WritePhaseResult(entity_type=entity_type)
        if step is None:
            step = self.session.add_step(f"Write {entity_type}", entity_type)
        total_batches = batch_count(len(prepared), self.config.batch_size)

        for batch_index, batch in enumerate(chunked(prepared, self.config.batch_size), start=1):
            result.batches += 1
            step.records_processed += len(batch)

            outcomes: List[WriteOutcome] = []
            batch_error = "No result returned for this record"
            try:
                outcomes = await self.writer.write(self.target, entity_type, [r for _, r in batch])
            except TransportError as e:
                result.transport_failures += 1
                logger.error(f"Batch {batch_index}/{total_batches} of {entity_type} failed: {e}")
                batch_error = describe_error(e)

            succeeded_before, failed_before = result.succeeded, result.failed
            for position, (source_id, _) in enumerate(batch, start=1):
                outcome = outcomes[position - 1] if position <= len(outcomes) else None

                if outcome is not None and outcome.success:
                    result.succeeded += 1
                    result.id_map[source_id] = outcome.id
                    self.session.record(entity_type, OutcomeStatus.CREATED, source_id, outcome.id)
                    continue

                message = outcome.message if outcome is not None else batch_error
                failure = PartialWriteFailure(
                    entity_type=entity_type,
                    source_id=source_id,
                    message=message,
                    batch_index=batch_index,
                    position=position,
                )
                result.failed += 1
                self.session.failures.append(failure)
                self.session.errors.append(str(failure))
                step.errors.append(str(failure))
                self.session.record(entity_type, OutcomeStatus.FAILED, source_id, message=message)

            batch_succeeded = result.succeeded - succeeded_before
            batch_failed = result.failed - failed_before
            if is_root:
                self.session.root_success += batch_succeeded
                self.session.root_failed += batch_failed
            else:
                self.session.child_success += batch_succeeded
                self.session.child_failed += batch_failed

            self._publish(ProgressEvent(
                state=self.session.state,
                entity_type=entity_type,
                batch_index=batch_index,
                batch_count=total_batches,
                succeeded=self.session.success,
                failed=self.session.failed,
                skipped=self.session.skipped,
            ))

        step.records_succeeded += result.succeeded
        step.records_failed += result.failed
        step.completed_at = datetime.utcnow()
        logger.info(f"Wrote {entity_type}: {result.succeeded} succeeded, {result.failed} failed")
        return result

    async def _describe(
        self,
        request: MigrationRequest,
        entity_type: str,
        required: Sequence[str] = ()
    ) -> EntityMapping:
        """
        Describe ``entity_type`` in both environments.

        Export fields are the createable, non-calculated source fields plus
        Id and ``required``. Auxiliary lookup fields are added only where the
        source describes them.
        """
        source_fields, target_fields = await asyncio.gather(
            self.fetcher.fetch(self.source, EntityType.FIELD, {"object": entity_type}),
            self.fetcher.fetch(self.target, EntityType.FIELD, {"object": entity_type}),
        )
        source_defs = [FieldDefinition.from_dict(f) for f in source_fields]
        target_defs = [FieldDefinition.from_dict(f) for f in target_fields]
        described = {d.name for d in source_defs}

        fields = ["Id"]
        fields.extend(d.name for d in source_defs if d.createable and not d.calculated)
        fields.extend(required)
        fields.extend(a.field for a in request.aux_references if a.field in described)

        value_maps = {
            report.field_name: dict(report.value_map)
            for report in self.picklists.map_field_values(source_defs, target_defs)
        }
        for field_name, overrides in request.picklist_value_maps.get(entity_type, {}).items():
            value_maps.setdefault(field_name, {}).update(overrides)

        target_names = {d.name for d in target_defs}
        missing = [f for f in fields if f != "Id" and f not in target_names]
        if missing:
            logger.warning(f"{entity_type} fields missing in target will not be written: {', '.join(missing)}")

        mapping = EntityMapping(
            entity_type=entity_type,
            export_fields=list(dict.fromkeys(f for f in fields if f)),
            target_fields=target_defs,
            value_maps=value_maps,
        )
        self._mappings[entity_type] = mapping
        return mapping

    async def _query_chunked(
        self,
        entity_type: str,
        fields: List[str],
        filter_field: str,
        values: List[str]
    ) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        for chunk in chunked(values, self.config.query_chunk_size):
            collection = await self.fetcher.query(self.source, RecordQuery(
                entity_type=entity_type,
                fields=fields,
                filter_field=filter_field,
                filter_values=chunk,
            ))
            records.extend(dict(r) for r in collection)
        return records

    def _prepare(self, record: Mapping[str, Any], mapping: EntityMapping) -> Dict[str, Any]:
        """
        Shape a source record for the target.

        Lookup references are remapped first. Attributes the target cannot
        accept are then dropped and picklist values translated.
        """
        clean = dict(record)
        for aux_map in self._aux_maps:
            self.aux_mapper.apply(clean, aux_map)
        clean = self.compatibility.map_record(clean, mapping.target_fields)
        return self.picklists.apply(clean, mapping.value_maps)

    def _transition(self, state: MigrationState, message: str = "") -> None:
        logger.debug(f"State {self.session.state.value} -> {state.value}")
        self.session.state = state
        self._publish(ProgressEvent(
            state=state,
            succeeded=self.session.success,
            failed=self.session.failed,
            skipped=self.session.skipped,
            message=message,
        ))

    def _publish(self, event: ProgressEvent) -> None:
        self.session.events.append(event)
        self.progress.publish(event)
