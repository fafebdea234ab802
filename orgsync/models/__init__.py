"""Data models for the reconciliation and migration engine."""

from .config import EngineConfig
from .environment import EnvironmentHandle
from .schema import (
    AttributeType,
    EntityType,
    EntitySchema,
    EntityCollection,
    FieldDefinition,
    PicklistValue,
    schema_for,
)
from .record import (
    ValidationError,
    WriteOutcome,
    PartialWriteFailure,
)
from .reconciliation import (
    ItemStatus,
    ReconciliationItem,
    ReconciliationResult,
    PermissionComparison,
    ComparisonReport,
    Summary,
)
from .dependency import (
    BitfieldEncoding,
    ExplicitEncoding,
    ValueSetting,
    DependencyEntry,
    DependencyMapping,
)
from .migration import (
    AuxiliaryReference,
    MigrationRequest,
    MigrationSession,
    MigrationState,
    MigrationStep,
    OutcomeStatus,
    ProgressEvent,
    RelationshipDescriptor,
)
from .compatibility import (
    FieldMappingReport,
    MappingValidation,
    PicklistMappingReport,
    PreflightResult,
    Recommendation,
    Severity,
)

__all__ = [
    "EngineConfig",
    "EnvironmentHandle",
    "AttributeType",
    "EntityType",
    "EntitySchema",
    "EntityCollection",
    "FieldDefinition",
    "PicklistValue",
    "schema_for",
    "ValidationError",
    "WriteOutcome",
    "PartialWriteFailure",
    "ItemStatus",
    "ReconciliationItem",
    "ReconciliationResult",
    "PermissionComparison",
    "ComparisonReport",
    "Summary",
    "BitfieldEncoding",
    "ExplicitEncoding",
    "ValueSetting",
    "DependencyEntry",
    "DependencyMapping",
    "AuxiliaryReference",
    "MigrationRequest",
    "MigrationSession",
    "MigrationState",
    "MigrationStep",
    "OutcomeStatus",
    "ProgressEvent",
    "RelationshipDescriptor",
    "FieldMappingReport",
    "MappingValidation",
    "PicklistMappingReport",
    "PreflightResult",
    "Recommendation",
    "Severity",
]
