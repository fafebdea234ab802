"""Migration request, session state and progress models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
import uuid

from .record import PartialWriteFailure, ValidationError


class MigrationState(str, Enum):
    """States of one migration run."""
    IDLE = "idle"
    ROOT_EXPORTED = "root_exported"
    AUX_MAPPED = "aux_mapped"
    ROOT_WRITTEN = "root_written"
    CHILDREN_PROCESSING = "children_processing"
    DONE = "done"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    """Outcome of a single record in the session log."""
    CREATED = "created"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RelationshipDescriptor:
    """A child entity type referencing the root type through a foreign key."""
    child_type: str
    foreign_key_field: str
    cascade_flag: bool = False
    relationship_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "child_type": self.child_type,
            "foreign_key_field": self.foreign_key_field,
            "cascade_flag": self.cascade_flag,
            "relationship_name": self.relationship_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelationshipDescriptor":
        """Create from this class's dictionary form or a describe entry."""
        return cls(
            child_type=data.get("child_type") or data.get("childSObject", ""),
            foreign_key_field=data.get("foreign_key_field") or data.get("field", ""),
            cascade_flag=bool(data.get("cascade_flag", data.get("cascadeDelete", False))),
            relationship_name=data.get("relationship_name", data.get("relationshipName")),
        )


@dataclass(frozen=True)
class AuxiliaryReference:
    """
    A lookup field whose target records are matched across environments by name.

    Example: ``AuxiliaryReference("State__c", "State__c")`` remaps the
    ``State__c`` lookup by matching ``State__c.Name`` in both environments.
    """
    field: str
    lookup_type: str
    name_field: str = "Name"

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "lookup_type": self.lookup_type, "name_field": self.name_field}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuxiliaryReference":
        return cls(
            field=data.get("field", ""),
            lookup_type=data.get("lookup_type") or data.get("field", ""),
            name_field=data.get("name_field", "Name"),
        )


@dataclass
class MigrationRequest:
    """What to migrate."""
    root_type: str
    record_ids: List[str] = field(default_factory=list)
    relationships: List[RelationshipDescriptor] = field(default_factory=list)
    external_id_field: Optional[str] = None  # stamps the source id for idempotent re-runs
    aux_references: List[AuxiliaryReference] = field(default_factory=list)
    allow_root_only: bool = False
    # entity type -> picklist field -> source value -> target value
    picklist_value_maps: Dict[str, Dict[str, Dict[str, str]]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "root_type": self.root_type,
            "record_ids": list(self.record_ids),
            "relationships": [r.to_dict() for r in self.relationships],
            "external_id_field": self.external_id_field,
            "aux_references": [a.to_dict() for a in self.aux_references],
            "allow_root_only": self.allow_root_only,
            "picklist_value_maps": self.picklist_value_maps,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationRequest":
        """Create from dictionary representation."""
        return cls(
            root_type=data.get("root_type", ""),
            record_ids=list(data.get("record_ids", [])),
            relationships=[
                RelationshipDescriptor.from_dict(r) for r in data.get("relationships", [])
            ],
            external_id_field=data.get("external_id_field"),
            aux_references=[
                AuxiliaryReference.from_dict(a) for a in data.get("aux_references", [])
            ],
            allow_root_only=bool(data.get("allow_root_only", False)),
            picklist_value_maps=dict(data.get("picklist_value_maps") or {}),
        )


@dataclass
class LogEntry:
    """One line of the ordered session log."""
    state: MigrationState
    entity_type: str
    status: OutcomeStatus
    source_id: Optional[str] = None
    target_id: Optional[str] = None
    message: str = ""
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "entity_type": self.entity_type,
            "status": self.status.value,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ProgressEvent:
    """Emitted after each batch and on each state transition."""
    state: MigrationState
    entity_type: str = ""
    batch_index: int = 0
    batch_count: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "entity_type": self.entity_type,
            "batch_index": self.batch_index,
            "batch_count": self.batch_count,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "message": self.message,
        }


@dataclass
class MigrationStep:
    """Statistics for one entity type written during a run."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    entity: str = ""
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    records_processed: int = 0
    records_succeeded: int = 0
    records_failed: int = 0
    records_skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "entity": self.entity,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "records_processed": self.records_processed,
            "records_succeeded": self.records_succeeded,
            "records_failed": self.records_failed,
            "records_skipped": self.records_skipped,
            "errors": self.errors,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


@dataclass
class MigrationSession:
    """
    Mutable state of one migration run.

    Owned and mutated by the orchestrator only. Serialized with
    ``to_dict`` as the run's audit record.
    """
    request: MigrationRequest
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: MigrationState = MigrationState.IDLE

    # Timing
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Identifier maps
    id_map: Dict[str, str] = field(default_factory=dict)  # old root id -> new root id
    aux_maps: Dict[str, Dict[str, str]] = field(default_factory=dict)  # field -> old -> new
    child_id_maps: Dict[str, Dict[str, str]] = field(default_factory=dict)  # child type -> old -> new

    # Counters
    root_success: int = 0
    root_failed: int = 0
    child_success: int = 0
    child_failed: int = 0
    skipped: int = 0

    # Findings
    failures: List[PartialWriteFailure] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[ValidationError] = field(default_factory=list)

    # History
    log: List[LogEntry] = field(default_factory=list)
    steps: List[MigrationStep] = field(default_factory=list)
    events: List[ProgressEvent] = field(default_factory=list)

    @property
    def success(self) -> int:
        return self.root_success + self.child_success

    @property
    def failed(self) -> int:
        return self.root_failed + self.child_failed

    @property
    def is_clean(self) -> bool:
        """Completed with nothing failed, skipped or reported."""
        return (
            self.state == MigrationState.DONE
            and self.failed == 0
            and self.skipped == 0
            and not self.errors
        )

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def add_step(self, name: str, entity: str) -> MigrationStep:
        """Add a new step to the session."""
        step = MigrationStep(name=name, entity=entity, started_at=datetime.utcnow())
        self.steps.append(step)
        return step

    def record(
        self,
        entity_type: str,
        status: OutcomeStatus,
        source_id: Optional[str] = None,
        target_id: Optional[str] = None,
        message: str = ""
    ) -> LogEntry:
        """Append an entry to the ordered log."""
        entry = LogEntry(
            state=self.state,
            entity_type=entity_type,
            status=status,
            source_id=source_id,
            target_id=target_id,
            message=message,
        )
        self.log.append(entry)
        return entry

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "request": self.request.to_dict(),
            "state": self.state.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "clean": self.is_clean,
            "root_success": self.root_success,
            "root_failed": self.root_failed,
            "child_success": self.child_success,
            "child_failed": self.child_failed,
            "errors": list(self.errors),
            "failures": [f.to_dict() for f in self.failures],
            "warnings": [w.to_dict() for w in self.warnings],
            "id_map": dict(self.id_map),
            "aux_maps": {k: dict(v) for k, v in self.aux_maps.items()},
            "child_id_maps": {k: dict(v) for k, v in self.child_id_maps.items()},
            "steps": [s.to_dict() for s in self.steps],
            "log": [e.to_dict() for e in self.log],
        }
