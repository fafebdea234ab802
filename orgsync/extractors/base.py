"""Base metadata fetcher interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
import logging

from ..exceptions import ConfigurationError
from ..models.environment import EnvironmentHandle
from ..models.schema import EntityCollection, EntityType

logger = logging.getLogger(__name__)

MAX_FILTER_VALUES = 200


def escape_soql(value: Any) -> str:
    """Quote a literal for use in a SOQL ``IN`` or ``=`` clause."""
    text = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{text}'"


@dataclass
class RecordQuery:
    """
    Structured record query.

    ``filter_values`` may hold at most 200 values; larger sets must be
    chunked by the caller.
    """
    entity_type: str
    fields: List[str] = field(default_factory=lambda: ["Id"])
    filter_field: Optional[str] = None
    filter_values: List[Any] = field(default_factory=list)

    def validate(self) -> None:
        if not self.entity_type:
            raise ConfigurationError("A query needs an entity type")
        if not self.fields:
            raise ConfigurationError(f"A query on {self.entity_type} needs at least one field")
        if len(self.filter_values) > MAX_FILTER_VALUES:
            raise ConfigurationError(
                f"Query on {self.entity_type} has {len(self.filter_values)} filter values; "
                f"at most {MAX_FILTER_VALUES} are allowed per call"
            )

    def to_soql(self) -> str:
        """Render the query as SOQL."""
        self.validate()
        soql = f"SELECT {', '.join(self.fields)} FROM {self.entity_type}"
        if self.filter_field:
            values = ", ".join(escape_soql(v) for v in self.filter_values)
            soql += f" WHERE {self.filter_field} IN ({values})"
        return soql


class MetadataFetcher(ABC):
    """
    Base class for metadata and record sources.

    Fetchers return read-only ``EntityCollection`` snapshots of one
    environment. Transport failures surface as ``TransportError`` to the
    caller; fetchers never retry on their own.
    """

    @abstractmethod
    async def fetch(
        self,
        env: EnvironmentHandle,
        entity_type: EntityType,
        filter: Optional[Mapping[str, Any]] = None
    ) -> EntityCollection:
        """
        Fetch one metadata collection.

        Args:
            env: Environment to read from
            entity_type: Kind of metadata to fetch
            filter: Type-specific filter (``object``, ``field``, ``parent_id``...)

        Returns:
            EntityCollection of the requested type
        """
        pass

    @abstractmethod
    async def query(self, env: EnvironmentHandle, query: RecordQuery) -> EntityCollection:
        """
        Run a structured record query, following pagination.

        Args:
            env: Environment to read from
            query: Query with at most 200 filter values

        Returns:
            EntityCollection of RECORD entities
        """
        pass

    @staticmethod
    def require(filter: Optional[Mapping[str, Any]], *names: str) -> Dict[str, Any]:
        """Return the named filter values, raising when any is missing."""
        values = dict(filter or {})
        missing = [name for name in names if not values.get(name)]
        if missing:
            raise ConfigurationError(f"Missing filter value(s): {', '.join(missing)}")
        return values
