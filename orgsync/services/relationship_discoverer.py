"""Discovery of child relationships that can be migrated with a root type."""

import logging
from typing import Any, Iterable, List, Mapping, Optional

from ..exceptions import ConfigurationError
from ..extractors.base import MetadataFetcher
from ..models.config import EngineConfig
from ..models.environment import EnvironmentHandle
from ..models.migration import RelationshipDescriptor
from ..models.schema import EntityType

logger = logging.getLogger(__name__)


class RelationshipDiscoverer:
    """Lists child types that reference a root type through a foreign key."""

    def __init__(self, fetcher: Optional[MetadataFetcher] = None, config: Optional[EngineConfig] = None):
        self.fetcher = fetcher
        self.config = config or EngineConfig()

    async def discover(self, env: EnvironmentHandle, root_type: str) -> List[RelationshipDescriptor]:
        """
        Fetch and filter the child relationships of ``root_type``.

        Args:
            env: Environment to describe
            root_type: API name of the root entity type

        Returns:
            Relationship descriptors in the order the platform reported them
        """
        if not root_type:
            raise ConfigurationError("A root type is required to discover relationships")
        if self.fetcher is None:
            raise ConfigurationError("No metadata fetcher configured")

        raw = await self.fetcher.fetch(env, EntityType.CHILD_RELATIONSHIP, {"object": root_type})
        relationships = self.filter_relationships(raw)

        logger.info(
            f"Discovered {len(relationships)} child relationships for {root_type} "
            f"({len(raw)} reported)"
        )
        return relationships

    def filter_relationships(self, raw: Iterable[Mapping[str, Any]]) -> List[RelationshipDescriptor]:
        """Drop system relationship types and entries without a foreign key field."""
        suffixes = tuple(self.config.relationship_deny_suffixes)
        relationships = []

        for entry in raw:
            child_type = entry.get("childSObject") or entry.get("child_type")
            foreign_key = entry.get("field") or entry.get("foreign_key_field")

            if not child_type or not foreign_key:
                logger.debug(f"Skipping relationship without child type or field: {dict(entry)}")
                continue
            if child_type.endswith(suffixes):
                continue

            relationships.append(RelationshipDescriptor.from_dict(entry))

        return relationships
