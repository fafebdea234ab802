"""Relationship discovery, pre-flight and migration endpoints."""

from typing import Any, Dict
from fastapi import APIRouter, Depends

from ...extractors.base import MetadataFetcher
from ...loaders.base import BulkWriter
from ...models.config import EngineConfig
from ...orchestrator import MigrationOrchestrator
from ...services.relationship_discoverer import RelationshipDiscoverer
from ..dependencies import get_config, get_fetcher, get_writer
from ..models import DiscoverRequest, MigrationRunRequest

router = APIRouter()


@router.post("/relationships")
async def discover_relationships(
    data: DiscoverRequest,
    fetcher: MetadataFetcher = Depends(get_fetcher),
    config: EngineConfig = Depends(get_config)
) -> Dict[str, Any]:
    """List the child relationships that can be migrated with a root type."""
    discoverer = RelationshipDiscoverer(fetcher, config)
    relationships = await discoverer.discover(data.source.to_handle(), data.root_type)
    return {
        "root_type": data.root_type,
        "relationships": [r.to_dict() for r in relationships],
    }


@router.post("/preflight")
async def preflight_migration(
    data: MigrationRunRequest,
    fetcher: MetadataFetcher = Depends(get_fetcher),
    writer: BulkWriter = Depends(get_writer),
    config: EngineConfig = Depends(get_config)
) -> Dict[str, Any]:
    """Check field and picklist compatibility before migrating."""
    orchestrator = MigrationOrchestrator(
        data.source.to_handle(), data.target.to_handle(), fetcher, writer, config
    )
    request = data.to_request()
    orchestrator.validate(request)

    results = await orchestrator.preflight(request)
    return {
        "valid": all(not r.blocked for r in results),
        "entities": [r.to_dict() for r in results],
    }


@router.post("/run")
async def run_migration(
    data: MigrationRunRequest,
    fetcher: MetadataFetcher = Depends(get_fetcher),
    writer: BulkWriter = Depends(get_writer),
    config: EngineConfig = Depends(get_config)
) -> Dict[str, Any]:
    """Run a migration and return the session as its audit record."""
    orchestrator = MigrationOrchestrator(
        data.source.to_handle(), data.target.to_handle(), fetcher, writer, config
    )
    session = await orchestrator.run(data.to_request())
    return session.to_dict()
