"""FastAPI dependencies building the engine's collaborators."""

from fastapi import Depends

from ..extractors.base import MetadataFetcher
from ..extractors.rest_fetcher import RestMetadataFetcher
from ..loaders.base import BulkWriter
from ..loaders.rest_writer import RestBulkWriter
from ..models.config import EngineConfig
from ..transport import RestTransport


def get_config() -> EngineConfig:
    return EngineConfig.from_dict({})


def get_transport(config: EngineConfig = Depends(get_config)) -> RestTransport:
    return RestTransport(config)


def get_fetcher(transport: RestTransport = Depends(get_transport)) -> MetadataFetcher:
    return RestMetadataFetcher(transport)


def get_writer(transport: RestTransport = Depends(get_transport)) -> BulkWriter:
    return RestBulkWriter(transport)
