"""Metadata and record fetchers."""

from .base import MetadataFetcher, RecordQuery, escape_soql
from .rest_fetcher import RestMetadataFetcher

__all__ = [
    "MetadataFetcher",
    "RecordQuery",
    "RestMetadataFetcher",
    "escape_soql",
]
