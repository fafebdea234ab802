"""Bulk writers for target environments."""

from .base import BulkWriter
from .rest_writer import RestBulkWriter

__all__ = [
    "BulkWriter",
    "RestBulkWriter",
]
