"""Engine configuration."""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List

MAX_BATCH_SIZE = 200


@dataclass
class EngineConfig:
    """
    Tunables shared by every component.

    Passed to each component at construction so tests can vary them.
    """
    # Remote API
    api_version: str = "59.0"
    request_timeout: float = 30.0
    max_retries: int = 0

    # Batching
    batch_size: int = 200
    query_chunk_size: int = 200

    # Relationship discovery
    relationship_deny_suffixes: List[str] = field(default_factory=lambda: [
        "History", "Share", "Feed", "Tag", "Event",
    ])

    # Attributes removed from exported records before they are written
    system_fields: List[str] = field(default_factory=lambda: [
        "Id",
        "attributes",
        "CreatedDate",
        "CreatedById",
        "LastModifiedDate",
        "LastModifiedById",
        "SystemModstamp",
    ])

    # Permission comparison
    object_permission_fields: List[str] = field(default_factory=lambda: [
        "create", "read", "edit", "delete", "viewAll", "modifyAll",
    ])
    field_permission_fields: List[str] = field(default_factory=lambda: ["read", "edit"])

    # Block the migration when a referenced lookup record has no match in the target
    strict_aux_mapping: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "api_version": self.api_version,
            "request_timeout": self.request_timeout,
            "max_retries": self.max_retries,
            "batch_size": self.batch_size,
            "query_chunk_size": self.query_chunk_size,
            "relationship_deny_suffixes": list(self.relationship_deny_suffixes),
            "system_fields": list(self.system_fields),
            "object_permission_fields": list(self.object_permission_fields),
            "field_permission_fields": list(self.field_permission_fields),
            "strict_aux_mapping": self.strict_aux_mapping,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Create from dictionary representation, applying environment overrides."""
        defaults = cls()

        config = cls(
            api_version=str(data.get("api_version", defaults.api_version)),
            request_timeout=float(data.get("request_timeout", defaults.request_timeout)),
            max_retries=int(data.get("max_retries", defaults.max_retries)),
            batch_size=int(data.get("batch_size", defaults.batch_size)),
            query_chunk_size=int(data.get("query_chunk_size", defaults.query_chunk_size)),
            relationship_deny_suffixes=data.get(
                "relationship_deny_suffixes", defaults.relationship_deny_suffixes
            ),
            system_fields=data.get("system_fields", defaults.system_fields),
            object_permission_fields=data.get(
                "object_permission_fields", defaults.object_permission_fields
            ),
            field_permission_fields=data.get(
                "field_permission_fields", defaults.field_permission_fields
            ),
            strict_aux_mapping=bool(data.get("strict_aux_mapping", defaults.strict_aux_mapping)),
        )

        if os.environ.get("ORGSYNC_REQUEST_TIMEOUT"):
            config.request_timeout = float(os.environ["ORGSYNC_REQUEST_TIMEOUT"])
        if os.environ.get("ORGSYNC_API_VERSION"):
            config.api_version = os.environ["ORGSYNC_API_VERSION"]

        return config

    @classmethod
    def from_json_file(cls, file_path: str) -> "EngineConfig":
        """Load configuration from a JSON file."""
        with open(file_path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)
