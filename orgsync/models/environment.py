"""Connection handle for one environment."""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class EnvironmentHandle:
    """
    Opaque connection context for one environment.

    Immutable once created. The core never persists it; it is passed by
    reference into every fetch, query and write call.
    """
    instance_url: str
    access_token: str
    org_id: Optional[str] = None
    name: str = ""

    def __post_init__(self):
        object.__setattr__(self, "instance_url", self.instance_url.rstrip("/"))

    @property
    def identity(self) -> str:
        """Value used to decide whether two handles point at the same environment."""
        if self.org_id:
            # 15 and 18 character ids of the same org share a 15 character prefix
            return self.org_id[:15]
        return self.instance_url.lower()

    def same_environment(self, other: "EnvironmentHandle") -> bool:
        return self.identity == other.identity

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation. The token is never included."""
        return {
            "instance_url": self.instance_url,
            "org_id": self.org_id,
            "name": self.name or self.instance_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnvironmentHandle":
        """
        Create from dictionary representation.

        The token may be given inline (``access_token``) or through the name
        of an environment variable (``access_token_env``).
        """
        token = data.get("access_token")
        if not token and data.get("access_token_env"):
            token = os.environ.get(data["access_token_env"], "")

        return cls(
            instance_url=data.get("instance_url", ""),
            access_token=token or "",
            org_id=data.get("org_id"),
            name=data.get("name", ""),
        )
