"""Base bulk writer interface for target environments."""

from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Sequence
import logging

from ..models.config import MAX_BATCH_SIZE
from ..models.environment import EnvironmentHandle
from ..models.record import WriteOutcome

logger = logging.getLogger(__name__)


class BulkWriter(ABC):
    """
    Base class for bulk record writers.

    Writers create up to 200 records per call with partial success
    allowed: each record succeeds or fails on its own and the result has
    one ``WriteOutcome`` per input record, in input order. A failure of
    the call itself raises ``TransportError``.
    """

    max_batch_size = MAX_BATCH_SIZE

    @abstractmethod
    async def write(
        self,
        env: EnvironmentHandle,
        entity_type: str,
        records: Sequence[Mapping[str, Any]]
    ) -> List[WriteOutcome]:
        """
        Create records in the target environment.

        Args:
            env: Environment to write to
            entity_type: API name of the entity type
            records: At most ``max_batch_size`` attribute mappings

        Returns:
            One WriteOutcome per record
        """
        pass

    def check_batch(self, records: Sequence[Mapping[str, Any]]) -> None:
        if len(records) > self.max_batch_size:
            raise ValueError(
                f"Batch of {len(records)} records exceeds the limit of {self.max_batch_size}"
            )
