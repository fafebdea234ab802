"""Bulk writer backed by the sObject Collections endpoint."""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..exceptions import TransportError
from ..models.config import EngineConfig
from ..models.environment import EnvironmentHandle
from ..models.record import WriteOutcome
from ..transport import RestTransport
from .base import BulkWriter

logger = logging.getLogger(__name__)


class RestBulkWriter(BulkWriter):
    """
    Creates records through ``/composite/sobjects`` with ``allOrNone`` off.

    The platform reports one result per record, in request order.
    """

    def __init__(
        self,
        transport: Optional[RestTransport] = None,
        config: Optional[EngineConfig] = None
    ):
        self.config = config or (transport.config if transport else EngineConfig())
        self.transport = transport or RestTransport(self.config)

    def build_payload(self, entity_type: str, records: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
        return {
            "allOrNone": False,
            "records": [
                {"attributes": {"type": entity_type}, **{k: v for k, v in r.items() if k != "attributes"}}
                for r in records
            ],
        }

    async def write(
        self,
        env: EnvironmentHandle,
        entity_type: str,
        records: Sequence[Mapping[str, Any]]
    ) -> List[WriteOutcome]:
        self.check_batch(records)
        if not records:
            return []

        response = await self.transport.post(
            env, "composite/sobjects", self.build_payload(entity_type, records)
        )
        if not isinstance(response, list):
            raise TransportError(f"Unexpected response writing {entity_type}: {response}")

        outcomes = [WriteOutcome.from_dict(r) for r in response[:len(records)]]
        if len(outcomes) < len(records):
            logger.warning(
                f"Write of {len(records)} {entity_type} records returned {len(outcomes)} results"
            )
            outcomes.extend(
                WriteOutcome(success=False, errors=["No result returned for this record"])
                for _ in range(len(records) - len(outcomes))
            )

        succeeded = sum(1 for o in outcomes if o.success)
        logger.debug(f"Wrote {entity_type}: {succeeded}/{len(records)} succeeded")
        return outcomes
