"""Shared fixtures and in-memory collaborators."""

import itertools
from collections import Counter
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import pytest

from orgsync.exceptions import TransportError
from orgsync.extractors.base import MetadataFetcher, RecordQuery
from orgsync.loaders.base import BulkWriter
from orgsync.models.config import EngineConfig
from orgsync.models.environment import EnvironmentHandle
from orgsync.models.record import WriteOutcome
from orgsync.models.schema import EntityCollection, EntityType


class FakeFetcher(MetadataFetcher):
    """
    In-memory fetcher.

    ``metadata`` is keyed by ``(env name, EntityType, object or None)``;
    ``records`` by ``(env name, entity type name)``. ``failures`` maps the
    same keys (without the object part) to an exception to raise. With
    ``check_columns`` a query selecting a field the environment does not
    describe is rejected the way the platform rejects it.
    """

    def __init__(
        self,
        metadata: Optional[Dict[Tuple[str, EntityType, Optional[str]], List[Dict[str, Any]]]] = None,
        records: Optional[Dict[Tuple[str, str], List[Dict[str, Any]]]] = None,
        failures: Optional[Dict[Tuple[str, Any], Exception]] = None,
        check_columns: bool = False
    ):
        self.metadata = metadata or {}
        self.records = records or {}
        self.failures = failures or {}
        self.check_columns = check_columns
        self.fetch_calls: List[Tuple[str, EntityType, Dict[str, Any]]] = []
        self.queries: List[Tuple[str, RecordQuery]] = []

    @property
    def calls(self) -> int:
        return len(self.fetch_calls) + len(self.queries)

    async def fetch(self, env, entity_type, filter=None):
        filter = dict(filter or {})
        self.fetch_calls.append((env.name, entity_type, filter))

        error = self.failures.get((env.name, entity_type))
        if error is not None:
            raise error

        data = self.metadata.get((env.name, entity_type, filter.get("object")))
        if data is None:
            data = self.metadata.get((env.name, entity_type, None), [])
        if callable(data):
            data = data(filter)
        return EntityCollection(entity_type, data)

    async def query(self, env, query):
        query.validate()
        self.queries.append((env.name, query))

        error = self.failures.get((env.name, query.entity_type))
        if error is not None:
            raise error

        if self.check_columns:
            described = {"Id"} | {
                f["name"] for f in self.metadata.get((env.name, EntityType.FIELD, query.entity_type), [])
            }
            for name in query.fields:
                if name not in described:
                    raise TransportError(
                        f"API error 400: INVALID_FIELD: No such column '{name}' on entity '{query.entity_type}'",
                        status_code=400,
                    )

        rows = []
        for record in self.records.get((env.name, query.entity_type), []):
            if query.filter_field and record.get(query.filter_field) not in query.filter_values:
                continue
            rows.append({f: record[f] for f in query.fields if f in record})
        return EntityCollection(EntityType.RECORD, rows)


class FakeWriter(BulkWriter):
    """
    In-memory bulk writer.

    ``reject`` returns an error message for records the target should
    refuse. ``unreachable`` makes every call raise ``TransportError``;
    ``failing_batches`` maps an entity type to the (1-based) write calls
    that raise it.
    """

    def __init__(
        self,
        reject: Optional[Callable[[Mapping[str, Any]], Optional[str]]] = None,
        unreachable: bool = False,
        failing_batches: Optional[Mapping[str, Iterable[int]]] = None
    ):
        self.reject = reject
        self.unreachable = unreachable
        self.failing_batches = {k: set(v) for k, v in (failing_batches or {}).items()}
        self.writes: List[Tuple[str, List[Dict[str, Any]]]] = []
        self._calls: Counter = Counter()
        self._ids = itertools.count(1)

    async def write(self, env, entity_type, records):
        self.check_batch(records)
        self._calls[entity_type] += 1
        if self.unreachable or self._calls[entity_type] in self.failing_batches.get(entity_type, ()):
            raise TransportError("Network error: connection refused", url=env.instance_url)

        self.writes.append((entity_type, [dict(r) for r in records]))
        outcomes = []
        for record in records:
            message = self.reject(record) if self.reject else None
            if message:
                outcomes.append(WriteOutcome(success=False, errors=[message]))
            else:
                outcomes.append(WriteOutcome(success=True, id=f"NEW{next(self._ids):03d}"))
        return outcomes

    def written(self, entity_type: str) -> List[Dict[str, Any]]:
        return [r for t, batch in self.writes if t == entity_type for r in batch]


def field(name: str, type: str = "string", **kwargs) -> Dict[str, Any]:
    """Describe-style field entry."""
    data = {"name": name, "type": type, "label": kwargs.pop("label", name), "createable": True}
    data.update(kwargs)
    return data


@pytest.fixture
def source_env():
    return EnvironmentHandle(
        instance_url="https://source.example.com",
        access_token="source-token",
        org_id="00D000000000001AAA",
        name="source",
    )


@pytest.fixture
def target_env():
    return EnvironmentHandle(
        instance_url="https://target.example.com",
        access_token="target-token",
        org_id="00D000000000002AAA",
        name="target",
    )


@pytest.fixture
def config():
    return EngineConfig()
