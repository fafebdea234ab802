"""Tests for child relationship discovery."""

import asyncio

import pytest

from orgsync.exceptions import ConfigurationError
from orgsync.models.config import EngineConfig
from orgsync.models.schema import EntityType
from orgsync.services.relationship_discoverer import RelationshipDiscoverer

from .conftest import FakeFetcher


RAW_RELATIONSHIPS = [
    {"childSObject": "Contact", "field": "AccountId", "relationshipName": "Contacts", "cascadeDelete": False},
    {"childSObject": "AccountHistory", "field": "AccountId"},
    {"childSObject": "AccountShare", "field": "AccountId"},
    {"childSObject": "AccountFeed", "field": "ParentId"},
    {"childSObject": "Opportunity", "field": "AccountId", "cascadeDelete": True},
    {"childSObject": "Note", "field": None},
    {"childSObject": "Invoice__c", "field": "Account__c"},
]


def test_filter_drops_system_types_and_entries_without_field():
    relationships = RelationshipDiscoverer().filter_relationships(RAW_RELATIONSHIPS)

    assert [(r.child_type, r.foreign_key_field) for r in relationships] == [
        ("Contact", "AccountId"),
        ("Opportunity", "AccountId"),
        ("Invoice__c", "Account__c"),
    ]
    assert relationships[0].relationship_name == "Contacts"
    assert relationships[1].cascade_flag is True


def test_deny_suffixes_are_configurable():
    config = EngineConfig(relationship_deny_suffixes=["__c"])

    relationships = RelationshipDiscoverer(config=config).filter_relationships(RAW_RELATIONSHIPS)

    assert "Invoice__c" not in [r.child_type for r in relationships]
    assert "AccountHistory" in [r.child_type for r in relationships]


def test_discover_fetches_child_relationships_of_root(source_env):
    fetcher = FakeFetcher(metadata={
        ("source", EntityType.CHILD_RELATIONSHIP, "Account"): RAW_RELATIONSHIPS,
    })

    relationships = asyncio.run(RelationshipDiscoverer(fetcher).discover(source_env, "Account"))

    assert len(relationships) == 3
    assert fetcher.fetch_calls == [("source", EntityType.CHILD_RELATIONSHIP, {"object": "Account"})]


def test_discover_requires_root_type(source_env):
    fetcher = FakeFetcher()

    with pytest.raises(ConfigurationError):
        asyncio.run(RelationshipDiscoverer(fetcher).discover(source_env, ""))
    assert fetcher.calls == 0
