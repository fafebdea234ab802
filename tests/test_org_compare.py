"""Tests for multi-type metadata comparison."""

import asyncio

import pytest

from orgsync.exceptions import ConfigurationError, TransportError
from orgsync.models.reconciliation import ItemStatus, PermissionComparison
from orgsync.models.schema import EntityType
from orgsync.services.org_compare import OrgComparer, value_mapping_differences

from .conftest import FakeFetcher


def make_objects(*names, label_suffix=""):
    return [
        {"name": n, "label": n + label_suffix, "custom": n.endswith("__c"), "queryable": True}
        for n in names
    ]


def bitfield_dependency(controlling, dependents):
    return {
        "encoding": "bitfield",
        "dependentField": "City__c",
        "controllingField": "Country__c",
        "controllingValues": [{"value": v} for v in controlling],
        "dependentValues": [{"value": v, "validFor": bits} for v, bits in dependents],
    }


def test_compare_objects(source_env, target_env):
    fetcher = FakeFetcher(metadata={
        ("source", EntityType.OBJECT, None): make_objects("Account", "Invoice__c"),
        ("target", EntityType.OBJECT, None): make_objects("Account"),
    })

    report = asyncio.run(OrgComparer(fetcher).compare(source_env, target_env, ["objects"]))

    result = report.comparisons["objects"]
    assert result.matches == 1
    assert result.keys_with_status(ItemStatus.SOURCE_ONLY) == ["Invoice__c"]
    stats = report.summary_stats()
    assert stats["total_items"] == 2
    assert stats["match_percent"] == 50
    assert stats["metadata_types"] == 1


def test_one_failing_type_does_not_stop_the_others(source_env, target_env):
    fetcher = FakeFetcher(
        metadata={
            ("source", EntityType.OBJECT, None): make_objects("Account"),
            ("target", EntityType.OBJECT, None): make_objects("Account"),
        },
        failures={("target", EntityType.FLOW): TransportError("API error 403: INSUFFICIENT_ACCESS", status_code=403)},
    )

    report = asyncio.run(OrgComparer(fetcher).compare(source_env, target_env, ["flows", "objects"]))

    assert report.comparisons["objects"].matches == 1
    assert report.errors["flows"] == "Insufficient permissions to access this metadata."
    assert report.to_dict()["comparisons"]["flows"]["error"] == report.errors["flows"]


def test_fields_are_fetched_for_the_selected_object(source_env, target_env):
    fetcher = FakeFetcher(metadata={
        ("source", EntityType.FIELD, "Account"): [{"name": "Name", "label": "Name", "type": "string"}],
        ("target", EntityType.FIELD, "Account"): [{"name": "Name", "label": "Account Name", "type": "string"}],
    })

    report = asyncio.run(OrgComparer(fetcher).compare(
        source_env, target_env, ["fields"], {"object_name": "Account"}
    ))

    assert report.comparisons["fields"].get("Name").changed_attributes == ("label",)
    assert {call[2]["object"] for call in fetcher.fetch_calls} == {"Account"}


@pytest.mark.parametrize("metadata_types,options", [
    ([], {}),
    (["nonsense"], {}),
    (["fields"], {}),
    (["picklists"], {"object_name": "Account"}),
    (["permissions"], {"permission_name": "Admin", "permission_type": "Role"}),
])
def test_invalid_requests_fail_before_any_fetch(source_env, target_env, metadata_types, options):
    fetcher = FakeFetcher()

    with pytest.raises(ConfigurationError):
        asyncio.run(OrgComparer(fetcher).compare(source_env, target_env, metadata_types, options))
    assert fetcher.calls == 0


def test_same_environment_is_rejected(source_env):
    with pytest.raises(ConfigurationError):
        asyncio.run(OrgComparer(FakeFetcher()).compare(source_env, source_env, ["objects"]))


def test_dependencies_report_value_mapping_differences(source_env, target_env):
    fetcher = FakeFetcher(metadata={
        ("source", EntityType.FIELD_DEPENDENCY, "Account"): [
            bitfield_dependency(["US", "FR"], [("NYC", "AQ=="), ("Paris", "Ag=="), ("Lyon", "Ag==")]),
        ],
        ("target", EntityType.FIELD_DEPENDENCY, "Account"): [{
            "encoding": "explicit",
            "dependentField": "City__c",
            "controllingField": "Country__c",
            "valueSettings": [
                {"valueName": "NYC", "controllingFieldValue": ["US"]},
                {"valueName": "Paris", "controllingFieldValue": ["FR"]},
            ],
        }],
    })

    report = asyncio.run(OrgComparer(fetcher).compare(
        source_env, target_env, ["dependencies"], {"object_name": "Account"}
    ))

    item = report.comparisons["dependencies"].get("City__c")
    assert item.status == ItemStatus.CHANGED
    assert item.changed_attributes == ("valueMappings",)
    assert item.details["valueMappingDifferences"] == [{
        "controllingValue": "FR",
        "onlyInSource": ["Lyon"],
        "onlyInTarget": [],
        "sourceCount": 2,
        "targetCount": 1,
    }]


def test_dependency_decode_warnings_reach_the_result(source_env, target_env):
    fetcher = FakeFetcher(metadata={
        ("source", EntityType.FIELD_DEPENDENCY, "Account"): [
            bitfield_dependency(["US"], [("NYC", "%%%")]),
        ],
    })

    report = asyncio.run(OrgComparer(fetcher).compare(
        source_env, target_env, ["dependencies"], {"object_name": "Account"}
    ))

    result = report.comparisons["dependencies"]
    assert [w.error_type for w in result.warnings] == ["malformed_bitfield"]
    assert result.get("City__c").status == ItemStatus.SOURCE_ONLY


def test_permissions_match_profiles_by_name(source_env, target_env):
    def grants(read_account):
        return {
            EntityType.OBJECT_PERMISSION: [{"object": "Account", "read": read_account, "edit": False}],
            EntityType.FIELD_PERMISSION: [{"object": "Account", "field": "Industry", "read": True, "edit": False}],
        }

    metadata = {}
    for env_name, profile_id, ps_id, read_account in (
        ("source", "00eS", "0PSS", True),
        ("target", "00eT", "0PST", False),
    ):
        metadata[(env_name, EntityType.PROFILE, None)] = [
            {"id": "00eX", "name": "Other"},
            {"id": profile_id, "name": "Sales User"},
        ]
        metadata[(env_name, EntityType.PERMISSION_SET, None)] = (
            lambda f, pid=profile_id, psid=ps_id: [{"id": psid, "name": "X"}] if f.get("profile_id") == pid else []
        )
        for entity_type, rows in grants(read_account).items():
            metadata[(env_name, entity_type, None)] = rows

    fetcher = FakeFetcher(metadata=metadata)

    report = asyncio.run(OrgComparer(fetcher).compare(
        source_env, target_env, ["permissions"],
        {"permission_name": "Sales User", "permission_type": "Profile"},
    ))

    comparison = report.comparisons["permissions"]
    assert isinstance(comparison, PermissionComparison)
    assert comparison.object.get("Account").changed_attributes == ("read",)
    assert comparison.field.matches == 1
    grant_filters = {
        (env, call_filter.get("parent_id"))
        for env, entity_type, call_filter in fetcher.fetch_calls
        if entity_type == EntityType.OBJECT_PERMISSION
    }
    assert grant_filters == {("source", "0PSS"), ("target", "0PST")}


def test_unknown_permission_set_is_reported(source_env, target_env):
    fetcher = FakeFetcher(metadata={
        ("source", EntityType.PERMISSION_SET, None): [{"id": "0PS1", "name": "Billing"}],
        ("target", EntityType.PERMISSION_SET, None): [],
    })

    report = asyncio.run(OrgComparer(fetcher).compare(
        source_env, target_env, ["permissions"],
        {"permission_name": "Billing", "permission_type": "PermissionSet"},
    ))

    assert "Permission set Billing not found in target" in report.errors["permissions"]


def test_value_mapping_differences_sorted_by_controlling_value():
    differences = value_mapping_differences({"b": ["1"], "a": ["2"]}, {"b": ["1"]})

    assert [d["controllingValue"] for d in differences] == ["a"]
    assert differences[0]["onlyInSource"] == ["2"]
