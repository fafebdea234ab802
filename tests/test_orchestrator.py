"""Tests for the migration orchestrator."""

import asyncio
from dataclasses import replace

import pytest

from orgsync.exceptions import ConfigurationError, TransportError
from orgsync.models.config import EngineConfig
from orgsync.models.migration import (
    AuxiliaryReference,
    MigrationRequest,
    MigrationState,
    OutcomeStatus,
    RelationshipDescriptor,
)
from orgsync.models.schema import EntityType
from orgsync.orchestrator import MigrationOrchestrator
from orgsync.services.progress import ProgressChannel

from .conftest import FakeFetcher, FakeWriter, field

CONTACTS = RelationshipDescriptor(child_type="Contact", foreign_key_field="AccountId")
OPPORTUNITIES = RelationshipDescriptor(child_type="Opportunity", foreign_key_field="AccountId")
STATE = AuxiliaryReference(field="State__c", lookup_type="State__c")


def make_account(account_id, name, **extra):
    record = {"Id": account_id, "Name": name, "CreatedDate": "2024-01-01T00:00:00Z", "Formula__c": "x"}
    record.update(extra)
    return record


def make_accounts(count):
    return [make_account(f"A{i}", f"Account {i}") for i in range(1, count + 1)]


ACCOUNT_FIELDS = [
    field("Name"),
    field("State__c", "reference", referenceTo=["State__c"]),
    field("Formula__c", calculated=True),
]
CONTACT_FIELDS = [field("LastName"), field("AccountId", "reference")]
OPPORTUNITY_FIELDS = [field("Name"), field("AccountId", "reference")]


def make_fetcher(accounts, contacts=(), opportunities=(), source_states=(), target_states=(), failures=None,
                 **kwargs):
    metadata = {}
    for env_name in ("source", "target"):
        metadata[(env_name, EntityType.FIELD, "Account")] = ACCOUNT_FIELDS
        metadata[(env_name, EntityType.FIELD, "Contact")] = CONTACT_FIELDS
        metadata[(env_name, EntityType.FIELD, "Opportunity")] = OPPORTUNITY_FIELDS
        metadata[(env_name, EntityType.FIELD, "State__c")] = [field("Name")]

    return FakeFetcher(
        metadata=metadata,
        records={
            ("source", "Account"): list(accounts),
            ("source", "Contact"): list(contacts),
            ("source", "Opportunity"): list(opportunities),
            ("source", "State__c"): [{"Id": i, "Name": n} for i, n in source_states],
            ("target", "State__c"): [{"Id": i, "Name": n} for i, n in target_states],
        },
        failures=failures,
        **kwargs
    )


def make_request(record_ids, relationships=(), **kwargs):
    return MigrationRequest(
        root_type="Account",
        record_ids=list(record_ids),
        relationships=list(relationships),
        **kwargs
    )


def run(orchestrator, request):
    return asyncio.run(orchestrator.run(request))


def reject_name(name, message="FIELD_CUSTOM_VALIDATION_EXCEPTION: Name is not allowed"):
    return lambda record: message if record.get("Name") == name else None


def test_partial_batch_isolation(source_env, target_env):
    fetcher = make_fetcher([make_account("A1", "One"), make_account("A2", "Two"), make_account("A3", "Three")])
    writer = FakeWriter(reject=reject_name("Two"))
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)

    session = run(orchestrator, make_request(["A1", "A2", "A3"], allow_root_only=True))

    assert session.state == MigrationState.DONE
    assert set(session.id_map) == {"A1", "A3"}
    assert len(session.errors) == 1
    assert "record 2" in session.errors[0]
    assert "A2" in session.errors[0]
    assert "Name is not allowed" in session.errors[0]
    assert session.root_success == 2
    assert session.root_failed == 1
    assert not session.is_clean


def test_orphaned_children_are_skipped_not_failed(source_env, target_env):
    fetcher = make_fetcher(
        [make_account("A1", "One"), make_account("A2", "Two"), make_account("A3", "Three")],
        contacts=[
            {"Id": "C1", "LastName": "Ames", "AccountId": "A1"},
            {"Id": "C2", "LastName": "Baker", "AccountId": "A2"},
            {"Id": "C3", "LastName": "Cole", "AccountId": "A3"},
        ],
    )
    writer = FakeWriter(reject=reject_name("Two"))
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)

    session = run(orchestrator, make_request(["A1", "A2", "A3"], [CONTACTS]))

    written = writer.written("Contact")
    assert [c["LastName"] for c in written] == ["Ames", "Cole"]
    assert [c["AccountId"] for c in written] == [session.id_map["A1"], session.id_map["A3"]]
    assert session.skipped == 1
    assert session.child_failed == 0
    assert session.child_success == 2
    assert set(session.child_id_maps["Contact"]) == {"C1", "C3"}

    skipped = [e for e in session.log if e.status == OutcomeStatus.SKIPPED]
    assert [e.source_id for e in skipped] == ["C2"]


def test_children_are_exported_for_exported_roots_only(source_env, target_env):
    fetcher = make_fetcher(
        [make_account("A1", "One")],
        contacts=[
            {"Id": "C1", "LastName": "Ames", "AccountId": "A1"},
            {"Id": "C9", "LastName": "Zed", "AccountId": "A9"},
        ],
    )
    writer = FakeWriter()
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)

    session = run(orchestrator, make_request(["A1", "A9"], [CONTACTS]))

    contact_queries = [q for _, q in fetcher.queries if q.entity_type == "Contact"]
    assert contact_queries[0].filter_values == ["A1"]
    assert session.skipped == 0
    assert session.is_clean


def test_system_fields_are_stripped_and_external_id_is_stamped_on_roots(source_env, target_env):
    fetcher = make_fetcher(
        [make_account("A1", "One")],
        contacts=[{"Id": "C1", "LastName": "Ames", "AccountId": "A1"}],
    )
    writer = FakeWriter()
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)

    run(orchestrator, make_request(["A1"], [CONTACTS], external_id_field="Legacy_Id__c"))

    account = writer.written("Account")[0]
    assert account == {"Name": "One", "Legacy_Id__c": "A1"}
    contact = writer.written("Contact")[0]
    assert "Legacy_Id__c" not in contact
    assert "Id" not in contact

    account_query = next(q for _, q in fetcher.queries if q.entity_type == "Account")
    assert account_query.fields[0] == "Id"
    assert "Formula__c" not in account_query.fields


def test_auxiliary_references_are_remapped_by_name(source_env, target_env):
    fetcher = make_fetcher(
        [make_account("A1", "One", State__c="S1"), make_account("A2", "Two", State__c="S1")],
        source_states=[("S1", "California")],
        target_states=[("T1", "California")],
    )
    writer = FakeWriter()
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)

    session = run(orchestrator, make_request(["A1", "A2"], aux_references=[STATE], allow_root_only=True))

    assert [a["State__c"] for a in writer.written("Account")] == ["T1", "T1"]
    assert session.aux_maps == {"State__c": {"S1": "T1"}}
    # the map is built once for both records
    state_queries = [q for _, q in fetcher.queries if q.entity_type == "State__c"]
    assert len(state_queries) == 2


def test_unmapped_auxiliary_reference_degrades_softly(source_env, target_env):
    fetcher = make_fetcher(
        [make_account("A1", "One", State__c="S1")],
        source_states=[("S1", "California")],
    )
    writer = FakeWriter()
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)

    session = run(orchestrator, make_request(["A1"], aux_references=[STATE], allow_root_only=True))

    assert session.state == MigrationState.DONE
    assert writer.written("Account")[0]["State__c"] == "S1"
    assert [w.error_type for w in session.warnings] == ["unmapped_aux_reference"]


def test_strict_auxiliary_mapping_fails_before_any_write(source_env, target_env):
    fetcher = make_fetcher(
        [make_account("A1", "One", State__c="S1")],
        source_states=[("S1", "California")],
    )
    writer = FakeWriter()
    config = EngineConfig(strict_aux_mapping=True)
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer, config)

    session = run(orchestrator, make_request(["A1"], aux_references=[STATE], allow_root_only=True))

    assert session.state == MigrationState.FAILED
    assert writer.writes == []
    assert "no match in the target" in session.errors[0]


@pytest.mark.parametrize("request_kwargs", [
    {"record_ids": []},
    {"relationships": []},
    {"root_type": ""},
    {"relationships": [RelationshipDescriptor(child_type="Contact", foreign_key_field="")]},
])
def test_invalid_requests_fail_before_any_remote_call(source_env, target_env, request_kwargs):
    fetcher = make_fetcher(make_accounts(1))
    writer = FakeWriter()
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)
    request = replace(make_request(["A1"], [CONTACTS]), **request_kwargs)

    with pytest.raises(ConfigurationError):
        run(orchestrator, request)
    assert fetcher.calls == 0
    assert writer.writes == []


@pytest.mark.parametrize("batch_size", [0, 201])
def test_batch_size_out_of_range_is_rejected(source_env, target_env, batch_size):
    orchestrator = MigrationOrchestrator(
        source_env, target_env, make_fetcher(make_accounts(1)), FakeWriter(),
        EngineConfig(batch_size=batch_size),
    )

    with pytest.raises(ConfigurationError):
        run(orchestrator, make_request(["A1"], [CONTACTS]))


def test_same_environment_is_rejected(source_env):
    fetcher = make_fetcher(make_accounts(1))
    same = replace(source_env, org_id=source_env.org_id[:15], name="again")
    orchestrator = MigrationOrchestrator(source_env, same, fetcher, FakeWriter())

    with pytest.raises(ConfigurationError):
        run(orchestrator, make_request(["A1"], [CONTACTS]))
    assert fetcher.calls == 0


def test_root_export_failure_fails_the_run(source_env, target_env):
    fetcher = make_fetcher(
        make_accounts(2),
        failures={("source", "Account"): TransportError("HTTP 500: boom", status_code=500)},
    )
    writer = FakeWriter()
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)

    session = run(orchestrator, make_request(["A1", "A2"], [CONTACTS]))

    assert session.state == MigrationState.FAILED
    assert "Export of Account failed" in session.errors[0]
    assert writer.writes == []
    assert session.completed_at is not None


def test_no_root_records_fails_the_run(source_env, target_env):
    orchestrator = MigrationOrchestrator(source_env, target_env, make_fetcher([]), FakeWriter())

    session = run(orchestrator, make_request(["A1"], [CONTACTS]))

    assert session.state == MigrationState.FAILED
    assert "No Account records found" in session.errors[0]


def test_unreachable_target_fails_the_run(source_env, target_env):
    fetcher = make_fetcher(make_accounts(3), contacts=[{"Id": "C1", "LastName": "Ames", "AccountId": "A1"}])
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, FakeWriter(unreachable=True))

    session = run(orchestrator, make_request(["A1", "A2", "A3"], [CONTACTS]))

    assert session.state == MigrationState.FAILED
    assert session.root_failed == 3
    assert any("Target unreachable" in e for e in session.errors)
    assert "Contact" not in [q.entity_type for _, q in fetcher.queries]


def test_one_relationship_failing_does_not_stop_the_others(source_env, target_env):
    fetcher = make_fetcher(
        make_accounts(1),
        opportunities=[{"Id": "O1", "Name": "Deal", "AccountId": "A1"}],
        failures={("source", "Contact"): TransportError("HTTP 403: no access", status_code=403)},
    )
    writer = FakeWriter()
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)

    session = run(orchestrator, make_request(["A1"], [CONTACTS, OPPORTUNITIES]))

    assert session.state == MigrationState.DONE
    assert any("Failed to migrate Contact" in e for e in session.errors)
    assert [o["Name"] for o in writer.written("Opportunity")] == ["Deal"]
    assert not session.is_clean


def test_records_are_written_in_batches(source_env, target_env):
    accounts = make_accounts(450)
    fetcher = make_fetcher(accounts)
    writer = FakeWriter()
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)

    session = run(orchestrator, make_request([a["Id"] for a in accounts], allow_root_only=True))

    assert [len(batch) for _, batch in writer.writes] == [200, 200, 50]
    assert [len(q.filter_values) for _, q in fetcher.queries] == [200, 200, 50]
    assert len(session.id_map) == 450

    batch_events = [e for e in session.events if e.entity_type == "Account"]
    assert [(e.batch_index, e.batch_count) for e in batch_events] == [(1, 3), (2, 3), (3, 3)]
    assert batch_events[-1].succeeded == 450


def test_progress_subscribers_see_every_transition(source_env, target_env):
    async def scenario():
        channel = ProgressChannel()
        queue = channel.subscribe()
        orchestrator = MigrationOrchestrator(
            source_env, target_env,
            make_fetcher(make_accounts(1), contacts=[{"Id": "C1", "LastName": "Ames", "AccountId": "A1"}]),
            FakeWriter(), progress=channel,
        )
        await orchestrator.run(make_request(["A1"], [CONTACTS]))

        events = []
        while True:
            event = queue.get_nowait()
            if event is None:
                break
            events.append(event)
        return events

    events = asyncio.run(scenario())
    transitions = [e.state for e in events if not e.entity_type]

    assert transitions == [
        MigrationState.ROOT_EXPORTED,
        MigrationState.AUX_MAPPED,
        MigrationState.ROOT_WRITTEN,
        MigrationState.CHILDREN_PROCESSING,
        MigrationState.DONE,
    ]
    assert [e.entity_type for e in events if e.entity_type] == ["Account", "Contact"]


def test_clean_run_serializes_session(source_env, target_env):
    fetcher = make_fetcher(make_accounts(2), contacts=[{"Id": "C1", "LastName": "Ames", "AccountId": "A2"}])
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, FakeWriter())

    session = run(orchestrator, make_request(["A1", "A2"], [CONTACTS]))
    data = session.to_dict()

    assert session.is_clean
    assert data["state"] == "done"
    assert data["success"] == 3
    assert data["errors"] == []
    assert data["child_id_maps"]["Contact"] == {"C1": "NEW003"}


def test_preflight_blocks_on_missing_required_field(source_env, target_env):
    fetcher = FakeFetcher(metadata={
        ("source", EntityType.FIELD, "Account"): [field("Name"), field("Amount__c", "currency", required=True)],
        ("target", EntityType.FIELD, "Account"): [field("Name")],
        ("source", EntityType.FIELD, "Contact"): [field("LastName")],
        ("target", EntityType.FIELD, "Contact"): [field("LastName")],
    })
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, FakeWriter())

    results = asyncio.run(orchestrator.preflight(make_request(["A1"], [CONTACTS])))

    assert [(r.entity_type, r.blocked) for r in results] == [("Account", True), ("Contact", False)]
    assert [r.field for r in results[0].fields.blocking] == ["Amount__c"]


def test_lookup_only_on_the_root_is_not_selected_on_children(source_env, target_env):
    fetcher = make_fetcher(
        [make_account("A1", "One", State__c="S1")],
        contacts=[{"Id": "C1", "LastName": "Ames", "AccountId": "A1"}],
        source_states=[("S1", "California")],
        target_states=[("T1", "California")],
        check_columns=True,
    )
    writer = FakeWriter()
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)

    session = run(orchestrator, make_request(["A1"], [CONTACTS], aux_references=[STATE]))

    assert session.is_clean
    assert writer.written("Account")[0]["State__c"] == "T1"
    assert writer.written("Contact") == [{"LastName": "Ames", "AccountId": "NEW001"}]
    contact_query = next(q for _, q in fetcher.queries if q.entity_type == "Contact")
    assert "State__c" not in contact_query.fields


def test_lookup_only_on_children_is_remapped_from_child_records(source_env, target_env):
    fetcher = make_fetcher(
        [make_account("A1", "One")],
        contacts=[{"Id": "C1", "LastName": "Ames", "AccountId": "A1", "State__c": "S1"}],
        source_states=[("S1", "California")],
        target_states=[("T1", "California")],
        check_columns=True,
    )
    for env_name in ("source", "target"):
        fetcher.metadata[(env_name, EntityType.FIELD, "Account")] = [field("Name")]
        fetcher.metadata[(env_name, EntityType.FIELD, "Contact")] = CONTACT_FIELDS + [
            field("State__c", "reference", referenceTo=["State__c"]),
        ]
    writer = FakeWriter()
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)

    session = run(orchestrator, make_request(["A1"], [CONTACTS], aux_references=[STATE]))

    assert session.is_clean
    account_query = next(q for _, q in fetcher.queries if q.entity_type == "Account")
    assert "State__c" not in account_query.fields
    assert writer.written("Contact")[0]["State__c"] == "T1"
    assert session.aux_maps == {"State__c": {"S1": "T1"}}


def test_records_are_shaped_to_the_target_fields(source_env, target_env):
    def rating(*values):
        return field("Rating", "picklist", picklistValues=[{"value": v, "label": v} for v in values])

    fetcher = FakeFetcher(
        metadata={
            ("source", EntityType.FIELD, "Account"): [
                field("Name"), rating("Hot", "Warm"), field("Region__c"), field("Score__c", "double"),
            ],
            ("target", EntityType.FIELD, "Account"): [
                field("Name"), rating("Hot", "Cold"), field("Score__c", "double", createable=False),
            ],
        },
        records={("source", "Account"): [
            {"Id": "A1", "Name": "One", "Rating": "Warm", "Region__c": "EMEA", "Score__c": 3},
            {"Id": "A2", "Name": "Two", "Rating": "Hot"},
        ]},
    )
    writer = FakeWriter()
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)
    request = make_request(
        ["A1", "A2"], allow_root_only=True,
        picklist_value_maps={"Account": {"Rating": {"Warm": "Cold"}}},
    )

    session = run(orchestrator, request)

    assert session.is_clean
    assert writer.written("Account") == [
        {"Name": "One", "Rating": "Cold"},
        {"Name": "Two", "Rating": "Hot"},
    ]


def test_transport_failure_on_one_root_batch_fails_only_that_batch(source_env, target_env):
    accounts = make_accounts(5)
    fetcher = make_fetcher(
        accounts,
        contacts=[{"Id": f"C{i}", "LastName": f"Contact {i}", "AccountId": f"A{i}"} for i in range(1, 6)],
    )
    writer = FakeWriter(failing_batches={"Account": [2]})
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer, EngineConfig(batch_size=2))

    session = run(orchestrator, make_request([a["Id"] for a in accounts], [CONTACTS]))

    assert session.state == MigrationState.DONE
    assert set(session.id_map) == {"A1", "A2", "A5"}
    assert session.root_success == 3
    assert session.root_failed == 2

    failures = [f for f in session.failures if f.entity_type == "Account"]
    assert [f.source_id for f in failures] == ["A3", "A4"]
    assert {f.batch_index for f in failures} == {2}
    assert all("connection refused" in f.message for f in failures)

    assert [c["LastName"] for c in writer.written("Contact")] == ["Contact 1", "Contact 2", "Contact 5"]
    skipped = [e.source_id for e in session.log if e.status == OutcomeStatus.SKIPPED]
    assert skipped == ["C3", "C4"]


def test_transport_failure_on_a_child_batch_leaves_later_relationships_running(source_env, target_env):
    fetcher = make_fetcher(
        make_accounts(1),
        contacts=[
            {"Id": "C1", "LastName": "Ames", "AccountId": "A1"},
            {"Id": "C2", "LastName": "Baker", "AccountId": "A1"},
        ],
        opportunities=[{"Id": "O1", "Name": "Deal", "AccountId": "A1"}],
    )
    writer = FakeWriter(failing_batches={"Contact": [1]})
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)

    session = run(orchestrator, make_request(["A1"], [CONTACTS, OPPORTUNITIES]))

    assert session.state == MigrationState.DONE
    assert session.child_failed == 2
    assert session.child_id_maps["Contact"] == {}
    assert [o["Name"] for o in writer.written("Opportunity")] == ["Deal"]
    assert set(session.child_id_maps["Opportunity"]) == {"O1"}


def test_unexpected_child_write_error_is_isolated_to_its_relationship(source_env, target_env):
    class BrokenContactWriter(FakeWriter):
        async def write(self, env, entity_type, records):
            if entity_type == "Contact":
                raise ValueError("unexpected response shape")
            return await super().write(env, entity_type, records)

    fetcher = make_fetcher(
        make_accounts(1),
        contacts=[{"Id": "C1", "LastName": "Ames", "AccountId": "A1"}],
        opportunities=[{"Id": "O1", "Name": "Deal", "AccountId": "A1"}],
    )
    writer = BrokenContactWriter()
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)

    session = run(orchestrator, make_request(["A1"], [CONTACTS, OPPORTUNITIES]))

    assert session.state == MigrationState.DONE
    assert any("Failed to migrate Contact" in e and "unexpected response shape" in e for e in session.errors)
    assert [o["Name"] for o in writer.written("Opportunity")] == ["Deal"]


def test_an_orchestrator_runs_once(source_env, target_env):
    fetcher = make_fetcher(make_accounts(1))
    writer = FakeWriter()
    orchestrator = MigrationOrchestrator(source_env, target_env, fetcher, writer)
    request = make_request(["A1"], allow_root_only=True)
    run(orchestrator, request)

    with pytest.raises(ConfigurationError):
        run(orchestrator, request)
    assert len(writer.writes) == 1
