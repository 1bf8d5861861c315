from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from asset_exchange.database import build_engine, build_session_factory, get_session_factory
from asset_exchange.enums import CorrelationState, ElementStatus, ErrorKind, KeyPattern
from asset_exchange.models.base import Base
from asset_exchange.models.core import AuditEvent, CorrelationRecord, MetadataElement
from asset_exchange.services.correlation import CorrelationProperties, correlation_properties
from asset_exchange.services.errors import StoreUnavailableError
from asset_exchange.services.registry import CorrelationRegistry
from tests.helpers import BASE_TIME, StepClock, add_element, register_manager


def _acme_properties(asset_manager_id: str, **overrides) -> CorrelationProperties:
    values = {
        "asset_manager_name": "ACME",
        "external_identifier": "ACME-9981",
        "key_pattern": KeyPattern.local_key,
        "mapping_properties": {"table": "orders"},
    }
    values.update(overrides)
    return correlation_properties(asset_manager_id, **values)


def test_register_then_resolve_returns_same_identifier(registry):
    asset_manager_id = register_manager(registry, "acme-catalog")
    resolved = registry.resolve_external_asset_manager_identifier("acme-catalog")
    assert resolved.ok
    assert resolved.value == asset_manager_id


def test_duplicate_registration_is_a_conflict(registry):
    first = registry.register_external_asset_manager("acme-catalog")
    second = registry.register_external_asset_manager("acme-catalog")
    assert first.ok
    assert not second.ok
    assert second.error.kind == ErrorKind.conflict
    assert registry.resolve_external_asset_manager_identifier("acme-catalog").value == first.value


def test_blank_qualified_name_is_rejected(registry):
    outcome = registry.register_external_asset_manager("   ")
    assert outcome.error.kind == ErrorKind.validation


def test_resolve_unknown_name_is_not_found(registry):
    outcome = registry.resolve_external_asset_manager_identifier("nobody")
    assert outcome.error.kind == ErrorKind.not_found


def test_update_changes_descriptive_fields_only(registry):
    asset_manager_id = register_manager(registry)
    view = registry.update_external_asset_manager(asset_manager_id, description="Primary catalog").unwrap()
    assert view.qualified_name == "acme-catalog"
    assert view.display_name == "ACME"
    assert view.description == "Primary catalog"


def test_upsert_then_list_round_trips(registry, db_session):
    add_element(db_session)
    asset_manager_id = register_manager(registry)

    outcome = registry.upsert_correlation("elem-42", _acme_properties(asset_manager_id))
    assert outcome.ok

    records = registry.list_correlations_for_element("elem-42").unwrap()
    assert len(records) == 1
    record = records[0]
    assert record.asset_manager_id == asset_manager_id
    assert record.asset_manager_name == "ACME"
    assert record.external_identifier == "ACME-9981"
    assert record.key_pattern == KeyPattern.local_key
    assert record.mapping_properties == {"table": "orders"}
    assert record.state == CorrelationState.scoped
    assert record.last_synchronized_at is None


def test_upsert_replaces_record_for_same_scope(registry, db_session):
    add_element(db_session)
    asset_manager_id = register_manager(registry)
    registry.upsert_correlation("elem-42", _acme_properties(asset_manager_id)).unwrap()
    registry.upsert_correlation(
        "elem-42",
        _acme_properties(
            asset_manager_id,
            external_identifier_usage="read-only",
            key_pattern=KeyPattern.natural_key,
            mapping_properties={"table": "orders_v2"},
        ),
    ).unwrap()

    records = registry.list_correlations_for_element("elem-42").unwrap()
    assert len(records) == 1
    assert records[0].external_identifier_usage == "read-only"
    assert records[0].key_pattern == KeyPattern.natural_key
    assert records[0].mapping_properties == {"table": "orders_v2"}


def test_upsert_keeps_one_record_per_scope(registry, db_session):
    add_element(db_session)
    acme = register_manager(registry, "acme-catalog")
    globex = register_manager(registry, "globex-catalog")
    registry.upsert_correlation("elem-42", _acme_properties(acme)).unwrap()
    registry.upsert_correlation("elem-42", _acme_properties(globex, external_identifier="GX-1")).unwrap()

    assert len(registry.list_correlations_for_element("elem-42").unwrap()) == 2
    only_globex = registry.list_correlations_for_element("elem-42", globex).unwrap()
    assert [record.external_identifier for record in only_globex] == ["GX-1"]
    assert registry.count_correlations("elem-42").unwrap() == 2


def test_upsert_for_unknown_element_is_not_found(registry):
    asset_manager_id = register_manager(registry)
    outcome = registry.upsert_correlation("missing", _acme_properties(asset_manager_id))
    assert outcome.error.kind == ErrorKind.not_found


def test_upsert_for_unregistered_scope_is_not_found(registry, db_session):
    add_element(db_session)
    outcome = registry.upsert_correlation("elem-42", _acme_properties("am_unknown"))
    assert outcome.error.kind == ErrorKind.not_found


def test_upsert_rejects_identifier_without_scope(registry, db_session):
    add_element(db_session)
    outcome = registry.upsert_correlation("elem-42", CorrelationProperties(external_identifier="ACME-9981"))
    assert outcome.error.kind == ErrorKind.validation
    assert "missing scope" in str(outcome.error)


def test_unscoped_record_is_promoted_to_scoped(registry, db_session):
    add_element(db_session)
    registry.upsert_correlation("elem-42", CorrelationProperties()).unwrap()
    unscoped = registry.list_correlations_for_element("elem-42").unwrap()
    assert [record.state for record in unscoped] == [CorrelationState.unscoped]

    asset_manager_id = register_manager(registry)
    registry.upsert_correlation("elem-42", _acme_properties(asset_manager_id)).unwrap()
    records = registry.list_correlations_for_element("elem-42").unwrap()
    assert len(records) == 1
    assert records[0].correlation_id == unscoped[0].correlation_id
    assert records[0].state == CorrelationState.scoped


def test_unscoped_upsert_leaves_scoped_record_alone(registry, db_session):
    add_element(db_session)
    asset_manager_id = register_manager(registry)
    registry.upsert_correlation("elem-42", _acme_properties(asset_manager_id)).unwrap()

    outcome = registry.upsert_correlation("elem-42", CorrelationProperties())
    assert outcome.ok
    records = registry.list_correlations_for_element("elem-42").unwrap()
    assert len(records) == 1
    assert records[0].state == CorrelationState.scoped
    assert records[0].external_identifier == "ACME-9981"
    assert registry.count_correlations("elem-42").unwrap() == 1


def test_upsert_stores_asset_manager_name_as_given(registry, db_session):
    add_element(db_session)
    asset_manager_id = register_manager(registry)
    registry.upsert_correlation("elem-42", _acme_properties(asset_manager_id, asset_manager_name=None)).unwrap()
    assert registry.list_correlations_for_element("elem-42").unwrap()[0].asset_manager_name is None


def test_confirm_never_moves_timestamp_backwards(db_session):
    registry = CorrelationRegistry(db_session, actor="test-operator", clock=StepClock())
    add_element(db_session)
    asset_manager_id = register_manager(registry)
    registry.upsert_correlation("elem-42", _acme_properties(asset_manager_id)).unwrap()

    later = BASE_TIME + timedelta(hours=2)
    earlier = BASE_TIME + timedelta(hours=1)
    registry.confirm_synchronized("elem-42", asset_manager_id, "ACME", "ACME-9981", synchronized_at=earlier).unwrap()
    registry.confirm_synchronized("elem-42", asset_manager_id, "ACME", "ACME-9981", synchronized_at=later).unwrap()
    assert registry.list_correlations_for_element("elem-42").unwrap()[0].last_synchronized_at == later

    stale = registry.confirm_synchronized("elem-42", asset_manager_id, "ACME", "ACME-9981", synchronized_at=earlier)
    assert stale.ok
    record = registry.list_correlations_for_element("elem-42").unwrap()[0]
    assert record.last_synchronized_at == later
    assert record.state == CorrelationState.synchronized


def test_older_confirmation_from_another_session_does_not_win(registry, db_session):
    add_element(db_session)
    asset_manager_id = register_manager(registry)
    registry.upsert_correlation("elem-42", _acme_properties(asset_manager_id)).unwrap()

    newer = datetime(2024, 5, 1, tzinfo=UTC)
    older = datetime(2024, 4, 1, tzinfo=UTC)
    session_factory = get_session_factory()
    with session_factory() as first_session, session_factory() as second_session:
        first = CorrelationRegistry(first_session, actor="sync-a")
        second = CorrelationRegistry(second_session, actor="sync-b")
        assert first.list_correlations_for_element("elem-42").unwrap()[0].last_synchronized_at is None
        assert second.list_correlations_for_element("elem-42").unwrap()[0].last_synchronized_at is None

        first.confirm_synchronized("elem-42", asset_manager_id, "ACME", "ACME-9981", synchronized_at=newer).unwrap()
        stale = second.confirm_synchronized("elem-42", asset_manager_id, "ACME", "ACME-9981", synchronized_at=older)
        assert stale.ok

    with session_factory() as reader:
        record = CorrelationRegistry(reader, actor="reader").list_correlations_for_element("elem-42").unwrap()[0]
    assert record.last_synchronized_at == newer
    assert record.state == CorrelationState.synchronized

    actors = list(
        db_session.scalars(select(AuditEvent.actor).where(AuditEvent.action == "correlation_confirmed"))
    )
    assert actors == ["sync-a"]


def test_confirm_uses_registry_clock_by_default(db_session):
    registry = CorrelationRegistry(db_session, actor="test-operator", clock=StepClock())
    add_element(db_session)
    asset_manager_id = register_manager(registry)
    registry.upsert_correlation("elem-42", _acme_properties(asset_manager_id)).unwrap()

    registry.confirm_synchronized("elem-42", asset_manager_id, "ACME", "ACME-9981").unwrap()
    first = registry.list_correlations_for_element("elem-42").unwrap()[0].last_synchronized_at
    registry.confirm_synchronized("elem-42", asset_manager_id, "ACME", "ACME-9981").unwrap()
    second = registry.list_correlations_for_element("elem-42").unwrap()[0].last_synchronized_at
    assert first is not None
    assert second > first


def test_confirm_requires_external_identifier(registry, db_session):
    add_element(db_session)
    asset_manager_id = register_manager(registry)
    outcome = registry.confirm_synchronized("elem-42", asset_manager_id, "ACME", "")
    assert outcome.error.kind == ErrorKind.validation


def test_confirm_unknown_correlation_is_not_found(registry, db_session):
    add_element(db_session)
    asset_manager_id = register_manager(registry)
    outcome = registry.confirm_synchronized("elem-42", asset_manager_id, "ACME", "ACME-0000")
    assert outcome.error.kind == ErrorKind.not_found


def test_changing_identifier_clears_synchronization(registry, db_session):
    add_element(db_session)
    asset_manager_id = register_manager(registry)
    registry.upsert_correlation("elem-42", _acme_properties(asset_manager_id)).unwrap()
    registry.confirm_synchronized("elem-42", asset_manager_id, "ACME", "ACME-9981").unwrap()

    registry.upsert_correlation("elem-42", _acme_properties(asset_manager_id, external_identifier="ACME-1")).unwrap()
    record = registry.list_correlations_for_element("elem-42").unwrap()[0]
    assert record.external_identifier == "ACME-1"
    assert record.last_synchronized_at is None
    assert record.state == CorrelationState.scoped


def test_removing_element_removes_its_correlations(registry, db_session):
    add_element(db_session)
    acme = register_manager(registry, "acme-catalog")
    globex = register_manager(registry, "globex-catalog")
    registry.upsert_correlation("elem-42", _acme_properties(acme)).unwrap()
    registry.upsert_correlation("elem-42", _acme_properties(globex, external_identifier="GX-1")).unwrap()

    assert registry.remove_element("elem-42").unwrap() == 2
    assert registry.list_correlations_for_element("elem-42").unwrap() == []

    states = set(db_session.scalars(select(CorrelationRecord.state).where(CorrelationRecord.element_id == "elem-42")))
    assert states == {CorrelationState.removed}
    assert db_session.get(MetadataElement, "elem-42").status == ElementStatus.deleted
    assert registry.remove_element("elem-42").error.kind == ErrorKind.not_found
    assert registry.get_elements_for_external_identifier(acme, "ACME-9981").unwrap() == []


def test_remove_correlation_unlinks_single_scope(registry, db_session):
    add_element(db_session)
    acme = register_manager(registry, "acme-catalog")
    globex = register_manager(registry, "globex-catalog")
    registry.upsert_correlation("elem-42", _acme_properties(acme)).unwrap()
    registry.upsert_correlation("elem-42", _acme_properties(globex, external_identifier="GX-1")).unwrap()

    registry.remove_correlation("elem-42", acme, "ACME-9981").unwrap()
    remaining = registry.list_correlations_for_element("elem-42").unwrap()
    assert [record.asset_manager_id for record in remaining] == [globex]
    assert registry.remove_correlation("elem-42", acme, "ACME-9981").error.kind == ErrorKind.not_found


def test_elements_for_external_identifier(registry, db_session):
    add_element(db_session, element_id="elem-1")
    add_element(db_session, element_id="elem-2")
    asset_manager_id = register_manager(registry)
    registry.upsert_correlation("elem-1", _acme_properties(asset_manager_id)).unwrap()
    registry.upsert_correlation("elem-2", _acme_properties(asset_manager_id)).unwrap()

    element_ids = registry.get_elements_for_external_identifier(asset_manager_id, "ACME-9981").unwrap()
    assert element_ids == ["elem-1", "elem-2"]
    scope_records = registry.list_correlations_for_scope(asset_manager_id).unwrap()
    assert {record.element_id for record in scope_records} == {"elem-1", "elem-2"}


def test_mutations_are_audited(registry, db_session):
    add_element(db_session)
    asset_manager_id = register_manager(registry)
    registry.upsert_correlation("elem-42", _acme_properties(asset_manager_id)).unwrap()
    registry.confirm_synchronized("elem-42", asset_manager_id, "ACME", "ACME-9981").unwrap()

    actions = list(db_session.scalars(select(AuditEvent.action).where(AuditEvent.object_type == "correlation")))
    assert sorted(actions) == ["correlation_confirmed", "correlation_created"]


def test_notifier_receives_events_after_commit(db_session):
    received = []
    registry = CorrelationRegistry(db_session, actor="test-operator", notifier=received.append)
    add_element(db_session)
    asset_manager_id = register_manager(registry)
    registry.upsert_correlation("elem-42", _acme_properties(asset_manager_id)).unwrap()
    rejected = registry.upsert_correlation("elem-42", CorrelationProperties(asset_manager_id=asset_manager_id))

    assert rejected.error.kind == ErrorKind.validation
    assert [event.action for event in received] == ["correlation_created"]
    assert received[0].external_identifier == "ACME-9981"


def test_failing_notifier_does_not_undo_the_change(db_session):
    def _explode(_event):
        raise RuntimeError("listener offline")

    registry = CorrelationRegistry(db_session, actor="test-operator", notifier=_explode)
    add_element(db_session)
    asset_manager_id = register_manager(registry)
    assert registry.upsert_correlation("elem-42", _acme_properties(asset_manager_id)).ok
    assert registry.count_correlations("elem-42").unwrap() == 1


def test_registries_over_separate_stores_are_isolated(tmp_path):
    sessions = []
    for name in ("left", "right"):
        engine = build_engine(f"sqlite+pysqlite:///{tmp_path / name}.db")
        Base.metadata.create_all(bind=engine)
        sessions.append(build_session_factory(engine)())
    left, right = (CorrelationRegistry(session, actor="test-operator") for session in sessions)
    try:
        register_manager(left, "acme-catalog")
        assert right.resolve_external_asset_manager_identifier("acme-catalog").error.kind == ErrorKind.not_found
        assert right.register_external_asset_manager("acme-catalog").ok
    finally:
        for session in sessions:
            session.close()


def test_store_failure_is_raised(registry, monkeypatch):
    def _broken(*_args, **_kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(registry.db, "scalar", _broken)
    with pytest.raises(StoreUnavailableError):
        registry.resolve_external_asset_manager_identifier("acme-catalog")
