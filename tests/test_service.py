"""Tests for the lookup facade (quota → graph → client → parser → persistence).

The upstream client and remote store are replaced by in-memory fakes; the
local cache is an in-memory SQLite database.
"""

from __future__ import annotations

import copy
import sqlite3
from datetime import datetime, timezone
from typing import Any, Generator, Optional

import pytest

from skiptrace.db import sessions as local
from skiptrace.db.connection import get_connection
from skiptrace.db.migrations import init_db
from skiptrace.errors import (
    EntityNotFoundError,
    InvalidParentError,
    PersistenceError,
    QuotaExhaustedError,
    RemoteSyncError,
    UpstreamError,
)
from skiptrace.graph.models import API_RESULT, DETAIL_RESULT, ERROR, READY, ROOT, Entity, Session
from skiptrace.graph.store import SessionGraphStore, build_node
from skiptrace.quota import ANONYMOUS, AUTHENTICATED, QuotaEngine
from skiptrace.service import TraceService, click_request
from skiptrace.sync import LocalSessionPolicy, PersistenceAdapter
from skiptrace.upstream import SkipTraceClient

PEOPLE = {
    "Source": "PeopleSearch",
    "PeopleDetails": [
        {
            "Name": "John Smith",
            "Person ID": "px1001",
            "Addresses": ["12 Main St, Minneapolis, MN 55401"],
            "Phones": ["612-555-0100"],
            "Associated People": ["Mary Smith"],
        }
    ],
}

DETAIL = {
    "Person Details": [{"Person_name": "John Smith", "Age": "42"}],
    "All Relatives": [{"Name": "Jim Smith", "Person ID": "px2002"}],
}


class FakeClient(SkipTraceClient):
    def __init__(self, responses: Optional[dict[str, Any]] = None) -> None:
        super().__init__(host="skiptrace.test", api_key="k", timeout=1)
        self.responses = responses or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def search(self, kind: str, params: Any) -> Any:
        self.validate(kind, params)
        self.calls.append((kind, dict(params)))
        response = self.responses.get(kind)
        if isinstance(response, Exception):
            raise response
        return response


class FakeRemote:
    def __init__(self) -> None:
        self.sessions: dict[str, dict[str, Session]] = {}
        self.fail = False

    def _check(self, session_id: Optional[str] = None) -> None:
        if self.fail:
            raise RemoteSyncError("remote unavailable", session_id=session_id)

    def list_sessions(self, user_id: str) -> list[Session]:
        self._check()
        return [copy.deepcopy(s) for s in self.sessions.get(user_id, {}).values()]

    def put_session(self, user_id: str, session: Session) -> None:
        self._check(session.id)
        self.sessions.setdefault(user_id, {})[session.id] = copy.deepcopy(session)

    def delete_session(self, user_id: str, session_id: str) -> None:
        self._check(session_id)
        self.sessions.get(user_id, {}).pop(session_id, None)

    def delete_node(self, user_id: str, session_id: str, node_id: str) -> None:
        self._check(session_id)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    connection = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture()
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture()
def client() -> FakeClient:
    return FakeClient({"name": PEOPLE, "person-id": DETAIL, "address": PEOPLE})


@pytest.fixture()
def service(conn, remote, client) -> TraceService:
    adapter = PersistenceAdapter(conn, remote=remote)  # type: ignore[arg-type]
    store = SessionGraphStore(persistence=adapter)
    now = datetime(2025, 3, 14, 12, tzinfo=timezone.utc)
    quota = QuotaEngine(anonymous_cap=10, clock=lambda: now)
    return TraceService(store, quota, client, adapter)


@pytest.fixture()
def session(service) -> Session:
    return service.store.create_session("Case")


# ---------------------------------------------------------------------------
# lookup
# ---------------------------------------------------------------------------

class TestLookup:
    def test_creates_ready_node_under_root(self, service, session) -> None:
        result = service.lookup(session.id, "name", {"name": "John Smith"})
        node = result.node
        assert result.synced
        assert node.status == READY
        assert node.kind == API_RESULT
        assert node.parent_node_id == session.roots()[0].id
        assert node.api_name == "name"
        assert node.title == "John Smith"
        assert service.store.get_entity_counts(session.id)["person"] == 2

    def test_charges_quota_by_api_cost(self, service, session) -> None:
        service.lookup(session.id, "name", {"name": "John Smith"})
        assert service.usage_state().credits_used == 2

    def test_exhausted_quota_appends_nothing(self, service, session, client) -> None:
        for _ in range(5):
            service.lookup(session.id, "name", {"name": "x"})
        with pytest.raises(QuotaExhaustedError):
            service.lookup(session.id, "name", {"name": "x"})
        assert len(session.nodes) == 6
        assert len(client.calls) == 5

    def test_invalid_params_charge_nothing(self, service, session) -> None:
        with pytest.raises(ValueError):
            service.lookup(session.id, "address", {"street": "12 Main St"})
        assert service.usage_state().credits_used == 0
        assert len(session.nodes) == 1

    def test_unknown_parent_charges_nothing(self, service, session) -> None:
        with pytest.raises(InvalidParentError):
            service.lookup(session.id, "name", {"name": "x"}, parent_node_id="missing")
        assert service.usage_state().credits_used == 0

    def test_upstream_failure_marks_node_error(self, service, session, client) -> None:
        client.responses["phone"] = UpstreamError("boom", status_code=500)
        with pytest.raises(UpstreamError):
            service.lookup(session.id, "phone", {"phoneno": "6125550100"})
        failed = session.nodes[-1]
        assert failed.status == ERROR
        assert failed.error_message == "boom"
        assert service.usage_state().credits_used == 2

    def test_unknown_payload_is_not_an_error(self, service, session, client) -> None:
        client.responses["email"] = {"unexpected": True}
        result = service.lookup(session.id, "email", {"email": "a@example.com"})
        assert result.node.status == READY
        assert result.node.parsed_entities == []

    def test_persisted_locally(self, service, session, conn) -> None:
        service.lookup(session.id, "name", {"name": "John Smith"})
        cached = local.get_session(conn, session.id)
        assert cached is not None
        assert cached.nodes[-1].status == READY

    def test_default_parent_prefers_ready_root(self, service, session) -> None:
        original = session.roots()[0]
        service.store.start_location_tracking(session.id)
        spare = build_node(ROOT, status=READY, title="Spare")
        service.store.append_node(session.id, spare)
        service.store.delete_node(session.id, original.id)

        result = service.lookup(session.id, "name", {"name": "John Smith"})
        assert result.node.parent_node_id == spare.id


# ---------------------------------------------------------------------------
# on_entity_click
# ---------------------------------------------------------------------------

class TestEntityClick:
    def test_person_with_id_runs_detail_lookup(self, service, session, client) -> None:
        first = service.lookup(session.id, "name", {"name": "John Smith"}).node
        person = next(e for e in service.store.get_entities(session.id)
                      if e.kind == "person" and e.data["person_id"] == "px1001")

        result = service.on_entity_click(session.id, person.stable_id)
        assert client.calls[-1] == ("person-id", {"peo_id": "px1001"})
        assert result.node.kind == DETAIL_RESULT
        assert result.node.parent_node_id == first.id
        assert result.node.source_entity_id == person.stable_id
        assert result.node.source_entity_snapshot["data"]["name"] == "John Smith"

    def test_person_without_id_runs_name_search(self, service, session, client) -> None:
        service.lookup(session.id, "name", {"name": "John Smith"})
        associate = next(e for e in service.store.get_entities(session.id)
                         if e.category == "associate")
        service.on_entity_click(session.id, associate.stable_id)
        assert client.calls[-1] == ("name", {"name": "Mary Smith"})

    def test_address_runs_address_search(self, service, session, client) -> None:
        service.lookup(session.id, "name", {"name": "John Smith"})
        address = next(e for e in service.store.get_entities(session.id) if e.kind == "address")
        service.on_entity_click(session.id, address.stable_id)
        assert client.calls[-1] == (
            "address", {"street": "12 Main St", "citystatezip": "Minneapolis, MN 55401"},
        )

    def test_unknown_entity(self, service, session) -> None:
        with pytest.raises(EntityNotFoundError):
            service.on_entity_click(session.id, "MNENTITY-missing")

    def test_click_request_rejects_untraceable(self) -> None:
        with pytest.raises(ValueError):
            click_request(Entity(kind="phone", parent_node_id="n", data={"number": "1"}))


# ---------------------------------------------------------------------------
# rerun
# ---------------------------------------------------------------------------

class TestRerun:
    def test_rerun_repeats_request(self, service, session, client) -> None:
        original = service.lookup(session.id, "name", {"name": "John Smith"}).node
        result = service.rerun(session.id, original.id)
        assert result.node.id != original.id
        assert result.node.parent_node_id == original.parent_node_id
        assert client.calls[-1] == ("name", {"name": "John Smith"})
        assert service.usage_state().credits_used == 4

    def test_root_is_not_repeatable(self, service, session) -> None:
        with pytest.raises(ValueError):
            service.rerun(session.id, session.roots()[0].id)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

class TestIdentity:
    def test_caller_class_follows_identity(self, service, session) -> None:
        assert service.caller_class == ANONYMOUS
        service.change_identity("user-1")
        assert service.caller_class == AUTHENTICATED
        state = service.usage_state()
        assert state.unlimited

    def test_authenticated_lookups_are_not_capped(self, service, remote) -> None:
        service.change_identity("user-1")
        session = service.store.create_session("Signed in")
        for _ in range(8):
            service.lookup(session.id, "name", {"name": "x"})
        assert service.usage_state().credits_used == 16
        assert session.id in remote.sessions["user-1"]

    def test_sign_in_reports_stranded_and_reloads(self, service, session, remote) -> None:
        existing = SessionGraphStore().create_session("From another device")
        remote.sessions["user-1"] = {existing.id: existing}

        report = service.change_identity("user-1")
        assert [s.id for s in report.stranded] == [session.id]
        assert [s.id for s in service.store.list_sessions()] == [existing.id]

    def test_migrate_adopts_sessions(self, service, session, remote) -> None:
        service.change_identity("user-1")
        migrated = service.resolve_local_sessions(LocalSessionPolicy.MIGRATE)
        assert [s.id for s in migrated] == [session.id]
        assert service.store.get_session(session.id).name == "Case"
        assert session.id in remote.sessions["user-1"]

    def test_remote_failure_during_lookup_is_reported(self, service, remote) -> None:
        service.change_identity("user-1")
        session = service.store.create_session("Signed in")
        remote.fail = True
        result = service.lookup(session.id, "name", {"name": "John Smith"})
        assert result.node.status == READY
        assert not result.synced
        assert service.adapter.unsynced == {session.id}

        remote.fail = False
        assert service.retry_unsynced() == []

    def test_load_failure_falls_back_to_cache(self, service, remote) -> None:
        remote.fail = True
        report = service.change_identity("user-1")
        assert report.load_error is not None
        assert service.store.list_sessions() == []

    def test_sign_out_empties_store(self, service, remote) -> None:
        service.change_identity("user-1")
        service.store.create_session("Signed in")
        service.change_identity(None)
        assert service.store.list_sessions() == []
        assert len(remote.sessions["user-1"]) == 1

    def test_sign_in_without_remote_store_changes_nothing(self, conn, client) -> None:
        adapter = PersistenceAdapter(conn)
        now = datetime(2025, 3, 14, 12, tzinfo=timezone.utc)
        service = TraceService(
            SessionGraphStore(persistence=adapter),
            QuotaEngine(anonymous_cap=10, clock=lambda: now),
            client,
            adapter,
        )
        session = service.store.create_session("Case")

        with pytest.raises(PersistenceError):
            service.change_identity("user-1")
        assert service.caller_class == ANONYMOUS

        result = service.lookup(session.id, "name", {"name": "John Smith"})
        assert result.synced
        assert [n.status for n in session.nodes] == [READY, READY]

    def test_unsynced_edit_survives_restart(self, service, remote, conn) -> None:
        service.change_identity("user-1")
        session = service.store.create_session("orig")
        remote.fail = True
        with pytest.raises(RemoteSyncError):
            service.store.rename_session(session.id, "renamed-locally")
        remote.fail = False

        adapter = PersistenceAdapter(conn, remote=remote, user_id="user-1")  # type: ignore[arg-type]
        restarted = SessionGraphStore(persistence=adapter)
        restarted.replace_all(adapter.load())
        assert restarted.get_session(session.id).name == "renamed-locally"
        assert remote.sessions["user-1"][session.id].name == "orig"
        assert adapter.retry_unsynced() == []
        assert remote.sessions["user-1"][session.id].name == "renamed-locally"
