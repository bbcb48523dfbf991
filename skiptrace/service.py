"""Lookup facade: quota → graph → upstream API → parser → persistence.

One :class:`TraceService` owns the collaborators for a process.  Each lookup
charges the quota *before* the upstream call, appends a pending node, and
moves that node to ``ready`` or ``error`` once the call returns.  A failed
remote write never undoes a local mutation; it is reported on the returned
:class:`LookupResult` so the caller can retry the sync later.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from skiptrace.config import settings
from skiptrace.db import get_connection, init_db
from skiptrace.db.usage import SqliteUsageLedger
from skiptrace.errors import (
    InvalidParentError,
    QuotaExhaustedError,
    RemoteSyncError,
    UpstreamError,
)
from skiptrace.graph.models import (
    ADDRESS,
    API_RESULT,
    DETAIL_RESULT,
    PERSON,
    READY,
    Entity,
    Node,
    Session,
)
from skiptrace.graph.store import SessionGraphStore, build_node
from skiptrace.quota import ANONYMOUS, QuotaEngine, UsageState
from skiptrace.sync import LocalSessionPolicy, PersistenceAdapter, ReconcileReport, RemoteSessionStore
from skiptrace.upstream import SEARCH_KINDS, SkipTraceClient

logger = logging.getLogger(__name__)


@dataclass
class LookupResult:
    node: Node
    sync_errors: list[RemoteSyncError] = field(default_factory=list)

    @property
    def synced(self) -> bool:
        return not self.sync_errors


def _lookup_title(kind: str, params: dict[str, Any]) -> str:
    if kind == "address":
        return ", ".join(str(params[k]) for k in ("street", "citystatezip") if params.get(k))
    values = [str(v) for v in params.values() if v]
    return values[0] if values else kind


def click_request(entity: Entity) -> tuple[str, dict[str, str]]:
    """Map a clicked traceable entity to the ``(kind, params)`` of its lookup."""
    data = entity.data
    if entity.kind == PERSON:
        if data.get("person_id"):
            return "person-id", {"peo_id": str(data["person_id"])}
        if data.get("name"):
            return "name", {"name": str(data["name"])}
        raise ValueError(f"Person {entity.stable_id!r} has neither an id nor a name")
    if entity.kind == ADDRESS:
        street = data.get("street")
        if not street:
            raise ValueError(f"Address {entity.stable_id!r} has no street")
        city_state = ", ".join(p for p in (data.get("city"), data.get("state")) if p)
        citystatezip = " ".join(p for p in (city_state, data.get("zip")) if p)
        return "address", {"street": str(street), "citystatezip": citystatezip}
    raise ValueError(f"Entities of kind {entity.kind!r} cannot be traced")


class TraceService:
    """Run lookups against one store, quota engine, adapter and client."""

    def __init__(
        self,
        store: SessionGraphStore,
        quota: QuotaEngine,
        client: SkipTraceClient,
        adapter: Optional[PersistenceAdapter] = None,
    ) -> None:
        self.store = store
        self.quota = quota
        self.client = client
        self.adapter = adapter

    @classmethod
    def from_settings(
        cls,
        conn: Optional[sqlite3.Connection] = None,
        db_path: Optional[Path] = None,
    ) -> TraceService:
        """Build a service on the local cache, wiring the remote store if configured."""
        if conn is None:
            conn = get_connection(db_path)
            init_db(conn)
        remote = RemoteSessionStore() if settings.remote_store_url else None
        adapter = PersistenceAdapter(conn, remote=remote)
        store = SessionGraphStore(persistence=adapter)
        store.replace_all(adapter.load())
        quota = QuotaEngine(ledger=SqliteUsageLedger(conn))
        return cls(store, quota, SkipTraceClient(), adapter)

    @property
    def caller_class(self) -> str:
        if self.adapter is None:
            return ANONYMOUS
        return self.adapter.caller_class

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def _synced(
        self, errors: list[RemoteSyncError], mutation: Callable[..., Any], *args: Any
    ) -> None:
        """Run a store mutation, collecting (not raising) remote write failures."""
        try:
            mutation(*args)
        except RemoteSyncError as exc:
            logger.warning("Remote write failed, change kept locally: %s", exc)
            errors.append(exc)

    def _charge(self, kind: str) -> None:
        caller_class = self.caller_class
        if not self.quota.consume(caller_class, kind):
            raise QuotaExhaustedError(f"Daily quota exhausted for {caller_class} caller")

    def _run(self, session_id: str, node: Node, kind: str, params: dict[str, Any]) -> LookupResult:
        errors: list[RemoteSyncError] = []
        self._synced(errors, self.store.append_node, session_id, node)
        try:
            raw = self.client.search(kind, params)
        except UpstreamError as exc:
            self._synced(errors, self.store.fail_node, session_id, node.id, str(exc))
            raise
        self._synced(errors, self.store.resolve_node, session_id, node.id, raw)
        logger.info(
            "%s lookup in session %s produced %d entities",
            kind,
            session_id,
            len(node.parsed_entities or []),
        )
        return LookupResult(node=node, sync_errors=errors)

    def lookup(
        self,
        session_id: str,
        kind: str,
        params: dict[str, Any],
        parent_node_id: Optional[str] = None,
        source_entity: Optional[Entity] = None,
    ) -> LookupResult:
        """Charge, record and run one upstream lookup.

        Without *parent_node_id* the new node hangs off the oldest ready
        root, so a live location root is only used when no other root is left.

        Raises:
            ValueError: Unknown kind or missing parameters (nothing charged).
            QuotaExhaustedError: The daily budget refused the charge.
            UpstreamError: The API call failed; the node is left in ``error``.
        """
        self.client.validate(kind, params)
        session = self.store.get_session(session_id)
        if parent_node_id is None:
            roots = session.roots()
            parent_node_id = ([r for r in roots if r.status == READY] or roots)[0].id
        elif session.find_node(parent_node_id) is None:
            raise InvalidParentError(
                f"Parent {parent_node_id!r} is not a node of session {session_id!r}"
            )

        self._charge(kind)
        node = build_node(
            DETAIL_RESULT if kind == "person-id" else API_RESULT,
            parent_node_id=parent_node_id,
            source_entity=source_entity,
            api_name=kind,
            query=params,
            title=_lookup_title(kind, params),
        )
        return self._run(session_id, node, kind, params)

    def on_entity_click(self, session_id: str, stable_id: str) -> LookupResult:
        """Trace a person or address entity under the node that produced it."""
        entity = self.store.get_entity(session_id, stable_id)
        kind, params = click_request(entity)
        return self.lookup(
            session_id,
            kind,
            params,
            parent_node_id=entity.parent_node_id,
            source_entity=entity,
        )

    def rerun(self, session_id: str, node_id: str) -> LookupResult:
        """Repeat a finished lookup as a new node under the same parent."""
        node = self.store.prepare_rerun(session_id, node_id)
        kind = node.api_name
        if kind not in SEARCH_KINDS:
            raise ValueError(f"Node {node_id!r} is not a repeatable lookup")
        params = dict(node.query or {})
        self.client.validate(kind, params)
        self._charge(kind)
        return self._run(session_id, node, kind, params)

    # ------------------------------------------------------------------
    # Quota
    # ------------------------------------------------------------------
    def usage_state(self) -> UsageState:
        return self.quota.usage_state(self.caller_class)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------
    def _require_adapter(self) -> PersistenceAdapter:
        if self.adapter is None:
            raise RuntimeError("No persistence adapter attached")
        return self.adapter

    def change_identity(self, user_id: Optional[str]) -> ReconcileReport:
        """Switch identity and reload the store with that identity's sessions.

        A failed remote load falls back to the local cache and is reported on
        ``report.load_error``.  Signing in without a remote store raises
        :class:`~skiptrace.errors.PersistenceError` and changes nothing.
        """
        adapter = self._require_adapter()
        report = adapter.reconcile_on_auth_change(user_id)
        try:
            sessions = adapter.load()
        except RemoteSyncError as exc:
            report.load_error = exc
            sessions = exc.cached or []
        self.store.replace_all(sessions)
        return report

    def resolve_local_sessions(
        self,
        policy: LocalSessionPolicy,
        session_ids: Optional[Iterable[str]] = None,
    ) -> list[Session]:
        """Apply *policy* to stranded sessions; migrated ones join the store."""
        adapter = self._require_adapter()
        try:
            migrated = adapter.resolve_local_sessions(policy, session_ids)
        except RemoteSyncError as exc:
            for session in exc.cached or []:
                self.store.adopt_session(session)
            raise
        for session in migrated:
            self.store.adopt_session(session)
        return migrated

    def retry_unsynced(self) -> list[str]:
        return self._require_adapter().retry_unsynced()
