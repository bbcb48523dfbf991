"""Two-tier persistence: local SQLite cache plus durable remote store.

* Signed out: everything lives in the local cache under the anonymous owner
  scope; the remote store is never touched.
* Signed in: the remote store is the source of truth.  Writes update the
  local cache first and are then pushed remotely; a failed push keeps the
  local state, remembers the session as unsynced and raises a retryable
  :class:`~skiptrace.errors.RemoteSyncError`.
* Sign-in never merges anonymous sessions on its own.  They are reported
  as stranded and the caller picks a :class:`LocalSessionPolicy`.
* Sign-out clears the previous identity's local cache; remote data stays.
"""

from __future__ import annotations

import enum
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Iterable, Optional

from skiptrace.db import sessions as local
from skiptrace.errors import PersistenceError, RemoteSyncError
from skiptrace.graph.models import Session
from skiptrace.quota import ANONYMOUS, AUTHENTICATED
from skiptrace.sync.remote import RemoteSessionStore

logger = logging.getLogger(__name__)


class LocalSessionPolicy(str, enum.Enum):
    KEEP = "keep"
    DISCARD = "discard"
    MIGRATE = "migrate"


@dataclass
class ReconcileReport:
    previous_user_id: Optional[str]
    user_id: Optional[str]
    stranded: list[Session] = field(default_factory=list)
    cleared_local: int = 0
    # Set by the caller when reloading the new identity's sessions failed
    load_error: Optional[RemoteSyncError] = None


class PersistenceAdapter:
    """Mirror session-graph mutations into the local cache and remote store.

    Which sessions still owe the remote store a write (and which remote
    deletes are still pending) is kept in the local cache, so it survives a
    restart of the process.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        remote: Optional[RemoteSessionStore] = None,
        user_id: Optional[str] = None,
    ) -> None:
        if user_id is not None and remote is None:
            raise PersistenceError("An authenticated identity needs a remote store")
        self._conn = conn
        self._remote = remote
        self._user_id = user_id

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------
    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def is_authenticated(self) -> bool:
        return self._user_id is not None

    @property
    def caller_class(self) -> str:
        return AUTHENTICATED if self.is_authenticated else ANONYMOUS

    @property
    def unsynced(self) -> frozenset[str]:
        if not self.is_authenticated:
            return frozenset()
        return frozenset(local.dirty_session_ids(self._conn, self._owner()))

    def _owner(self) -> str:
        return self._user_id if self._user_id is not None else local.ANONYMOUS_OWNER

    def _require_remote(self) -> RemoteSessionStore:
        if self._remote is None:
            raise PersistenceError("No remote store configured for an authenticated identity")
        return self._remote

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------
    def load(self) -> list[Session]:
        """Return the sessions of the current identity.

        Remote sessions that arrive without a root node are replaced by the
        local copy when one exists, otherwise dropped.

        Raises:
            RemoteSyncError: The remote fetch failed; ``exc.cached`` holds
                the locally cached sessions for this identity.
        """
        owner = self._owner()
        if not self.is_authenticated:
            return local.list_sessions(self._conn, owner)

        try:
            remote_sessions = self._require_remote().list_sessions(owner)
        except RemoteSyncError as exc:
            logger.warning("Remote load failed for %s, using local cache: %s", owner, exc)
            exc.cached = local.list_sessions(self._conn, owner)
            raise

        dirty = local.dirty_session_ids(self._conn, owner)
        by_id: dict[str, Session] = {}
        rootless: set[str] = set()
        for session in remote_sessions:
            if session.roots():
                by_id[session.id] = session
            else:
                logger.warning("Remote session %s has no root node", session.id)
                rootless.add(session.id)

        # Local copies with unpushed changes win over the remote snapshot
        for session_id in dirty | rootless:
            cached = local.get_session(self._conn, session_id, owner)
            if cached is not None and cached.roots():
                by_id[session_id] = cached
                dirty.add(session_id)
        for session_id, node_id in local.pending_deletes(self._conn, owner):
            if node_id is None:
                by_id.pop(session_id, None)

        local.clear_owner(self._conn, owner)
        for session in by_id.values():
            local.put_session(self._conn, session, owner)
            if session.id in dirty:
                local.set_dirty(self._conn, session.id)
        return sorted(by_id.values(), key=lambda s: s.last_accessed, reverse=True)

    def save_session(self, session: Session) -> None:
        """Write *session* locally, then remotely when signed in."""
        owner = self._owner()
        local.put_session(self._conn, session, owner)
        if not self.is_authenticated:
            return
        try:
            self._require_remote().put_session(owner, session)
        except RemoteSyncError:
            local.set_dirty(self._conn, session.id)
            logger.warning("Session %s saved locally but not remotely", session.id)
            raise
        local.set_dirty(self._conn, session.id, False)

    def delete_session(self, session_id: str) -> None:
        local.delete_session(self._conn, session_id)
        if not self.is_authenticated:
            return
        owner = self._owner()
        try:
            self._require_remote().delete_session(owner, session_id)
        except RemoteSyncError:
            local.add_pending_delete(self._conn, owner, session_id)
            raise

    def delete_node(self, session: Session, node_id: str) -> None:
        """Persist a session after *node_id* was removed from it."""
        owner = self._owner()
        local.put_session(self._conn, session, owner)
        if not self.is_authenticated:
            return
        try:
            self._require_remote().delete_node(owner, session.id, node_id)
        except RemoteSyncError:
            local.add_pending_delete(self._conn, owner, session.id, node_id)
            local.set_dirty(self._conn, session.id)
            raise
        self.save_session(session)

    def retry_unsynced(self) -> list[str]:
        """Push every pending remote change again; return ids still failing."""
        if not self.is_authenticated:
            return []
        owner = self._owner()
        remote = self._require_remote()
        failed: set[str] = set()

        for session_id, node_id in local.pending_deletes(self._conn, owner):
            try:
                if node_id is None:
                    remote.delete_session(owner, session_id)
                else:
                    remote.delete_node(owner, session_id, node_id)
            except RemoteSyncError:
                failed.add(session_id)
                continue
            local.remove_pending_delete(self._conn, owner, session_id, node_id)

        for session_id in sorted(local.dirty_session_ids(self._conn, owner) - failed):
            session = local.get_session(self._conn, session_id, owner)
            if session is None:
                continue
            try:
                remote.put_session(owner, session)
            except RemoteSyncError:
                failed.add(session_id)
                continue
            local.set_dirty(self._conn, session_id, False)

        if failed:
            logger.warning("%d session(s) still unsynced", len(failed))
        return sorted(failed)

    # ------------------------------------------------------------------
    # Identity changes
    # ------------------------------------------------------------------
    def reconcile_on_auth_change(self, user_id: Optional[str]) -> ReconcileReport:
        """Switch to *user_id* (``None`` = signed out).

        Leaving an identity clears its local cache.  Entering one reports the
        anonymous-scope sessions still on this device as ``stranded``.

        Raises:
            PersistenceError: Signing in without a remote store; the current
                identity is left unchanged.
        """
        previous = self._user_id
        report = ReconcileReport(previous_user_id=previous, user_id=user_id)
        if previous == user_id:
            return report
        if user_id is not None and self._remote is None:
            raise PersistenceError("Signing in requires a configured remote store")

        if previous is not None:
            if local.dirty_session_ids(self._conn, previous) or local.pending_deletes(
                self._conn, previous
            ):
                logger.warning(
                    "Discarding unsynced changes of %s on identity change", previous
                )
            report.cleared_local = local.clear_owner(self._conn, previous)
            local.clear_pending_deletes(self._conn, previous)

        self._user_id = user_id
        logger.info("Identity changed from %r to %r", previous, user_id)

        if user_id is not None:
            report.stranded = local.list_sessions(self._conn, local.ANONYMOUS_OWNER)
        return report

    def resolve_local_sessions(
        self,
        policy: LocalSessionPolicy,
        session_ids: Optional[Iterable[str]] = None,
    ) -> list[Session]:
        """Apply the caller's choice to stranded anonymous sessions.

        Returns the sessions moved into the signed-in scope (empty unless
        *policy* is ``MIGRATE``).
        """
        policy = LocalSessionPolicy(policy)
        if not self.is_authenticated:
            raise PersistenceError("Stranded sessions can only be resolved while signed in")

        stranded = {
            s.id: s for s in local.list_sessions(self._conn, local.ANONYMOUS_OWNER)
        }
        chosen = list(stranded) if session_ids is None else [i for i in session_ids if i in stranded]

        if policy is LocalSessionPolicy.KEEP:
            return []
        if policy is LocalSessionPolicy.DISCARD:
            for session_id in chosen:
                local.delete_session(self._conn, session_id)
            return []

        owner = self._owner()
        migrated = [stranded[i] for i in chosen]
        local.reassign_owner(self._conn, chosen, owner)
        errors: list[RemoteSyncError] = []
        for session in migrated:
            try:
                self._require_remote().put_session(owner, session)
            except RemoteSyncError as exc:
                local.set_dirty(self._conn, session.id)
                errors.append(exc)
        if errors:
            raise RemoteSyncError(
                f"{len(errors)} migrated session(s) not yet pushed remotely",
                session_id=errors[0].session_id,
                cached=migrated,
            )
        return migrated
