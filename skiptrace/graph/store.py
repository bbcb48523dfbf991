"""In-process session graph store.

Every mutation goes through one :class:`SessionGraphStore` instance and is
serialised by its lock, so interleaved lookups appending to the same session
keep the ``nodes`` sequence in insertion order.  When a persistence adapter
is attached, each mutation is mirrored to it after being applied locally.

Node lifecycle::

    pending ──► ready
        └────► error

Terminal nodes are never mutated again (apart from their display title and
the memoised parser output); a rerun appends a new node.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from time import time
from typing import Any, Callable, Optional, Protocol

from skiptrace.errors import (
    DuplicateActiveRootError,
    EntityNotFoundError,
    GraphError,
    InvalidParentError,
    NodeNotFoundError,
    NodeStateError,
    RootRemovalError,
    SessionNotFoundError,
)
from skiptrace.graph.models import (
    ADDRESS,
    ERROR,
    NODE_KINDS,
    PENDING,
    PERSON,
    READY,
    ROOT,
    TRACEABLE_KINDS,
    Entity,
    Node,
    Session,
)
from skiptrace.ids import generate_node_id, generate_session_id
from skiptrace.parsers import PARSER_VERSION, parse_payload
from skiptrace.parsers.base import count_entities

logger = logging.getLogger(__name__)


class SessionPersistence(Protocol):
    """What the store needs from a persistence adapter."""

    def save_session(self, session: Session) -> None: ...

    def delete_session(self, session_id: str) -> None: ...

    def delete_node(self, session: Session, node_id: str) -> None: ...


# ---------------------------------------------------------------------------
# Node construction
# ---------------------------------------------------------------------------

def build_node(
    kind: str,
    parent_node_id: Optional[str] = None,
    source_entity: Optional[Entity] = None,
    raw_payload: Any = None,
    status: str = PENDING,
    api_name: Optional[str] = None,
    query: Optional[dict[str, Any]] = None,
    title: Optional[str] = None,
) -> Node:
    """Return a new, not-yet-appended node.

    The clicked entity is copied into ``source_entity_snapshot`` here, once;
    later changes to (or deletion of) the live entity never reach it.
    """
    return Node(
        id=str(uuid.uuid4()),
        stable_id=generate_node_id(),
        kind=kind,
        timestamp=int(time()),
        status=status,
        parent_node_id=parent_node_id,
        source_entity_id=source_entity.stable_id if source_entity else None,
        source_entity_snapshot=(
            copy.deepcopy(source_entity.to_dict()) if source_entity else None
        ),
        raw_payload=copy.deepcopy(raw_payload),
        api_name=api_name,
        query=dict(query or {}),
        title=title,
    )


def _is_stale(node: Node) -> bool:
    """Whether the memoised entities must be regenerated from ``raw_payload``."""
    if node.parsed_entities is None or node.parser_version != PARSER_VERSION:
        return True
    for entity in node.parsed_entities:
        if entity.parent_node_id != node.id:
            return True
        if entity.kind in TRACEABLE_KINDS and not entity.stable_id:
            return True
    return False


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class SessionGraphStore:
    """Holds sessions and enforces the graph invariants."""

    def __init__(
        self,
        persistence: Optional[SessionPersistence] = None,
        clock: Callable[[], float] = time,
    ) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.RLock()
        self._persistence = persistence
        self._clock = clock

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _now(self) -> int:
        return int(self._clock())

    def _session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _node(self, session: Session, node_id: str) -> Node:
        node = session.find_node(node_id)
        if node is None:
            raise NodeNotFoundError(session.id, node_id)
        return node

    def _persist(self, session: Session) -> None:
        if self._persistence is not None:
            self._persistence.save_session(session)

    def _release_root(self, session: Session, node_id: str) -> None:
        if session.active_root_node_id == node_id:
            session.active_root_node_id = None
            session.location_tracking_active = False

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def replace_all(self, sessions: list[Session]) -> None:
        """Swap the whole store contents (used after an identity change).

        Sessions without a root node are left out.
        """
        kept = {}
        for session in sessions:
            if not session.roots():
                logger.warning("Skipping session %s: no root node", session.id)
                continue
            kept[session.id] = session
        with self._lock:
            self._sessions = kept

    def adopt_session(self, session: Session) -> None:
        """Add an already-persisted session (e.g. one migrated at sign-in)."""
        if not session.roots():
            raise InvalidParentError(f"Session {session.id!r} has no root node")
        with self._lock:
            self._sessions[session.id] = session

    def create_session(self, name: Optional[str] = None) -> Session:
        """Create a session together with its root node."""
        now = self._now()
        root = build_node(ROOT, status=READY, title="Start")
        session = Session(
            id=generate_session_id(),
            name=name or f"Session {now}",
            created_at=now,
            last_accessed=now,
            nodes=[root],
        )
        with self._lock:
            self._sessions[session.id] = session
            logger.info("Created session %s (%r)", session.id, session.name)
            self._persist(session)
        return session

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            return self._session(session_id)

    def list_sessions(self) -> list[Session]:
        """Return sessions, most recently accessed first."""
        with self._lock:
            return sorted(
                self._sessions.values(), key=lambda s: s.last_accessed, reverse=True
            )

    def rename_session(self, session_id: str, name: str) -> Session:
        with self._lock:
            session = self._session(session_id)
            session.name = name
            session.last_accessed = self._now()
            self._persist(session)
            return session

    def delete_session(self, session_id: str) -> None:
        """Delete a session with all of its nodes and derived entities."""
        with self._lock:
            self._session(session_id)
            del self._sessions[session_id]
            logger.info("Deleted session %s", session_id)
            if self._persistence is not None:
                self._persistence.delete_session(session_id)

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------
    def append_node(self, session_id: str, node: Node) -> Node:
        """Append *node* to the session.

        Raises:
            InvalidParentError: Root with a parent, non-root without one, or a
                parent that is not a node of this session.
            GraphError: The id is already taken, or orphans still point at it
                (reusing a deleted node's id would re-attach them).
            DuplicateActiveRootError: A pending root while another live root
                is already active.
        """
        if node.kind not in NODE_KINDS:
            raise GraphError(f"Unknown node kind: {node.kind!r}")

        with self._lock:
            session = self._session(session_id)
            if session.find_node(node.id) is not None:
                raise GraphError(f"Node {node.id!r} already exists in session {session_id!r}")
            if any(n.parent_node_id == node.id for n in session.nodes):
                raise GraphError(
                    f"Node id {node.id!r} is still referenced by orphaned children"
                )

            if node.is_root:
                if node.parent_node_id is not None:
                    raise InvalidParentError("Root nodes cannot have a parent")
            elif node.parent_node_id is None:
                raise InvalidParentError(f"Non-root node {node.id!r} needs a parent")
            elif session.find_node(node.parent_node_id) is None:
                raise InvalidParentError(
                    f"Parent {node.parent_node_id!r} is not a node of session {session_id!r}"
                )

            live_root = node.is_root and node.status == PENDING
            if live_root:
                active = session.active_root_node_id
                if active is not None and session.find_node(active) is not None:
                    raise DuplicateActiveRootError(
                        f"Session {session_id!r} already has an active root {active!r}"
                    )
                session.active_root_node_id = node.id
                session.location_tracking_active = True

            if node.raw_payload is not None and node.parsed_entities is None:
                self._refresh_entities(node)

            session.nodes.append(node)
            session.last_accessed = self._now()
            self._persist(session)
            return node

    def resolve_node(
        self,
        session_id: str,
        node_id: str,
        raw_payload: Any,
        title: Optional[str] = None,
    ) -> Node:
        """Move a pending node to ``ready`` with its upstream payload."""
        with self._lock:
            session = self._session(session_id)
            node = self._node(session, node_id)
            if node.is_terminal:
                raise NodeStateError(f"Node {node_id!r} is already {node.status}")
            node.raw_payload = copy.deepcopy(raw_payload)
            node.status = READY
            if title:
                node.title = title
            self._refresh_entities(node)
            self._release_root(session, node.id)
            session.last_accessed = self._now()
            self._persist(session)
            return node

    def fail_node(self, session_id: str, node_id: str, message: str) -> Node:
        """Move a pending node to ``error``."""
        with self._lock:
            session = self._session(session_id)
            node = self._node(session, node_id)
            if node.is_terminal:
                raise NodeStateError(f"Node {node_id!r} is already {node.status}")
            node.status = ERROR
            node.error_message = message
            self._release_root(session, node.id)
            session.last_accessed = self._now()
            self._persist(session)
            return node

    def rerun_node(self, session_id: str, node_id: str) -> Node:
        """Append a fresh pending copy of a terminal node's request."""
        with self._lock:
            return self.append_node(session_id, self.prepare_rerun(session_id, node_id))

    def prepare_rerun(self, session_id: str, node_id: str) -> Node:
        """Build (without appending) the pending copy used by ``rerun_node``."""
        with self._lock:
            session = self._session(session_id)
            original = self._node(session, node_id)
            if not original.is_terminal:
                raise NodeStateError(f"Node {node_id!r} is still {original.status}")
            node = build_node(
                original.kind,
                parent_node_id=original.parent_node_id,
                api_name=original.api_name,
                query=original.query,
                title=original.title,
            )
            node.source_entity_id = original.source_entity_id
            node.source_entity_snapshot = copy.deepcopy(original.source_entity_snapshot)
            if node.parent_node_id is not None and session.find_node(node.parent_node_id) is None:
                raise InvalidParentError(
                    f"Cannot rerun {node_id!r}: parent {node.parent_node_id!r} was removed"
                )
            return node

    def set_node_title(self, session_id: str, node_id: str, title: str) -> Node:
        with self._lock:
            session = self._session(session_id)
            node = self._node(session, node_id)
            node.title = title
            self._persist(session)
            return node

    def delete_node(self, session_id: str, node_id: str) -> None:
        """Remove one node; its children keep their now-dangling parent id."""
        with self._lock:
            session = self._session(session_id)
            node = self._node(session, node_id)
            if node.is_root and len(session.roots()) == 1:
                raise RootRemovalError(
                    f"Node {node_id!r} is the last root of session {session_id!r}"
                )
            session.nodes.remove(node)
            self._release_root(session, node_id)
            session.last_accessed = self._now()
            if self._persistence is not None:
                self._persistence.delete_node(session, node_id)

    # ------------------------------------------------------------------
    # Live location root
    # ------------------------------------------------------------------
    def start_location_tracking(self, session_id: str) -> Node:
        """Acquire the session's single live root; raises if already held."""
        node = build_node(ROOT, raw_payload={"locationHistory": []}, title="Location")
        return self.append_node(session_id, node)

    def update_location(
        self,
        session_id: str,
        coords: dict[str, float],
        address: Optional[dict[str, Any]] = None,
    ) -> Node:
        with self._lock:
            session = self._session(session_id)
            if session.active_root_node_id is None:
                raise NodeStateError(f"Session {session_id!r} is not tracking location")
            node = self._node(session, session.active_root_node_id)
            payload = node.raw_payload if isinstance(node.raw_payload, dict) else {}
            entry = {"coords": dict(coords), "address": address, "timestamp": self._now()}
            payload.setdefault("locationHistory", []).append(entry)
            payload["coords"] = dict(coords)
            if address is not None:
                payload["address"] = address
            node.raw_payload = payload
            self._persist(session)
            return node

    def stop_location_tracking(self, session_id: str) -> Optional[Node]:
        """Finish the live root (if any) and release the slot."""
        with self._lock:
            session = self._session(session_id)
            active = session.active_root_node_id
            if active is None:
                return None
            node = session.find_node(active)
            if node is None:
                self._release_root(session, active)
                self._persist(session)
                return None
            return self.resolve_node(session_id, node.id, node.raw_payload)

    # ------------------------------------------------------------------
    # Tree navigation
    # ------------------------------------------------------------------
    def get_parent(self, session_id: str, node_id: str) -> Optional[Node]:
        """Return the parent node, or ``None`` for roots and removed parents."""
        with self._lock:
            session = self._session(session_id)
            node = self._node(session, node_id)
            if node.parent_node_id is None:
                return None
            return session.find_node(node.parent_node_id)

    def is_orphaned(self, session_id: str, node_id: str) -> bool:
        """True when the node names a parent that has been deleted."""
        with self._lock:
            session = self._session(session_id)
            node = self._node(session, node_id)
            return (
                node.parent_node_id is not None
                and session.find_node(node.parent_node_id) is None
            )

    def get_children(self, session_id: str, node_id: str) -> list[Node]:
        with self._lock:
            session = self._session(session_id)
            return [n for n in session.nodes if n.parent_node_id == node_id]

    def get_lineage(self, session_id: str, node_id: str) -> list[Node]:
        """Walk from *node_id* up to its root, stopping at a removed parent."""
        with self._lock:
            session = self._session(session_id)
            chain = [self._node(session, node_id)]
            seen = {node_id}
            while chain[-1].parent_node_id is not None:
                parent = session.find_node(chain[-1].parent_node_id)
                if parent is None or parent.id in seen:
                    break
                seen.add(parent.id)
                chain.append(parent)
            return chain

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------
    def _refresh_entities(self, node: Node) -> None:
        # Root payloads are location traces, not upstream responses
        if node.is_root or node.raw_payload is None:
            node.parsed_entities = []
        else:
            node.parsed_entities = parse_payload(node.raw_payload, node.id).entities
        node.parser_version = PARSER_VERSION

    def node_entities(self, node: Node) -> list[Entity]:
        """Return the node's entities, regenerating a stale cache first."""
        with self._lock:
            if _is_stale(node):
                if node.parsed_entities is not None:
                    logger.warning("Regenerating stale entity cache for node %s", node.id)
                self._refresh_entities(node)
            return list(node.parsed_entities or [])

    def get_entities(self, session_id: str) -> list[Entity]:
        """Deduplicated union of every node's entities.

        Traceable entities collapse on ``stable_id`` (first occurrence in node
        order wins); non-traceable entities are never merged.
        """
        with self._lock:
            session = self._session(session_id)
            seen: set[str] = set()
            merged: list[Entity] = []
            for node in session.nodes:
                for entity in self.node_entities(node):
                    if entity.stable_id:
                        if entity.stable_id in seen:
                            continue
                        seen.add(entity.stable_id)
                    merged.append(copy.deepcopy(entity))
            return merged

    def get_entity(self, session_id: str, stable_id: str) -> Entity:
        for entity in self.get_entities(session_id):
            if entity.stable_id == stable_id:
                return entity
        raise EntityNotFoundError(session_id, stable_id)

    def get_entity_counts(self, session_id: str) -> dict[str, int]:
        """Per-kind counts over the same deduplicated union as ``get_entities``."""
        return count_entities(self.get_entities(session_id))

    def get_actionable_counts(self, session_id: str) -> dict[str, int]:
        """Counts of entities that support a follow-up lookup."""
        counts = self.get_entity_counts(session_id)
        return {PERSON: counts[PERSON], ADDRESS: counts[ADDRESS]}
