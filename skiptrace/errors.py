"""Typed failures surfaced by the session core.

Parsing never raises; everything here is for graph-invariant violations,
quota exhaustion, persistence and upstream failures that the caller must
handle explicitly.
"""

from __future__ import annotations


class SkipTraceError(Exception):
    """Base class for every error raised by this package."""


# ---------------------------------------------------------------------------
# Graph mutations
# ---------------------------------------------------------------------------

class GraphError(SkipTraceError):
    """An operation on the session graph was rejected."""


class SessionNotFoundError(GraphError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id!r}")
        self.session_id = session_id


class NodeNotFoundError(GraphError):
    def __init__(self, session_id: str, node_id: str) -> None:
        super().__init__(f"Node {node_id!r} not found in session {session_id!r}")
        self.session_id = session_id
        self.node_id = node_id


class EntityNotFoundError(GraphError):
    def __init__(self, session_id: str, stable_id: str) -> None:
        super().__init__(f"Entity {stable_id!r} not found in session {session_id!r}")
        self.session_id = session_id
        self.stable_id = stable_id


class InvalidParentError(GraphError):
    """The node's parent reference is missing, dangling or not allowed."""


class DuplicateActiveRootError(GraphError):
    """A live root node is already active in the session."""


class NodeStateError(GraphError):
    """A terminal node was asked to change state."""


class RootRemovalError(GraphError):
    """Deleting the node would leave the session without a root."""


# ---------------------------------------------------------------------------
# Quota
# ---------------------------------------------------------------------------

class QuotaExhaustedError(SkipTraceError):
    """Raised by the service layer when the quota engine refuses a charge."""


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class PersistenceError(SkipTraceError):
    """A tier of the persistence layer failed."""


class RemoteSyncError(PersistenceError):
    """A remote read or write failed.

    Local state is retained; ``retryable`` tells the caller whether calling
    :meth:`~skiptrace.sync.adapter.PersistenceAdapter.retry_unsynced` later
    can succeed.  ``cached`` carries the local fallback for failed loads.
    """

    def __init__(
        self,
        message: str,
        session_id: str | None = None,
        retryable: bool = True,
        cached: list | None = None,
    ) -> None:
        super().__init__(message)
        self.session_id = session_id
        self.retryable = retryable
        self.cached = cached


# ---------------------------------------------------------------------------
# Upstream API
# ---------------------------------------------------------------------------

class UpstreamError(SkipTraceError):
    """The third-party data API returned an error or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SubscriptionError(UpstreamError):
    """The API key is not subscribed to the requested endpoint."""
