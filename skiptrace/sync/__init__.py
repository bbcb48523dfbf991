"""Persistence adapter and remote store client."""

from skiptrace.sync.adapter import LocalSessionPolicy, PersistenceAdapter, ReconcileReport
from skiptrace.sync.remote import RemoteSessionStore

__all__ = [
    "LocalSessionPolicy",
    "PersistenceAdapter",
    "ReconcileReport",
    "RemoteSessionStore",
]
