"""Local cache package.

Public re-exports so callers can write::

    from skiptrace.db import get_connection, init_db
    from skiptrace.db import sessions
"""

from skiptrace.db.connection import get_connection
from skiptrace.db.migrations import init_db
from skiptrace.db import sessions

__all__ = ["get_connection", "init_db", "sessions"]
