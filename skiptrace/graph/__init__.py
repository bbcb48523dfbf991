"""Session graph models.

The store lives in :mod:`skiptrace.graph.store`; it is not re-exported here
because the parsers import these models.
"""

from skiptrace.graph.models import Entity, Node, Session

__all__ = ["Entity", "Node", "Session"]
