"""FastAPI HTTP layer package.

Public re-export so callers can write::

    from skiptrace.api import app

    uvicorn skiptrace.api:app --reload
"""

from skiptrace.api.app import app

__all__ = ["app"]
