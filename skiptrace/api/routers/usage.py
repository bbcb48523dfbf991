"""Quota endpoints.

Routes
------
GET /usage    Today's credit usage for the current caller class
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("")
def usage(request: Request) -> dict[str, Any]:
    """Return the quota state plus the seconds left until the UTC reset."""
    service = request.app.state.service
    state = asdict(service.usage_state())
    state["seconds_until_reset"] = int(service.quota.time_until_reset().total_seconds())
    return state
