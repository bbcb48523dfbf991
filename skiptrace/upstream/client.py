"""HTTP client for the third-party skip-trace API.

Only transport lives here: the client returns the decoded JSON body exactly
as received and leaves interpretation to :mod:`skiptrace.parsers`.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import httpx

from skiptrace.config import settings
from skiptrace.errors import SubscriptionError, UpstreamError

logger = logging.getLogger(__name__)

# kind -> (path, required params, fixed params)
_ENDPOINTS: dict[str, tuple[str, tuple[str, ...], dict[str, str]]] = {
    "name": ("/search/byname", ("name",), {"page": "1"}),
    "address": ("/search/byaddress", ("street", "citystatezip"), {"page": "1"}),
    "phone": ("/search/byphone", ("phoneno",), {"page": "1"}),
    "email": ("/search/byemail", ("email",), {"phone": "1"}),
    "person-id": ("/search/detailsbyID", ("peo_id",), {}),
}

SEARCH_KINDS = tuple(_ENDPOINTS)


def _is_subscription_failure(status_code: int, body: str) -> bool:
    return status_code == 403 or "not subscribed" in body.lower()


class SkipTraceClient:
    """Synchronous client for the RapidAPI-hosted skip-trace endpoints."""

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.host = host or settings.rapidapi_host
        self.api_key = api_key if api_key is not None else settings.rapidapi_key
        self.timeout = timeout if timeout is not None else settings.request_timeout

    @staticmethod
    def validate(kind: str, params: Mapping[str, Any]) -> None:
        """Raise ``ValueError`` for an unknown *kind* or a missing parameter."""
        if kind not in _ENDPOINTS:
            raise ValueError(f"Unknown search kind: {kind!r}")
        _, required, _ = _ENDPOINTS[kind]
        missing = [p for p in required if not params.get(p)]
        if missing:
            raise ValueError(f"Missing parameter(s) for {kind} search: {', '.join(missing)}")

    def search(self, kind: str, params: Mapping[str, Any]) -> Any:
        """Run the *kind* lookup and return the raw JSON response.

        Raises:
            ValueError: Unknown *kind* or a missing required parameter.
            SubscriptionError: The key is not subscribed (HTTP 403).
            UpstreamError: Any other transport or HTTP failure.
        """
        self.validate(kind, params)
        path, required, fixed = _ENDPOINTS[kind]

        query = {p: str(params[p]) for p in required}
        query.update(fixed)
        url = f"https://{self.host}{path}"
        headers = {"x-rapidapi-host": self.host, "x-rapidapi-key": self.api_key}

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(url, params=query, headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{kind} search failed: {exc}") from exc

        if response.is_error:
            body = response.text
            message = f"{kind} search API error: {response.status_code} - {body[:200]}"
            if _is_subscription_failure(response.status_code, body):
                raise SubscriptionError(message, status_code=response.status_code)
            raise UpstreamError(message, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(f"{kind} search returned non-JSON body") from exc
