"""Upstream skip-trace API client."""

from skiptrace.upstream.client import SEARCH_KINDS, SkipTraceClient

__all__ = ["SEARCH_KINDS", "SkipTraceClient"]
