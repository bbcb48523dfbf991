"""Classification of raw upstream payloads into known response shapes.

Every payload handed to the parsers is first tagged with one of the shapes
below.  Anything that does not match a known shape becomes ``UNKNOWN`` and
parses to zero entities.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

PEOPLE_SEARCH = "people_search"
PERSON_DETAIL = "person_detail"
PERSON_DETAIL_CAMEL = "person_detail_camel"
PROPERTY = "property"
UNKNOWN = "unknown"

PEOPLE_LIST_KEYS = ("PeopleDetails", "peopleDetails", "People", "people")

_DETAIL_KEYS = (
    "Person Details",
    "Current Address Details List",
    "Previous Address Details",
    "All Phone Details",
    "Email Addresses",
    "All Relatives",
    "All Associates",
)

_CAMEL_DETAIL_KEYS = (
    "personDetails",
    "PersonDetails",
    "currentAddresses",
    "CurrentAddresses",
    "previousAddresses",
    "PreviousAddresses",
    "relatives",
    "Relatives",
    "associates",
    "Associates",
)


@dataclass(frozen=True)
class TaggedPayload:
    shape: str
    body: dict[str, Any]


def _has_list(raw: dict[str, Any], keys: tuple[str, ...]) -> bool:
    return any(isinstance(raw.get(k), list) for k in keys)


def _looks_like_property(raw: dict[str, Any]) -> bool:
    if raw.get("zpid") is not None or raw.get("hdpUrl"):
        return True
    address = raw.get("address")
    return isinstance(address, dict) and "streetAddress" in address


def classify_payload(raw: Any) -> TaggedPayload:
    """Tag *raw* with its response shape; never raises."""
    if not isinstance(raw, dict):
        return TaggedPayload(UNKNOWN, {})
    if _has_list(raw, PEOPLE_LIST_KEYS):
        return TaggedPayload(PEOPLE_SEARCH, raw)
    if _has_list(raw, _DETAIL_KEYS) or isinstance(raw.get("property"), dict):
        return TaggedPayload(PERSON_DETAIL, raw)
    if _has_list(raw, _CAMEL_DETAIL_KEYS):
        return TaggedPayload(PERSON_DETAIL_CAMEL, raw)
    if _looks_like_property(raw):
        return TaggedPayload(PROPERTY, raw)
    return TaggedPayload(UNKNOWN, raw)
