"""People parser: turns a name/address/phone/email search response into entities.

Each record under ``PeopleDetails`` becomes one traceable person.  Addresses,
phones, emails and associated people embedded in a record are flattened into
top-level entities that share the same ``parent_node_id``.
"""

from __future__ import annotations

from typing import Any, Mapping

from skiptrace.graph.models import EMAIL, PERSON, PHONE, Entity
from skiptrace.parsers.base import (
    ParseResult,
    address_entity,
    first_of,
    make_entity,
    number,
    records,
    result,
    source_of,
    split_address_line,
    text,
)
from skiptrace.parsers.shapes import PEOPLE_LIST_KEYS

PERSON_ID_FIELDS = ("person_id", "name", "age", "lives_in")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _person(
    record: Mapping[str, Any], parent_node_id: str, source: str, category: str
) -> Entity:
    data = {
        "name": text(first_of(record, "Name", "name", "Person_name", "personName")),
        "age": number(first_of(record, "Age", "age")),
        "lives_in": text(first_of(record, "Lives in", "livesIn", "lives_in")),
        "used_to_live_in": text(
            first_of(record, "Used to live in", "usedToLiveIn", "used_to_live_in")
        ),
        "related_to": text(first_of(record, "Related to", "relatedTo", "related_to")),
        "person_link": text(
            first_of(record, "Link", "Person Link", "personLink", "person_link")
        ),
        "person_id": text(first_of(record, "Person ID", "personId", "person_id")),
    }
    return make_entity(PERSON, parent_node_id, data, source, category, PERSON_ID_FIELDS)


def _address_parts(item: Any) -> dict[str, Any] | None:
    if isinstance(item, str):
        return split_address_line(item) if item.strip() else None
    if not isinstance(item, dict):
        return None
    line = text(first_of(item, "Address", "address", "full"))
    street = first_of(item, "streetAddress", "street_address", "street", "Street")
    if street is None and line:
        return split_address_line(line)
    return {
        "street": street,
        "city": first_of(item, "addressLocality", "address_locality", "city", "City"),
        "state": first_of(item, "addressRegion", "address_region", "state", "State"),
        "zip": first_of(item, "postalCode", "postal_code", "zip", "Zip"),
        "county": first_of(item, "county", "County"),
    }


def _phone(item: Any, parent_node_id: str, source: str) -> Entity | None:
    if isinstance(item, dict):
        data = {
            "number": text(first_of(item, "phoneNumber", "phone_number", "number", "Phone")),
            "phone_type": text(first_of(item, "phoneType", "phone_type", "type")),
            "provider": text(first_of(item, "provider", "Provider")),
            "last_reported": text(first_of(item, "lastReported", "last_reported")),
        }
    else:
        data = {"number": text(item), "phone_type": None, "provider": None, "last_reported": None}
    if not any(data.values()):
        return None
    return make_entity(PHONE, parent_node_id, data, source)


def _email(item: Any, parent_node_id: str, source: str) -> Entity | None:
    value = text(first_of(item, "email", "Email")) if isinstance(item, dict) else text(item)
    if not value:
        return None
    return make_entity(EMAIL, parent_node_id, {"email": value}, source)


def _flatten_record(
    record: Mapping[str, Any], parent_node_id: str, source: str
) -> list[Entity]:
    entities = [_person(record, parent_node_id, source, "result")]

    for item in records(record, "Addresses", "addresses", "Address History", "addressHistory"):
        parts = _address_parts(item)
        if parts is not None:
            entities.append(address_entity(parent_node_id, parts, source, "embedded"))

    for item in records(record, "Phones", "phones", "Phone Numbers", "phoneNumbers"):
        phone = _phone(item, parent_node_id, source)
        if phone is not None:
            entities.append(phone)

    for item in records(record, "Emails", "emails", "Email Addresses"):
        email = _email(item, parent_node_id, source)
        if email is not None:
            entities.append(email)

    for item in records(record, "Associated People", "associatedPeople", "Relatives", "relatives"):
        if isinstance(item, str) and item.strip():
            item = {"Name": item}
        if isinstance(item, dict):
            entities.append(_person(item, parent_node_id, source, "associate"))

    return entities


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_people_search(raw: Mapping[str, Any], parent_node_id: str) -> ParseResult:
    """Parse a people-search response into a flat entity list.

    Records that are not objects are skipped; missing fields inside a record
    become ``None``.
    """
    source = source_of(raw)
    entities: list[Entity] = []
    for record in records(raw, *PEOPLE_LIST_KEYS):
        if isinstance(record, dict):
            entities.extend(_flatten_record(record, parent_node_id, source))
    return result(entities)
