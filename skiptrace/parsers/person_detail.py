"""Person-detail parser.

Handles both key styles the upstream API has shipped: the spaced/title-case
keys (``"Person Details"``, ``"All Phone Details"``, ...) and the camelCase
keys (``personDetails``, ``phones``, ``currentAddresses``, ...).
"""

from __future__ import annotations

from typing import Any, Mapping
from urllib.parse import quote

from skiptrace.graph.models import EMAIL, IMAGE, PERSON, PHONE, PROPERTY, Entity
from skiptrace.parsers.base import (
    ParseResult,
    address_entity,
    first_of,
    make_entity,
    number,
    records,
    result,
    source_of,
    text,
)
from skiptrace.parsers.people import PERSON_ID_FIELDS

STREET_VIEW_URL = "https://maps.googleapis.com/maps/api/streetview?size=600x400&location={}"


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _property(raw: Mapping[str, Any], parent_node_id: str, source: str) -> list[Entity]:
    prop = raw.get("property")
    if not isinstance(prop, dict):
        return []
    address = _as_dict(raw.get("address"))
    data = {
        "address": text(address.get("full")),
        "city": text(address.get("city")),
        "state": text(address.get("state")),
        "zip": text(address.get("postal_code")),
        "beds": number(prop.get("beds")),
        "baths": number(prop.get("baths")),
        "sqft": number(prop.get("square_feet")),
        "lot_size": text(prop.get("lot_size")),
        "year_built": number(prop.get("year_built")),
        "property_type": text(prop.get("type")),
        "estimate": number(_as_dict(raw.get("zestimate")).get("amount")),
    }
    return [make_entity(PROPERTY, parent_node_id, data, source)]


def _addresses(raw: Mapping[str, Any], parent_node_id: str, source: str) -> list[Entity]:
    entities = []
    groups = (
        ("current", ("Current Address Details List", "currentAddresses", "CurrentAddresses")),
        ("previous", ("Previous Address Details", "previousAddresses", "PreviousAddresses")),
    )
    for category, keys in groups:
        for item in records(raw, *keys):
            if not isinstance(item, dict):
                continue
            parts = {
                "street": first_of(item, "street_address", "streetAddress", "StreetAddress"),
                "city": first_of(item, "address_locality", "addressLocality", "AddressLocality"),
                "state": first_of(item, "address_region", "addressRegion", "AddressRegion"),
                "zip": first_of(item, "postal_code", "postalCode", "PostalCode"),
                "county": first_of(item, "county", "County"),
            }
            entities.append(
                address_entity(
                    parent_node_id,
                    parts,
                    source,
                    category,
                    date_range=first_of(item, "date_range", "dateRange", "DateRange"),
                    timespan=first_of(item, "timespan", "Timespan"),
                )
            )
    return entities


def _phones(raw: Mapping[str, Any], parent_node_id: str, source: str) -> list[Entity]:
    entities = []
    for item in records(raw, "All Phone Details", "phones", "Phones"):
        if not isinstance(item, dict):
            continue
        data = {
            "number": text(first_of(item, "phone_number", "phoneNumber", "PhoneNumber")),
            "phone_type": text(first_of(item, "phone_type", "phoneType", "PhoneType")),
            "last_reported": text(first_of(item, "last_reported", "lastReported", "LastReported")),
            "provider": text(first_of(item, "provider", "Provider")),
        }
        entities.append(make_entity(PHONE, parent_node_id, data, source))
    return entities


def _emails(raw: Mapping[str, Any], parent_node_id: str, source: str) -> list[Entity]:
    entities = []
    for item in records(raw, "Email Addresses", "emails", "Emails"):
        value = text(item)
        if value:
            entities.append(make_entity(EMAIL, parent_node_id, {"email": value}, source))
    return entities


def _persons(raw: Mapping[str, Any], parent_node_id: str, source: str) -> list[Entity]:
    entities = []
    for item in records(raw, "Person Details", "personDetails", "PersonDetails"):
        if not isinstance(item, dict):
            continue
        data = {
            "name": text(first_of(item, "Person_name", "personName", "person_name")),
            "age": number(first_of(item, "Age", "age")),
            "born": text(first_of(item, "Born", "born")),
            "lives_in": text(first_of(item, "Lives in", "livesIn", "lives_in")),
            "telephone": text(first_of(item, "Telephone", "telephone")),
            "person_link": None,
            "person_id": None,
        }
        entities.append(
            make_entity(PERSON, parent_node_id, data, source, "resident", PERSON_ID_FIELDS)
        )

    groups = (
        ("relative", ("All Relatives", "relatives", "Relatives")),
        ("associate", ("All Associates", "associates", "Associates")),
    )
    for category, keys in groups:
        for item in records(raw, *keys):
            if not isinstance(item, dict):
                continue
            data = {
                "name": text(first_of(item, "Name", "name")),
                "age": number(first_of(item, "Age", "age")),
                "person_link": text(first_of(item, "Person Link", "personLink", "person_link")),
                "person_id": text(first_of(item, "Person ID", "personId", "person_id")),
            }
            entities.append(
                make_entity(PERSON, parent_node_id, data, source, category, PERSON_ID_FIELDS)
            )
    return entities


def _images(raw: Mapping[str, Any], parent_node_id: str, source: str) -> list[Entity]:
    entities = []
    for idx, photo in enumerate(records(raw, "photos")):
        if not isinstance(photo, dict):
            continue
        data = {
            "url": text(photo.get("url")),
            "caption": text(photo.get("caption")) or f"Photo {idx + 1}",
            "order": idx,
        }
        entities.append(make_entity(IMAGE, parent_node_id, data, source, "property_photo"))

    full = text(_as_dict(raw.get("address")).get("full"))
    if full:
        data = {"url": STREET_VIEW_URL.format(quote(full)), "caption": "Street View", "order": 999}
        entities.append(
            make_entity(IMAGE, parent_node_id, data, "Google Street View", "street_view")
        )
    return entities


def parse_person_detail(raw: Mapping[str, Any], parent_node_id: str) -> ParseResult:
    """Parse a person-detail response into a flat entity list."""
    source = source_of(raw)
    entities: list[Entity] = []
    for section in (_property, _addresses, _phones, _emails, _persons, _images):
        entities.extend(section(raw, parent_node_id, source))
    return result(entities)
