"""Property parser for Zillow-style property lookups."""

from __future__ import annotations

from typing import Any, Mapping

from skiptrace.graph.models import PROPERTY
from skiptrace.parsers.base import (
    ParseResult,
    first_of,
    make_entity,
    number,
    result,
    source_of,
    text,
)


def parse_property(raw: Mapping[str, Any], parent_node_id: str) -> ParseResult:
    """Parse a property response into a single ``property`` entity."""
    address = raw.get("address") if isinstance(raw.get("address"), dict) else {}
    hdp_url = text(raw.get("hdpUrl"))
    data = {
        "zpid": text(raw.get("zpid")),
        "address": text(first_of(address, "streetAddress") or raw.get("abbreviatedAddress")),
        "city": text(first_of(address, "city") or raw.get("city")),
        "state": text(address.get("state")),
        "zip": text(address.get("zipcode")),
        "county": text(raw.get("county")),
        "latitude": number(raw.get("latitude")),
        "longitude": number(raw.get("longitude")),
        "beds": number(raw.get("bedrooms")),
        "baths": number(raw.get("bathrooms")),
        "sqft": number(raw.get("livingArea")),
        "lot_size": number(first_of(raw, "lotSize", "lotAreaValue")),
        "property_type": text(first_of(raw, "homeType", "propertyTypeDimension")),
        "home_status": text(first_of(raw, "homeStatus", "keystoneHomeStatus")),
        "year_built": number(raw.get("yearBuilt")),
        "price": number(first_of(raw, "price", "listPriceLow")),
        "currency": text(raw.get("currency")) or "USD",
        "image": text(first_of(raw, "hiResImageLink", "desktopWebHdpImageLink")),
        "url": f"https://www.zillow.com{hdp_url}" if hdp_url else None,
        "last_sold_price": number(raw.get("lastSoldPrice")),
    }
    return result([make_entity(PROPERTY, parent_node_id, data, source_of(raw))])
