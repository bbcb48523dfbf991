"""Shared building blocks for the response parsers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from skiptrace.graph.models import ADDRESS, TRACEABLE_KINDS, Entity, empty_counts
from skiptrace.ids import generate_entity_id

# Bump whenever parser output changes shape; cached entities produced by an
# older version are regenerated on read.
PARSER_VERSION = 2

_ADDRESS_LINE = re.compile(
    r"^\s*(?P<street>[^,]+?)\s*,\s*(?P<city>[^,]+?)\s*,\s*"
    r"(?P<state>[A-Za-z]{2})\.?\s*(?P<zip>\d{5}(?:-\d{4})?)?\s*$"
)


@dataclass
class ParseResult:
    entities: list[Entity] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=empty_counts)


# ---------------------------------------------------------------------------
# Field access
# ---------------------------------------------------------------------------

def first_of(record: Mapping[str, Any], *keys: str) -> Any:
    """Return the first non-empty value among *keys*, else ``None``."""
    for key in keys:
        value = record.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    result = str(value).strip()
    return result or None


def number(value: Any) -> Optional[int | float]:
    """Coerce ``"42"``, ``42`` or ``42.0`` to a number; anything else is unknown."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if float(value).is_integer() else value
    if isinstance(value, str):
        cleaned = value.replace(",", "").replace("$", "").strip()
        try:
            parsed = float(cleaned)
        except ValueError:
            return None
        return int(parsed) if parsed.is_integer() else parsed
    return None


def records(raw: Mapping[str, Any], *keys: str) -> list[Any]:
    """Return the first list found under *keys* (empty when none)."""
    for key in keys:
        value = raw.get(key)
        if isinstance(value, list):
            return value
    return []


def source_of(raw: Mapping[str, Any]) -> str:
    return text(first_of(raw, "Source", "source")) or "Unknown"


def split_address_line(line: str) -> dict[str, Optional[str]]:
    """Split ``"12 Main St, Minneapolis, MN 55401"`` into address parts.

    Lines that do not follow that layout are kept whole as the street.
    """
    match = _ADDRESS_LINE.match(line)
    if not match:
        return {"street": line.strip() or None, "city": None, "state": None, "zip": None}
    parts = match.groupdict()
    return {
        "street": parts["street"],
        "city": parts["city"],
        "state": parts["state"].upper(),
        "zip": parts["zip"],
    }


# ---------------------------------------------------------------------------
# Entity construction
# ---------------------------------------------------------------------------

def make_entity(
    kind: str,
    parent_node_id: str,
    data: dict[str, Any],
    source: str,
    category: Optional[str] = None,
    id_fields: Optional[Iterable[str]] = None,
) -> Entity:
    """Build an entity, assigning a stable id only to traceable kinds."""
    traceable = kind in TRACEABLE_KINDS
    stable_id = None
    if traceable:
        keys = list(id_fields) if id_fields is not None else list(data)
        stable_id = generate_entity_id(
            kind, {k: data.get(k) for k in keys}, parent_node_id
        )
    return Entity(
        kind=kind,
        parent_node_id=parent_node_id,
        data=data,
        source=source,
        category=category,
        stable_id=stable_id,
        is_traceable=traceable,
    )


ADDRESS_ID_FIELDS = ("street", "city", "state", "zip")


def address_entity(
    parent_node_id: str,
    parts: Mapping[str, Any],
    source: str,
    category: Optional[str] = None,
    **extra: Any,
) -> Entity:
    data = {
        "street": text(parts.get("street")),
        "city": text(parts.get("city")),
        "state": text(parts.get("state")),
        "zip": text(parts.get("zip")),
        "county": text(parts.get("county")),
    }
    data.update({k: text(v) for k, v in extra.items()})
    return make_entity(ADDRESS, parent_node_id, data, source, category, ADDRESS_ID_FIELDS)


def count_entities(entities: Iterable[Entity]) -> dict[str, int]:
    counts = empty_counts()
    for entity in entities:
        counts[entity.kind] = counts.get(entity.kind, 0) + 1
    return counts


def result(entities: list[Entity]) -> ParseResult:
    return ParseResult(entities=entities, counts=count_entities(entities))
