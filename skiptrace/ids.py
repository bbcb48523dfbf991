"""Identifier service.

Node and session ids are fresh tokens; entity ids are content fingerprints so
that the same address or person surfacing in two lookups collapses onto one
``stable_id``.

Fingerprint scope per entity kind:

* ``address``, ``phone``, ``email``, ``property``: fields alone.
* ``person``: the upstream person id alone when present; otherwise the
  name/age/location fields *plus* the producing node id, since bare name
  matches are common and must not merge distinct people.
"""

from __future__ import annotations

import hashlib
import itertools
import json
import re
import uuid
from time import time
from typing import Any, Mapping, Optional

NODE_PREFIX = "MN"
SESSION_PREFIX = "MNSESSION"
ENTITY_PREFIX = "MNENTITY"

_counter = itertools.count(1)
_WS = re.compile(r"\s+")
_NON_DIGIT = re.compile(r"\D+")


# ---------------------------------------------------------------------------
# Fresh ids
# ---------------------------------------------------------------------------

def generate_node_id() -> str:
    """Return a new node id: millisecond timestamp, process counter, random tail.

    The timestamp/counter prefix keeps ids ordered by creation within a
    process; the random tail keeps them unique across devices.
    """
    millis = int(time() * 1000)
    return f"{NODE_PREFIX}-{millis:013d}-{next(_counter):06d}-{uuid.uuid4().hex[:8]}"


def generate_session_id() -> str:
    return f"{SESSION_PREFIX}-{uuid.uuid4()}"


# ---------------------------------------------------------------------------
# Entity fingerprints
# ---------------------------------------------------------------------------

def normalize_value(key: str, value: Any) -> str:
    """Canonical text for one discriminating field ("" means unknown)."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = _WS.sub(" ", str(value)).strip().casefold()
    if key in ("phone", "number", "phone_number"):
        digits = _NON_DIGIT.sub("", text)
        # Drop the US country code so "+1 612..." and "612..." agree
        if len(digits) == 11 and digits.startswith("1"):
            digits = digits[1:]
        return digits
    return text.rstrip(".,")


def is_context_scoped(kind: str, fields: Mapping[str, Any]) -> bool:
    """Whether the producing node participates in the fingerprint."""
    return kind == "person" and not normalize_value("person_id", fields.get("person_id"))


def generate_entity_id(
    kind: str,
    fields: Mapping[str, Any],
    parent_node_id: Optional[str] = None,
) -> str:
    """Return the deterministic stable id for an entity.

    Total over any input: when every field normalises to empty the id falls
    back to a fingerprint of the kind and producing node.
    """
    normalized = {
        key: normalize_value(key, value)
        for key, value in (fields or {}).items()
    }
    normalized = {k: v for k, v in normalized.items() if v}

    if kind == "person" and normalized.get("person_id"):
        normalized = {"person_id": normalized["person_id"]}

    material: dict[str, Any] = {"kind": str(kind or "unknown"), "fields": normalized}
    if not normalized:
        material["fallback"] = parent_node_id or ""
    elif is_context_scoped(kind, normalized):
        material["context"] = parent_node_id or ""

    blob = json.dumps(material, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(blob.encode("utf-8")).hexdigest()[:20]
    return f"{ENTITY_PREFIX}-{digest}"


def id_kind(identifier: str) -> Optional[str]:
    """Return ``"session"``, ``"entity"`` or ``"node"`` for a known prefix."""
    if identifier.startswith(SESSION_PREFIX):
        return "session"
    if identifier.startswith(ENTITY_PREFIX):
        return "entity"
    if identifier.startswith(NODE_PREFIX):
        return "node"
    return None
