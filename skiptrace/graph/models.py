"""Dataclass models for sessions, nodes and entities.

These are plain Python objects.  ``to_dict`` / ``from_dict`` produce the
persisted shape shared by the local cache and the remote store, using the
camelCase field names of the wire contract.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Optional

# Entity kinds
PERSON = "person"
ADDRESS = "address"
PHONE = "phone"
EMAIL = "email"
PROPERTY = "property"
IMAGE = "image"

ENTITY_KINDS: tuple[str, ...] = (PERSON, ADDRESS, PHONE, EMAIL, PROPERTY, IMAGE)
TRACEABLE_KINDS = frozenset({PERSON, ADDRESS})

# Node kinds
ROOT = "root"
API_RESULT = "api-result"
DETAIL_RESULT = "detail-result"

NODE_KINDS: tuple[str, ...] = (ROOT, API_RESULT, DETAIL_RESULT)

# Node statuses
PENDING = "pending"
READY = "ready"
ERROR = "error"

TERMINAL_STATUSES = frozenset({READY, ERROR})


def empty_counts() -> dict[str, int]:
    """Return a zero count for every entity kind."""
    return {kind: 0 for kind in ENTITY_KINDS}


@dataclass
class Entity:
    kind: str
    parent_node_id: str
    data: dict[str, Any]
    source: str = "Unknown"
    category: Optional[str] = None
    stable_id: Optional[str] = None
    is_traceable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "stableId": self.stable_id,
            "kind": self.kind,
            "parentNodeId": self.parent_node_id,
            "category": self.category,
            "data": copy.deepcopy(self.data),
            "source": self.source,
            "isTraceable": self.is_traceable,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Entity:
        return cls(
            kind=raw.get("kind", ""),
            parent_node_id=raw.get("parentNodeId", ""),
            data=copy.deepcopy(raw.get("data") or {}),
            source=raw.get("source") or "Unknown",
            category=raw.get("category"),
            stable_id=raw.get("stableId"),
            is_traceable=bool(raw.get("isTraceable", False)),
        )


@dataclass
class Node:
    id: str
    stable_id: str
    kind: str
    timestamp: int
    status: str = PENDING
    parent_node_id: Optional[str] = None
    source_entity_id: Optional[str] = None
    source_entity_snapshot: Optional[dict[str, Any]] = None
    raw_payload: Any = None
    # Memoised parser output; never authoritative (see graph.store)
    parsed_entities: Optional[list[Entity]] = None
    parser_version: Optional[int] = None
    api_name: Optional[str] = None
    query: dict[str, Any] = field(default_factory=dict)
    title: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_root(self) -> bool:
        return self.kind == ROOT

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "stableId": self.stable_id,
            "kind": self.kind,
            "status": self.status,
            "timestamp": self.timestamp,
            "parentNodeId": self.parent_node_id,
            "sourceEntityId": self.source_entity_id,
            "sourceEntitySnapshot": copy.deepcopy(self.source_entity_snapshot),
            "rawPayload": copy.deepcopy(self.raw_payload),
            "parsedEntities": (
                [e.to_dict() for e in self.parsed_entities]
                if self.parsed_entities is not None
                else None
            ),
            "parserVersion": self.parser_version,
            "apiName": self.api_name,
            "query": copy.deepcopy(self.query),
            "title": self.title,
            "errorMessage": self.error_message,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Node:
        parsed = raw.get("parsedEntities")
        return cls(
            id=raw["id"],
            stable_id=raw.get("stableId") or raw["id"],
            kind=raw.get("kind", API_RESULT),
            timestamp=int(raw.get("timestamp") or 0),
            status=raw.get("status", PENDING),
            parent_node_id=raw.get("parentNodeId"),
            source_entity_id=raw.get("sourceEntityId"),
            source_entity_snapshot=copy.deepcopy(raw.get("sourceEntitySnapshot")),
            raw_payload=copy.deepcopy(raw.get("rawPayload")),
            parsed_entities=(
                [Entity.from_dict(e) for e in parsed if isinstance(e, dict)]
                if isinstance(parsed, list)
                else None
            ),
            parser_version=raw.get("parserVersion"),
            api_name=raw.get("apiName"),
            query=copy.deepcopy(raw.get("query") or {}),
            title=raw.get("title"),
            error_message=raw.get("errorMessage"),
        )


@dataclass
class Session:
    id: str
    name: str
    created_at: int
    last_accessed: int
    nodes: list[Node] = field(default_factory=list)
    active_root_node_id: Optional[str] = None
    location_tracking_active: bool = False

    # ------------------------------------------------------------------
    # Convenience helpers
    # ------------------------------------------------------------------
    def find_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def roots(self) -> list[Node]:
        return [n for n in self.nodes if n.is_root]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "createdAt": self.created_at,
            "lastAccessed": self.last_accessed,
            "activeRootNodeId": self.active_root_node_id,
            "locationTrackingActive": self.location_tracking_active,
            "nodes": [n.to_dict() for n in self.nodes],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Session:
        return cls(
            id=raw["id"],
            name=raw.get("name", ""),
            created_at=int(raw.get("createdAt") or 0),
            last_accessed=int(raw.get("lastAccessed") or 0),
            nodes=[Node.from_dict(n) for n in raw.get("nodes") or []],
            active_root_node_id=raw.get("activeRootNodeId"),
            location_tracking_active=bool(raw.get("locationTrackingActive", False)),
        )
