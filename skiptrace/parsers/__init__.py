"""Response parsers.

Public entry point::

    from skiptrace.parsers import parse_payload

    result = parse_payload(raw_response, parent_node_id)
    result.entities, result.counts
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from skiptrace.parsers.base import PARSER_VERSION, ParseResult
from skiptrace.parsers.people import parse_people_search
from skiptrace.parsers.person_detail import parse_person_detail
from skiptrace.parsers.property import parse_property
from skiptrace.parsers.shapes import (
    PEOPLE_SEARCH,
    PERSON_DETAIL,
    PERSON_DETAIL_CAMEL,
    PROPERTY,
    classify_payload,
)

logger = logging.getLogger(__name__)

_PARSERS: dict[str, Callable[[Mapping[str, Any], str], ParseResult]] = {
    PEOPLE_SEARCH: parse_people_search,
    PERSON_DETAIL: parse_person_detail,
    PERSON_DETAIL_CAMEL: parse_person_detail,
    PROPERTY: parse_property,
}


def parse_payload(raw: Any, parent_node_id: str) -> ParseResult:
    """Parse *raw* with the parser for its shape.

    Unknown shapes yield an empty result with every count at zero.
    """
    tagged = classify_payload(raw)
    parser = _PARSERS.get(tagged.shape)
    if parser is None:
        if raw is not None:
            logger.warning("Unrecognised payload shape for node %s", parent_node_id)
        return ParseResult()
    return parser(tagged.body, parent_node_id)


__all__ = [
    "PARSER_VERSION",
    "ParseResult",
    "classify_payload",
    "parse_payload",
    "parse_people_search",
    "parse_person_detail",
    "parse_property",
]
