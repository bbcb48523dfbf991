"""Tests for the identifier service (node/session ids and entity fingerprints)."""

from __future__ import annotations

import re

from skiptrace.ids import (
    generate_entity_id,
    generate_node_id,
    generate_session_id,
    id_kind,
    is_context_scoped,
    normalize_value,
)


class TestFreshIds:
    def test_node_ids_are_unique(self) -> None:
        ids = {generate_node_id() for _ in range(500)}
        assert len(ids) == 500

    def test_node_id_format(self) -> None:
        assert re.fullmatch(r"MN-\d{13}-\d{6}-[0-9a-f]{8}", generate_node_id())

    def test_node_ids_order_by_creation(self) -> None:
        first, second = generate_node_id(), generate_node_id()
        assert first[:-9] < second[:-9]

    def test_session_id_prefix(self) -> None:
        assert generate_session_id().startswith("MNSESSION-")

    def test_id_kind(self) -> None:
        assert id_kind(generate_session_id()) == "session"
        assert id_kind(generate_node_id()) == "node"
        assert id_kind(generate_entity_id("address", {"street": "1 Main"})) == "entity"
        assert id_kind("something-else") is None


class TestNormalizeValue:
    def test_case_and_whitespace(self) -> None:
        assert normalize_value("street", "  12   MAIN St. ") == "12 main st"

    def test_phone_digits_only(self) -> None:
        assert normalize_value("number", "(612) 555-0100") == "6125550100"

    def test_phone_drops_us_country_code(self) -> None:
        assert normalize_value("number", "+1 612 555 0100") == "6125550100"

    def test_none_is_empty(self) -> None:
        assert normalize_value("city", None) == ""

    def test_integral_float(self) -> None:
        assert normalize_value("age", 42.0) == "42"


class TestEntityId:
    def test_deterministic(self) -> None:
        fields = {"street": "12 Main St", "city": "Minneapolis", "state": "MN", "zip": "55401"}
        assert generate_entity_id("address", fields) == generate_entity_id("address", dict(fields))

    def test_one_field_changes_id(self) -> None:
        base = {"street": "12 Main St", "city": "Minneapolis", "state": "MN", "zip": "55401"}
        other = dict(base, zip="55402")
        assert generate_entity_id("address", base) != generate_entity_id("address", other)

    def test_address_ignores_parent_node(self) -> None:
        fields = {"street": "12 Main St", "city": "Minneapolis"}
        assert generate_entity_id("address", fields, "node-a") == generate_entity_id(
            "address", fields, "node-b"
        )

    def test_address_normalisation_collapses_formatting(self) -> None:
        a = {"street": "12 Main St", "city": "Minneapolis", "state": "MN"}
        b = {"street": " 12  MAIN st ", "city": "minneapolis", "state": "mn"}
        assert generate_entity_id("address", a) == generate_entity_id("address", b)

    def test_kind_participates(self) -> None:
        fields = {"value": "x"}
        assert generate_entity_id("address", fields) != generate_entity_id("phone", fields)

    def test_person_without_upstream_id_is_context_scoped(self) -> None:
        fields = {"name": "John Smith", "age": 40}
        assert is_context_scoped("person", fields)
        assert generate_entity_id("person", fields, "node-a") != generate_entity_id(
            "person", fields, "node-b"
        )

    def test_person_with_upstream_id_merges_across_nodes(self) -> None:
        a = {"person_id": "px123", "name": "John Smith", "age": 40}
        b = {"person_id": "PX123", "name": "J. Smith", "age": None}
        assert not is_context_scoped("person", a)
        assert generate_entity_id("person", a, "node-a") == generate_entity_id(
            "person", b, "node-b"
        )

    def test_empty_fields_fall_back(self) -> None:
        first = generate_entity_id("address", {}, "node-a")
        assert first.startswith("MNENTITY-")
        assert first == generate_entity_id("address", {"street": "  "}, "node-a")
        assert first != generate_entity_id("address", {}, "node-b")

    def test_garbage_input_is_total(self) -> None:
        assert generate_entity_id("", {"x": None}).startswith("MNENTITY-")
