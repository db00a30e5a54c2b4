"""
Unit tests for the SQL concept catalogue.

Tests:
- Event -> concept attribution (subtype table first, then fallbacks)
- SQL error message normalization
- Progressive hint text
"""

import pytest

from src.tutoring.concepts import (
    CONCEPT_IDS,
    HINT_GUIDANCE,
    SUBTYPE_CONCEPTS,
    canonical_subtype,
    get_concept,
    hint_text_for,
    map_to_concepts,
    normalize_sql_error_subtype,
)


class TestCatalogue:
    def test_fixed_concept_set(self):
        assert CONCEPT_IDS == (
            "select-basic",
            "where-clause",
            "joins",
            "aggregation",
            "subqueries",
            "order-by",
        )

    def test_prerequisites_are_known_concepts(self):
        for concept_id in CONCEPT_IDS:
            for prerequisite in get_concept(concept_id).prerequisites:
                assert prerequisite in CONCEPT_IDS

    def test_canonical_subtypes_map_to_known_concepts(self):
        assert len(SUBTYPE_CONCEPTS) == 24
        assert "constraint violation" in SUBTYPE_CONCEPTS
        for concepts in SUBTYPE_CONCEPTS.values():
            assert concepts
            assert set(concepts) <= set(CONCEPT_IDS)

    def test_aliases_resolve(self):
        assert canonical_subtype("No Such Column") == "undefined column"
        assert canonical_subtype("ambiguous column") == "ambiguous reference"
        assert canonical_subtype("something new") is None
        assert canonical_subtype(None) is None


class TestMapToConcepts:
    """Tests for map_to_concepts()."""

    def test_subtype_table_first(self, events):
        event = events.error("incorrect group by usage", conceptIds=["joins"])
        assert map_to_concepts(event) == ["aggregation"]

    def test_alias_subtype(self, events):
        assert map_to_concepts(events.error("no such table")) == ["joins"]

    def test_unmapped_subtype_uses_attached_concepts(self, events):
        event = events.error("odd failure", conceptIds=["aggregation", "not-a-concept"])
        assert map_to_concepts(event) == ["aggregation"]

    def test_unmapped_subtype_falls_back_to_patterns(self, events):
        event = events.error("odd failure", error="ambiguous column name: id")
        assert map_to_concepts(event) == ["joins"]

    def test_unmapped_without_clues_maps_nowhere(self, events):
        assert map_to_concepts(events.error("odd failure")) == []

    def test_hint_view_uses_subtype(self, events):
        assert map_to_concepts(events.hint_view(1, 1, subtype="wrong positioning")) == ["order-by"]

    def test_execution_uses_attached_concepts(self, events):
        event = events.execution(concepts=("joins", "joins", "bogus", "order-by"))
        assert map_to_concepts(event) == ["joins", "order-by"]

    def test_code_change_maps_nowhere(self, events):
        assert map_to_concepts(events.make("code_change", code="SELECT *")) == []


class TestNormalizeSqlErrorSubtype:
    """Tests for normalize_sql_error_subtype()."""

    @pytest.mark.parametrize(
        "message,query,expected",
        [
            ("no such column: emial", "SELECT emial FROM users", "undefined column"),
            ("no such table: userz", "SELECT * FROM userz", "undefined table"),
            ("no such function: AVERAGE", "SELECT AVERAGE(x) FROM t", "undefined function"),
            ("ambiguous column name: id", "SELECT id FROM a JOIN b", "ambiguous reference"),
            ("incomplete input", "SELECT * FROM", "incomplete query"),
            ('near "FROM": syntax error', "FROM users SELECT *", "wrong positioning"),
            ("UNIQUE constraint failed: users.id", "", "constraint violation"),
            ("datatype mismatch", "", "data type mismatch"),
            ("something nobody anticipated", "", "incomplete query"),
        ],
    )
    def test_messages(self, message, query, expected):
        assert normalize_sql_error_subtype(message, query) == expected

    def test_trailing_keyword_is_incomplete(self):
        assert normalize_sql_error_subtype("syntax error", "SELECT name FROM users WHERE") == (
            "incomplete query"
        )


class TestHintText:
    def test_three_levels(self):
        texts = [hint_text_for("undefined column", level) for level in (1, 2, 3)]
        assert texts == list(HINT_GUIDANCE["undefined column"])

    def test_level_clamped(self):
        assert hint_text_for("undefined column", 7) == HINT_GUIDANCE["undefined column"][2]
        assert hint_text_for("undefined column", 0) == HINT_GUIDANCE["undefined column"][0]

    def test_unknown_subtype_uses_default_guidance(self):
        assert hint_text_for("mystery", 2) == HINT_GUIDANCE["incomplete query"][1]
