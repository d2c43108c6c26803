"""
Tests for structured filters: rendering, parsing and evaluation.
"""

import uuid
from datetime import UTC, datetime, timedelta, timezone

import pytest

from src.exceptions import InvalidArgumentError
from src.tables.filters import (
    And,
    Comparison,
    Not,
    Or,
    _tokenize,
    field,
    format_literal,
    parse_filter,
    render_filter,
)


class TestRender:
    """Tests for rendering expressions to filter strings."""

    def test_comparison(self):
        assert (field("Category") == "books").render() == "Category eq 'books'"

    def test_all_operators(self):
        f = field("Price")
        rendered = [
            (f == 1).render(),
            (f != 1).render(),
            (f > 1).render(),
            (f >= 1).render(),
            (f < 1).render(),
            (f <= 1).render(),
        ]
        assert rendered == [
            "Price eq 1",
            "Price ne 1",
            "Price gt 1",
            "Price ge 1",
            "Price lt 1",
            "Price le 1",
        ]

    def test_and_or_not(self):
        expression = ~((field("A") == 1) & (field("B") == 2) | (field("C") == 3))
        assert expression.render() == "not (((A eq 1) and (B eq 2)) or (C eq 3))"

    def test_name_resolution(self):
        expression = field("partition_key") == "p1"
        resolved = expression.render({"partition_key": "PartitionKey"}.get)
        assert resolved == "PartitionKey eq 'p1'"

    def test_render_filter_passes_strings_through(self):
        assert render_filter("Name eq 'x'") == "Name eq 'x'"
        assert render_filter(None) is None

    def test_render_filter_rejects_other_types(self):
        with pytest.raises(InvalidArgumentError):
            render_filter(42)  # type: ignore[arg-type]

    def test_none_value_rejected(self):
        with pytest.raises(InvalidArgumentError):
            field("Name") == None  # noqa: E711

    def test_unknown_operator_rejected(self):
        with pytest.raises(InvalidArgumentError):
            Comparison("Name", "like", "x")

    def test_combining_with_non_expression_rejected(self):
        with pytest.raises(InvalidArgumentError):
            (field("A") == 1) & "B eq 2"  # type: ignore[operator]


class TestLiterals:
    """Tests for literal formatting."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("it's", "'it''s'"),
            (True, "true"),
            (False, "false"),
            (42, "42"),
            (2**40, f"{2**40}L"),
            (1.5, "1.5"),
            (b"\x0a\x0b", "X'0a0b'"),
        ],
    )
    def test_format(self, value, expected):
        assert format_literal(value) == expected

    def test_datetime_rendered_in_utc(self):
        value = datetime(2024, 1, 1, 7, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert format_literal(value) == "datetime'2024-01-01T12:00:00.000000Z'"

    def test_guid(self):
        value = uuid.UUID("12345678-1234-5678-1234-567812345678")
        assert format_literal(value) == "guid'12345678-1234-5678-1234-567812345678'"

    def test_unsupported_type(self):
        with pytest.raises(InvalidArgumentError):
            format_literal(object())


class TestParse:
    """Tests for parsing filter strings."""

    def test_simple_comparison(self):
        expression = parse_filter("Name eq 'Widget'")
        assert isinstance(expression, Comparison)
        assert expression.field == "Name"
        assert expression.operator == "eq"
        assert expression.value == "Widget"

    def test_precedence_and_binds_tighter_than_or(self):
        expression = parse_filter("A eq 1 or B eq 2 and C eq 3")
        assert isinstance(expression, Or)
        assert isinstance(expression.right, And)

    def test_parentheses_and_not(self):
        expression = parse_filter("not (A eq 1 or B eq 2)")
        assert isinstance(expression, Not)
        assert isinstance(expression.operand, Or)

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("X eq 12", 12),
            ("X eq 12L", 12),
            ("X eq -3", -3),
            ("X eq 1.25", 1.25),
            ("X eq true", True),
            ("X eq false", False),
            ("X eq 'a''b'", "a'b"),
            ("X eq X'0a0b'", b"\x0a\x0b"),
        ],
    )
    def test_literals(self, text, expected):
        assert parse_filter(text).value == expected

    def test_keywords_are_case_insensitive(self):
        expression = parse_filter("PartitionKey EQ 'a' AND Done eq TRUE")
        assert isinstance(expression, And)
        assert (expression.left.field, expression.left.operator, expression.left.value) == (
            "PartitionKey",
            "eq",
            "a",
        )
        assert (expression.right.field, expression.right.value) == ("Done", True)

    def test_tokens_keep_source_positions(self):
        tokens = _tokenize("Name eq 'x' and not Done")
        assert [(t.kind, t.text, t.position) for t in tokens] == [
            ("word", "Name", 0),
            ("eq", "eq", 5),
            ("string", "'x'", 8),
            ("and", "and", 12),
            ("not", "not", 16),
            ("word", "Done", 20),
        ]

    def test_datetime_literal(self):
        expression = parse_filter("Timestamp ge datetime'2024-01-01T00:00:00Z'")
        assert expression.value == datetime(2024, 1, 1, tzinfo=UTC)

    def test_rendered_expression_parses_back(self):
        original = (field("Category") == "books") & ~(field("Price") > 20.5)
        parsed = parse_filter(original.render())
        assert parsed.render() == original.render()

    @pytest.mark.parametrize(
        "text",
        ["", "   ", "Name eq", "Name 'x'", "Name eq 'x' and", "(Name eq 'x'", "Name eq 'x')", "Name ~ 1"],
    )
    def test_invalid_filters(self, text):
        with pytest.raises(InvalidArgumentError):
            parse_filter(text)


class TestEvaluate:
    """Tests for evaluating expressions against records."""

    RECORD = {
        "PartitionKey": "p1",
        "Name": "Widget",
        "Price": 12.5,
        "Quantity": 3,
        "Active": True,
        "Created": datetime(2024, 1, 1, 12, 0, tzinfo=UTC),
    }

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Name eq 'Widget'", True),
            ("Name ne 'Widget'", False),
            ("Price gt 10", True),
            ("Price le 12.5", True),
            ("Quantity lt 3", False),
            ("Active eq true", True),
            ("Created ge datetime'2024-01-01T00:00:00Z'", True),
            ("Name eq 'Widget' and Price lt 10", False),
            ("Name eq 'Gadget' or Quantity eq 3", True),
            ("not (Name eq 'Widget')", False),
        ],
    )
    def test_matches(self, text, expected):
        assert parse_filter(text).evaluate(self.RECORD) is expected

    def test_missing_property_never_matches(self):
        assert parse_filter("Color eq 'red'").evaluate(self.RECORD) is False
        assert parse_filter("Color ne 'red'").evaluate(self.RECORD) is False

    def test_type_mismatch_never_matches(self):
        assert parse_filter("Name gt 5").evaluate(self.RECORD) is False
        assert parse_filter("Quantity eq '3'").evaluate(self.RECORD) is False
        assert parse_filter("Active eq 1").evaluate(self.RECORD) is False
