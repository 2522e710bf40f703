"""
Unit tests for column and value resolution.

Tests candidate priority: explicit hint, statement default column, declared
columns, then any populated field.
"""
from decimal import Decimal

from sopreview.sop_engine.line_items import LineItemIndex
from sopreview.sop_engine.models import LineItem
from sopreview.sop_engine.resolution import (
    ExplicitHintStrategy,
    ValueResolver,
    build_latest_column_map,
    resolve_column,
)


class TestResolveColumn:
    """Tests for resolve_column."""

    def test_case_insensitive_match(self):
        row = LineItem(row_id="r", statement="S", line_item="L", values={"Q1 2024": "5"})

        assert resolve_column(row, " q1 2024 ") == "Q1 2024"

    def test_no_partial_match(self):
        """Test a prefix of a column name does not match."""
        row = LineItem(row_id="r", statement="S", line_item="L", values={"Q1 2024": "5"})

        assert resolve_column(row, "Q1") is None
        assert resolve_column(row, "") is None
        assert resolve_column(row, None) is None


class TestLatestColumnMap:
    """Tests for build_latest_column_map."""

    def test_normalises_statements(self):
        result = build_latest_column_map({" Profit or Loss ": " Q1 ", "Cash Flows": "", "": "Q4"})

        assert result == {"profit or loss": "Q1"}

    def test_empty(self):
        assert build_latest_column_map(None) == {}


class TestValueResolver:
    """Tests for ValueResolver."""

    def test_explicit_hint_wins(self, resolver):
        """Test a parsable hinted cell beats the statement default."""
        resolved = resolver.resolve("Profit or Loss", "Revenue", "Q4")

        assert resolved.numeric_value == Decimal("900")
        assert resolved.column_name == "Q4"
        assert resolved.display_value == "900"

    def test_statement_default_column(self, resolver):
        """Test the latest column is used when no hint is given."""
        resolved = resolver.resolve("profit or loss", "revenue")

        assert resolved.numeric_value == Decimal("1000")
        assert resolved.column_name == "Q1"
        assert resolved.statement_name == "Profit or Loss"
        assert resolved.line_item_name == "Revenue"

    def test_unparsable_hint_falls_through(self, resolver):
        """Test an unparsable hinted cell falls back to other columns."""
        resolved = resolver.resolve("Profit or Loss", "Operating Costs", "Q4")

        assert resolved.numeric_value == Decimal("-400")
        assert resolved.column_name == "Q1"

    def test_declared_columns_in_order(self, resolver):
        """Test declared columns are tried in document order."""
        resolved = resolver.resolve("Financial Position", "Inventory")

        assert resolved.column_name == "Q4"
        assert resolved.numeric_value == Decimal("250")

    def test_any_populated_field(self, line_items):
        """Test non-declared fields are the last resort."""
        resolver = ValueResolver(LineItemIndex.build(line_items), ["Q1"])

        resolved = resolver.resolve("Financial Position", "Inventory")

        assert resolved.column_name == "Q4"
        assert resolved.numeric_value == Decimal("250")

    def test_unresolvable(self, resolver):
        """Test references with no numeric cell resolve to None."""
        assert resolver.resolve("Financial Position", "Borrowings") is None
        assert resolver.resolve("Financial Position", "Goodwill") is None
        assert resolver.resolve("", "Revenue") is None

    def test_later_duplicate_row(self):
        """Test a later duplicate row is used when the first has no number."""
        index = LineItemIndex.build([
            LineItem(row_id="x1", statement="S", line_item="Other", values={"Q1": ""}),
            LineItem(row_id="x2", statement="S", line_item="Other", values={"Q1": "7"}),
        ])
        resolver = ValueResolver(index, ["Q1"])

        resolved = resolver.resolve("S", "Other")

        assert resolved.numeric_value == Decimal("7")

    def test_hint_beats_earlier_row(self):
        """Test a hinted column on a later duplicate row wins over an earlier row's other columns."""
        index = LineItemIndex.build([
            LineItem(row_id="x1", statement="S", line_item="Other", values={"Q1": "10", "Q2": ""}),
            LineItem(row_id="x2", statement="S", line_item="Other", values={"Q1": "", "Q2": "20"}),
        ])
        resolver = ValueResolver(index, ["Q1", "Q2"], {"S": "Q1"})

        resolved = resolver.resolve("S", "Other", "Q2")

        assert resolved.numeric_value == Decimal("20")
        assert resolved.column_name == "Q2"
        assert resolver.resolve("S", "Other").numeric_value == Decimal("10")

    def test_candidates_deduplicated(self, resolver):
        """Test each (row, column) is offered once."""
        candidates = list(resolver.iter_candidates("Profit or Loss", "Revenue", "Q1"))

        assert [(row.row_id, column) for row, column in candidates] == [("a1", "Q1"), ("a1", "Q4")]

    def test_custom_strategies(self, resolver, line_items):
        """Test the strategy chain can be narrowed."""
        hint_only = ValueResolver(
            LineItemIndex.build(line_items),
            ["Q1", "Q4"],
            strategies=[ExplicitHintStrategy()],
        )

        assert hint_only.resolve("Profit or Loss", "Revenue") is None
        assert hint_only.resolve("Profit or Loss", "Revenue", "Q1").numeric_value == Decimal("1000")

    def test_reads_current_snapshot(self, line_items):
        """Test edits to cells are visible on the next lookup."""
        resolver = ValueResolver(LineItemIndex.build(line_items), ["Q1", "Q4"])
        line_items[0].values["Q1"] = "1,500"

        assert resolver.resolve("Profit or Loss", "Revenue").numeric_value == Decimal("1500")
