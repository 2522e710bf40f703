"""
Tests for the SOP Engine.

Covers:
- Edits flow into Baseline metrics; Manual metrics re-evaluate on read
- Summary snapshots are not reactive to later edits
- Division by zero invalidates an entry without failing the metric
- Column hint priority over the statement default column
- Column removal invalidates step references
- Line-item deletion resets Baseline metrics only
"""

import pytest

from sopreview.config import Settings
from sopreview.sop_engine import ManualEntry, Operator, CalculationStep, ReviewWorkspace


@pytest.fixture
def payload():
    return {
        "pdfName": "interim_report.pdf",
        "valueColumns": ["Q1", "Q2"],
        "lineItems": [
            {"rowId": "rev", "statement": "Profit or Loss", "lineItem": "Total Revenue", "Q1": "500", "Q2": "520"},
            {"rowId": "tax", "statement": "Profit or Loss", "lineItem": "Income tax", "Q1": "(50)", "Q2": "(55)"},
            {"rowId": "cash", "statement": "Financial Position", "lineItem": "Cash", "Q1": "80", "Q2": "95"},
        ],
        "sopSummary": [
            {
                "metric": "Revenues",
                "value": "500",
                "statement": "Profit or Loss",
                "column": "Q1",
                "sourceLine": "Total Revenue",
            },
            {
                "metric": "Taxation",
                "value": "(50)",
                "statement": "Profit or Loss",
                "column": "Q1",
                "sourceLine": "Income tax",
            },
        ],
        "sopMetadata": {"latestColumns": {"Profit or Loss": "Q1"}},
    }


@pytest.fixture
def workspace(payload):
    return ReviewWorkspace.from_payload(payload, settings=Settings())


def metric(rows, name):
    return next(row for row in rows if row.metric == name)


# =============================================================================
# Baseline / Manual lifecycle
# =============================================================================

class TestMetricLifecycle:
    """Baseline -> Manual transitions driven by edits and entries."""

    def test_revenue_flow(self, workspace):
        """Test the edit, override, edit sequence on Revenues."""
        workspace.edit_cell("rev", "Q1", "600")
        assert metric(workspace.summary(), "Revenues").value == "600"

        workspace.add_manual_entry("Revenues", ManualEntry(
            statement="Profit or Loss",
            line_item="Total Revenue",
            column="Q1",
            calculation=[CalculationStep(operator=Operator.MULTIPLY, constant="2")],
        ))

        snapshot = workspace.summary()
        revenues = metric(snapshot, "Revenues")
        assert revenues.value == "1,200"
        assert revenues.manual is True
        assert revenues.statement == "Derived"
        assert revenues.column == "Multiple"
        assert revenues.source_line == "Total Revenue [Profit or Loss -> Q1] (600) * manual constant 2"

        workspace.edit_cell("rev", "Q1", "700")

        assert metric(snapshot, "Revenues").value == "1,200"
        assert workspace.baseline["Revenues"].value == "600"
        assert metric(workspace.summary(), "Revenues").value == "1,400"

    def test_reverts_when_entries_stop_evaluating(self, workspace):
        """Test a Manual metric falls back to Baseline once its entry fails."""
        entry = workspace.add_manual_entry("Taxation", ManualEntry(
            statement="Profit or Loss",
            line_item="Income tax",
        ))
        assert metric(workspace.summary(), "Taxation").manual is True

        workspace.update_manual_entry("Taxation", entry.id, line_item="Deferred tax")

        taxation = metric(workspace.summary(), "Taxation")
        assert taxation.manual is False
        assert taxation.value == "(50)"

    def test_entries_sum(self, workspace):
        workspace.add_manual_entry("Cash", ManualEntry(statement="Financial Position", line_item="Cash"))
        workspace.add_manual_entry("Cash", ManualEntry(value="20"))

        cash = metric(workspace.summary(), "Cash")

        assert cash.value == "100"
        assert cash.column == "Multiple"
        assert cash.source_line == "Cash [Financial Position -> Q1] (80); Manual value 20"


# =============================================================================
# Evaluation edge cases
# =============================================================================

class TestEvaluation:
    """Resolution priority and failure handling."""

    def test_divide_by_zero(self, workspace):
        workspace.add_manual_entry("Revenues", ManualEntry(
            value="10",
            calculation=[CalculationStep(operator=Operator.DIVIDE, constant="0")],
        ))

        revenues = metric(workspace.summary(), "Revenues")

        assert revenues.manual is False
        assert revenues.value == "500"

    def test_hint_beats_statement_default(self, workspace):
        """Test an explicit Q2 hint wins over the latest Q1 column."""
        entry = workspace.add_manual_entry("Revenues", ManualEntry(
            statement="Profit or Loss",
            line_item="total revenue",
            column="q2",
        ))

        result = workspace.evaluate_entry("Revenues", entry.id)

        assert str(result.total) == "520"
        assert result.columns_used == ["Q2"]

    def test_statement_default_without_hint(self, workspace):
        entry = workspace.add_manual_entry("Revenues", ManualEntry(
            statement="Profit or Loss",
            line_item="Total Revenue",
        ))

        assert workspace.evaluate_entry("Revenues", entry.id).columns_used == ["Q1"]


# =============================================================================
# Removal
# =============================================================================

class TestRemoval:
    """Column and line-item removal."""

    def test_column_removal_clears_step(self, workspace):
        """Test a removed step column drops that step on the next evaluation."""
        entry = workspace.add_manual_entry("Cash", ManualEntry(
            value="5",
            calculation=[
                CalculationStep(operator="+", statement="Financial Position", line_item="Cash", column="Q2"),
                CalculationStep(operator="+", constant="1"),
            ],
        ))
        assert metric(workspace.summary(), "Cash").value == "101"

        workspace.remove_column("Q2")

        result = workspace.evaluate_entry("Cash", entry.id)
        assert str(result.total) == "6"
        assert metric(workspace.summary(), "Cash").value == "6"

    def test_column_removal_invalidates_single_operand(self, workspace):
        workspace.add_manual_entry("Cash", ManualEntry(
            value="5",
            calculation=[CalculationStep(operator="*", statement="Financial Position", line_item="Cash", column="Q2")],
        ))

        workspace.remove_column("Q2")

        cash = metric(workspace.summary(), "Cash")
        assert cash.manual is False
        assert cash.value == "-"

    def test_column_removal_clears_baseline(self, workspace):
        workspace.remove_column("Q1")

        revenues = metric(workspace.summary(), "Revenues")
        assert revenues.value == "-"
        assert revenues.column == ""
        assert revenues.source_line == "Total Revenue"

    def test_delete_resets_baseline_only(self, workspace):
        """Test deleting a row resets Baseline metrics but not Manual ones."""
        entry = workspace.add_manual_entry("Taxation", ManualEntry(
            statement="Profit or Loss",
            line_item="Income tax",
        ))

        workspace.delete_line_item("rev")
        workspace.delete_line_item("tax")

        assert metric(workspace.summary(), "Revenues").value == "-"
        assert workspace.baseline["Taxation"].value == "(50)"
        assert workspace.evaluate_entry("Taxation", entry.id) is None
