"""
Pytest configuration and fixtures.
"""
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator

import pytest

from sopreview.config import Settings
from sopreview.sop_engine.line_items import LineItemIndex
from sopreview.sop_engine.models import LineItem
from sopreview.sop_engine.resolution import ValueResolver
from sopreview.sop_engine.workspace import ReviewWorkspace


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for exported workbooks."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings() -> Settings:
    """Default settings, independent of the cached instance."""
    return Settings()


@pytest.fixture
def sample_payload() -> Dict[str, Any]:
    """Extraction response for a two-statement quarterly report."""
    return {
        "pdfName": "acme_q1.pdf",
        "valueColumns": ["Q1", "Q4", "% change"],
        "lineItems": [
            {
                "rowId": "r1",
                "statement": "Profit or Loss",
                "lineItem": "Total Revenue",
                "Q1": "500",
                "Q4": "450",
                "% change": "11%",
            },
            {
                "rowId": "r2",
                "statement": "Profit or Loss",
                "lineItem": "Cost of Sales",
                "Q1": "(200)",
                "Q4": "(180)",
                "% change": "11%",
            },
            {
                "rowId": "r3",
                "statement": "Financial Position",
                "lineItem": "Cash and cash equivalents",
                "Q1": "1,250",
                "Q4": "1,100",
            },
            {
                "rowId": "r4",
                "statement": "Financial Position",
                "lineItem": "Inventories",
                "Q1": "300",
                "Q4": "",
                "verified": True,
            },
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
                "metric": "Cash",
                "value": "1,250",
                "statement": "Financial Position",
                "column": "Q1",
                "sourceLine": "Cash and cash equivalents",
            },
            {
                "metric": "Gross profit",
                "value": "-",
                "statement": "Profit or Loss",
                "column": "",
                "sourceLine": "Gross margin",
                "calculation": [
                    {"operator": "+", "statement": "Profit or Loss", "lineItem": "Total Revenue"},
                    {"operator": "+", "lineItem": "Cost of Sales"},
                ],
            },
        ],
        "sopMetadata": {"latestColumns": {"Profit or Loss": "Q1"}},
        "candidateMetrics": ["EBITDA"],
    }


@pytest.fixture
def workspace(sample_payload: Dict[str, Any], settings: Settings) -> ReviewWorkspace:
    """Workspace loaded from the sample payload."""
    return ReviewWorkspace.from_payload(sample_payload, settings=settings)


@pytest.fixture
def line_items() -> list:
    """Line items for resolver and evaluator tests."""
    return [
        LineItem(
            row_id="a1",
            statement="Profit or Loss",
            line_item="Revenue",
            values={"Q1": "1,000", "Q4": "900"},
        ),
        LineItem(
            row_id="a2",
            statement="Profit or Loss",
            line_item="Operating Costs",
            values={"Q1": "(400)", "Q4": "n/a"},
        ),
        LineItem(
            row_id="a3",
            statement="Financial Position",
            line_item="Inventory",
            values={"Q1": "", "Q4": "250", "Note": "12"},
        ),
        LineItem(
            row_id="a4",
            statement="Financial Position",
            line_item="Borrowings",
            values={"Q1": "-", "Q4": "-"},
        ),
    ]


@pytest.fixture
def resolver(line_items) -> ValueResolver:
    """Resolver with Q1 as the latest Profit or Loss column."""
    return ValueResolver(
        LineItemIndex.build(line_items),
        ["Q1", "Q4"],
        {"Profit or Loss": "Q1"},
    )
