"""
SOP Engine - metric derivation for reviewed financial statements.

Resolves the canonical SOP summary metrics from extracted line items, lets
reviewers override them with multi-step manual calculations, and keeps the
displayed values in step with edits to the underlying cells.

Key Principles:
1. Recompute on every read - no cached resolution or evaluation results
2. Failures are values - unresolvable references evaluate to None, never raise
3. Every derived value carries a formula trail back to its source cells
4. Manual overrides win only while at least one entry evaluates
"""

from sopreview.sop_engine.models import (
    CalculationStep,
    LineItem,
    ManualEntry,
    MetricSummary,
    Operator,
)
from sopreview.sop_engine.metrics import SOP_METRICS, MetricRegistry
from sopreview.sop_engine.workspace import ReviewWorkspace

__version__ = "1.0.0"
__all__ = [
    "ReviewWorkspace",
    "MetricRegistry",
    "SOP_METRICS",
    "LineItem",
    "CalculationStep",
    "ManualEntry",
    "MetricSummary",
    "Operator",
]
