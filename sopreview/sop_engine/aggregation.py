"""
Metric aggregation for the SOP summary.

Combines every manual entry of a metric into one displayed value and merges
the result over the baseline summary supplied by extraction. A metric is
Manual exactly when at least one of its entries evaluates; otherwise its
baseline passes through untouched.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import structlog

from sopreview.config import get_settings
from sopreview.sop_engine.calculation import CalculationEvaluator, format_total
from sopreview.sop_engine.entries import ManualEntryState
from sopreview.sop_engine.models import ManualEntry, MetricSummary

logger = structlog.get_logger(__name__)

DEFAULT_SOURCE_LINE = "Derived from manual calculation"


class MetricAggregator:
    """
    Aggregates manual entries into summary rows.

    Failed entries are excluded from the sum; they never fail the metric.
    """

    def __init__(
        self,
        evaluator: CalculationEvaluator,
        multiple_columns_label: Optional[str] = None,
        derived_statement_label: Optional[str] = None,
    ):
        settings = get_settings()
        self._evaluator = evaluator
        self._multiple_label = multiple_columns_label or settings.multiple_columns_label
        self._derived_label = derived_statement_label or settings.derived_statement_label

    def aggregate_metric(self, metric: str, entries: Iterable[ManualEntry]) -> Optional[MetricSummary]:
        """
        Evaluate and sum a metric's manual entries.

        Args:
            metric: Metric name.
            entries: The metric's manual entries.

        Returns:
            A Manual summary row, or None when no entry evaluated.
        """
        aggregate = Decimal(0)
        has_value = False
        formulas: List[str] = []
        columns: List[str] = []

        for entry in entries:
            result = self._evaluator.evaluate_entry(entry)
            if result is None:
                logger.debug("Manual entry excluded", metric=metric, entry_id=entry.id)
                continue
            aggregate += result.total
            has_value = True
            if result.formula_text:
                formulas.append(result.formula_text)
            for column in result.columns_used:
                if column and column not in columns:
                    columns.append(column)

        if not has_value:
            return None

        if not columns:
            column_text = ""
        elif len(columns) == 1:
            column_text = columns[0]
        else:
            column_text = self._multiple_label

        return MetricSummary(
            metric=metric,
            value=format_total(aggregate),
            statement=self._derived_label,
            column=column_text,
            source_line="; ".join(formulas) if formulas else DEFAULT_SOURCE_LINE,
            manual=True,
        )

    def overrides(self, state: ManualEntryState) -> Dict[str, MetricSummary]:
        """Manual summary rows for every metric whose entries evaluate."""
        results: Dict[str, MetricSummary] = {}
        for metric in state.metrics():
            summary = self.aggregate_metric(metric, state.entries_for(metric))
            if summary is not None:
                results[metric] = summary
        return results

    def summarize(
        self,
        baseline: Dict[str, MetricSummary],
        state: ManualEntryState,
        metric_order: Iterable[str],
    ) -> List[MetricSummary]:
        """
        Build the displayed summary.

        Args:
            baseline: Extraction-supplied summary rows by metric.
            state: Manual entry state.
            metric_order: Metrics to emit, in display order.

        Returns:
            Fresh summary rows; callers may keep them as a snapshot.
        """
        overrides = self.overrides(state)
        rows: List[MetricSummary] = []
        for metric in metric_order:
            override = overrides.get(metric)
            if override is not None:
                rows.append(override)
                continue
            base = baseline.get(metric)
            if base is None:
                rows.append(MetricSummary(metric=metric))
                continue
            row = base.copy()
            row.manual = False
            rows.append(row)
        return rows
