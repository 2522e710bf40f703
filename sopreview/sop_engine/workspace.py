"""
Review workspace for the SOP Engine.

Owns the mutable review dataset (line items, value columns, baseline summary,
manual entries) and is its single writer. Every read of the summary resolves
and evaluates from scratch; edits propagate into baseline metrics whose
provenance points at the edited cell.
"""

import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union

import structlog

from sopreview.config import Settings, get_settings
from sopreview.exceptions import (
    ColumnNotFoundError,
    ExportError,
    InvalidLineItemError,
    LineItemNotFoundError,
    MetricNotFoundError,
    ReviewIncompleteError,
    SOPReviewError,
)
from sopreview.schemas.extraction import (
    CalculationStepPayload,
    ExtractionPayload,
    LineItemPayload,
    SummaryEntryPayload,
    SummaryRowResponse,
)
from sopreview.sop_engine.aggregation import MetricAggregator
from sopreview.sop_engine.calculation import CalculationEvaluator
from sopreview.sop_engine.entries import ManualEntryState
from sopreview.sop_engine.export import VerifiedWorkbookWriter
from sopreview.sop_engine.line_items import LineItemIndex, line_item_key, normalise_key
from sopreview.sop_engine.metrics import MetricRegistry
from sopreview.sop_engine.models import (
    EMPTY_VALUE,
    BreakdownRow,
    CalculationStep,
    EntryEvaluation,
    LineItem,
    ManualEntry,
    MetricSummary,
    Operator,
)
from sopreview.sop_engine.numeric import normalise_display_value, scale_by_thousand, to_absolute_value
from sopreview.sop_engine.resolution import ValueResolver

logger = structlog.get_logger(__name__)


def filter_columns_for_statement(columns: List[str], statement: Optional[str]) -> List[str]:
    """
    Drop percentage-change columns from profit or loss statements.

    Args:
        columns: Declared value columns.
        statement: Statement name.

    Returns:
        Columns relevant to the statement.
    """
    if not columns or not statement:
        return list(columns)
    lowered = statement.lower()
    if "profit" not in lowered and "loss" not in lowered:
        return list(columns)

    def keep(column: str) -> bool:
        text = (column or "").lower()
        if not text:
            return True
        has_change = "change" in text
        has_percent = "%" in text or "percent" in text or "pct" in text
        return not (has_change and has_percent)

    return [column for column in columns if keep(column)]


def _step_from_payload(step: CalculationStepPayload) -> CalculationStep:
    return CalculationStep(
        operator=Operator.parse(step.operator or "+"),
        statement=step.statement,
        line_item=step.line_item,
        column=step.column,
        constant=step.constant,
    )


def _line_item_from_payload(item: LineItemPayload) -> LineItem:
    return LineItem(
        row_id=item.row_id or "",
        statement=item.statement,
        line_item=item.line_item,
        values=item.cell_values(),
        classification=item.classification,
        ai_confidence=item.ai_confidence,
    )


def _has_details(entry: SummaryEntryPayload) -> bool:
    fields = (entry.statement, entry.column, entry.source_line, entry.value)
    return any(
        field is not None and str(field).strip() not in ("", EMPTY_VALUE)
        for field in fields
    )


class ReviewWorkspace:
    """
    The review dataset and every operation that mutates it.

    Handles:
    - Direct cell edits, row deletion, column removal (with propagation)
    - Manual line items and metric classification
    - Manual entry management
    - Statement-wide transforms (x1,000 and absolute values)
    - Review progress and verified workbook export
    """

    def __init__(
        self,
        line_items: Optional[Iterable[LineItem]] = None,
        value_columns: Optional[Iterable[str]] = None,
        baseline: Optional[Iterable[MetricSummary]] = None,
        latest_columns: Optional[Dict[str, str]] = None,
        registry: Optional[MetricRegistry] = None,
        entry_state: Optional[ManualEntryState] = None,
        pdf_name: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        self.workspace_id = str(uuid.uuid4())
        self.settings = settings or get_settings()
        self.registry = registry or MetricRegistry()
        self.line_items: List[LineItem] = list(line_items or [])
        self.value_columns: List[str] = list(value_columns or [])
        self.latest_columns: Dict[str, str] = dict(latest_columns or {})
        self.entry_state = entry_state or ManualEntryState()
        self.pdf_name = pdf_name

        self.baseline: Dict[str, MetricSummary] = {}
        for record in baseline or []:
            metric = self.registry.register(record.metric)
            if metric and metric not in self.baseline:
                record.metric = metric
                record.manual = False
                self.baseline[metric] = record

        for item in self.line_items:
            if item.classification:
                item.classification = self.registry.register(item.classification)
        self.registry.register_all(self.entry_state.metrics())

        self.verified_statements: Dict[str, bool] = {
            statement: False for statement in self.statements()
        }
        self.multiplier_applied: Set[str] = set()
        self.qc_complete = False

        self._log = logger.bind(workspace_id=self.workspace_id)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    @classmethod
    def from_payload(
        cls,
        payload: Union[ExtractionPayload, Dict[str, Any]],
        settings: Optional[Settings] = None,
    ) -> "ReviewWorkspace":
        """
        Build a workspace from the extraction service response.

        Summary rows whose (statement, source line) matches a line item stay
        Baseline and classify the first matching row; other rows with any
        detail seed a manual entry.

        Args:
            payload: Validated payload or raw JSON dict.
            settings: Optional settings override.

        Raises:
            PayloadValidationError: If a raw payload does not validate.
        """
        if not isinstance(payload, ExtractionPayload):
            payload = ExtractionPayload.parse(payload)

        registry = MetricRegistry()
        registry.register_all(payload.candidate_metrics)

        line_items = [_line_item_from_payload(item) for item in payload.line_items]

        first_row_by_key: Dict[str, LineItem] = {}
        for item in line_items:
            if normalise_key(item.statement) and normalise_key(item.line_item):
                first_row_by_key.setdefault(line_item_key(item.statement, item.line_item), item)

        records: Dict[str, SummaryEntryPayload] = {}
        for entry in payload.sop_summary:
            metric = registry.register(entry.metric)
            if metric and metric not in records:
                records[metric] = entry

        baseline: List[MetricSummary] = []
        entry_state = ManualEntryState()

        for index, metric in enumerate(registry.names()):
            entry = records.get(metric)
            if entry is None:
                continue

            baseline.append(MetricSummary(
                metric=metric,
                value=normalise_display_value(entry.value),
                statement=entry.statement,
                column=entry.column,
                source_line=entry.source_line,
            ))

            if entry.statement and entry.source_line:
                row = first_row_by_key.get(line_item_key(entry.statement, entry.source_line))
                if row is not None:
                    if not row.classification:
                        row.classification = metric
                    continue

            if not _has_details(entry):
                continue

            value = (entry.value or "").strip()
            entry_state.add_entry(metric, ManualEntry(
                id=f"seed-{index}",
                statement=entry.statement,
                line_item=entry.source_line,
                column=entry.column,
                value="" if value == EMPTY_VALUE else value,
                calculation=[_step_from_payload(step) for step in entry.calculation],
            ))

        workspace = cls(
            line_items=line_items,
            value_columns=payload.value_columns,
            baseline=baseline,
            latest_columns={
                statement: column
                for statement, column in payload.sop_metadata.latest_columns.items()
                if column
            },
            registry=registry,
            entry_state=entry_state,
            pdf_name=payload.pdf_name,
            settings=settings,
        )

        workspace._log.info(
            "Extraction loaded",
            line_items=len(workspace.line_items),
            value_columns=len(workspace.value_columns),
            baseline_metrics=len(workspace.baseline),
            seeded_metrics=len(entry_state.metrics()),
        )
        return workspace

    # -------------------------------------------------------------------------
    # Engine
    # -------------------------------------------------------------------------

    def build_resolver(self) -> ValueResolver:
        return ValueResolver(
            LineItemIndex.build(self.line_items),
            self.value_columns,
            self.latest_columns,
        )

    def build_evaluator(self, zero_fallback: Optional[bool] = None) -> CalculationEvaluator:
        if zero_fallback is None:
            zero_fallback = self.settings.zero_fallback_on_unresolved_base
        return CalculationEvaluator(self.build_resolver(), zero_fallback=zero_fallback)

    def build_aggregator(self) -> MetricAggregator:
        return MetricAggregator(
            self.build_evaluator(),
            multiple_columns_label=self.settings.multiple_columns_label,
            derived_statement_label=self.settings.derived_statement_label,
        )

    def metric_names(self) -> List[str]:
        return self.registry.names()

    def summary(self) -> List[MetricSummary]:
        """
        The displayed SOP summary, re-evaluated from the current dataset.

        Returns:
            Fresh rows in canonical metric order, then discovered metrics.
        """
        return self.build_aggregator().summarize(self.baseline, self.entry_state, self.metric_names())

    def summary_rows(self) -> List[Dict[str, Any]]:
        """Summary rows serialised for the presentation/export collaborator."""
        return [
            SummaryRowResponse.from_summary(row).model_dump(by_alias=True)
            for row in self.summary()
        ]

    def metric_summary(self, metric: str) -> MetricSummary:
        name = self._require_metric(metric)
        for row in self.summary():
            if row.metric == name:
                return row
        raise MetricNotFoundError(metric)

    def manual_metrics(self) -> Set[str]:
        """Metrics currently driven by at least one evaluating manual entry."""
        return set(self.build_aggregator().overrides(self.entry_state))

    def evaluate_entry(self, metric: str, entry_id: str) -> Optional[EntryEvaluation]:
        entry = self.entry_state.get_entry(self._require_metric(metric), entry_id)
        return self.build_evaluator().evaluate_entry(entry)

    # -------------------------------------------------------------------------
    # Line Items
    # -------------------------------------------------------------------------

    def statements(self) -> List[str]:
        seen: List[str] = []
        for item in self.line_items:
            if item.statement and item.statement not in seen:
                seen.append(item.statement)
        return seen

    def get_line_item(self, row_id: str) -> LineItem:
        for item in self.line_items:
            if item.row_id == row_id:
                return item
        raise LineItemNotFoundError(row_id)

    def edit_cell(self, row_id: str, column: str, value: Optional[str]) -> bool:
        """
        Edit a cell directly.

        Baseline metrics whose provenance matches the edited cell take the new
        value; Manual metrics are left alone and pick the change up on their
        next evaluation.

        Args:
            row_id: Row to edit.
            column: Column name.
            value: New cell text.

        Returns:
            True when the cell changed.
        """
        row = self.get_line_item(row_id)
        safe_value = "" if value is None else str(value)
        if row.values.get(column) == safe_value:
            return False

        manual = self.manual_metrics()
        row.values[column] = safe_value
        self._mark_unreviewed(row.statement)

        updated: List[str] = []
        if row.statement and row.line_item:
            statement_key = normalise_key(row.statement)
            line_key = normalise_key(row.line_item)
            column_key = normalise_key(column)
            for metric, record in self.baseline.items():
                if metric in manual or not record.provenance.is_complete:
                    continue
                if (
                    normalise_key(record.statement) == statement_key
                    and normalise_key(record.source_line) == line_key
                    and normalise_key(record.column) == column_key
                ):
                    record.value = normalise_display_value(safe_value)
                    updated.append(metric)

        self._log.info(
            "Cell edited",
            row_id=row_id,
            column=column,
            propagated_metrics=updated,
        )
        return True

    def delete_line_item(self, row_id: str) -> LineItem:
        """
        Remove a row from the dataset.

        Baseline metrics sourced from the row's (statement, line item) are
        reset to "-".
        """
        row = self.get_line_item(row_id)
        manual = self.manual_metrics()
        self.line_items = [item for item in self.line_items if item.row_id != row_id]
        self._mark_unreviewed(row.statement)

        reset: List[str] = []
        statement_key = normalise_key(row.statement)
        line_key = normalise_key(row.line_item)
        if statement_key and line_key:
            for metric, record in self.baseline.items():
                if metric in manual or not record.provenance.is_complete:
                    continue
                if (
                    normalise_key(record.statement) == statement_key
                    and normalise_key(record.source_line) == line_key
                ):
                    record.value = EMPTY_VALUE
                    reset.append(metric)

        self._log.info("Line item deleted", row_id=row_id, reset_metrics=reset)
        return row

    def remove_column(self, column: str) -> None:
        """
        Remove a value column from the document.

        Every cell in the column is dropped. Baseline records on the column lose
        their column and value; manual entries lose base references to it and
        steps on it are cleared.

        Raises:
            ColumnNotFoundError: If the column is not declared.
        """
        if not column or column not in self.value_columns:
            raise ColumnNotFoundError(column)

        column_key = normalise_key(column)
        self.value_columns = [name for name in self.value_columns if name != column]
        for item in self.line_items:
            item.values.pop(column, None)

        touched_entries = self.entry_state.invalidate_column(column)

        cleared: List[str] = []
        for metric, record in self.baseline.items():
            if record.column and normalise_key(record.column) == column_key:
                record.column = ""
                record.value = EMPTY_VALUE
                cleared.append(metric)

        for statement in self.statements():
            self.verified_statements[statement] = False
        self.qc_complete = False

        self._log.info(
            "Column removed",
            column=column,
            cleared_metrics=cleared,
            touched_entries=touched_entries,
        )

    def add_line_item(
        self,
        statement: str,
        line_item: str,
        values: Optional[Dict[str, str]] = None,
    ) -> LineItem:
        """
        Add a manually entered row.

        Raises:
            InvalidLineItemError: If statement or line item is blank.
        """
        statement = (statement or "").strip()
        line_item = (line_item or "").strip()
        if not statement or not line_item:
            raise InvalidLineItemError()

        values = values or {}
        row = LineItem(
            row_id=f"manual-{uuid.uuid4().hex[:12]}",
            statement=statement,
            line_item=line_item,
            values={column: str(values.get(column) or "").strip() for column in self.value_columns},
        )
        self.line_items.append(row)
        self._mark_unreviewed(statement)
        self._log.info("Line item added", row_id=row.row_id, statement=statement)
        return row

    def set_classification(self, row_ids: Union[str, Iterable[str]], metric: Optional[str]) -> int:
        """
        Link rows to an SOP metric; a blank metric clears the link.

        Returns:
            Number of rows whose classification changed.
        """
        if isinstance(row_ids, str):
            row_ids = [row_ids]
        targets = {row_id for row_id in row_ids if row_id}
        if not targets:
            raise SOPReviewError("Select at least one row before updating the SOP metric")

        name = self.registry.register(metric)
        changed = 0
        for item in self.line_items:
            if item.row_id not in targets or item.classification == name:
                continue
            item.classification = name
            self._mark_unreviewed(item.statement)
            changed += 1

        self._log.info("Classification updated", metric=name, rows=len(targets), changed=changed)
        return changed

    def breakdown_by_metric(self) -> Dict[str, List[BreakdownRow]]:
        """Classified rows grouped by metric, with their populated declared values."""
        grouped: Dict[str, List[BreakdownRow]] = {}
        for item in self.line_items:
            if not item.classification:
                continue
            values = {
                column: item.values[column].strip()
                for column in self.value_columns
                if (item.values.get(column) or "").strip()
            }
            grouped.setdefault(item.classification, []).append(BreakdownRow(
                row_id=item.row_id,
                statement=item.statement,
                line_item=item.line_item,
                values=values,
            ))
        return grouped

    # -------------------------------------------------------------------------
    # Baseline and Manual Entries
    # -------------------------------------------------------------------------

    def edit_baseline(
        self,
        metric: str,
        value: Optional[str] = None,
        statement: Optional[str] = None,
        column: Optional[str] = None,
        source_line: Optional[str] = None,
    ) -> MetricSummary:
        """Rewrite a metric's baseline value and provenance."""
        name = self.registry.register(metric)
        if not name:
            raise MetricNotFoundError(metric or "")
        record = MetricSummary(
            metric=name,
            value=normalise_display_value(value),
            statement=(statement or "").strip(),
            column=(column or "").strip(),
            source_line=(source_line or "").strip(),
        )
        self.baseline[name] = record
        self.qc_complete = False
        self._log.info("Baseline edited", metric=name)
        return record

    def add_manual_entry(self, metric: str, entry: ManualEntry) -> ManualEntry:
        name = self.registry.register(metric)
        if not name:
            raise MetricNotFoundError(metric or "")
        self.qc_complete = False
        return self.entry_state.add_entry(name, entry)

    def commit_draft(self, metric: str) -> ManualEntry:
        name = self.registry.register(metric)
        if not name:
            raise MetricNotFoundError(metric or "")
        entry = self.entry_state.commit_draft(name)
        self.qc_complete = False
        return entry

    def update_manual_entry(self, metric: str, entry_id: str, **fields) -> ManualEntry:
        entry = self.entry_state.update_entry(self._require_metric(metric), entry_id, **fields)
        self.qc_complete = False
        return entry

    def update_manual_step(self, metric: str, entry_id: str, index: int, **fields) -> CalculationStep:
        step = self.entry_state.update_step(self._require_metric(metric), entry_id, index, **fields)
        self.qc_complete = False
        return step

    def add_manual_step(self, metric: str, entry_id: str, operator: Operator = Operator.ADD) -> CalculationStep:
        step = self.entry_state.add_step(self._require_metric(metric), entry_id, operator)
        self.qc_complete = False
        return step

    def remove_manual_step(self, metric: str, entry_id: str, index: int) -> None:
        self.entry_state.remove_step(self._require_metric(metric), entry_id, index)
        self.qc_complete = False

    def remove_manual_entry(self, metric: str, entry_id: str) -> None:
        self.entry_state.remove_entry(self._require_metric(metric), entry_id)
        self.qc_complete = False

    # -------------------------------------------------------------------------
    # Statement Transforms
    # -------------------------------------------------------------------------

    def statement_value_columns(self, statement: str) -> List[str]:
        """Value columns shown for a statement: relevant and populated ones."""
        base_columns = filter_columns_for_statement(self.value_columns, statement)
        rows = self._rows_for_statement(statement)
        if not rows:
            return base_columns
        populated = [
            column for column in base_columns
            if any((row.values.get(column) or "").strip() for row in rows)
        ]
        return populated or base_columns

    def apply_thousand_multiplier(self, statement: str) -> int:
        """
        Multiply every numeric cell of a statement by 1,000, once per statement.

        Returns:
            Number of cells changed.
        """
        statement_key = normalise_key(statement)
        if statement_key in self.multiplier_applied:
            self._log.info("Multiplier already applied", statement=statement)
            return 0

        multiplier = self.settings.thousand_multiplier
        updated = self._transform_statement(
            statement,
            lambda raw: scale_by_thousand(raw, multiplier),
        )
        if updated:
            self.multiplier_applied.add(statement_key)
        self._log.info("Multiplier applied", statement=statement, cells=updated)
        return updated

    def make_statement_positive(self, statement: str) -> int:
        """
        Convert every numeric cell of a statement to its absolute value.

        Returns:
            Number of cells changed.
        """
        updated = self._transform_statement(statement, to_absolute_value)
        self._log.info("Statement made positive", statement=statement, cells=updated)
        return updated

    def _transform_statement(self, statement: str, transform) -> int:
        columns = self.statement_value_columns(statement)
        updated = 0
        for row in self._rows_for_statement(statement):
            for column in columns:
                next_value = transform(row.values.get(column))
                if next_value is None:
                    continue
                original = (row.values.get(column) or "").strip()
                if next_value != original and self.edit_cell(row.row_id, column, next_value):
                    updated += 1
        return updated

    def _rows_for_statement(self, statement: str) -> List[LineItem]:
        key = normalise_key(statement)
        return [item for item in self.line_items if normalise_key(item.statement) == key]

    # -------------------------------------------------------------------------
    # Review Progress and Export
    # -------------------------------------------------------------------------

    def mark_statement_reviewed(self, statement: str) -> None:
        if statement not in self.statements():
            raise SOPReviewError(f"Statement {statement!r} not found", details={"statement": statement})
        self.verified_statements[statement] = True
        self.qc_complete = False
        self._log.info("Statement reviewed", statement=statement)

    def pending_statements(self) -> List[str]:
        return [
            statement for statement in self.statements()
            if not self.verified_statements.get(statement, False)
        ]

    def finalize(self) -> None:
        """
        Complete QC.

        Raises:
            ReviewIncompleteError: Without line items or with unreviewed statements.
        """
        if not self.line_items:
            raise ReviewIncompleteError(message="No line items available to finalise")
        pending = self.pending_statements()
        if pending:
            raise ReviewIncompleteError(pending=pending)
        self.qc_complete = True
        self._log.info("QC complete", statements=len(self.statements()))

    def export_filename(self) -> str:
        if self.pdf_name:
            stem = self.pdf_name[:-4] if self.pdf_name.lower().endswith(".pdf") else self.pdf_name
            return f"{stem}{self.settings.export_filename_suffix}"
        return self.settings.default_export_filename

    def export_workbook(self, output_dir: Union[str, Path]) -> Path:
        """
        Write the verified workbook into a directory.

        Raises:
            ExportError: If QC has not been completed.
        """
        if not self.qc_complete:
            raise ExportError("Finalise QC before exporting the verified dataset")
        output_path = Path(output_dir) / self.export_filename()
        return VerifiedWorkbookWriter().write(
            output_path,
            self.line_items,
            self.value_columns,
            self.summary(),
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_metric(self, metric: str) -> str:
        name = self.registry.resolve(metric)
        if not name:
            raise MetricNotFoundError(metric)
        return name

    def _mark_unreviewed(self, statement: Optional[str]) -> None:
        if statement:
            self.verified_statements[statement] = False
        self.qc_complete = False
