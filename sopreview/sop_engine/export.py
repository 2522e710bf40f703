"""
Verified workbook export for the SOP Engine.

Writes one sheet per statement with the reviewed line items and an
SOP_Summary sheet with the merged summary, verbatim.
"""

import re
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

import structlog
from openpyxl import Workbook

from sopreview.exceptions import ExportError
from sopreview.sop_engine.models import EMPTY_VALUE, LineItem, MetricSummary

logger = structlog.get_logger(__name__)

UNASSIGNED_STATEMENT = "Unassigned Statement"
INVALID_SHEET_CHARS = re.compile(r"[\\/?*:\[\]]")
MAX_SHEET_NAME_LENGTH = 31


def sanitize_sheet_name(name: str) -> str:
    """Make a statement name usable as an Excel sheet title."""
    cleaned = INVALID_SHEET_CHARS.sub("", name or "Sheet")[:MAX_SHEET_NAME_LENGTH]
    return cleaned.strip() or "Sheet"


class VerifiedWorkbookWriter:
    """
    Writes the verified dataset to an .xlsx workbook.

    Contents:
    1. One sheet per statement (preferred statements first), columns
       "Line Item" plus every value column populated in that statement
    2. SOP_Summary sheet with the displayed summary rows
    """

    PREFERRED_STATEMENT_ORDER = [
        "Profit or Loss",
        "Comprehensive Income",
        "Financial Position",
        "Changes in Equity",
        "Cash Flows",
    ]

    LINE_ITEM_HEADER = "Line Item"
    SUMMARY_SHEET = "SOP_Summary"
    SUMMARY_COLUMNS = [
        "Metric",
        "Latest Quarter",
        "Statement",
        "Source Column",
        "Source Line Item",
    ]

    def write(
        self,
        output_path: Path,
        line_items: Sequence[LineItem],
        value_columns: Sequence[str],
        summary: Sequence[MetricSummary],
    ) -> Path:
        """
        Write the workbook.

        Args:
            output_path: Destination .xlsx path.
            line_items: Reviewed line items.
            value_columns: Declared value columns, in order.
            summary: Displayed summary rows.

        Returns:
            Path to the written file.
        """
        output_path = Path(output_path)
        logger.info(
            "Writing verified workbook",
            output=output_path.name,
            line_items=len(line_items),
            metrics=len(summary),
        )

        wb = Workbook()
        wb.remove(wb.active)

        grouped = self.group_by_statement(line_items)
        statements = self.order_statements(grouped.keys())

        if not statements:
            ws = wb.create_sheet("Line_Items")
            ws.cell(row=1, column=1, value=self.LINE_ITEM_HEADER)

        for statement in statements:
            self._write_statement_sheet(wb, statement, grouped[statement], value_columns)

        self._write_summary_sheet(wb, summary)

        try:
            wb.save(output_path)
        except OSError as exc:
            raise ExportError(
                f"Could not write workbook to {output_path}",
                details={"path": str(output_path)},
            ) from exc

        logger.info("Verified workbook written", output=str(output_path), sheets=len(wb.sheetnames))
        return output_path

    def group_by_statement(self, line_items: Iterable[LineItem]) -> Dict[str, List[LineItem]]:
        grouped: Dict[str, List[LineItem]] = {}
        for item in line_items:
            grouped.setdefault(item.statement or UNASSIGNED_STATEMENT, []).append(item)
        return grouped

    def order_statements(self, statements: Iterable[str]) -> List[str]:
        """Preferred statements first, then the rest in first-seen order."""
        present = [name for name in statements if name]
        ordered = [name for name in self.PREFERRED_STATEMENT_ORDER if name in present]
        ordered.extend(name for name in present if name not in ordered)
        return ordered

    def _write_statement_sheet(
        self,
        wb: Workbook,
        statement: str,
        rows: List[LineItem],
        value_columns: Sequence[str],
    ) -> None:
        columns = [
            column for column in value_columns
            if any((row.values.get(column) or "").strip() for row in rows)
        ]
        ws = wb.create_sheet(sanitize_sheet_name(statement))

        for col_idx, header in enumerate([self.LINE_ITEM_HEADER] + columns, start=1):
            ws.cell(row=1, column=col_idx, value=header)

        for row_idx, item in enumerate(rows, start=2):
            ws.cell(row=row_idx, column=1, value=item.line_item)
            for col_idx, column in enumerate(columns, start=2):
                ws.cell(row=row_idx, column=col_idx, value=item.values.get(column, ""))

    def _write_summary_sheet(self, wb: Workbook, summary: Sequence[MetricSummary]) -> None:
        ws = wb.create_sheet(self.SUMMARY_SHEET)

        for col_idx, header in enumerate(self.SUMMARY_COLUMNS, start=1):
            ws.cell(row=1, column=col_idx, value=header)

        if not summary:
            ws.cell(row=2, column=1, value="No SOP metrics available")
            ws.cell(row=2, column=2, value=EMPTY_VALUE)
            return

        for row_idx, row in enumerate(summary, start=2):
            values = [
                row.metric,
                row.value or EMPTY_VALUE,
                row.statement,
                row.column,
                row.source_line,
            ]
            for col_idx, value in enumerate(values, start=1):
                ws.cell(row=row_idx, column=col_idx, value=value)
