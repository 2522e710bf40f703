"""
Calculation evaluator for manual SOP entries.

An entry starts from a base (a literal or a resolved line item) and applies
its calculation steps strictly left to right, with no operator precedence.
Every evaluation produces a formula trail describing each operand and the
value it resolved to.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

import structlog

from sopreview.config import get_settings
from sopreview.sop_engine.models import (
    EMPTY_VALUE,
    MANUAL_INPUT_COLUMN,
    CalculationStep,
    EntryEvaluation,
    ManualEntry,
    Operator,
    ResolvedValue,
)
from sopreview.sop_engine.numeric import (
    format_numeric_value,
    normalise_display_value,
    parse_numeric_value,
)
from sopreview.sop_engine.resolution import ValueResolver

logger = structlog.get_logger(__name__)


@dataclass
class _Operand:
    value: Decimal
    description: str
    column: str


@dataclass
class _BaseContext:
    statement: str
    column: str


def describe_resolved(resolved: ResolvedValue, statement: str, line_item: str) -> str:
    """Trail text for a resolved reference: ``Label [Statement -> Column] (value)``."""
    if resolved.display_value:
        display = normalise_display_value(resolved.display_value)
    else:
        display = format_numeric_value(resolved.numeric_value) or str(resolved.numeric_value)
    column = f" -> {resolved.column_name}" if resolved.column_name else ""
    return (
        f"{resolved.line_item_name or line_item} "
        f"[{resolved.statement_name or statement}{column}] ({display})"
    )


def _clean(value: Optional[str]) -> str:
    return str(value).strip() if value is not None else ""


def _apply(operator: Operator, total: Decimal, operand: Decimal) -> Optional[Decimal]:
    if operator is Operator.SUBTRACT:
        return total - operand
    if operator is Operator.MULTIPLY:
        return total * operand
    if operator is Operator.DIVIDE:
        if operand == 0:
            return None
        return total / operand
    return total + operand


class CalculationEvaluator:
    """
    Evaluates manual entries against the current dataset.

    Failures (unparsable literals, unresolved step references, division by
    zero, non-finite results) make the entry evaluate to None.
    """

    def __init__(self, resolver: ValueResolver, zero_fallback: Optional[bool] = None):
        """
        Args:
            resolver: Value resolver over the current dataset snapshot.
            zero_fallback: Start at 0 when the base reference cannot be
                resolved instead of failing the entry. Defaults to the
                ``zero_fallback_on_unresolved_base`` setting.
        """
        self._resolver = resolver
        if zero_fallback is None:
            zero_fallback = get_settings().zero_fallback_on_unresolved_base
        self._zero_fallback = zero_fallback

    def evaluate_entry(self, entry: Optional[ManualEntry]) -> Optional[EntryEvaluation]:
        """
        Evaluate one manual entry.

        Args:
            entry: Entry to evaluate.

        Returns:
            EntryEvaluation with total, touched columns and formula trail,
            or None when the entry is invalid.
        """
        if entry is None:
            return None

        columns_used: List[str] = []
        formula_parts: List[str] = []

        def add_column(column: str) -> None:
            if column and column not in columns_used:
                columns_used.append(column)

        entry_statement = _clean(entry.statement)
        entry_line_item = _clean(entry.line_item)
        entry_column = _clean(entry.column)
        entry_value = _clean(entry.value)

        base_context: Optional[_BaseContext] = None

        if entry.has_literal_base:
            numeric = parse_numeric_value(entry_value)
            if numeric is None:
                logger.debug("Entry literal unparsable", entry_id=entry.id, value=entry_value)
                return None
            total = numeric
            formula_parts.append(f"Manual value {format_numeric_value(numeric) or numeric}")
            add_column(MANUAL_INPUT_COLUMN)
        elif entry_statement and entry_line_item:
            resolved = self._resolver.resolve(entry_statement, entry_line_item, entry_column)
            if resolved is None:
                if not self._zero_fallback:
                    logger.debug(
                        "Entry base unresolved",
                        entry_id=entry.id,
                        statement=entry_statement,
                        line_item=entry_line_item,
                    )
                    return None
                total = Decimal(0)
                base_context = _BaseContext(statement=entry_statement, column="")
                formula_parts.append(f"Start at 0 for {entry_line_item} [{entry_statement}]")
            else:
                total = resolved.numeric_value
                base_context = _BaseContext(
                    statement=resolved.statement_name,
                    column=resolved.column_name,
                )
                formula_parts.append(describe_resolved(resolved, entry_statement, entry_line_item))
                add_column(resolved.column_name)
        else:
            return None

        steps = list(entry.calculation or [])
        if steps and all(step.cleared for step in steps):
            logger.debug("Entry steps all cleared", entry_id=entry.id)
            return None

        for step in steps:
            if step.cleared:
                continue

            operand = self._resolve_operand(step, base_context, entry_statement, entry_column)
            if operand is None:
                return None

            try:
                result = _apply(step.operator, total, operand.value)
            except ArithmeticError:
                return None
            if result is None or not result.is_finite():
                return None
            total = result

            formula_parts.append(f"{step.operator.value} {operand.description}")
            add_column(operand.column)

        formula = " ".join(
            " ".join(part.split()) for part in formula_parts if part and part.strip()
        )

        return EntryEvaluation(total=total, columns_used=columns_used, formula_text=formula)

    def _resolve_operand(
        self,
        step: CalculationStep,
        base_context: Optional[_BaseContext],
        entry_statement: str,
        entry_column: str,
    ) -> Optional[_Operand]:
        """Resolve a step operand; blank reference fields default to the base context."""
        if step.is_constant:
            numeric = parse_numeric_value(_clean(step.constant))
            if numeric is None:
                return None
            return _Operand(
                value=numeric,
                description=f"manual constant {format_numeric_value(numeric) or numeric}",
                column=MANUAL_INPUT_COLUMN,
            )

        line_item = _clean(step.line_item)
        if not line_item:
            return None

        statement = _clean(step.statement) or (base_context.statement if base_context else "") or entry_statement
        column_hint = _clean(step.column) or (base_context.column if base_context else "") or entry_column

        resolved = self._resolver.resolve(statement, line_item, column_hint)
        if resolved is None:
            return None

        return _Operand(
            value=resolved.numeric_value,
            description=describe_resolved(resolved, statement, line_item),
            column=resolved.column_name or "",
        )


def format_total(total: Optional[Decimal]) -> str:
    """Display text for an evaluated total."""
    if total is None:
        return EMPTY_VALUE
    return normalise_display_value(format_numeric_value(total))
