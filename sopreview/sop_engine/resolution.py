"""
Value resolution for the SOP Engine.

Finds the numeric value behind a (statement, line item, column hint)
reference. Candidate cells are produced by an ordered chain of strategies:

1. Explicit column hint
2. The statement's latest/default column from extraction metadata
3. Every declared value column, in document order
4. Any other populated field on the matching rows

The first candidate whose cell parses as a number wins. Nothing is cached:
every call reads the current dataset snapshot.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

import structlog

from sopreview.sop_engine.line_items import LineItemIndex, normalise_key
from sopreview.sop_engine.models import LineItem, ResolvedValue
from sopreview.sop_engine.numeric import parse_numeric_value

logger = structlog.get_logger(__name__)

Candidate = Tuple[LineItem, str]


def resolve_column(row: LineItem, requested_name: Optional[str]) -> Optional[str]:
    """
    Find the row's own column key matching a requested column name.

    Matching is trimmed, case-insensitive equality; partial matches never count.

    Args:
        row: Line item to search.
        requested_name: Column name asked for.

    Returns:
        The row's actual key, or None.
    """
    target = normalise_key(requested_name)
    if not target:
        return None
    for key in row.values:
        if normalise_key(key) == target:
            return key
    return None


def build_latest_column_map(latest_columns: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Normalise the per-statement latest column metadata; first entry per statement wins."""
    resolved: Dict[str, str] = {}
    for statement, column in (latest_columns or {}).items():
        statement_key = normalise_key(statement)
        column_name = str(column).strip() if column is not None else ""
        if not statement_key or not column_name:
            continue
        resolved.setdefault(statement_key, column_name)
    return resolved


@dataclass(frozen=True)
class ResolutionContext:
    """Inputs shared by the resolution strategies for one lookup."""
    statement: str
    line_item: str
    column_hint: str
    latest_column: Optional[str]
    value_columns: Sequence[str]


# =============================================================================
# Strategies
# =============================================================================

class ResolutionStrategy:
    """Produces (row, requested column) candidates for a lookup."""

    name = "base"

    def candidates(self, rows: List[LineItem], context: ResolutionContext) -> Iterator[Candidate]:
        raise NotImplementedError


class ExplicitHintStrategy(ResolutionStrategy):
    """The caller's column hint, on every matching row."""

    name = "explicit_hint"

    def candidates(self, rows, context):
        if not context.column_hint:
            return
        for row in rows:
            yield row, context.column_hint


class StatementDefaultColumnStrategy(ResolutionStrategy):
    """The statement's latest column from extraction metadata."""

    name = "statement_default"

    def candidates(self, rows, context):
        if not context.latest_column:
            return
        for row in rows:
            yield row, context.latest_column


class DeclaredColumnsStrategy(ResolutionStrategy):
    """Each declared value column in order, across all matching rows."""

    name = "declared_columns"

    def candidates(self, rows, context):
        for column in context.value_columns:
            for row in rows:
                yield row, column


class AnyPopulatedFieldStrategy(ResolutionStrategy):
    """Any remaining field of each row, as a last resort."""

    name = "any_field"

    def candidates(self, rows, context):
        for row in rows:
            for key in list(row.values):
                yield row, key


DEFAULT_STRATEGIES: Tuple[ResolutionStrategy, ...] = (
    ExplicitHintStrategy(),
    StatementDefaultColumnStrategy(),
    DeclaredColumnsStrategy(),
    AnyPopulatedFieldStrategy(),
)


# =============================================================================
# Resolver
# =============================================================================

class ValueResolver:
    """
    Resolves line-item references to numeric values with provenance.

    Returns None rather than raising when a reference cannot be resolved.
    """

    def __init__(
        self,
        index: LineItemIndex,
        value_columns: Iterable[str],
        latest_columns: Optional[Dict[str, str]] = None,
        strategies: Optional[Sequence[ResolutionStrategy]] = None,
    ):
        self._index = index
        self._value_columns = list(value_columns)
        self._latest_columns = build_latest_column_map(latest_columns)
        self._strategies = tuple(strategies) if strategies is not None else DEFAULT_STRATEGIES

    def iter_candidates(
        self,
        statement: Optional[str],
        line_item: Optional[str],
        column_hint: Optional[str] = None,
    ) -> Iterator[Candidate]:
        """
        Yield de-duplicated (row, actual column) candidates in priority order.

        Args:
            statement: Statement name.
            line_item: Line item label.
            column_hint: Preferred column, optional.
        """
        rows = self._index.rows_for(statement, line_item)
        if not rows:
            return

        context = ResolutionContext(
            statement=str(statement).strip(),
            line_item=str(line_item).strip(),
            column_hint=str(column_hint).strip() if column_hint else "",
            latest_column=self._latest_columns.get(normalise_key(statement)),
            value_columns=self._value_columns,
        )

        seen: Set[Tuple[str, str]] = set()
        for strategy in self._strategies:
            for row, requested in strategy.candidates(rows, context):
                column = resolve_column(row, requested)
                if column is None:
                    continue
                identifier = (row.row_id, column)
                if identifier in seen:
                    continue
                seen.add(identifier)
                yield row, column

    def resolve(
        self,
        statement: Optional[str],
        line_item: Optional[str],
        column_hint: Optional[str] = None,
    ) -> Optional[ResolvedValue]:
        """
        Resolve a reference to the first parsable candidate cell.

        Args:
            statement: Statement name.
            line_item: Line item label.
            column_hint: Preferred column, optional.

        Returns:
            ResolvedValue, or None when no candidate holds a number.
        """
        for row, column in self.iter_candidates(statement, line_item, column_hint):
            raw = row.cell(column)
            if raw is None:
                continue
            numeric = parse_numeric_value(raw)
            if numeric is None:
                continue
            return ResolvedValue(
                numeric_value=numeric,
                column_name=column,
                statement_name=row.statement or str(statement),
                line_item_name=row.line_item or str(line_item),
                display_value=str(raw),
            )

        logger.debug(
            "Reference unresolved",
            statement=statement,
            line_item=line_item,
            column_hint=column_hint,
        )
        return None
