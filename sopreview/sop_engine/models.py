"""
Data structures for the SOP Engine.

Covers:
- LineItem rows extracted from statements (column -> raw text)
- CalculationStep / ManualEntry user formulas
- MetricSummary rows with provenance
- ResolvedValue / EntryEvaluation results
"""

import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional


MANUAL_INPUT_COLUMN = "Manual Input"
EMPTY_VALUE = "-"


class Operator(str, Enum):
    """Arithmetic operators for calculation steps."""
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"

    @classmethod
    def parse(cls, symbol: Optional[str]) -> "Operator":
        """Parse an operator symbol, falling back to addition."""
        if isinstance(symbol, Operator):
            return symbol
        text = (symbol or "").strip()
        return _OPERATOR_ALIASES.get(text, cls.ADD)


_OPERATOR_ALIASES: Dict[str, Operator] = {
    "+": Operator.ADD,
    "-": Operator.SUBTRACT,
    "−": Operator.SUBTRACT,
    "*": Operator.MULTIPLY,
    "×": Operator.MULTIPLY,
    "x": Operator.MULTIPLY,
    "/": Operator.DIVIDE,
    "÷": Operator.DIVIDE,
}


# =============================================================================
# Line Items
# =============================================================================

@dataclass
class LineItem:
    """A labelled row within a statement."""
    row_id: str
    statement: str
    line_item: str
    values: Dict[str, str] = field(default_factory=dict)
    classification: Optional[str] = None
    ai_confidence: Optional[float] = None

    def __post_init__(self):
        if not self.row_id:
            self.row_id = str(uuid.uuid4())[:8]

    def cell(self, column: str) -> Optional[str]:
        return self.values.get(column)


# =============================================================================
# Manual Calculations
# =============================================================================

@dataclass
class CalculationStep:
    """
    One operation in a manual entry's calculation chain.

    The operand is the literal ``constant`` when set, otherwise a reference to
    (statement, line_item, column). Blank reference fields default to the
    entry's base context at evaluation time.
    """
    operator: Operator = Operator.ADD
    statement: str = ""
    line_item: str = ""
    column: str = ""
    constant: str = ""
    # Set when the referenced column was removed from the document
    cleared: bool = False

    def __post_init__(self):
        self.operator = Operator.parse(self.operator)

    @property
    def is_constant(self) -> bool:
        return bool((self.constant or "").strip())

    @property
    def is_empty(self) -> bool:
        return not any(
            (value or "").strip()
            for value in (self.statement, self.line_item, self.column, self.constant)
        )


@dataclass
class ManualEntry:
    """A user-authored formula contributing to one metric."""
    id: str = ""
    statement: str = ""
    line_item: str = ""
    column: str = ""
    value: str = ""
    calculation: List[CalculationStep] = field(default_factory=list)

    def __post_init__(self):
        if not self.id:
            self.id = f"manual-{uuid.uuid4().hex[:12]}"

    @property
    def has_literal_base(self) -> bool:
        return bool((self.value or "").strip())


# =============================================================================
# Summary
# =============================================================================

@dataclass(frozen=True)
class Provenance:
    """Origin of a metric value."""
    statement: str
    column: str
    source_line: str

    @property
    def is_complete(self) -> bool:
        return bool(self.statement and self.column and self.source_line)


@dataclass
class MetricSummary:
    """A row of the SOP summary."""
    metric: str
    value: str = EMPTY_VALUE
    statement: str = ""
    column: str = ""
    source_line: str = ""
    manual: bool = False

    @property
    def provenance(self) -> Provenance:
        return Provenance(
            statement=self.statement,
            column=self.column,
            source_line=self.source_line,
        )

    def copy(self) -> "MetricSummary":
        return replace(self)

    def to_dict(self) -> Dict[str, object]:
        return {
            "metric": self.metric,
            "value": self.value,
            "statement": self.statement,
            "column": self.column,
            "sourceLine": self.source_line,
            "manual": self.manual,
        }


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class ResolvedValue:
    """A numeric value found for a (statement, line item) reference."""
    numeric_value: Decimal
    column_name: str
    statement_name: str
    line_item_name: str
    display_value: str


@dataclass
class EntryEvaluation:
    """Outcome of evaluating a manual entry."""
    total: Decimal
    columns_used: List[str] = field(default_factory=list)
    formula_text: str = ""


@dataclass(frozen=True)
class BreakdownRow:
    """A classified line item listed under its metric."""
    row_id: str
    statement: str
    line_item: str
    values: Dict[str, str] = field(default_factory=dict)
