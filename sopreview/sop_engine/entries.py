"""
Manual entry state for the SOP Engine.

Per-metric manual entries, the in-progress draft for each metric, and which
metrics are expanded in the review screen. The state object is passed
explicitly into aggregation; nothing here is global.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

import structlog

from sopreview.exceptions import InvalidManualEntryError, ManualEntryNotFoundError
from sopreview.sop_engine.line_items import normalise_key
from sopreview.sop_engine.models import CalculationStep, ManualEntry, Operator

logger = structlog.get_logger(__name__)

ENTRY_FIELDS = ("statement", "line_item", "column", "value")
STEP_FIELDS = ("operator", "statement", "line_item", "column", "constant")


def _set_step_field(step: CalculationStep, name: str, value) -> None:
    if name not in STEP_FIELDS:
        raise InvalidManualEntryError(f"Unknown calculation field {name!r}")
    if name == "operator":
        step.operator = Operator.parse(value)
    else:
        setattr(step, name, "" if value is None else str(value))
        # An edited operand no longer points at the removed column
        step.cleared = False


def clean_step(step: CalculationStep) -> CalculationStep:
    """Copy of a step with trimmed text fields."""
    return CalculationStep(
        operator=step.operator,
        statement=(step.statement or "").strip(),
        line_item=(step.line_item or "").strip(),
        column=(step.column or "").strip(),
        constant=(step.constant or "").strip(),
        cleared=step.cleared,
    )


@dataclass
class ManualEntryState:
    """
    Manual entries keyed by metric, plus per-metric drafts.

    A metric key is present only while it holds at least one entry.
    """
    entries: Dict[str, List[ManualEntry]] = field(default_factory=dict)
    drafts: Dict[str, ManualEntry] = field(default_factory=dict)
    expanded: Set[str] = field(default_factory=set)

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    def entries_for(self, metric: str) -> List[ManualEntry]:
        return list(self.entries.get(metric, []))

    def metrics(self) -> List[str]:
        return [metric for metric, entries in self.entries.items() if entries]

    def add_entry(self, metric: str, entry: ManualEntry) -> ManualEntry:
        self.entries.setdefault(metric, []).append(entry)
        logger.info("Manual entry added", metric=metric, entry_id=entry.id)
        return entry

    def get_entry(self, metric: str, entry_id: str) -> ManualEntry:
        for entry in self.entries.get(metric, []):
            if entry.id == entry_id:
                return entry
        raise ManualEntryNotFoundError(metric, entry_id)

    def update_entry(self, metric: str, entry_id: str, **fields) -> ManualEntry:
        """
        Update base fields of an entry.

        Args:
            metric: Metric the entry belongs to.
            entry_id: Entry identifier.
            **fields: Any of statement, line_item, column, value.
        """
        entry = self.get_entry(metric, entry_id)
        for name, value in fields.items():
            if name not in ENTRY_FIELDS:
                raise InvalidManualEntryError(f"Unknown entry field {name!r}")
            setattr(entry, name, "" if value is None else str(value))
        return entry

    def update_step(self, metric: str, entry_id: str, index: int, **fields) -> CalculationStep:
        """Update a calculation step, padding the chain with empty steps as needed."""
        entry = self.get_entry(metric, entry_id)
        while len(entry.calculation) <= index:
            entry.calculation.append(CalculationStep())
        step = entry.calculation[index]
        for name, value in fields.items():
            _set_step_field(step, name, value)
        return step

    def add_step(self, metric: str, entry_id: str, operator: Operator = Operator.ADD) -> CalculationStep:
        entry = self.get_entry(metric, entry_id)
        step = CalculationStep(operator=operator)
        entry.calculation.append(step)
        return step

    def remove_step(self, metric: str, entry_id: str, index: int) -> None:
        entry = self.get_entry(metric, entry_id)
        entry.calculation = [step for position, step in enumerate(entry.calculation) if position != index]

    def remove_entry(self, metric: str, entry_id: str) -> None:
        existing = self.entries.get(metric, [])
        remaining = [entry for entry in existing if entry.id != entry_id]
        if len(remaining) == len(existing):
            raise ManualEntryNotFoundError(metric, entry_id)
        if remaining:
            self.entries[metric] = remaining
        else:
            del self.entries[metric]
        logger.info("Manual entry removed", metric=metric, entry_id=entry_id)

    # -------------------------------------------------------------------------
    # Drafts
    # -------------------------------------------------------------------------

    def draft_for(self, metric: str) -> ManualEntry:
        if metric not in self.drafts:
            self.drafts[metric] = ManualEntry(id=f"draft-{normalise_key(metric)}")
        return self.drafts[metric]

    def update_draft(self, metric: str, statement: Optional[str] = None, line_item: Optional[str] = None) -> ManualEntry:
        draft = self.draft_for(metric)
        if statement is not None:
            draft.statement = statement
        if line_item is not None:
            draft.line_item = line_item
        return draft

    def update_draft_step(self, metric: str, index: int, **fields) -> CalculationStep:
        draft = self.draft_for(metric)
        while len(draft.calculation) <= index:
            draft.calculation.append(CalculationStep())
        step = draft.calculation[index]
        for name, value in fields.items():
            _set_step_field(step, name, value)
        return step

    def add_draft_step(self, metric: str, operator: Operator = Operator.ADD) -> CalculationStep:
        step = CalculationStep(operator=operator)
        self.draft_for(metric).calculation.append(step)
        return step

    def remove_draft_step(self, metric: str, index: int) -> None:
        if metric not in self.drafts:
            return
        draft = self.drafts[metric]
        draft.calculation = [step for position, step in enumerate(draft.calculation) if position != index]

    def commit_draft(self, metric: str) -> ManualEntry:
        """
        Turn the metric's draft into a stored manual entry.

        Raises:
            InvalidManualEntryError: If the draft lacks a statement, a line
                item, or at least one non-empty calculation step.
        """
        draft = self.draft_for(metric)
        statement = (draft.statement or "").strip()
        line_item = (draft.line_item or "").strip()
        steps = [clean_step(step) for step in draft.calculation]
        steps = [step for step in steps if not step.is_empty]

        if not statement or not line_item:
            raise InvalidManualEntryError(
                "Provide both a statement and line item before adding a breakdown row",
                details={"metric": metric},
            )
        if not steps:
            raise InvalidManualEntryError(
                "Add at least one calculation step before adding a breakdown row",
                details={"metric": metric},
            )

        entry = ManualEntry(statement=statement, line_item=line_item, calculation=steps)
        self.add_entry(metric, entry)
        self.drafts[metric] = ManualEntry(id=draft.id)
        return entry

    # -------------------------------------------------------------------------
    # Expansion
    # -------------------------------------------------------------------------

    def toggle_expanded(self, metric: str) -> bool:
        if metric in self.expanded:
            self.expanded.discard(metric)
            return False
        self.expanded.add(metric)
        return True

    # -------------------------------------------------------------------------
    # Column invalidation
    # -------------------------------------------------------------------------

    def invalidate_column(self, column: str) -> int:
        """
        Drop references to a removed column.

        Entries whose base column matches lose their base column and literal
        value; steps on that column are marked cleared.

        Returns:
            Number of entries touched.
        """
        column_key = normalise_key(column)
        touched = 0
        for entries in self.entries.values():
            for entry in entries:
                changed = False
                if normalise_key(entry.column) == column_key:
                    entry.column = ""
                    entry.value = ""
                    changed = True
                for step in entry.calculation:
                    if normalise_key(step.column) == column_key and not step.cleared:
                        step.cleared = True
                        changed = True
                if changed:
                    touched += 1
        return touched

    @classmethod
    def from_entries(cls, entries: Dict[str, Iterable[ManualEntry]]) -> "ManualEntryState":
        state = cls()
        for metric, items in entries.items():
            items = list(items)
            if items:
                state.entries[metric] = items
        return state
