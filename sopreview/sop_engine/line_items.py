"""
Line-item index for the SOP Engine.

Groups line items by (statement, label), case and whitespace insensitive.
"""

from typing import Dict, Iterable, List, Optional

from sopreview.sop_engine.models import LineItem

KEY_SEPARATOR = "||"


def normalise_key(value: Optional[object]) -> str:
    """Trim and lowercase a value for case-insensitive comparison."""
    if value is None:
        return ""
    return str(value).strip().lower()


def line_item_key(statement: Optional[str], line_item: Optional[str]) -> str:
    return f"{normalise_key(statement)}{KEY_SEPARATOR}{normalise_key(line_item)}"


class LineItemIndex:
    """
    Index of line items by (statement, label).

    Several rows may share a key; they are kept in insertion order. Rows with
    a blank statement or label are not indexed.
    """

    def __init__(self):
        self._rows: Dict[str, List[LineItem]] = {}

    @classmethod
    def build(cls, line_items: Iterable[LineItem]) -> "LineItemIndex":
        index = cls()
        for item in line_items:
            index.add(item)
        return index

    def add(self, item: LineItem) -> None:
        if not normalise_key(item.statement) or not normalise_key(item.line_item):
            return
        self._rows.setdefault(line_item_key(item.statement, item.line_item), []).append(item)

    def rows_for(self, statement: Optional[str], line_item: Optional[str]) -> List[LineItem]:
        """All rows for a (statement, label) pair, in insertion order."""
        if not normalise_key(statement) or not normalise_key(line_item):
            return []
        return list(self._rows.get(line_item_key(statement, line_item), []))

    def first(self, statement: Optional[str], line_item: Optional[str]) -> Optional[LineItem]:
        rows = self.rows_for(statement, line_item)
        return rows[0] if rows else None

    def __len__(self) -> int:
        return len(self._rows)
