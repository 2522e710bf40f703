"""
Metric registry for the SOP summary.

Holds the canonical SOP metrics in their fixed reporting order plus any
metric names discovered at runtime (candidate metrics sent by the extraction
service, summary rows, and line-item classification tags).
"""

from typing import Dict, Iterable, List, Optional

import structlog

logger = structlog.get_logger(__name__)


SOP_METRICS: List[str] = [
    "Revenues",
    "Gross profit",
    "Operating Profits",
    "Interest Expense",
    "Interest Income",
    "Profit Before Tax",
    "Taxation",
    "Net Profit",
    "Fixed Assets",
    "Inventory",
    "Trade Receivables",
    "Cash",
    "Current Assets",
    "Total Assets",
    "Total Equity",
    "Trade Payables",
    "Current Liabilities",
    "Total Liabilities",
    "Total Debt",
    "Book Value",
    "OCF Qtrly",
    "Depreciation Qtrly",
    "Amortization Qtrly",
    "ICF Qtrly",
    "Capital Exp Qtrly",
    "FCF Qtrly",
    "Net Borrowings Qrtly",
    "Share Price Quaterly",
    "Tot. No. of Shares",
]


class MetricRegistry:
    """
    Registry of canonical and discovered metric names.

    Names are matched case-insensitively after trimming; the first spelling
    registered is the one kept.
    """

    def __init__(self, canonical: Optional[Iterable[str]] = None):
        self._names: Dict[str, str] = {}
        self._canonical: List[str] = []
        self._discovered: List[str] = []

        for name in canonical if canonical is not None else SOP_METRICS:
            cleaned = name.strip()
            if cleaned and cleaned.lower() not in self._names:
                self._names[cleaned.lower()] = cleaned
                self._canonical.append(cleaned)

    def resolve(self, name: Optional[str]) -> Optional[str]:
        """Return the registered spelling of a metric name, if known."""
        if not name:
            return None
        return self._names.get(str(name).strip().lower())

    def register(self, name: Optional[str]) -> Optional[str]:
        """
        Register a metric name.

        Args:
            name: Metric name; blank names are ignored.

        Returns:
            The registered spelling, or None for blank input.
        """
        cleaned = str(name).strip() if name is not None else ""
        if not cleaned:
            return None

        existing = self._names.get(cleaned.lower())
        if existing:
            return existing

        self._names[cleaned.lower()] = cleaned
        self._discovered.append(cleaned)
        logger.debug("Discovered metric", metric=cleaned)
        return cleaned

    def register_all(self, names: Iterable[Optional[str]]) -> None:
        for name in names:
            self.register(name)

    def is_canonical(self, name: str) -> bool:
        resolved = self.resolve(name)
        return resolved is not None and resolved in self._canonical

    def names(self) -> List[str]:
        """All metric names: canonical order first, then discovery order."""
        return self._canonical + self._discovered

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.resolve(name) is not None

    def __len__(self) -> int:
        return len(self._names)
