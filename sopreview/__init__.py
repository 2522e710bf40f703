"""
SOP Review - metric derivation for reviewed financial statements.

Resolves SOP summary metrics from extracted statement line items, evaluates
user-authored calculation entries, and keeps the derived summary in sync with
line-item edits.
"""

__version__ = "1.0.0"
