"""
Numeric normalization for statement values.

Handles parsing of human-formatted cell text:
- Thousands separators: 1,234,567 / 1 234 567
- Negative notation: parentheses (123), minus sign -123, unicode dashes
- Stray currency symbols and labels are dropped

and formatting numbers back to grouped display text.
"""
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Optional, Union

from sopreview.sop_engine.models import EMPTY_VALUE

NumericInput = Union[str, int, float, Decimal, None]

# Unicode minus sign, figure dash, en dash, em dash
MINUS_VARIANTS_PATTERN = re.compile("[\u2212\u2012\u2013\u2014]")
SEPARATORS_PATTERN = re.compile(r"[, ]+")
PARENTHESES_PATTERN = re.compile(r"^\((.*)\)$")
NON_NUMERIC_PATTERN = re.compile(r"[^0-9.\-]")
PERCENT_PATTERN = re.compile(r"%|percent|pct", re.IGNORECASE)

MAX_FRACTION_DIGITS = 10
_QUANTUM = Decimal(1).scaleb(-MAX_FRACTION_DIGITS)


def parse_numeric_value(value: NumericInput) -> Optional[Decimal]:
    """
    Parse a cell value into a Decimal.

    Args:
        value: Raw cell text or an already numeric value.

    Returns:
        The parsed Decimal, or None when nothing numeric remains.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            return None
        return number if number.is_finite() else None

    text = str(value).strip()
    if not text:
        return None

    text = MINUS_VARIANTS_PATTERN.sub("-", text)
    text = SEPARATORS_PATTERN.sub("", text)
    text = PARENTHESES_PATTERN.sub(r"-\1", text)
    text = NON_NUMERIC_PATTERN.sub("", text)

    if text in ("", "-", ".", "-."):
        return None

    try:
        number = Decimal(text)
    except InvalidOperation:
        return None

    return number if number.is_finite() else None


def format_numeric_value(value: NumericInput) -> Optional[str]:
    """
    Format a number as grouped display text.

    Up to 10 fractional digits are kept; trailing zeros and a bare decimal
    point are trimmed.

    Args:
        value: Number to format.

    Returns:
        Display text such as "1,234.5", or None for non-finite input.
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        return None

    if not number.is_finite():
        return None

    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, number.adjusted() + MAX_FRACTION_DIGITS + 2)
        rounded = number.quantize(_QUANTUM, rounding=ROUND_HALF_UP)

    if rounded.is_zero():
        rounded = Decimal(0)

    text = f"{rounded:,f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def normalise_display_value(value: NumericInput) -> str:
    """Display text for a summary value; blanks become "-"."""
    if value is None:
        return EMPTY_VALUE
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return format_numeric_value(value) or EMPTY_VALUE
    text = str(value).strip()
    return text or EMPTY_VALUE


# =============================================================================
# Statement-wide Transforms
# =============================================================================

def scale_by_thousand(value: NumericInput, multiplier: int = 1000) -> Optional[str]:
    """
    Multiply a cell by 1,000 (figures reported in thousands).

    Percentage cells are left alone.

    Returns:
        The scaled display text, or None when the cell should not change.
    """
    if value is None:
        return None
    raw = str(value)
    if not raw.strip() or PERCENT_PATTERN.search(raw):
        return None
    number = parse_numeric_value(raw)
    if number is None:
        return None
    return format_numeric_value(number * multiplier)


def to_absolute_value(value: NumericInput) -> Optional[str]:
    """Absolute value of a cell as display text, or None when unparsable."""
    number = parse_numeric_value(value)
    if number is None:
        return None
    return format_numeric_value(abs(number))
