"""Money, date and text-wrapping helpers."""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, List, Optional, Protocol, Union

from dateutil import parser as dateutil_parser
from dateutil import tz as dateutil_tz

CENT = Decimal("0.01")


class TextWidthProvider(Protocol):
    def text_width(self, text: str, size: float, bold: bool = False) -> float:
        ...


def to_money(value: Any) -> Decimal:
    """Quantize a price to cents, rounding half away from zero.

    Raises ValueError when the amount has too many digits to hold in cents.
    """
    if not isinstance(value, Decimal):
        # str() keeps floats like 0.1 from dragging binary noise into the sum.
        value = Decimal(str(value))
    try:
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"{value} is out of range for a money amount") from None


def fmt_money(amount: Union[Decimal, int, float], symbol: str) -> str:
    return f"{symbol}{to_money(amount):,.2f}"


def fmt_qty(qty: Any) -> str:
    try:
        quantity = float(qty)
        if quantity.is_integer():
            return str(int(quantity))
        return str(quantity)
    except (TypeError, ValueError):
        return str(qty)


def fmt_date(
    value: Union[datetime, str],
    fmt: str = "%d/%m/%Y",
    zone: Optional[str] = None,
) -> str:
    """Format a timestamp for display, converting aware values into ``zone``.

    Strings are parsed with dateutil; anything unparseable is returned as-is.
    """
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return raw
        try:
            dt = dateutil_parser.parse(raw)
        except (ValueError, OverflowError):
            return raw
    else:
        dt = value

    if zone and dt.tzinfo is not None:
        target = dateutil_tz.gettz(zone)
        if target is not None:
            dt = dt.astimezone(target)
    return dt.strftime(fmt)


def _wrap_paragraphs(text: str, fits: Callable[[str], bool]) -> List[str]:
    lines: List[str] = []
    for paragraph in text.split("\n"):
        words = paragraph.split()
        if not words:
            continue

        current = ""
        for word in words:
            candidate = word if not current else f"{current} {word}"
            if fits(candidate) or not current:
                # A single word wider than the budget still gets its own line.
                current = candidate
                continue
            lines.append(current)
            current = word
        lines.append(current)
    return lines


def wrap_text(
    fonts_obj: TextWidthProvider,
    text: str,
    max_width: float,
    font_size: float,
    bold: bool = False,
) -> List[str]:
    """Wrap ``text`` so each line measures at most ``max_width`` points.

    Words are never split, so rejoining the lines with single spaces gives
    back the whitespace-collapsed input. A single word wider than
    ``max_width`` is kept whole on its own line and overflows the budget;
    callers drawing into fixed table cells will see it run into the next
    column.
    """

    def fits(value: str) -> bool:
        return fonts_obj.text_width(value, font_size, bold=bold) <= max_width

    return _wrap_paragraphs(text, fits)


def wrap_chars(text: str, max_chars: int) -> List[str]:
    """Character-budget variant of :func:`wrap_text`."""
    if max_chars < 1:
        raise ValueError("max_chars must be positive")
    return _wrap_paragraphs(text, lambda value: len(value) <= max_chars)


def split_lines(text: str) -> List[str]:
    if not text:
        return []
    return [line.strip() for line in text.split("\n") if line.strip() != ""]
