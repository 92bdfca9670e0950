"""Page-break predicate and page-count estimates for invoice tables."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Iterable, Optional, Tuple

if TYPE_CHECKING:
    from .rendering import InvoiceLayout


def fits(cursor: float, height: float, bottom_limit: float) -> bool:
    """A content unit fits when its bottom edge stays on or above ``bottom_limit``.

    Coordinates grow downward from the top edge of the page.
    """
    return cursor + height <= bottom_limit + 1e-6


def units_per_page(capacity: float, unit_height: float) -> int:
    if unit_height <= 0:
        raise ValueError("unit_height must be positive")
    return max(0, int(math.floor((capacity + 1e-6) / unit_height)))


def count_pages(
    start: float,
    top: float,
    bottom: float,
    units: Iterable[Tuple[float, float]],
) -> int:
    """Count pages needed to place ``units`` atomically from ``start``.

    Each unit is ``(height, preamble)``; ``preamble`` is the height of the band
    re-emitted at the top of a page that the unit has to break onto.
    """
    pages = 1
    y = start
    for height, preamble in units:
        if not fits(y, height, bottom):
            pages += 1
            y = top + preamble
        y += height
    return pages


def estimate_page_count(
    item_count: int,
    layout: "InvoiceLayout",
    table_top: Optional[float] = None,
) -> int:
    """Predict the page count for ``item_count`` single-line rows.

    ``table_top`` is where the first table header lands; by default it is
    estimated from a short billing block.
    """
    if table_top is None:
        table_top = layout.estimated_table_top()
    header_h = layout.table_header_height
    geometry = layout.geometry

    units = [(layout.row_height, header_h)] * item_count
    units.append((layout.subtotal_height, header_h))
    units.append((layout.signature_height, 0.0))
    pages = count_pages(
        table_top + header_h,
        geometry.margin_top,
        geometry.content_bottom,
        units,
    )
    if layout.extra_page is not None:
        pages += 1
    return pages


def _table_rows_upper_bound(page_count: int, layout: "InvoiceLayout") -> int:
    geometry = layout.geometry
    header_h = layout.table_header_height
    first = units_per_page(
        geometry.content_bottom - layout.estimated_table_top() - header_h,
        layout.row_height,
    )
    if page_count <= 1:
        return first
    per_page = units_per_page(
        geometry.content_bottom - geometry.margin_top - header_h,
        layout.row_height,
    )
    return first + per_page * (page_count - 1)


def max_items_for_pages(page_count: int, layout: "InvoiceLayout") -> int:
    """Largest item count whose estimated invoice fits in ``page_count`` pages.

    The estimate also places the subtotal, the signature and any extra page,
    so the answer is searched against :func:`estimate_page_count` itself.
    """
    low, high = 0, _table_rows_upper_bound(max(page_count, 1), layout)
    if estimate_page_count(0, layout) > page_count:
        return 0
    while low < high:
        mid = (low + high + 1) // 2
        if estimate_page_count(mid, layout) <= page_count:
            low = mid
        else:
            high = mid - 1
    return low
