"""Drawing primitives and the page/cursor manager used by the invoice layout."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Tuple, Union

from .errors import LayoutError
from .pagination import fits

RGB = Tuple[int, int, int]


class Align(enum.Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


@dataclass(frozen=True)
class TextStyle:
    size: float
    color: RGB
    bold: bool = False
    align: Align = Align.LEFT


@dataclass(frozen=True)
class TextRun:
    x: float
    y: float
    text: str
    style: TextStyle


@dataclass(frozen=True)
class FilledRect:
    x: float
    y: float
    width: float
    height: float
    color: RGB


@dataclass(frozen=True)
class Rule:
    x1: float
    x2: float
    y: float
    color: RGB
    thickness: float = 0.75


@dataclass(frozen=True)
class ImageRef:
    path: str
    x: float
    y: float
    width: float


Element = Union[TextRun, FilledRect, Rule, ImageRef]


@dataclass
class Page:
    number: int
    elements: List[Element] = field(default_factory=list)
    # Filled by the footer backfill pass once the page count is final.
    footer: Optional[List[Element]] = None

    def texts(self) -> List[str]:
        return [el.text for el in self.elements if isinstance(el, TextRun)]


@dataclass(frozen=True)
class PageGeometry:
    """Page size and margins in points (A4 by default)."""

    width: float = 595.28
    height: float = 841.89
    margin_top: float = 30.0
    margin_bottom: float = 20.0
    margin_side: float = 30.0
    footer_height: float = 30.0

    @property
    def content_bottom(self) -> float:
        return self.height - self.margin_bottom - self.footer_height

    @property
    def content_width(self) -> float:
        return self.width - 2 * self.margin_side


class TextMeasure(Protocol):
    def text_width(self, text: str, size: float, bold: bool = False) -> float:
        ...

    def sanitize(self, text: str) -> str:
        ...


def place_text(
    target: List[Element],
    fonts: TextMeasure,
    text: str,
    x: float,
    baseline: float,
    style: TextStyle,
    width: float = 0.0,
) -> TextRun:
    """Append a text run aligned inside the box ``[x, x + width]``."""
    text = fonts.sanitize(text)
    left = x
    if width and style.align is not Align.LEFT:
        measured = fonts.text_width(text, style.size, bold=style.bold)
        if style.align is Align.CENTER:
            left = x + (width - measured) / 2.0
        else:
            left = x + width - measured
    run = TextRun(left, baseline, text, style)
    target.append(run)
    return run


def fill_rect(target: List[Element], x: float, y: float, width: float, height: float, color: RGB) -> None:
    target.append(FilledRect(x, y, width, height, color))


def draw_rule(target: List[Element], x1: float, x2: float, y: float, color: RGB, thickness: float = 0.75) -> None:
    target.append(Rule(x1, x2, y, color, thickness))


RepeatBand = Callable[["PageCursor"], None]


class PageCursor:
    """Owns the page arena and the vertical write position on the last page.

    Content units are placed atomically: ``ensure_space`` starts a new page
    when a unit does not fit above the footer reservation, and re-emits the
    running band (the table header) registered with ``repeat_on_new_page``.
    """

    def __init__(self, geometry: PageGeometry) -> None:
        self.geometry = geometry
        self.pages: List[Page] = []
        self.y = geometry.margin_top
        self._repeat: Optional[RepeatBand] = None
        self._repeat_height = 0.0
        self._start_page()

    @property
    def page(self) -> Page:
        return self.pages[-1]

    @property
    def content_top(self) -> float:
        return self.geometry.margin_top

    @property
    def content_bottom(self) -> float:
        return self.geometry.content_bottom

    def position(self) -> Tuple[int, float]:
        return self.page.number, self.y

    def remaining(self) -> float:
        return self.content_bottom - self.y

    def advance(self, amount: float) -> None:
        if amount < 0:
            raise ValueError("cursor only moves down the page")
        self.y += amount

    def advance_to(self, y: float) -> None:
        self.y = max(self.y, y)

    def repeat_on_new_page(self, band: RepeatBand, height: float) -> None:
        self._repeat = band
        self._repeat_height = height

    def clear_repeat(self) -> None:
        self._repeat = None
        self._repeat_height = 0.0

    def fresh_page_capacity(self) -> float:
        return self.content_bottom - self.content_top - self._repeat_height

    def fits(self, height: float) -> bool:
        return fits(self.y, height, self.content_bottom)

    def ensure_space(self, height: float) -> bool:
        """Make room for a unit of ``height``; returns True if a page was added."""
        if self.fits(height):
            return False
        capacity = self.fresh_page_capacity()
        if height > capacity + 1e-6:
            raise LayoutError(
                f"Content unit of {height:.1f}pt does not fit on a page "
                f"with {capacity:.1f}pt of usable height."
            )
        self.new_page()
        return True

    def new_page(self) -> Page:
        page = self._start_page()
        if self._repeat is not None:
            self._repeat(self)
        return page

    def _start_page(self) -> Page:
        page = Page(number=len(self.pages) + 1)
        self.pages.append(page)
        self.y = self.content_top
        return page
