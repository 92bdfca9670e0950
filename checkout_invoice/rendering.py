"""Invoice PDF layout and rendering logic."""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from fpdf import FPDF  # type: ignore

from . import config
from .errors import LayoutError
from .fonts import FontManager, FontPaths
from .formatting import fmt_date, fmt_money, fmt_qty, split_lines, wrap_chars, wrap_text
from .layout import (
    RGB,
    Align,
    Element,
    FilledRect,
    ImageRef,
    Page,
    PageCursor,
    PageGeometry,
    Rule,
    TextRun,
    TextStyle,
    draw_rule,
    fill_rect,
    place_text,
)
from .models import Order

logger = logging.getLogger(__name__)

COLOR_BRAND = (11, 63, 145)         # #0B3F91
COLOR_WHITE = (255, 255, 255)
COLOR_TEXT = (0, 0, 0)
COLOR_RULE = (220, 220, 220)


@dataclass(frozen=True)
class ColumnSpec:
    key: str
    title: str
    x: float
    width: float
    align: Align = Align.LEFT


DEFAULT_COLUMNS: Tuple[ColumnSpec, ...] = (
    ColumnSpec("sno", "S.No", 30.0, 32.0, Align.CENTER),
    ColumnSpec("description", "Description", 62.0, 248.0, Align.LEFT),
    ColumnSpec("qty", "Qty", 310.0, 50.0, Align.CENTER),
    ColumnSpec("price", "Price", 360.0, 100.0, Align.RIGHT),
    ColumnSpec("total", "Total", 460.0, 105.28, Align.RIGHT),
)


@dataclass(frozen=True)
class SellerInfo:
    name: str = "Crackers Shop"
    phone: str = ""
    address: str = ""
    short_name: str = ""

    @property
    def footer_name(self) -> str:
        return self.short_name or self.name


@dataclass(frozen=True)
class ExtraContentPage:
    """Free-form page (bank details, quotes) appended after the signature."""

    title: str
    lines: Tuple[str, ...] = ()


@dataclass(frozen=True)
class InvoiceLayout:
    geometry: PageGeometry = PageGeometry()
    columns: Tuple[ColumnSpec, ...] = DEFAULT_COLUMNS
    title: str = "INVOICE"
    footer_message: str = "Thank You!"
    currency_symbol: str = "₹"
    currency_fallback: str = "Rs. "
    date_format: str = "%d/%m/%Y"
    timezone: Optional[str] = "Asia/Kolkata"
    logo_path: Optional[str] = None

    header_band_height: float = 100.0
    billing_top: float = 120.0
    billing_line_height: float = 15.0
    address_columns: int = 2
    address_column_x: float = 330.0
    address_wrap_chars: Optional[int] = None
    estimated_billing_lines: int = 4
    section_gap: float = 20.0

    table_header_height: float = 20.0
    row_height: float = 20.0
    line_height: float = 12.0
    text_offset: float = 14.0
    cell_padding: float = 4.0
    subtotal_height: float = 30.0
    signature_height: float = 70.0

    size_title: float = 22.0
    size_heading: float = 12.0
    size_normal: float = 10.0
    extra_page: Optional[ExtraContentPage] = None

    def column(self, key: str) -> ColumnSpec:
        for col in self.columns:
            if col.key == key:
                return col
        raise KeyError(key)

    def estimated_table_top(self) -> float:
        rows = 1 + self.estimated_billing_lines
        if self.address_columns < 2:
            rows *= 2
        return self.billing_top + rows * self.billing_line_height + self.section_gap


class AssemblyState(enum.IntEnum):
    HEADER = 1
    BILLING_INFO = 2
    TABLE_HEADER = 3
    TABLE_ROWS = 4
    SUBTOTAL = 5
    SIGNATURE = 6
    EXTRA_CONTENT = 7
    FOOTER_BACKFILL = 8
    DONE = 9


@dataclass
class InvoiceDocument:
    pages: List[Page]
    subtotal: Decimal
    currency_symbol: str
    table_top: float
    row_extents: List[Tuple[int, float, float]] = field(default_factory=list)
    table_headers: Dict[int, List[Element]] = field(default_factory=dict)
    breaks: List[Tuple[int, float, float]] = field(default_factory=list)
    content_bottom: float = 0.0

    @property
    def page_count(self) -> int:
        return len(self.pages)


class InvoiceAssembler:
    """Lays an order out into a page arena, then backfills every footer."""

    def __init__(
        self,
        order: Order,
        layout: InvoiceLayout,
        seller: SellerInfo,
        fonts: FontManager,
    ) -> None:
        self.order = order
        self.layout = layout
        self.seller = seller
        self.fonts = fonts
        self.cursor = PageCursor(layout.geometry)
        self.state = AssemblyState.HEADER
        self.symbol = (
            layout.currency_symbol
            if fonts.supports(layout.currency_symbol)
            else layout.currency_fallback
        )
        self.subtotal = Decimal("0.00")
        self.row_extents: List[Tuple[int, float, float]] = []
        self.table_headers: Dict[int, List[Element]] = {}
        self.breaks: List[Tuple[int, float, float]] = []
        self.table_top = 0.0

    def _enter(self, state: AssemblyState) -> None:
        if state <= self.state:
            raise RuntimeError(f"Invoice assembly cannot move from {self.state.name} to {state.name}")
        self.state = state

    def _style(self, size: Optional[float] = None, color: RGB = COLOR_TEXT, bold: bool = False,
               align: Align = Align.LEFT) -> TextStyle:
        return TextStyle(size or self.layout.size_normal, color, bold, align)

    def _ensure(self, height: float) -> None:
        page_no, y = self.cursor.position()
        if self.cursor.ensure_space(height):
            self.breaks.append((page_no, y, height))

    def _text(self, text: str, x: float, baseline: float, style: TextStyle, width: float = 0.0) -> TextRun:
        return place_text(self.cursor.page.elements, self.fonts, text, x, baseline, style, width)

    # Sections

    def _draw_header_band(self) -> None:
        lay = self.layout
        geo = lay.geometry
        page = self.cursor.page.elements
        fill_rect(page, 0.0, 0.0, geo.width, lay.header_band_height, COLOR_BRAND)

        if lay.logo_path:
            if os.path.exists(lay.logo_path):
                page.append(ImageRef(lay.logo_path, geo.width - 110.0, 15.0, 80.0))
            else:
                logger.warning("Logo %s missing; rendering invoice without it", lay.logo_path)

        white = self._style(color=COLOR_WHITE)
        self._text(lay.title, geo.margin_side, 57.0, self._style(lay.size_title, COLOR_WHITE, bold=True))
        self._text(f"Invoice No: {self.order.invoice_number}", geo.margin_side, 76.0, white)
        date_text = fmt_date(self.order.created_at, lay.date_format, lay.timezone)
        self._text(f"Date: {date_text}", geo.margin_side, 90.0, white)
        self.cursor.advance_to(lay.header_band_height)

    def _wrap_address(self, text: str, width: float) -> List[str]:
        if self.layout.address_wrap_chars:
            return wrap_chars(text, self.layout.address_wrap_chars)
        return wrap_text(self.fonts, text, width, self.layout.size_heading)

    def _billing_blocks(self, buyer_width: float, seller_width: float) -> Tuple[List[str], List[str]]:
        customer = self.order.customer
        buyer = [customer.name]
        if customer.phone:
            buyer.append(customer.phone)
        buyer.extend(self._wrap_address(customer.address, buyer_width))
        if customer.pincode:
            buyer.append(f"Pincode: {customer.pincode}")

        seller = [self.seller.name]
        if self.seller.phone:
            seller.append(self.seller.phone)
        seller.extend(self._wrap_address(self.seller.address, seller_width))
        return buyer, seller

    def _draw_billing_info(self) -> None:
        lay = self.layout
        geo = lay.geometry
        line_h = lay.billing_line_height
        label = self._style(lay.size_heading, bold=True)
        body = self._style(lay.size_heading)
        self.cursor.advance_to(lay.billing_top)

        if lay.address_columns >= 2:
            left_x = geo.margin_side
            right_x = lay.address_column_x
            buyer, seller = self._billing_blocks(
                right_x - left_x - 30.0,
                geo.width - geo.margin_side - right_x,
            )
            rows = [("Bill To:", "From:", label)]
            for i in range(max(len(buyer), len(seller))):
                rows.append((
                    buyer[i] if i < len(buyer) else "",
                    seller[i] if i < len(seller) else "",
                    body,
                ))
            for left, right, style in rows:
                self._ensure(line_h)
                baseline = self.cursor.y + lay.size_heading
                if left:
                    self._text(left, left_x, baseline, style)
                if right:
                    self._text(right, right_x, baseline, style)
                self.cursor.advance(line_h)
        else:
            buyer, seller = self._billing_blocks(geo.content_width, geo.content_width)
            blocks = (("Bill To:", buyer), ("From:", seller))
            for index, (title, lines) in enumerate(blocks):
                if index:
                    self.cursor.advance(line_h / 2.0)
                for text, style in [(title, label)] + [(line, body) for line in lines]:
                    self._ensure(line_h)
                    self._text(text, geo.margin_side, self.cursor.y + lay.size_heading, style)
                    self.cursor.advance(line_h)

        self.cursor.advance(lay.section_gap)

    def _cell(self, key: str) -> Tuple[float, float]:
        col = self.layout.column(key)
        pad = self.layout.cell_padding
        return col.x + pad, col.width - 2 * pad

    def _draw_table_header(self, cursor: PageCursor) -> None:
        lay = self.layout
        top = cursor.y
        start = len(cursor.page.elements)
        first = lay.columns[0]
        last = lay.columns[-1]
        fill_rect(cursor.page.elements, first.x, top, last.x + last.width - first.x,
                  lay.table_header_height, COLOR_BRAND)
        for col in lay.columns:
            x, width = self._cell(col.key)
            self._text(col.title, x, top + lay.text_offset,
                       self._style(color=COLOR_WHITE, bold=True, align=col.align), width)
        self.table_headers[cursor.page.number] = cursor.page.elements[start:]
        cursor.advance(lay.table_header_height)

    def _row_lines(self, description: str) -> List[str]:
        _, width = self._cell("description")
        return wrap_text(self.fonts, description, width, self.layout.size_normal) or [""]

    def _draw_row(self, index: int, description: str, qty: int, price: Decimal, amount: Decimal) -> None:
        lay = self.layout
        lines = self._row_lines(description)
        height = lay.row_height + (len(lines) - 1) * lay.line_height
        self._ensure(height)

        top = self.cursor.y
        baseline = top + lay.text_offset
        cells = (
            ("sno", str(index)),
            ("qty", fmt_qty(qty)),
            ("price", fmt_money(price, self.symbol)),
            ("total", fmt_money(amount, self.symbol)),
        )
        for key, text in cells:
            x, width = self._cell(key)
            self._text(text, x, baseline, self._style(align=lay.column(key).align), width)

        desc_x, _ = self._cell("description")
        for i, line in enumerate(lines):
            self._text(line, desc_x, baseline + i * lay.line_height, self._style())

        first = lay.columns[0]
        last = lay.columns[-1]
        draw_rule(self.cursor.page.elements, first.x, last.x + last.width, top + height, COLOR_RULE, 0.5)
        self.row_extents.append((self.cursor.page.number, top, top + height))
        self.cursor.advance(height)

    def _draw_subtotal(self) -> None:
        lay = self.layout
        self._ensure(lay.subtotal_height)
        price = lay.column("price")
        total = lay.column("total")
        band_top = self.cursor.y + lay.subtotal_height - lay.row_height
        fill_rect(self.cursor.page.elements, price.x, band_top,
                  total.x + total.width - price.x, lay.row_height, COLOR_BRAND)

        label_x, _ = self._cell("price")
        baseline = band_top + lay.text_offset
        self._text("Sub Total", label_x, baseline, self._style(color=COLOR_WHITE, bold=True))
        x, width = self._cell("total")
        self._text(fmt_money(self.subtotal, self.symbol), x, baseline,
                   self._style(color=COLOR_WHITE, bold=True, align=Align.RIGHT), width)
        self.cursor.advance(lay.subtotal_height)

    def _draw_signature(self) -> None:
        lay = self.layout
        geo = lay.geometry
        self._ensure(lay.signature_height)
        right = geo.width - geo.margin_side
        left = right - 200.0
        line_y = self.cursor.y + lay.signature_height - 25.0
        draw_rule(self.cursor.page.elements, left, right, line_y, COLOR_TEXT)
        self._text("Authorized Signature", left, line_y + 16.0,
                   self._style(lay.size_heading, bold=True, align=Align.CENTER), right - left)
        self.cursor.advance(lay.signature_height)

    def _draw_extra_page(self, extra: ExtraContentPage) -> None:
        lay = self.layout
        geo = lay.geometry
        self.cursor.new_page()
        self._ensure(lay.section_gap + lay.size_title)
        self._text(extra.title, geo.margin_side, self.cursor.y + lay.size_title,
                   self._style(lay.size_title - 6, bold=True))
        self.cursor.advance(lay.section_gap + lay.size_title)
        for entry in extra.lines:
            for line in wrap_text(self.fonts, entry, geo.content_width, lay.size_heading) or [""]:
                self._ensure(lay.billing_line_height)
                self._text(line, geo.margin_side, self.cursor.y + lay.size_heading,
                           self._style(lay.size_heading))
                self.cursor.advance(lay.billing_line_height)

    def _footer(self, page_number: int, page_count: int) -> List[Element]:
        lay = self.layout
        geo = lay.geometry
        top = geo.height - geo.footer_height
        baseline = top + 19.0
        footer: List[Element] = []
        fill_rect(footer, 0.0, top, geo.width, geo.footer_height, COLOR_BRAND)
        style = self._style(color=COLOR_WHITE, bold=True)
        place_text(footer, self.fonts, self.seller.footer_name, geo.margin_side, baseline, style)
        place_text(footer, self.fonts, lay.footer_message, 0.0, baseline,
                   self._style(color=COLOR_WHITE, bold=True, align=Align.CENTER), geo.width)
        place_text(footer, self.fonts, f"Page {page_number} of {page_count}", geo.margin_side, baseline,
                   self._style(color=COLOR_WHITE, bold=True, align=Align.RIGHT), geo.content_width)
        return footer

    def _backfill_footers(self) -> None:
        pages = self.cursor.pages
        for page in pages:
            page.footer = self._footer(page.number, len(pages))

    def assemble(self) -> InvoiceDocument:
        if self.state is not AssemblyState.HEADER:
            raise RuntimeError("InvoiceAssembler.assemble() can only run once")

        self._draw_header_band()

        self._enter(AssemblyState.BILLING_INFO)
        self._draw_billing_info()

        self._enter(AssemblyState.TABLE_HEADER)
        self._ensure(self.layout.table_header_height + self.layout.row_height)
        self.table_top = self.cursor.y
        self._draw_table_header(self.cursor)
        self.cursor.repeat_on_new_page(self._draw_table_header, self.layout.table_header_height)

        self._enter(AssemblyState.TABLE_ROWS)
        for index, item in enumerate(self.order.items, start=1):
            self._draw_row(index, item.description, item.quantity, item.unit_price, item.amount)
            self.subtotal += item.amount

        self._enter(AssemblyState.SUBTOTAL)
        self._draw_subtotal()
        self.cursor.clear_repeat()

        self._enter(AssemblyState.SIGNATURE)
        self._draw_signature()

        self._enter(AssemblyState.EXTRA_CONTENT)
        if self.layout.extra_page is not None:
            self._draw_extra_page(self.layout.extra_page)

        self._enter(AssemblyState.FOOTER_BACKFILL)
        self._backfill_footers()

        self._enter(AssemblyState.DONE)
        return InvoiceDocument(
            pages=self.cursor.pages,
            subtotal=self.subtotal,
            currency_symbol=self.symbol,
            table_top=self.table_top,
            row_extents=self.row_extents,
            table_headers=self.table_headers,
            breaks=self.breaks,
            content_bottom=self.cursor.content_bottom,
        )


class InvoiceRenderer:
    def __init__(
        self,
        order: Order,
        layout: Optional[InvoiceLayout] = None,
        seller: Optional[SellerInfo] = None,
        font_paths: Optional[FontPaths] = None,
    ) -> None:
        self.order = order
        self.layout = layout or InvoiceLayout()
        self.seller = seller or SellerInfo()
        geometry = self.layout.geometry

        self.pdf = FPDF(unit="pt", format=(geometry.width, geometry.height))
        self.pdf.set_auto_page_break(False)
        self.pdf.set_creation_date(order.created_at)
        self.pdf.set_title(f"Invoice {order.invoice_number}")
        self.pdf.set_author(self.seller.name)
        self.fonts = FontManager(self.pdf, font_paths)

    def layout_document(self) -> InvoiceDocument:
        return InvoiceAssembler(self.order, self.layout, self.seller, self.fonts).assemble()

    def _paint(self, element: Element) -> None:
        if isinstance(element, TextRun):
            style = element.style
            self.fonts.draw_text(element.x, element.y, element.text, style.size, style.color, bold=style.bold)
        elif isinstance(element, FilledRect):
            self.pdf.set_fill_color(*element.color)
            self.pdf.rect(element.x, element.y, element.width, element.height, style="F")
        elif isinstance(element, Rule):
            self.pdf.set_draw_color(*element.color)
            self.pdf.set_line_width(element.thickness)
            self.pdf.line(element.x1, element.y, element.x2, element.y)
        elif isinstance(element, ImageRef):
            try:
                self.pdf.image(element.path, x=element.x, y=element.y, w=element.width)
            except Exception:
                logger.warning("Could not embed image %s; skipping it", element.path, exc_info=True)
        else:
            raise TypeError(f"Unknown page element {type(element).__name__}")

    def paint(self, document: InvoiceDocument) -> bytes:
        for page in document.pages:
            if page.footer is None:
                raise LayoutError(f"Page {page.number} has no footer; footer backfill did not run")
        for page in document.pages:
            self.pdf.add_page()
            for element in page.elements:
                self._paint(element)
            for element in page.footer or ():
                self._paint(element)

        pdf_blob = self.pdf.output()
        if isinstance(pdf_blob, (bytes, bytearray)):
            return bytes(pdf_blob)
        if isinstance(pdf_blob, str):
            try:
                return pdf_blob.encode("latin-1")
            except UnicodeEncodeError as exc:
                raise RuntimeError(
                    "PDF serialization failed due to non-Latin-1 content. "
                    "Check Unicode font configuration (INVOICE_FONT_PATH/INVOICE_FONT_BOLD_PATH)."
                ) from exc
        raise RuntimeError(f"Unexpected PDF output type: {type(pdf_blob).__name__}")

    def render(self) -> bytes:
        return self.paint(self.layout_document())


def layout_invoice(
    order: Order,
    layout: Optional[InvoiceLayout] = None,
    seller: Optional[SellerInfo] = None,
    font_paths: Optional[FontPaths] = None,
) -> InvoiceDocument:
    return InvoiceRenderer(order, layout, seller, font_paths).layout_document()


def render_invoice(
    order: Order,
    layout: Optional[InvoiceLayout] = None,
    seller: Optional[SellerInfo] = None,
    font_paths: Optional[FontPaths] = None,
) -> bytes:
    return InvoiceRenderer(order, layout, seller, font_paths).render()


def configured_seller() -> SellerInfo:
    return SellerInfo(
        name=config.SHOP_NAME,
        phone=config.SHOP_PHONE,
        address=config.SHOP_ADDRESS,
        short_name=config.SHOP_SHORT_NAME,
    )


def configured_layout() -> InvoiceLayout:
    extra = None
    if config.EXTRA_PAGE_TITLE:
        extra = ExtraContentPage(
            title=config.EXTRA_PAGE_TITLE,
            lines=tuple(split_lines(config.EXTRA_PAGE_TEXT.replace("\\n", "\n"))),
        )
    return InvoiceLayout(
        currency_symbol=config.CURRENCY_SYMBOL or "₹",
        timezone=config.TIMEZONE or None,
        logo_path=config.LOGO_PATH or None,
        extra_page=extra,
    )
