import math
import unittest

from checkout_invoice.errors import LayoutError
from checkout_invoice.layout import (
    Align,
    FilledRect,
    PageCursor,
    PageGeometry,
    TextStyle,
    place_text,
)

# 700pt of usable height between the top margin and the footer reservation.
GEOMETRY = PageGeometry(
    width=600.0,
    height=800.0,
    margin_top=50.0,
    margin_bottom=30.0,
    margin_side=30.0,
    footer_height=20.0,
)


class FixedWidthFonts:
    def text_width(self, text: str, size: float, bold: bool = False) -> float:
        return 5.0 * len(text)

    def sanitize(self, text: str) -> str:
        return text


class PageCursorTests(unittest.TestCase):
    def test_starts_below_top_margin_on_page_one(self) -> None:
        cursor = PageCursor(GEOMETRY)
        self.assertEqual(cursor.position(), (1, 50.0))
        self.assertEqual(cursor.content_bottom, 750.0)
        self.assertEqual(cursor.remaining(), 700.0)

    def test_unit_that_exactly_fills_the_page_does_not_break(self) -> None:
        cursor = PageCursor(GEOMETRY)
        self.assertFalse(cursor.ensure_space(700.0))
        self.assertEqual(len(cursor.pages), 1)

    def test_break_when_unit_does_not_fit(self) -> None:
        cursor = PageCursor(GEOMETRY)
        cursor.advance(690.0)
        self.assertTrue(cursor.ensure_space(20.0))
        self.assertEqual(cursor.position(), (2, 50.0))

    def test_fixed_height_units_fill_predicted_page_count(self) -> None:
        cursor = PageCursor(GEOMETRY)
        row_h = 20.0
        rows_per_page = {}
        for _ in range(200):
            cursor.ensure_space(row_h)
            page_no, _ = cursor.position()
            rows_per_page[page_no] = rows_per_page.get(page_no, 0) + 1
            cursor.advance(row_h)

        self.assertEqual(len(cursor.pages), math.ceil(200 * row_h / 700.0))
        full_pages = [rows_per_page[n] for n in sorted(rows_per_page)][:-1]
        self.assertEqual(full_pages, [35] * (len(cursor.pages) - 1))

    def test_repeat_band_is_emitted_on_every_new_page(self) -> None:
        cursor = PageCursor(GEOMETRY)

        def band(c: PageCursor) -> None:
            c.page.elements.append(FilledRect(0.0, c.y, 100.0, 30.0, (0, 0, 0)))
            c.advance(30.0)

        cursor.repeat_on_new_page(band, 30.0)
        cursor.advance(700.0)
        cursor.ensure_space(10.0)
        cursor.advance(670.0)
        cursor.ensure_space(10.0)

        self.assertEqual(len(cursor.pages), 3)
        for page in cursor.pages[1:]:
            self.assertIsInstance(page.elements[0], FilledRect)
        self.assertEqual(cursor.y, 80.0)

        cursor.clear_repeat()
        cursor.new_page()
        self.assertEqual(cursor.page.elements, [])

    def test_unit_taller_than_usable_page_fails_without_adding_pages(self) -> None:
        cursor = PageCursor(GEOMETRY)
        cursor.repeat_on_new_page(lambda c: c.advance(30.0), 30.0)
        cursor.advance(100.0)
        with self.assertRaises(LayoutError):
            cursor.ensure_space(680.0)
        self.assertEqual(len(cursor.pages), 1)

    def test_advance_rejects_moving_up(self) -> None:
        with self.assertRaises(ValueError):
            PageCursor(GEOMETRY).advance(-1.0)


class PlaceTextTests(unittest.TestCase):
    def test_alignment_inside_box(self) -> None:
        fonts = FixedWidthFonts()
        target = []
        left = place_text(target, fonts, "abcd", 100.0, 10.0, TextStyle(10, (0, 0, 0)), 60.0)
        center = place_text(target, fonts, "abcd", 100.0, 10.0, TextStyle(10, (0, 0, 0), align=Align.CENTER), 60.0)
        right = place_text(target, fonts, "abcd", 100.0, 10.0, TextStyle(10, (0, 0, 0), align=Align.RIGHT), 60.0)

        self.assertEqual(left.x, 100.0)
        self.assertEqual(center.x, 120.0)
        self.assertEqual(right.x, 140.0)
        self.assertEqual(len(target), 3)


if __name__ == "__main__":
    unittest.main()
