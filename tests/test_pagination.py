import unittest
from importlib import util as importlib_util

from checkout_invoice.pagination import count_pages, fits, units_per_page

FPDF_AVAILABLE = importlib_util.find_spec("fpdf") is not None
if FPDF_AVAILABLE:
    from checkout_invoice.pagination import estimate_page_count, max_items_for_pages
    from checkout_invoice.rendering import ExtraContentPage, InvoiceLayout


class PageBreakPredicateTests(unittest.TestCase):
    def test_fits_boundary_values(self) -> None:
        self.assertTrue(fits(700.0, 50.0, 750.0))
        self.assertFalse(fits(700.1, 50.0, 750.0))
        self.assertTrue(fits(0.0, 0.0, 0.0))

    def test_units_per_page(self) -> None:
        self.assertEqual(units_per_page(700.0, 20.0), 35)
        self.assertEqual(units_per_page(699.0, 20.0), 34)
        self.assertEqual(units_per_page(10.0, 20.0), 0)
        with self.assertRaises(ValueError):
            units_per_page(100.0, 0.0)

    def test_count_pages_applies_preamble_after_break(self) -> None:
        self.assertEqual(count_pages(0.0, 0.0, 100.0, [(50.0, 0.0)] * 2), 1)
        self.assertEqual(count_pages(0.0, 0.0, 100.0, [(50.0, 0.0)] * 3), 2)
        # Each continuation page loses 20pt to the repeated band: 4 units per page.
        self.assertEqual(count_pages(0.0, 0.0, 100.0, [(20.0, 20.0)] * 9), 2)
        self.assertEqual(count_pages(0.0, 0.0, 100.0, [(20.0, 20.0)] * 10), 3)


@unittest.skipUnless(FPDF_AVAILABLE, "fpdf is not installed")
class EstimateTests(unittest.TestCase):
    def test_small_orders_fit_on_one_page(self) -> None:
        layout = InvoiceLayout()
        self.assertEqual(estimate_page_count(0, layout), 1)
        self.assertEqual(estimate_page_count(1, layout), 1)

    def test_estimate_grows_with_item_count(self) -> None:
        layout = InvoiceLayout()
        counts = [estimate_page_count(n, layout) for n in (10, 100, 400)]
        self.assertEqual(counts, sorted(counts))
        self.assertGreater(counts[-1], counts[0])

    def test_max_items_for_pages_is_consistent_with_estimate(self) -> None:
        layout = InvoiceLayout()
        for pages in (1, 2, 5, 200):
            limit = max_items_for_pages(pages, layout)
            self.assertLessEqual(estimate_page_count(limit, layout), pages)
            self.assertGreater(estimate_page_count(limit + 1, layout), pages)

    def test_max_items_accounts_for_extra_page(self) -> None:
        extra = InvoiceLayout(extra_page=ExtraContentPage("Bank Details", ("IFSC 123",)))
        self.assertEqual(max_items_for_pages(1, extra), 0)
        limit = max_items_for_pages(2, extra)
        self.assertEqual(limit, max_items_for_pages(1, InvoiceLayout()))

    def test_extra_page_adds_one(self) -> None:
        plain = InvoiceLayout()
        extra = InvoiceLayout(extra_page=ExtraContentPage("Bank Details", ("IFSC 123",)))
        self.assertEqual(estimate_page_count(5, extra), estimate_page_count(5, plain) + 1)


if __name__ == "__main__":
    unittest.main()
