import json
import os
import tempfile
import threading
import unittest
import urllib.error
import urllib.request
from concurrent.futures import TimeoutError as FutureTimeoutError
from importlib import util as importlib_util
from unittest.mock import patch

from checkout_invoice import server
from checkout_invoice.checkout import CheckoutService
from checkout_invoice.errors import DeliveryError, FulfillmentError, LayoutError, OrderValidationError
from checkout_invoice.mailer import NullMailer
from checkout_invoice.server import error_response, page_limit_error, validate_checkout_payload
from checkout_invoice.store import OrderStore

FPDF_AVAILABLE = importlib_util.find_spec("fpdf") is not None

VALID = {
    "customer": {"name": "Priya", "email": "priya@example.com"},
    "products": [{"name": "Flower pots", "price": 120, "qty": 2}],
}


class ApiValidationTests(unittest.TestCase):
    def _json_bytes(self, payload: object) -> bytes:
        return json.dumps(payload).encode("utf-8")

    def test_accepts_valid_payload(self) -> None:
        with patch("checkout_invoice.server.page_limit_error", return_value=None):
            payload, error = validate_checkout_payload(self._json_bytes(VALID), max_pages=100)

        self.assertIsNone(error)
        assert payload is not None
        self.assertIn("products", payload)

    def test_rejects_invalid_utf8(self) -> None:
        _, error = validate_checkout_payload(b"\xff", max_pages=100)

        assert error is not None
        self.assertEqual(error[0], 400)
        self.assertEqual(error[1]["error"], "invalid_encoding")

    def test_rejects_invalid_json(self) -> None:
        _, error = validate_checkout_payload(b'{"products":', max_pages=100)

        assert error is not None
        self.assertEqual(error[0], 400)
        self.assertEqual(error[1]["error"], "invalid_json")

    def test_rejects_non_object_root(self) -> None:
        _, error = validate_checkout_payload(self._json_bytes(["bad-root"]), max_pages=100)

        assert error is not None
        self.assertEqual(error[0], 400)
        self.assertEqual(error[1]["error"], "invalid_order")
        self.assertEqual(error[1]["field"], "body")

    def test_rejects_empty_products(self) -> None:
        _, error = validate_checkout_payload(
            self._json_bytes({"customer": VALID["customer"], "products": []}), max_pages=100
        )

        assert error is not None
        self.assertEqual(error[0], 400)
        self.assertEqual(error[1]["field"], "products")

    def test_rejects_payload_exceeding_max_pages(self) -> None:
        too_large = (413, {"error": "invoice_too_large", "max_items": 10})
        with patch("checkout_invoice.server.page_limit_error", return_value=too_large) as check:
            _, error = validate_checkout_payload(self._json_bytes(VALID), max_pages=1)

        check.assert_called_once_with(1, 1)
        assert error is not None
        self.assertEqual(error[0], 413)
        self.assertEqual(error[1]["error"], "invoice_too_large")


@unittest.skipUnless(FPDF_AVAILABLE, "fpdf is not installed")
class PageLimitTests(unittest.TestCase):
    def test_small_order_is_within_limit(self) -> None:
        self.assertIsNone(page_limit_error(1, 1))

    def test_suggested_max_items_is_itself_accepted(self) -> None:
        for max_pages in (1, 2, 200):
            too_large = page_limit_error(100000, max_pages)
            assert too_large is not None
            status, body = too_large
            self.assertEqual(status, 413)
            self.assertEqual(body["error"], "invoice_too_large")
            self.assertIsNone(page_limit_error(body["max_items"], max_pages))
            self.assertIsNotNone(page_limit_error(body["max_items"] + 1, max_pages))

    def test_checkout_payload_over_page_limit(self) -> None:
        products = [{"name": f"Item {i}", "price": 1, "qty": 1} for i in range(200)]
        body = json.dumps({"customer": VALID["customer"], "products": products}).encode("utf-8")

        _, error = validate_checkout_payload(body, max_pages=1)

        assert error is not None
        self.assertEqual(error[0], 413)
        self.assertLess(error[1]["max_items"], 200)


class ErrorResponseTests(unittest.TestCase):
    def test_validation_error_names_field(self) -> None:
        status, body = error_response(OrderValidationError("products[0].qty", "must be positive"))

        self.assertEqual(status, 400)
        self.assertEqual(body["field"], "products[0].qty")

    def test_delivery_error_reports_order(self) -> None:
        class Stored:
            sequence = 42

        status, body = error_response(DeliveryError("smtp down", order=Stored()))

        self.assertEqual(status, 502)
        self.assertEqual(body["orderId"], 42)
        self.assertTrue(body["retryable"])

    def test_layout_error(self) -> None:
        status, body = error_response(LayoutError("row too tall"))

        self.assertEqual(status, 422)
        self.assertEqual(body["error"], "layout_failed")
        self.assertFalse(body["retryable"])

    def test_failure_after_storing_reports_order_without_retry(self) -> None:
        class Stored:
            sequence = 7

        exc = FulfillmentError("invoice failed", order=Stored())
        exc.__cause__ = FutureTimeoutError()

        status, body = error_response(exc)

        self.assertEqual(status, 504)
        self.assertEqual(body["error"], "invoice_failed")
        self.assertEqual(body["orderId"], 7)
        self.assertFalse(body["retryable"])

    def test_layout_error_after_storing_reports_order(self) -> None:
        class Stored:
            sequence = 8

        status, body = error_response(LayoutError("row too tall", order=Stored()))

        self.assertEqual(status, 422)
        self.assertEqual(body["orderId"], 8)
        self.assertFalse(body["retryable"])

    def test_render_timeout(self) -> None:
        status, body = error_response(FutureTimeoutError())

        self.assertEqual(status, 504)
        self.assertEqual(body["error"], "render_timeout")

    def test_unexpected_error(self) -> None:
        status, body = error_response(ValueError("boom"))

        self.assertEqual(status, 500)
        self.assertEqual(body["error"], "internal_error")


class CheckoutEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.mailer = NullMailer()
        self.service = service = CheckoutService(
            OrderStore(os.path.join(self.tmp.name, "orders.sqlite3")),
            self.mailer,
            lambda order: b"%PDF-1.4 test",
            shop="Test Shop",
            tmp_dir=self.tmp.name,
        )
        patchers = [
            patch.object(server, "SERVICE", service),
            patch("checkout_invoice.server.page_limit_error", return_value=None),
        ]
        for patcher in patchers:
            patcher.start()
            self.addCleanup(patcher.stop)

        self.httpd = server.InvoiceHTTPServer(("127.0.0.1", 0), server.InvoiceHandler)
        self.thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)
        self.thread.start()
        self.base = f"http://127.0.0.1:{self.httpd.server_address[1]}"

    def tearDown(self) -> None:
        self.httpd.shutdown()
        self.httpd.server_close()
        self.thread.join(timeout=5)
        self.tmp.cleanup()

    def _post(self, path: str, payload: object):
        request = urllib.request.Request(
            self.base + path,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=10) as response:
                return response.status, dict(response.headers), json.loads(response.read())
        except urllib.error.HTTPError as exc:
            with exc:
                return exc.code, dict(exc.headers), json.loads(exc.read())

    def test_checkout_returns_sequential_order_ids(self) -> None:
        first = self._post("/api/checkout", VALID)
        second = self._post("/api/checkout", VALID)

        self.assertEqual(first[0], 200)
        self.assertEqual(first[2], {"success": True, "orderId": 1})
        self.assertEqual(second[2]["orderId"], 2)
        self.assertEqual(list(self.mailer.sent), ["priya@example.com", "priya@example.com"])
        self.assertEqual(first[1]["Access-Control-Allow-Origin"], "*")

    def test_checkout_rejects_bad_payload(self) -> None:
        status, _, body = self._post("/api/checkout", {"customer": {}, "products": []})

        self.assertEqual(status, 400)
        self.assertFalse(body["success"])
        self.assertEqual(body["field"], "customer.email")
        self.assertEqual(list(self.mailer.sent), [])

    def test_checkout_rejects_out_of_range_price(self) -> None:
        payload = {"customer": VALID["customer"], "products": [{"name": "A", "price": 1e30, "qty": 1}]}

        status, _, body = self._post("/api/checkout", payload)

        self.assertEqual(status, 400)
        self.assertEqual(body["field"], "products[0].price")
        self.assertEqual(list(self.mailer.sent), [])

    def test_render_failure_returns_stored_order_id(self) -> None:
        def slow_render(order):
            raise FutureTimeoutError()

        self.service.render = slow_render
        with self.assertLogs("checkout_invoice.checkout", level="ERROR"):
            status, _, body = self._post("/api/checkout", VALID)

        self.assertEqual(status, 504)
        self.assertEqual(body["orderId"], 1)
        self.assertFalse(body["retryable"])
        self.assertEqual(self.service.store.next_sequence(), 2)

    def test_unknown_endpoint(self) -> None:
        status, _, body = self._post("/api/nope", VALID)

        self.assertEqual(status, 404)
        self.assertEqual(body["error"], "not_found")

    def test_health(self) -> None:
        with urllib.request.urlopen(self.base + "/health", timeout=10) as response:
            self.assertEqual(json.loads(response.read()), {"status": "ok"})


if __name__ == "__main__":
    unittest.main()
