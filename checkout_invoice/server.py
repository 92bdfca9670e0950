"""HTTP server entrypoints for checkout and invoice rendering."""

from __future__ import annotations

import atexit
import errno
import json
import logging
import multiprocessing as mp
import threading
from concurrent.futures import ProcessPoolExecutor, TimeoutError as FutureTimeoutError
from concurrent.futures.process import BrokenProcessPool
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional, Tuple

from . import config
from .checkout import CheckoutService
from .errors import DeliveryError, DependencyError, FulfillmentError, InvoiceError, OrderValidationError
from .mailer import NullMailer, SMTPMailer
from .models import Order, order_from_dict, parse_checkout
from .store import OrderStore

logger = logging.getLogger(__name__)

RENDER_INFLIGHT_SEMAPHORE = threading.BoundedSemaphore(config.MAX_INFLIGHT_RENDERS)
RENDER_EXECUTOR_LOCK = threading.Lock()
RENDER_EXECUTOR: Optional[ProcessPoolExecutor] = None
SERVICE_LOCK = threading.Lock()
SERVICE: Optional[CheckoutService] = None
ErrorResponse = Tuple[int, Dict[str, Any]]

DISCONNECT_ERRNOS = {errno.EPIPE, errno.ECONNRESET, errno.ETIMEDOUT}


def is_client_disconnect(exc: BaseException) -> bool:
    if isinstance(exc, (BrokenPipeError, ConnectionResetError, TimeoutError)):
        return True
    return isinstance(exc, OSError) and exc.errno in DISCONNECT_ERRNOS


def load_rendering():
    try:
        from . import rendering
    except ModuleNotFoundError as exc:
        if exc.name == "fpdf":
            raise DependencyError(
                "Missing dependency 'fpdf2'. Install project dependencies with "
                "'pip install -e .'."
            ) from exc
        raise
    return rendering


def render_with_config(order: Order) -> bytes:
    rendering = load_rendering()
    return rendering.render_invoice(order, rendering.configured_layout(), rendering.configured_seller())


def create_render_executor() -> ProcessPoolExecutor:
    return ProcessPoolExecutor(
        max_workers=config.MAX_CONCURRENT_RENDERS,
        mp_context=mp.get_context("spawn"),
    )


def get_render_executor() -> ProcessPoolExecutor:
    global RENDER_EXECUTOR
    with RENDER_EXECUTOR_LOCK:
        if RENDER_EXECUTOR is None:
            RENDER_EXECUTOR = create_render_executor()
        return RENDER_EXECUTOR


def restart_render_executor(previous: ProcessPoolExecutor) -> ProcessPoolExecutor:
    global RENDER_EXECUTOR
    with RENDER_EXECUTOR_LOCK:
        if RENDER_EXECUTOR is previous:
            previous.shutdown(wait=False, cancel_futures=True)
            RENDER_EXECUTOR = create_render_executor()
        if RENDER_EXECUTOR is None:
            RENDER_EXECUTOR = create_render_executor()
        return RENDER_EXECUTOR


def pooled_render(order: Order) -> bytes:
    """Render in the worker pool so a slow layout never blocks request threads."""
    executor = get_render_executor()
    try:
        future = executor.submit(render_with_config, order)
    except BrokenProcessPool:
        future = restart_render_executor(executor).submit(render_with_config, order)
    try:
        return future.result(timeout=config.RENDER_TIMEOUT_MS / 1000.0)
    except FutureTimeoutError:
        future.cancel()
        raise


def shutdown_render_executor() -> None:
    global RENDER_EXECUTOR
    with RENDER_EXECUTOR_LOCK:
        executor = RENDER_EXECUTOR
        RENDER_EXECUTOR = None
    if executor is not None:
        executor.shutdown(wait=False, cancel_futures=True)


atexit.register(shutdown_render_executor)


def get_checkout_service() -> CheckoutService:
    global SERVICE
    with SERVICE_LOCK:
        if SERVICE is None:
            settings = config.smtp_settings()
            if settings is None:
                logger.warning("INVOICE_SMTP_HOST not set; invoices will not be mailed")
                mailer = NullMailer()
            else:
                mailer = SMTPMailer(settings, shop=config.SHOP_NAME)
            SERVICE = CheckoutService(
                store=OrderStore(config.DB_PATH, config.SEQUENCE_START),
                mailer=mailer,
                render=pooled_render,
                shop=config.SHOP_NAME,
                tmp_dir=config.TMP_DIR,
            )
        return SERVICE


def decode_json_body(body: bytes) -> Tuple[Any, Optional[ErrorResponse]]:
    try:
        return json.loads(body.decode("utf-8")), None
    except UnicodeDecodeError:
        return None, (
            400,
            {"error": "invalid_encoding", "detail": "Body must be UTF-8 encoded JSON."},
        )
    except json.JSONDecodeError as exc:
        return None, (
            400,
            {
                "error": "invalid_json",
                "detail": f"{exc.msg} (line {exc.lineno}, column {exc.colno})",
            },
        )


def page_limit_error(item_count: int, max_pages: int) -> Optional[ErrorResponse]:
    from .pagination import estimate_page_count, max_items_for_pages

    layout = load_rendering().configured_layout()
    estimated_pages = estimate_page_count(item_count, layout)
    if estimated_pages <= max_pages:
        return None
    return (
        413,
        {
            "error": "invoice_too_large",
            "detail": f"Invoice would render {estimated_pages} pages; maximum is {max_pages}.",
            "max_items": max_items_for_pages(max_pages, layout),
        },
    )


def validate_checkout_payload(
    body: bytes,
    max_pages: int,
) -> Tuple[Optional[Dict[str, Any]], Optional[ErrorResponse]]:
    payload, error = decode_json_body(body)
    if error is not None:
        return None, error

    try:
        _, items = parse_checkout(payload)
    except OrderValidationError as exc:
        return None, error_response(exc)

    too_large = page_limit_error(len(items), max_pages)
    if too_large is not None:
        return None, too_large
    return payload, None


def _failure_status(exc: BaseException) -> ErrorResponse:
    if isinstance(exc, OrderValidationError):
        return exc.status, {"error": exc.code, "field": exc.field, "detail": exc.detail}
    if isinstance(exc, InvoiceError):
        return exc.status, {"error": exc.code, "detail": str(exc), "retryable": exc.retryable}
    if isinstance(exc, FutureTimeoutError):
        return 504, {
            "error": "render_timeout",
            "detail": f"Render exceeded timeout of {config.RENDER_TIMEOUT_MS} ms.",
        }
    if isinstance(exc, BrokenProcessPool):
        return 503, {
            "error": "render_pool_restarting",
            "detail": "Render worker pool restarted; retry shortly.",
        }
    return 500, {"error": "internal_error", "detail": str(exc)}


def error_response(exc: BaseException) -> ErrorResponse:
    if isinstance(exc, FulfillmentError) and exc.__cause__ is not None:
        status, _ = _failure_status(exc.__cause__)
        body: Dict[str, Any] = {"error": exc.code, "detail": str(exc)}
    else:
        status, body = _failure_status(exc)

    order = getattr(exc, "order", None)
    if order is not None:
        # The order is stored; only a failed delivery may be sent again.
        body["orderId"] = order.sequence
        body["retryable"] = isinstance(exc, DeliveryError)
    return status, body


class InvoiceHandler(BaseHTTPRequestHandler):
    MAX_BODY_BYTES = config.MAX_BODY_BYTES
    MAX_PAGES = config.MAX_PAGES

    def _write_response(self, status: int, content_type: str, body: bytes) -> bool:
        try:
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(body)))
            self.send_header("Access-Control-Allow-Origin", config.CORS_ORIGIN)
            self.end_headers()
            self.wfile.write(body)
            return True
        except Exception as exc:
            if is_client_disconnect(exc):
                return False
            raise

    def _send_json(self, status: int, payload: Dict[str, Any]) -> bool:
        body = json.dumps(payload).encode("utf-8")
        return self._write_response(status, "application/json", body)

    def _send_failure(self, status: int, payload: Dict[str, Any]) -> bool:
        return self._send_json(status, {"success": False, **payload})

    def _read_body(self) -> Optional[bytes]:
        header = self.headers.get("Content-Length")
        if header is None:
            self._send_failure(
                411,
                {
                    "error": "missing_content_length",
                    "detail": "Content-Length header is required.",
                },
            )
            return None

        try:
            content_length = int(header)
        except ValueError:
            self._send_failure(
                400,
                {
                    "error": "invalid_content_length",
                    "detail": "Content-Length must be an integer.",
                },
            )
            return None

        if content_length <= 0:
            self._send_failure(400, {"error": "empty_body", "detail": "Request body cannot be empty."})
            return None

        if content_length > self.MAX_BODY_BYTES:
            self._send_failure(
                413,
                {
                    "error": "payload_too_large",
                    "detail": f"Body exceeds {self.MAX_BODY_BYTES} bytes.",
                },
            )
            return None

        try:
            return self.rfile.read(content_length)
        except Exception as exc:
            if is_client_disconnect(exc):
                return None
            raise

    def _acquire_render_slot(self) -> bool:
        timeout = config.RENDER_QUEUE_TIMEOUT_MS / 1000.0
        if RENDER_INFLIGHT_SEMAPHORE.acquire(timeout=timeout):
            return True
        self._send_failure(
            503,
            {
                "error": "server_busy",
                "detail": "Render queue is full; retry shortly.",
                "retry_after_ms": config.RENDER_QUEUE_TIMEOUT_MS,
                "max_concurrent_renders": config.MAX_CONCURRENT_RENDERS,
                "max_inflight_renders": config.MAX_INFLIGHT_RENDERS,
            },
        )
        return False

    def _handle_checkout(self, body: bytes) -> None:
        payload, validation_error = validate_checkout_payload(body, self.MAX_PAGES)
        if validation_error is not None:
            status, payload_body = validation_error
            self._send_failure(status, payload_body)
            return

        if not self._acquire_render_slot():
            return
        try:
            result = get_checkout_service().place_order(payload)
        except InvoiceError as exc:
            if isinstance(exc.__cause__, BrokenProcessPool):
                restart_render_executor(get_render_executor())
            self._send_failure(*error_response(exc))
            return
        except Exception as exc:
            logger.exception("Checkout failed")
            self._send_failure(*error_response(exc))
            return
        finally:
            RENDER_INFLIGHT_SEMAPHORE.release()

        self._send_json(200, {"success": True, "orderId": result.order.sequence})

    def _handle_render(self, body: bytes) -> None:
        raw, error = decode_json_body(body)
        if error is not None:
            self._send_failure(*error)
            return
        try:
            order = order_from_dict(raw)
        except OrderValidationError as exc:
            self._send_failure(*error_response(exc))
            return
        too_large = page_limit_error(len(order.items), self.MAX_PAGES)
        if too_large is not None:
            self._send_failure(*too_large)
            return

        if not self._acquire_render_slot():
            return
        try:
            pdf_bytes = pooled_render(order)
        except BrokenProcessPool as exc:
            restart_render_executor(get_render_executor())
            self._send_failure(*error_response(exc))
            return
        except (InvoiceError, FutureTimeoutError) as exc:
            self._send_failure(*error_response(exc))
            return
        except Exception as exc:
            logger.exception("Render failed for order %s", order.sequence)
            self._send_failure(*error_response(exc))
            return
        finally:
            RENDER_INFLIGHT_SEMAPHORE.release()

        self._write_response(200, "application/pdf", pdf_bytes)

    def do_POST(self) -> None:
        routes = {"/api/checkout": self._handle_checkout, "/api/invoice": self._handle_render}
        handler = routes.get(self.path)
        if handler is None:
            self._send_failure(404, {"error": "not_found", "detail": "Unsupported endpoint."})
            return

        body = self._read_body()
        if body is None:
            return
        handler(body)

    def do_GET(self) -> None:
        if self.path == "/":
            banner = f"{config.SHOP_NAME} ordering server is live".encode("utf-8")
            self._write_response(200, "text/plain; charset=utf-8", banner)
            return
        if self.path in ("/health", "/healthz", "/ready"):
            self._send_json(200, {"status": "ok"})
            return
        self._send_json(404, {"error": "not_found", "detail": "Unsupported endpoint."})

    def do_OPTIONS(self) -> None:
        try:
            self.send_response(204)
            self.send_header("Access-Control-Allow-Origin", config.CORS_ORIGIN)
            self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
            self.send_header("Access-Control-Allow-Headers", "Content-Type")
            self.send_header("Content-Length", "0")
            self.end_headers()
        except Exception as exc:
            if not is_client_disconnect(exc):
                raise

    def handle_one_request(self) -> None:
        try:
            super().handle_one_request()
        except Exception as exc:
            if is_client_disconnect(exc):
                return
            raise

    def log_message(self, format: str, *args: Any) -> None:
        return


class InvoiceHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    allow_reuse_address = True
    request_queue_size = config.LISTEN_BACKLOG


def run(host: str = config.HOST, port: int = config.PORT) -> None:
    load_rendering()
    get_render_executor()
    get_checkout_service()
    server = InvoiceHTTPServer((host, port), InvoiceHandler)
    logger.info("Ordering server listening on http://%s:%s", host, port)
    server.serve_forever()
