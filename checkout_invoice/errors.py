"""Error types surfaced to callers of the checkout pipeline."""

from __future__ import annotations

from typing import Any, Optional


class InvoiceError(Exception):
    """Base class for failures a caller can act on.

    ``order`` is set once the order has been stored, so the caller can report
    its number instead of placing it again.
    """

    code = "invoice_error"
    status = 500
    retryable = False

    def __init__(self, message: str = "", order: Optional[Any] = None) -> None:
        super().__init__(message)
        self.order = order


class OrderValidationError(InvoiceError):
    """Raised when a checkout payload is rejected before rendering."""

    code = "invalid_order"
    status = 400

    def __init__(self, field: str, detail: str) -> None:
        super().__init__(f"{field}: {detail}")
        self.field = field
        self.detail = detail


class LayoutError(InvoiceError):
    """Raised when the invoice cannot be laid out on the configured page."""

    code = "layout_failed"
    status = 422


class DeliveryError(InvoiceError):
    """Raised when the rendered invoice could not be handed to the mailer.

    The order and its sequence number stay stored; only delivery may be retried.
    """

    code = "delivery_failed"
    status = 502
    retryable = True


class FulfillmentError(InvoiceError):
    """Raised when a stored order's invoice could not be produced.

    The original exception is chained as ``__cause__``.
    """

    code = "invoice_failed"
    status = 500


class DependencyError(RuntimeError):
    """Raised when a required runtime dependency is missing."""
