"""Checkout pipeline: validate, number, store, render and mail an order."""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional

from .errors import FulfillmentError, InvoiceError
from .mailer import Mailer, invoice_body, invoice_filename, invoice_subject
from .models import Order, parse_checkout
from .store import OrderStore

logger = logging.getLogger(__name__)

RenderFn = Callable[[Order], bytes]


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    pdf_size: int


@contextlib.contextmanager
def invoice_tempfile(pdf: bytes, order: Order, directory: Optional[str] = None) -> Iterator[str]:
    """Write ``pdf`` to a temporary file that is removed when the block exits."""
    handle = tempfile.NamedTemporaryFile(
        prefix=f"invoice_{order.sequence}_",
        suffix=".pdf",
        dir=directory,
        delete=False,
    )
    path = handle.name
    try:
        with handle:
            handle.write(pdf)
        yield path
    finally:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass


class CheckoutService:
    def __init__(
        self,
        store: OrderStore,
        mailer: Mailer,
        render: RenderFn,
        shop: str = "",
        tmp_dir: Optional[str] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.render = render
        self.shop = shop
        self.tmp_dir = tmp_dir
        self.clock = clock

    def place_order(self, payload: Any) -> CheckoutResult:
        """Run one checkout end to end.

        Validation errors are raised before a sequence number is allocated.
        Once stored, the order keeps its number whatever happens afterwards:
        every later failure is an :class:`InvoiceError` carrying the order,
        and anything unexpected is wrapped in :class:`FulfillmentError`.
        """
        customer, items = parse_checkout(payload)
        order = self.store.create_order(customer, items, now=self.clock())
        try:
            pdf = self.render(order)
            self.deliver(order, pdf)
        except InvoiceError as exc:
            exc.order = order
            logger.error("Invoice %s failed: %s", order.invoice_number, exc)
            raise
        except Exception as exc:
            logger.exception("Invoice %s failed after the order was stored", order.invoice_number)
            raise FulfillmentError(
                f"Order {order.sequence} was stored but its invoice failed: {exc!r}",
                order=order,
            ) from exc
        return CheckoutResult(order=order, pdf_size=len(pdf))

    def deliver(self, order: Order, pdf: bytes) -> None:
        with invoice_tempfile(pdf, order, self.tmp_dir) as path:
            self.mailer.send(
                order.customer.email,
                path,
                invoice_filename(order),
                invoice_subject(order, self.shop),
                invoice_body(order, self.shop),
            )
