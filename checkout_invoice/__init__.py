"""Public package API for order checkout and invoice generation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import Order


def render_invoice(order: "Order", *args: Any, **kwargs: Any) -> bytes:
    from .rendering import render_invoice as _render_invoice

    return _render_invoice(order, *args, **kwargs)


def run(host: str = "0.0.0.0", port: int = 5000) -> None:
    from .server import run as _run

    _run(host, port)


__all__ = ["render_invoice", "run"]
