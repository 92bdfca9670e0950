"""Order records and checkout payload validation."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from dateutil import parser as dateutil_parser

from .errors import OrderValidationError
from .formatting import to_money

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
# Keeps price * qty and the subtotal well inside Decimal's 28-digit context.
MAX_PRICE = Decimal("1e12")
MAX_QUANTITY = 1_000_000


@dataclass(frozen=True)
class Customer:
    name: str
    email: str
    phone: str = ""
    pincode: str = ""
    address: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "pincode": self.pincode,
            "address": self.address,
        }


@dataclass(frozen=True)
class LineItem:
    description: str
    unit_price: Decimal
    quantity: int
    amount: Decimal = field(init=False)

    def __post_init__(self) -> None:
        # Prices are held in cents so the row and the subtotal share one value.
        object.__setattr__(self, "unit_price", to_money(self.unit_price))
        object.__setattr__(self, "amount", self.unit_price * self.quantity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.description,
            "price": str(self.unit_price),
            "qty": self.quantity,
        }


@dataclass(frozen=True)
class Order:
    sequence: int
    customer: Customer
    items: Tuple[LineItem, ...]
    created_at: datetime

    def __post_init__(self) -> None:
        if isinstance(self.sequence, bool) or not isinstance(self.sequence, int) or self.sequence < 1:
            raise OrderValidationError("orderId", "must be a positive integer")
        object.__setattr__(self, "items", tuple(self.items))
        if self.created_at.tzinfo is None:
            object.__setattr__(self, "created_at", self.created_at.replace(tzinfo=timezone.utc))

    @property
    def invoice_number(self) -> str:
        return f"INV-{self.sequence}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.sequence,
            "customer": self.customer.to_dict(),
            "products": [item.to_dict() for item in self.items],
            "date": self.created_at.isoformat(),
        }


def _text(value: Any, path: str, required: bool = False) -> str:
    if value is None:
        value = ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        raise OrderValidationError(path, "must be a string")
    value = value.strip()
    if required and not value:
        raise OrderValidationError(path, "is required")
    return value


def _price(value: Any, path: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise OrderValidationError(path, "must be a number")
    try:
        price = Decimal(str(value).strip())
    except InvalidOperation:
        raise OrderValidationError(path, "must be a number") from None
    if not price.is_finite():
        raise OrderValidationError(path, "must be a finite number")
    if price < 0:
        raise OrderValidationError(path, "must not be negative")
    if price >= MAX_PRICE:
        raise OrderValidationError(path, "is out of range")
    try:
        return to_money(price)
    except ValueError:
        raise OrderValidationError(path, "is out of range") from None


def _quantity(value: Any, path: str) -> int:
    if isinstance(value, bool):
        raise OrderValidationError(path, "must be a positive integer")
    if isinstance(value, str):
        value = value.strip()
        if not value.isdecimal():
            raise OrderValidationError(path, "must be a positive integer")
        try:
            value = int(value)
        except ValueError:
            raise OrderValidationError(path, "must be a positive integer") from None
    if isinstance(value, float):
        if not value.is_integer():
            raise OrderValidationError(path, "must be a whole number")
        value = int(value)
    if not isinstance(value, int) or value < 1:
        raise OrderValidationError(path, "must be a positive integer")
    if value > MAX_QUANTITY:
        raise OrderValidationError(path, "is out of range")
    return value


def parse_customer(raw: Any) -> Customer:
    if not isinstance(raw, dict):
        raise OrderValidationError("customer", "must be an object")
    email = _text(raw.get("email"), "customer.email", required=True)
    if not EMAIL_RE.match(email):
        raise OrderValidationError("customer.email", "is not a valid address")
    return Customer(
        name=_text(raw.get("name"), "customer.name", required=True),
        email=email,
        phone=_text(raw.get("phone"), "customer.phone"),
        pincode=_text(raw.get("pincode"), "customer.pincode"),
        address=_text(raw.get("address"), "customer.address"),
    )


def parse_items(raw: Any) -> List[LineItem]:
    if not isinstance(raw, list):
        raise OrderValidationError("products", "must be an array")
    if not raw:
        raise OrderValidationError("products", "must contain at least one item")

    items: List[LineItem] = []
    for index, entry in enumerate(raw):
        path = f"products[{index}]"
        if not isinstance(entry, dict):
            raise OrderValidationError(path, "must be an object")
        items.append(
            LineItem(
                description=_text(entry.get("name"), f"{path}.name", required=True),
                unit_price=_price(entry.get("price"), f"{path}.price"),
                quantity=_quantity(entry.get("qty"), f"{path}.qty"),
            )
        )
    return items


def parse_checkout(payload: Any) -> Tuple[Customer, List[LineItem]]:
    """Validate a checkout body of the form ``{"customer": {...}, "products": [...]}``."""
    if not isinstance(payload, dict):
        raise OrderValidationError("body", "JSON root must be an object")
    return parse_customer(payload.get("customer")), parse_items(payload.get("products"))


def order_from_dict(raw: Any, now: Optional[datetime] = None) -> Order:
    """Build an :class:`Order` from its stored JSON record."""
    customer, items = parse_checkout(raw)
    sequence = raw.get("orderId")
    if isinstance(sequence, str) and sequence.strip().isdecimal():
        sequence = int(sequence)

    date_raw = raw.get("date")
    if date_raw:
        try:
            created_at = dateutil_parser.isoparse(str(date_raw))
        except ValueError:
            try:
                created_at = dateutil_parser.parse(str(date_raw))
            except (ValueError, OverflowError):
                raise OrderValidationError("date", "is not a recognizable date") from None
    else:
        created_at = now or datetime.now(timezone.utc)

    return Order(sequence=sequence, customer=customer, items=tuple(items), created_at=created_at)
