"""SQLite-backed order sequence counter and order records."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Iterable, Optional

from .models import Customer, LineItem, Order, order_from_dict

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS counters (
    name TEXT PRIMARY KEY,
    seq  INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS orders (
    sequence   INTEGER PRIMARY KEY,
    customer   TEXT NOT NULL,
    products   TEXT NOT NULL,
    created_at TEXT NOT NULL
);
"""


class OrderStore:
    """Durable order numbering and storage.

    ``next_sequence`` is a fetch-and-increment executed under ``BEGIN
    IMMEDIATE``, so concurrent checkouts (threads or processes sharing the
    file) never receive the same number.
    """

    def __init__(self, path: str, sequence_start: int = 1) -> None:
        self.path = path
        self.sequence_start = sequence_start
        self._lock = threading.Lock()
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        conn = self._connect()
        try:
            conn.executescript(SCHEMA)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def next_sequence(self, name: str = "orderId") -> int:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute("SELECT seq FROM counters WHERE name = ?", (name,)).fetchone()
                if row is None:
                    seq = self.sequence_start
                    conn.execute("INSERT INTO counters (name, seq) VALUES (?, ?)", (name, seq))
                else:
                    seq = row["seq"] + 1
                    conn.execute("UPDATE counters SET seq = ? WHERE name = ?", (seq, name))
                conn.execute("COMMIT")
            except sqlite3.Error:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()
        return seq

    def save(self, order: Order) -> None:
        record = order.to_dict()
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO orders (sequence, customer, products, created_at) VALUES (?, ?, ?, ?)",
                (
                    order.sequence,
                    json.dumps(record["customer"]),
                    json.dumps(record["products"]),
                    record["date"],
                ),
            )
        finally:
            conn.close()

    def get(self, sequence: int) -> Optional[Order]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT sequence, customer, products, created_at FROM orders WHERE sequence = ?",
                (sequence,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return order_from_dict(
            {
                "orderId": row["sequence"],
                "customer": json.loads(row["customer"]),
                "products": json.loads(row["products"]),
                "date": row["created_at"],
            }
        )

    def create_order(
        self,
        customer: Customer,
        items: Iterable[LineItem],
        now: Optional[datetime] = None,
    ) -> Order:
        """Allocate the next order number and store the order under it."""
        sequence = self.next_sequence()
        order = Order(
            sequence=sequence,
            customer=customer,
            items=tuple(items),
            created_at=now or datetime.now(timezone.utc),
        )
        self.save(order)
        logger.info("Stored order %s for %s", order.invoice_number, customer.email)
        return order
