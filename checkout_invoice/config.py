"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from typing import Optional

_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def env_str(name: str, default: str = "") -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip()


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


HOST = env_str("INVOICE_HOST", "0.0.0.0")
PORT = env_int("PORT", env_int("INVOICE_PORT", 5000))
LOG_LEVEL = env_str("INVOICE_LOG_LEVEL", "INFO").upper()
CORS_ORIGIN = env_str("INVOICE_CORS_ORIGIN", "*")

DEFAULT_MAX_CONCURRENT_RENDERS = max(2, min(8, os.cpu_count() or 2))
MAX_CONCURRENT_RENDERS = env_int(
    "INVOICE_MAX_CONCURRENT_RENDERS",
    DEFAULT_MAX_CONCURRENT_RENDERS,
    minimum=1,
)
MAX_INFLIGHT_RENDERS = env_int(
    "INVOICE_MAX_INFLIGHT_RENDERS",
    max(32, MAX_CONCURRENT_RENDERS * 4),
    minimum=1,
)
RENDER_QUEUE_TIMEOUT_MS = env_int("INVOICE_RENDER_QUEUE_TIMEOUT_MS", 30000, minimum=0)
RENDER_TIMEOUT_MS = env_int("INVOICE_RENDER_TIMEOUT_MS", 60000, minimum=1000)

MAX_BODY_BYTES = env_int("INVOICE_MAX_BODY_BYTES", 4 * 1024 * 1024, minimum=1024)
MAX_PAGES = env_int("INVOICE_MAX_PAGES", 200, minimum=1)
LISTEN_BACKLOG = env_int("INVOICE_LISTEN_BACKLOG", 128, minimum=1)

DB_PATH = env_str("INVOICE_DB_PATH", os.path.join(_PROJECT_ROOT, "orders.sqlite3"))
SEQUENCE_START = env_int("INVOICE_SEQUENCE_START", 1, minimum=1)
TMP_DIR = env_str("INVOICE_TMP_DIR", tempfile.gettempdir())

SHOP_NAME = env_str("INVOICE_SHOP_NAME", "Crackers Shop")
SHOP_SHORT_NAME = env_str("INVOICE_SHOP_SHORT_NAME", "")
SHOP_PHONE = env_str("INVOICE_SHOP_PHONE", "")
SHOP_ADDRESS = env_str("INVOICE_SHOP_ADDRESS", "")
CURRENCY_SYMBOL = env_str("INVOICE_CURRENCY_SYMBOL", "₹")
TIMEZONE = env_str("INVOICE_TIMEZONE", "Asia/Kolkata")
LOGO_PATH = env_str(
    "INVOICE_LOGO_PATH",
    os.path.join(_PROJECT_ROOT, "assets", "logo.png"),
)
EXTRA_PAGE_TITLE = env_str("INVOICE_EXTRA_PAGE_TITLE", "")
EXTRA_PAGE_TEXT = env_str("INVOICE_EXTRA_PAGE_TEXT", "")


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int = 587
    user: str = ""
    password: str = ""
    sender: str = ""
    bcc: str = ""
    use_tls: bool = True
    timeout: int = 30


def smtp_settings() -> Optional[SmtpSettings]:
    """SMTP settings from the environment, or None when mail is not configured."""
    host = env_str("INVOICE_SMTP_HOST")
    if not host:
        return None
    user = env_str("INVOICE_SMTP_USER")
    return SmtpSettings(
        host=host,
        port=env_int("INVOICE_SMTP_PORT", 587),
        user=user,
        password=env_str("INVOICE_SMTP_PASSWORD"),
        sender=env_str("INVOICE_SMTP_FROM", user),
        bcc=env_str("INVOICE_SMTP_BCC"),
        use_tls=env_bool("INVOICE_SMTP_TLS", True),
        timeout=env_int("INVOICE_SMTP_TIMEOUT", 30),
    )
