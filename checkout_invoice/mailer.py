"""Invoice delivery over SMTP."""

from __future__ import annotations

import logging
import smtplib
from collections import deque
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Deque, List, Protocol

from .config import SmtpSettings
from .errors import DeliveryError
from .models import Order

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    def send(self, recipient: str, attachment_path: str, filename: str, subject: str, body: str) -> None:
        ...


def invoice_filename(order: Order) -> str:
    return f"invoice_{order.sequence}.pdf"


def invoice_subject(order: Order, shop: str) -> str:
    return f"Your Invoice - {shop} Order #{order.sequence}"


def invoice_body(order: Order, shop: str) -> str:
    return (
        "Dear Customer,\n\n"
        "Thank you for your order!\n"
        f"Please find the attached invoice for your order #{order.sequence}.\n\n"
        f"Regards,\n{shop} Team"
    )


class SMTPMailer:
    def __init__(self, settings: SmtpSettings, shop: str = "") -> None:
        self.settings = settings
        self.shop = shop

    def _sender(self) -> str:
        address = self.settings.sender or self.settings.user
        return f"{self.shop} <{address}>" if self.shop else address

    def send(self, recipient: str, attachment_path: str, filename: str, subject: str, body: str) -> None:
        cfg = self.settings
        msg = MIMEMultipart()
        msg["Subject"] = subject
        msg["From"] = self._sender()
        msg["To"] = recipient
        msg.attach(MIMEText(body, "plain", "utf-8"))

        recipients: List[str] = [recipient]
        if cfg.bcc:
            recipients.append(cfg.bcc)

        try:
            with open(attachment_path, "rb") as fh:
                part = MIMEApplication(fh.read(), _subtype="pdf")
            part.add_header("Content-Disposition", "attachment", filename=filename)
            msg.attach(part)

            with smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout) as server:
                if cfg.use_tls:
                    server.starttls()
                if cfg.user:
                    server.login(cfg.user, cfg.password)
                server.sendmail(cfg.sender or cfg.user, recipients, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"Could not send {filename} to {recipient}: {exc}") from exc
        logger.info("Invoice %s sent to %s", filename, recipient)


class NullMailer:
    """Stands in when no SMTP host is configured; records what would be sent."""

    def __init__(self, history: int = 100) -> None:
        self.sent: Deque[str] = deque(maxlen=history)
        self.count = 0

    def send(self, recipient: str, attachment_path: str, filename: str, subject: str, body: str) -> None:
        logger.info("Mail disabled; not sending %s (%s) to %s", filename, attachment_path, recipient)
        self.sent.append(recipient)
        self.count += 1
