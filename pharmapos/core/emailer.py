# FILE: pharmapos/core/emailer.py
from __future__ import annotations

import smtplib
import ssl
from email.message import EmailMessage
from typing import Any, Callable, Dict, Sequence, Tuple

from pharmapos.core.config import settings


def _low_stock_alert(product_name: str, barcode: str, current_stock: Any,
                     threshold: Any) -> Tuple[str, str]:
    subject = "Low stock alert - Pharmacy Management System"
    body = (f"Product: {product_name}\n"
            f"Barcode: {barcode}\n"
            f"Current stock: {current_stock} units\n"
            f"Low stock threshold: {threshold} units\n\n"
            "Please restock this product soon.\n")
    return subject, body


def _out_of_stock_alert(product_name: str, barcode: str, current_stock: Any,
                        threshold: Any) -> Tuple[str, str]:
    subject = "Out of stock - Pharmacy Management System"
    body = (f"Product: {product_name}\n"
            f"Barcode: {barcode}\n"
            f"Current stock: {current_stock} units (threshold {threshold})\n\n"
            "This product can no longer be sold until it is restocked.\n")
    return subject, body


def _expiry_alert(product_name: str, barcode: str, expiry_date: Any,
                  days_until_expiry: Any) -> Tuple[str, str]:
    subject = "Expiry alert - Pharmacy Management System"
    body = (f"Product: {product_name}\n"
            f"Barcode: {barcode}\n"
            f"Expiry date: {expiry_date}\n"
            f"Days until expiry: {days_until_expiry}\n\n"
            "Please take appropriate action before this stock expires.\n")
    return subject, body


TEMPLATES: Dict[str, Callable[..., Tuple[str, str]]] = {
    "low_stock_alert": _low_stock_alert,
    "out_of_stock_alert": _out_of_stock_alert,
    "expiry_alert": _expiry_alert,
}


def render_template(template: str, args: Sequence[Any]) -> Tuple[str, str]:
    fn = TEMPLATES.get(template)
    if fn is None:
        raise ValueError(f"Unknown email template: {template}")
    return fn(*args)


def _get_from_email() -> str:
    """
    Decide FROM email:
    - Prefer settings.SMTP_FROM
    - Fallback to settings.SMTP_USER
    """
    from_email = settings.SMTP_FROM or settings.SMTP_USER
    if not from_email:
        raise RuntimeError(
            "No FROM email configured. Set SMTP_FROM or SMTP_USER in settings."
        )
    return from_email


def _build_message(to_email: str, subject: str, body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = _get_from_email()
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)
    return msg


def send_email(to_email: str, subject: str, body: str) -> None:
    host = settings.SMTP_HOST
    port = int(settings.SMTP_PORT)
    user = settings.SMTP_USER
    password = settings.SMTP_PASSWORD

    if not host:
        raise RuntimeError("SMTP_HOST is not configured")

    msg = _build_message(to_email, subject, body)

    with smtplib.SMTP(host, port) as server:
        if settings.SMTP_TLS:
            server.starttls(context=ssl.create_default_context())
        if user and password:
            server.login(user, password)
        server.send_message(msg)


def send_template_email(to_email: str, template: str, args: Sequence[Any]) -> None:
    subject, body = render_template(template, args)
    send_email(to_email, subject, body)
