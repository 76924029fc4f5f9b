# FILE: pharmapos/services/notifications.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from pharmapos.core.config import settings
from pharmapos.core.emailer import send_template_email
from pharmapos.core.errors import NotFound
from pharmapos.models.batch import ProductBatch
from pharmapos.models.notification import EXPIRY_NOTIFICATION_TYPES, Notification, NotificationType
from pharmapos.models.pharmacy import PharmacySettings, User
from pharmapos.models.product import PharmacyProduct
from pharmapos.utils.timezone import utc_now

logger = logging.getLogger(__name__)

PRODUCT_LEVEL = 0

INSERTED = "inserted"
REOPENED = "reopened"
ACTIVE = "active"
EXISTS = "exists"


@dataclass
class AlertSettings:
    low_stock_threshold: int
    expiry_alert_days: int
    notify_by_email: bool


@dataclass
class EmailRequest:
    notification_id: int
    pharmacy_id: int
    template: str
    args: Sequence[Any]


def get_alert_settings(db: Session, pharmacy_id: int) -> AlertSettings:
    row = db.execute(
        select(PharmacySettings).where(PharmacySettings.pharmacy_id == pharmacy_id)
    ).scalar_one_or_none()
    if row is None:
        return AlertSettings(
            low_stock_threshold=settings.DEFAULT_LOW_STOCK_THRESHOLD,
            expiry_alert_days=settings.DEFAULT_EXPIRY_ALERT_DAYS,
            notify_by_email=False,
        )
    return AlertSettings(
        low_stock_threshold=int(row.low_stock_threshold or 0),
        expiry_alert_days=int(row.expiry_alert_days or 0),
        notify_by_email=bool(row.notify_by_email),
    )


def low_stock_buffer(threshold: int) -> int:
    """Margin above the threshold before a low-stock alert closes (10%, at least 1 unit)."""
    return max(1, math.ceil(threshold * settings.LOW_STOCK_BUFFER_RATIO))


# -------------------------
# Row-level state machine
# -------------------------
def _find(db: Session, pharmacy_id: int, product_id: int, batch_id: int,
          ntype: NotificationType) -> Optional[Notification]:
    db.flush()
    return db.execute(
        select(Notification).where(
            Notification.pharmacy_id == pharmacy_id,
            Notification.product_id == product_id,
            Notification.batch_id == batch_id,
            Notification.type == ntype,
        )
    ).scalar_one_or_none()


def ensure_notification(
    db: Session,
    *,
    pharmacy_id: int,
    product_id: int,
    ntype: NotificationType,
    message: str,
    batch_id: int = PRODUCT_LEVEL,
) -> tuple[str, Notification]:
    """
    Make sure one unresolved row exists for (pharmacy, product, batch, type).

    Returns (action, row) where action is:
      inserted - no row existed
      reopened - a resolved row existed and was reopened with a fresh message
      active   - an unresolved row already existed (left untouched)
    """
    row = _find(db, pharmacy_id, product_id, batch_id, ntype)

    if row is None:
        row = Notification(
            pharmacy_id=pharmacy_id,
            product_id=product_id,
            batch_id=batch_id,
            type=ntype,
            message=message,
            is_read=False,
            is_resolved=False,
            email_sent=False,
        )
        db.add(row)
        db.flush()
        return INSERTED, row

    if row.is_resolved:
        row.is_resolved = False
        row.resolved_at = None
        row.is_read = False
        row.message = message
        row.email_sent = False
        db.flush()
        return REOPENED, row

    return ACTIVE, row


def resolve_notification(
    db: Session,
    *,
    pharmacy_id: int,
    product_id: int,
    ntype: NotificationType,
    batch_id: int = PRODUCT_LEVEL,
) -> bool:
    row = _find(db, pharmacy_id, product_id, batch_id, ntype)
    if row is None or row.is_resolved:
        return False
    row.is_resolved = True
    row.resolved_at = utc_now()
    db.flush()
    return True


def ensure_once(
    db: Session,
    *,
    pharmacy_id: int,
    product_id: int,
    batch_id: int,
    ntype: NotificationType,
    message: str,
) -> tuple[str, Optional[Notification]]:
    """Expiry alerts are one-shot per batch+type: never re-inserted, never reopened."""
    if _find(db, pharmacy_id, product_id, batch_id, ntype) is not None:
        return EXISTS, None

    row = Notification(
        pharmacy_id=pharmacy_id,
        product_id=product_id,
        batch_id=batch_id,
        type=ntype,
        message=message,
    )
    db.add(row)
    db.flush()
    return INSERTED, row


# -------------------------
# Stock evaluation
# -------------------------
def _fmt_qty(qty: Decimal) -> str:
    return format(qty.normalize(), "f")


def evaluate_product_stock(db: Session, product: PharmacyProduct,
                           alert: Optional[AlertSettings] = None) -> List[EmailRequest]:
    """
    Apply the low/out-of-stock rules to the product's current snapshot.

      qty == 0                 -> out_of_stock open, low_stock resolved
      qty > 0                  -> out_of_stock resolved
      0 < qty <= threshold     -> low_stock open
      qty >= threshold+buffer  -> low_stock resolved

    Returns the email requests for alerts that were newly opened or reopened.
    """
    alert = alert or get_alert_settings(db, product.pharmacy_id)
    threshold = alert.low_stock_threshold
    qty = Decimal(str(product.quantity or 0))
    name = product.display_name
    barcode = product.barcode or "-"
    pharmacy_id = product.pharmacy_id

    emails: List[EmailRequest] = []

    if qty <= 0:
        if resolve_notification(db, pharmacy_id=pharmacy_id, product_id=product.id,
                                ntype=NotificationType.LOW_STOCK):
            logger.info("Resolved LOW_STOCK for product %s (superseded by out of stock)", product.id)

        msg = f"Product '{name}' (barcode: {barcode}) is out of stock (0 units)."
        action, row = ensure_notification(db, pharmacy_id=pharmacy_id, product_id=product.id,
                                          ntype=NotificationType.OUT_OF_STOCK, message=msg)
        if action in (INSERTED, REOPENED):
            logger.info("%s OUT_OF_STOCK for product %s", action.upper(), product.id)
            emails.append(EmailRequest(row.id, pharmacy_id, "out_of_stock_alert",
                                       [name, barcode, 0, threshold]))
        return emails

    if resolve_notification(db, pharmacy_id=pharmacy_id, product_id=product.id,
                            ntype=NotificationType.OUT_OF_STOCK):
        logger.info("Resolved OUT_OF_STOCK for product %s (qty > 0)", product.id)

    # qty > 0 here, so out_of_stock is already closed and low_stock may open
    if qty <= threshold:
        msg = (f"Product '{name}' (barcode: {barcode}) is low on stock "
               f"({_fmt_qty(qty)} units). Threshold: {threshold} units.")
        action, row = ensure_notification(db, pharmacy_id=pharmacy_id, product_id=product.id,
                                          ntype=NotificationType.LOW_STOCK, message=msg)
        if action in (INSERTED, REOPENED):
            logger.info("%s LOW_STOCK for product %s qty=%s", action.upper(), product.id, qty)
            emails.append(EmailRequest(row.id, pharmacy_id, "low_stock_alert",
                                       [name, barcode, _fmt_qty(qty), threshold]))
    elif qty >= threshold + low_stock_buffer(threshold):
        if resolve_notification(db, pharmacy_id=pharmacy_id, product_id=product.id,
                                ntype=NotificationType.LOW_STOCK):
            logger.info("Resolved LOW_STOCK for product %s (>= threshold+buffer)", product.id)

    return emails


def notify_batch_expiry(db: Session, product: PharmacyProduct, batch: ProductBatch,
                        ntype: NotificationType, today: date) -> List[EmailRequest]:
    if ntype not in EXPIRY_NOTIFICATION_TYPES:
        raise ValueError(f"{ntype} is not a batch expiry alert")
    name = product.display_name
    barcode = product.barcode or "-"
    days_left = (batch.expiry_date - today).days if batch.expiry_date else 0

    if ntype == NotificationType.EXPIRED:
        msg = f"Product '{name}' has an expired batch #{batch.id} ({_fmt_qty(Decimal(str(batch.quantity)))} units)."
    else:
        msg = f"Product '{name}' batch #{batch.id} expires on {batch.expiry_date.isoformat()} ({days_left} days)."

    action, row = ensure_once(db, pharmacy_id=product.pharmacy_id, product_id=product.id,
                              batch_id=batch.id, ntype=ntype, message=msg)
    if action != INSERTED:
        return []

    logger.info("INSERTED %s for product %s batch %s", ntype.value.upper(), product.id, batch.id)
    return [EmailRequest(row.id, product.pharmacy_id, "expiry_alert",
                         [name, barcode, batch.expiry_date.isoformat() if batch.expiry_date else "-",
                          max(days_left, 0)])]


# -------------------------
# Email dispatch (after commit)
# -------------------------
def dispatch_emails(db: Session, requests: Sequence[EmailRequest]) -> int:
    """
    Send alert emails to verified users when the pharmacy has email on.
    Delivery failures are logged; notification state is never rolled back.
    Returns number of emails sent.
    """
    sent = 0
    for req in requests:
        alert = get_alert_settings(db, req.pharmacy_id)
        if not alert.notify_by_email:
            continue

        recipients = db.execute(
            select(User.email).where(
                User.pharmacy_id == req.pharmacy_id,
                User.email_verified.is_(True),
                User.is_active.is_(True),
                User.email.is_not(None),
            )
        ).scalars().all()

        for email in recipients:
            try:
                send_template_email(email, req.template, req.args)
                sent += 1
            except Exception:
                logger.exception("Email failed template=%s to=%s", req.template, email)

        row = db.get(Notification, req.notification_id)
        if row is not None:
            row.email_sent = True
        db.commit()

        logger.info("Emails for notification %s: recipients=%s", req.notification_id, len(recipients))
    return sent


def queue_emails(uow, requests: Sequence[EmailRequest]) -> None:
    if not requests:
        return
    pending = list(requests)
    uow.after_commit(lambda db: dispatch_emails(db, pending))


# -------------------------
# Queries
# -------------------------
def list_notifications(db: Session, pharmacy_id: int, unread_only: bool = True) -> List[Notification]:
    q = select(Notification).where(Notification.pharmacy_id == pharmacy_id)
    if unread_only:
        q = q.where(Notification.is_read.is_(False))
    return list(db.execute(
        q.order_by(Notification.created_at.desc(), Notification.id.desc())
    ).scalars().all())


def mark_notification_read(db: Session, pharmacy_id: int, notification_id: int) -> Notification:
    row = db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.pharmacy_id == pharmacy_id,
        )
    ).scalar_one_or_none()
    if row is None:
        raise NotFound("Notification not found")
    row.is_read = True
    db.commit()
    return row
