# FILE: pharmapos/models/notification.py
from __future__ import annotations

import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Enum, UniqueConstraint, Index
)

from pharmapos.db.base import Base


class NotificationType(str, enum.Enum):
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    EXPIRED = "expired"
    NEAR_EXPIRY_INITIAL = "near_expiry_initial"
    NEAR_EXPIRY_7D = "near_expiry_7d"


EXPIRY_NOTIFICATION_TYPES = frozenset({
    NotificationType.EXPIRED,
    NotificationType.NEAR_EXPIRY_INITIAL,
    NotificationType.NEAR_EXPIRY_7D,
})


class Notification(Base):
    """
    One row per (pharmacy, product, batch, type). Recurring conditions reopen
    the row instead of inserting another one. batch_id = 0 for product-level alerts.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("pharmacy_id", "product_id", "batch_id", "type", name="uq_notifications_key_type"),
        Index("ix_notifications_pharmacy_read", "pharmacy_id", "is_read"),
    )

    id = Column(Integer, primary_key=True, index=True)
    pharmacy_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, nullable=False, index=True)
    batch_id = Column(Integer, nullable=False, default=0)
    type = Column(
        Enum(NotificationType, name="notification_type", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    message = Column(String(1000), nullable=False, default="")

    is_read = Column(Boolean, nullable=False, default=False)
    is_resolved = Column(Boolean, nullable=False, default=False)
    resolved_at = Column(DateTime, nullable=True)
    email_sent = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
