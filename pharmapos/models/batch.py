# FILE: pharmapos/models/batch.py
from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, Date, DateTime, Numeric, ForeignKey, Enum, CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from pharmapos.db.base import Base

Qty = Numeric(14, 4)


class BatchStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    DISPOSED = "disposed"
    RETURNED = "returned"
    VOID = "void"


# once here a batch never comes back and holds no saleable stock
TERMINAL_BATCH_STATUSES = frozenset({BatchStatus.DISPOSED, BatchStatus.RETURNED, BatchStatus.VOID})


class ProductBatch(Base):
    """
    A dated lot of stock for one pharmacy product.
    """
    __tablename__ = "product_batches"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_product_batches_qty_non_negative"),
        Index("ix_product_batches_fefo", "pharmacy_id", "pharmacy_product_id", "status", "expiry_date"),
        Index("ix_product_batches_status_exp", "status", "expiry_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    pharmacy_id = Column(Integer, ForeignKey("pharmacies.id"), nullable=False, index=True)
    pharmacy_product_id = Column(Integer, ForeignKey("pharmacy_products.id"), nullable=False, index=True)

    quantity = Column(Qty, nullable=False, default=Decimal("0"))
    expiry_date = Column(Date, nullable=True)
    status = Column(
        Enum(BatchStatus, name="product_batch_status", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
        default=BatchStatus.ACTIVE,
    )

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    product = relationship("PharmacyProduct", back_populates="batches")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BATCH_STATUSES
