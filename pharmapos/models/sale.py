# FILE: pharmapos/models/sale.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Numeric, ForeignKey, Index
)
from sqlalchemy.orm import relationship

from pharmapos.db.base import Base

Money = Numeric(14, 2)
Qty = Numeric(14, 4)


class Sale(Base):
    __tablename__ = "sales"
    __table_args__ = (
        Index("ix_sales_pharmacy_created", "pharmacy_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    pharmacy_id = Column(Integer, ForeignKey("pharmacies.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    total = Column(Money, nullable=False, default=Decimal("0"))
    amount_given = Column(Money, nullable=False, default=Decimal("0"))
    change_given = Column(Money, nullable=False, default=Decimal("0"))
    description = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    items = relationship("SaleItem", back_populates="sale", order_by="SaleItem.id")


class SaleItem(Base):
    """
    Line snapshot at sale time; later price/name changes on the product do not touch it.
    """
    __tablename__ = "sale_items"

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False, index=True)

    product_barcode = Column(String(64), nullable=False, index=True)
    product_name = Column(String(255), nullable=False, default="")
    quantity = Column(Qty, nullable=False)
    price = Column(Money, nullable=False)
    subtotal = Column(Money, nullable=False)

    sale = relationship("Sale", back_populates="items")


class SaleBatchUsage(Base):
    """
    Which batch supplied how many units to which sale. Append/delete only;
    the only source used to put stock back on sale edit/delete.
    """
    __tablename__ = "sale_batch_usages"
    __table_args__ = (
        Index("ix_sbu_reverse_lookup", "sale_id", "pharmacy_id", "pharmacy_product_id", "product_barcode"),
        Index("ix_sbu_batch", "batch_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False, index=True)
    # null for delta-only adjustments made by a sale update
    sale_item_id = Column(Integer, nullable=True, index=True)
    pharmacy_id = Column(Integer, ForeignKey("pharmacies.id"), nullable=False)
    pharmacy_product_id = Column(Integer, ForeignKey("pharmacy_products.id"), nullable=False)
    batch_id = Column(Integer, ForeignKey("product_batches.id"), nullable=False)
    product_barcode = Column(String(64), nullable=False)
    qty = Column(Qty, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
