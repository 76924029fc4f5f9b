# FILE: pharmapos/models/product.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Numeric, ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from pharmapos.db.base import Base

Money = Numeric(14, 2)
Qty = Numeric(14, 4)


class GlobalProduct(Base):
    """Catalogue entry shared by every pharmacy, keyed by barcode."""
    __tablename__ = "products_global"

    id = Column(Integer, primary_key=True, index=True)
    barcode = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    pharmacy_products = relationship("PharmacyProduct", back_populates="global_product")


class PharmacyProduct(Base):
    """
    One stock-keeping unit per product per pharmacy.
    `quantity` and `expiry_date` are a snapshot of the saleable batches and are
    written only by services.inventory.recalc_product_snapshot.
    """
    __tablename__ = "pharmacy_products"
    __table_args__ = (
        UniqueConstraint("pharmacy_id", "global_product_id", name="uq_pharmacy_products_pharmacy_global"),
        Index("ix_pharmacy_products_pharmacy_qty", "pharmacy_id", "quantity"),
    )

    id = Column(Integer, primary_key=True, index=True)
    pharmacy_id = Column(Integer, ForeignKey("pharmacies.id"), nullable=False, index=True)
    global_product_id = Column(Integer, ForeignKey("products_global.id"), nullable=False, index=True)
    custom_name = Column(String(255), nullable=True)

    quantity = Column(Qty, nullable=False, default=Decimal("0"))
    price = Column(Money, nullable=False, default=Decimal("0"))
    expiry_date = Column(Date, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    global_product = relationship("GlobalProduct", back_populates="pharmacy_products")
    batches = relationship("ProductBatch", back_populates="product", order_by="ProductBatch.id")

    @property
    def display_name(self) -> str:
        if self.custom_name:
            return self.custom_name
        return self.global_product.name if self.global_product else ""

    @property
    def barcode(self) -> str:
        return self.global_product.barcode if self.global_product else ""
