from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from pharmapos.models.batch import BatchStatus


class BatchUpdateIn(BaseModel):
    """
    Partial edit. Send only the fields to change; `"expiry_date": null`
    clears the expiry, leaving the key out keeps it.
    """
    model_config = ConfigDict(extra="forbid")

    quantity: Optional[Decimal] = None
    mode: Literal["delta", "set"] = "delta"
    expiry_date: Optional[date] = None
    status: Optional[BatchStatus] = None


class StockIntakeIn(BaseModel):
    barcode: str = Field(..., min_length=1, max_length=64)
    quantity: Decimal = Field(..., gt=0)
    expiry_date: Optional[date] = None
    price: Optional[Decimal] = Field(None, ge=0)
    custom_name: Optional[str] = Field(None, max_length=255)


class BatchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    pharmacy_product_id: int
    quantity: Decimal
    expiry_date: Optional[date] = None
    status: BatchStatus
    created_at: datetime


class SnapshotOut(BaseModel):
    quantity: Decimal
    next_expiry: Optional[date] = None


class BatchResultOut(BaseModel):
    batch: Optional[BatchOut] = None
    snapshot: SnapshotOut
    deleted: bool = False


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    barcode: Optional[str] = None
    display_name: str
    custom_name: Optional[str] = None
    quantity: Decimal
    price: Decimal
    expiry_date: Optional[date] = None


class ProductDetailOut(ProductOut):
    batches: List[BatchOut] = []


class StockIntakeOut(BaseModel):
    product: ProductOut
    batch: BatchOut
    snapshot: SnapshotOut
    created_product: bool = False
