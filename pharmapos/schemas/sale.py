from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, conlist


class SaleLineIn(BaseModel):
    barcode: str = Field(..., min_length=1, max_length=64)
    quantity: Decimal = Field(..., gt=0)


class SaleConfirmIn(BaseModel):
    items: conlist(SaleLineIn, min_length=1)
    amount_given: Decimal = Field(..., ge=0)
    description: Optional[str] = None


class SaleUpdateIn(BaseModel):
    items: conlist(SaleLineIn, min_length=1)
    amount_given: Optional[Decimal] = Field(None, ge=0)
    description: Optional[str] = None


class BatchAllocationOut(BaseModel):
    batch_id: int
    qty: Decimal


class SaleItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_barcode: str
    product_name: str
    quantity: Decimal
    price: Decimal
    subtotal: Decimal


class SaleUsageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sale_item_id: Optional[int] = None
    batch_id: int
    product_barcode: str
    qty: Decimal


class SaleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int] = None
    total: Decimal
    amount_given: Decimal
    change_given: Decimal
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SaleResultOut(BaseModel):
    sale: SaleOut
    items: List[SaleItemOut]
    allocations: Dict[str, List[BatchAllocationOut]] = {}


class SaleDetailOut(BaseModel):
    sale: SaleOut
    items: List[SaleItemOut]
    usage: List[SaleUsageOut]


class SaleListRowOut(SaleOut):
    item_count: int = 0
