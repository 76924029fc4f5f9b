from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pharmapos.api.deps import RequestContext, current_context, get_db
from pharmapos.api.response import ok
from pharmapos.schemas.batch import BatchOut, ProductDetailOut, ProductOut, SnapshotOut, StockIntakeIn, StockIntakeOut
from pharmapos.services.batches import add_stock_by_barcode, get_product_by_barcode, list_pharmacy_products

router = APIRouter(tags=["stock"])


@router.post("/stock/intake")
def stock_intake(
    payload: StockIntakeIn,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    res = add_stock_by_barcode(
        db,
        pharmacy_id=ctx.pharmacy_id,
        barcode=payload.barcode,
        quantity=payload.quantity,
        expiry_date=payload.expiry_date,
        price=payload.price,
        custom_name=payload.custom_name,
    )
    out = StockIntakeOut(
        product=ProductOut.model_validate(res.product),
        batch=BatchOut.model_validate(res.batch),
        snapshot=SnapshotOut(quantity=res.snapshot.quantity, next_expiry=res.snapshot.next_expiry),
        created_product=res.created_product,
    )
    return ok(out, status_code=201)


@router.get("/products/by-barcode/{barcode}")
def product_by_barcode(
    barcode: str,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    product = get_product_by_barcode(db, pharmacy_id=ctx.pharmacy_id, barcode=barcode)
    return ok(ProductDetailOut.model_validate(product))


@router.get("/products")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    res = list_pharmacy_products(db, pharmacy_id=ctx.pharmacy_id, page=page, limit=limit, search=search)
    return ok(
        [ProductOut.model_validate(p) for p in res["data"]],
        meta={k: res[k] for k in ("page", "limit", "total", "pages")},
    )
