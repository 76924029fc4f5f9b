from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pharmapos.api.deps import RequestContext, current_context, get_db
from pharmapos.api.response import ok
from pharmapos.schemas.sale import (
    SaleConfirmIn,
    SaleDetailOut,
    SaleItemOut,
    SaleListRowOut,
    SaleOut,
    SaleResultOut,
    SaleUpdateIn,
    SaleUsageOut,
)
from pharmapos.services.sales import SaleResult, confirm_sale, delete_sale, get_sale, list_sales, update_sale

router = APIRouter(prefix="/sales", tags=["sales"])


def _result_out(res: SaleResult) -> SaleResultOut:
    return SaleResultOut(
        sale=SaleOut.model_validate(res.sale),
        items=[SaleItemOut.model_validate(i) for i in res.items],
        allocations={
            barcode: [{"batch_id": a.batch_id, "qty": a.qty} for a in allocs]
            for barcode, allocs in res.allocations.items()
        },
    )


@router.post("")
def create_sale(
    payload: SaleConfirmIn,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    res = confirm_sale(
        db,
        pharmacy_id=ctx.pharmacy_id,
        user_id=ctx.user_id,
        items=payload.items,
        amount_given=payload.amount_given,
        description=payload.description,
    )
    return ok(_result_out(res), status_code=201)


@router.get("")
def list_sales_api(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    user_id: Optional[int] = Query(None),
    min_total: Optional[Decimal] = Query(None, ge=0),
    max_total: Optional[Decimal] = Query(None, ge=0),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    res = list_sales(
        db,
        pharmacy_id=ctx.pharmacy_id,
        page=page,
        limit=limit,
        search=search,
        user_id=user_id,
        min_total=min_total,
        max_total=max_total,
        date_from=date_from,
        date_to=date_to,
    )
    rows = [
        SaleListRowOut(**SaleOut.model_validate(r["sale"]).model_dump(), item_count=r["item_count"])
        for r in res["data"]
    ]
    return ok(rows, meta={k: res[k] for k in ("page", "limit", "total", "pages")})


@router.get("/{sale_id}")
def get_sale_api(
    sale_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    res = get_sale(db, pharmacy_id=ctx.pharmacy_id, sale_id=sale_id)
    return ok(SaleDetailOut(
        sale=SaleOut.model_validate(res["sale"]),
        items=[SaleItemOut.model_validate(i) for i in res["items"]],
        usage=[SaleUsageOut.model_validate(u) for u in res["usage"]],
    ))


@router.put("/{sale_id}")
def update_sale_api(
    sale_id: int,
    payload: SaleUpdateIn,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    res = update_sale(
        db,
        pharmacy_id=ctx.pharmacy_id,
        sale_id=sale_id,
        items=payload.items,
        amount_given=payload.amount_given,
        description=payload.description,
    )
    return ok(_result_out(res))


@router.delete("/{sale_id}")
def delete_sale_api(
    sale_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    deleted_id = delete_sale(db, pharmacy_id=ctx.pharmacy_id, sale_id=sale_id)
    return ok({"id": deleted_id, "deleted": True})
