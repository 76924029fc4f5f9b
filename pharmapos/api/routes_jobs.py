from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pharmapos.api.deps import RequestContext, current_context, get_db
from pharmapos.api.response import ok
from pharmapos.services.sweeps import evaluate_low_stock, sweep_expired, sweep_near_expiry

router = APIRouter(prefix="/jobs", tags=["jobs"])


# Manual triggers for the caller's pharmacy; the scheduler uses `python -m pharmapos.jobs`.
@router.post("/expiry-sweep")
def run_expiry_sweep(
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    return ok(sweep_expired(db, pharmacy_id=ctx.pharmacy_id).as_dict())


@router.post("/near-expiry-sweep")
def run_near_expiry_sweep(
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    return ok(sweep_near_expiry(db, pharmacy_id=ctx.pharmacy_id).as_dict())


@router.post("/low-stock")
def run_low_stock(
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    return ok(evaluate_low_stock(db, ctx.pharmacy_id).as_dict())
