from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pharmapos.api.deps import RequestContext, current_context, get_db
from pharmapos.api.response import ok
from pharmapos.schemas.batch import BatchOut, BatchResultOut, BatchUpdateIn, SnapshotOut
from pharmapos.services.batches import BatchChanges, BatchResult, delete_batch, update_batch

router = APIRouter(prefix="/batches", tags=["batches"])


def _changes_from(payload: BatchUpdateIn) -> BatchChanges:
    sent = payload.model_fields_set
    changes = BatchChanges(quantity_mode=payload.mode)
    if "quantity" in sent and payload.quantity is not None:
        changes.quantity = payload.quantity
    # explicit null clears the expiry; absent key leaves it alone
    if "expiry_date" in sent:
        changes.expiry_date = payload.expiry_date
    if "status" in sent and payload.status is not None:
        changes.status = payload.status
    return changes


def _result_out(res: BatchResult) -> BatchResultOut:
    return BatchResultOut(
        batch=BatchOut.model_validate(res.batch) if res.batch is not None else None,
        snapshot=SnapshotOut(quantity=res.snapshot.quantity, next_expiry=res.snapshot.next_expiry),
        deleted=res.deleted,
    )


@router.patch("/{batch_id}")
def update_batch_api(
    batch_id: int,
    payload: BatchUpdateIn,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    res = update_batch(db, pharmacy_id=ctx.pharmacy_id, batch_id=batch_id, changes=_changes_from(payload))
    return ok(_result_out(res))


@router.delete("/{batch_id}")
def delete_batch_api(
    batch_id: int,
    hard: bool = Query(False),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    res = delete_batch(db, pharmacy_id=ctx.pharmacy_id, batch_id=batch_id, hard=hard)
    return ok(_result_out(res))
