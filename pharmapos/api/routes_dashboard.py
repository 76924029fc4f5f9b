from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pharmapos.api.deps import RequestContext, current_context, get_db
from pharmapos.api.response import ok
from pharmapos.services.dashboard import get_dashboard_stats

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats")
def dashboard_stats(
    range_: str = Query("today", alias="range"),
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    top_limit: int = Query(5, ge=1, le=50),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    return ok(get_dashboard_stats(
        db,
        pharmacy_id=ctx.pharmacy_id,
        range_=range_,
        date_from=date_from,
        date_to=date_to,
        top_limit=top_limit,
    ))
