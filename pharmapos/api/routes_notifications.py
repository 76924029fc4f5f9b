from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pharmapos.api.deps import RequestContext, current_context, get_db
from pharmapos.api.response import ok
from pharmapos.schemas.notification import NotificationOut
from pharmapos.services.notifications import list_notifications, mark_notification_read

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_notifications_api(
    unread_only: bool = Query(True),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    rows = list_notifications(db, ctx.pharmacy_id, unread_only=unread_only)
    return ok([NotificationOut.model_validate(r) for r in rows])


@router.post("/{notification_id}/read")
def mark_read_api(
    notification_id: int,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(current_context),
):
    row = mark_notification_read(db, ctx.pharmacy_id, notification_id)
    return ok(NotificationOut.model_validate(row))
