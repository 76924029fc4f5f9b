from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from pharmapos.models.notification import NotificationType


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    batch_id: int
    type: NotificationType
    message: str
    is_read: bool
    is_resolved: bool
    resolved_at: Optional[datetime] = None
    email_sent: bool
    created_at: datetime
