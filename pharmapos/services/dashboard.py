# FILE: pharmapos/services/dashboard.py
"""
Point-in-time KPIs for the pharmacy home screen.

Sales figures cover a window of pharmacy-local calendar days, converted to
UTC bounds for the created_at filter. Inventory figures are read from the
product snapshot and ignore the window.
"""
from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from pharmapos.core.errors import ValidationFailed
from pharmapos.models.product import PharmacyProduct
from pharmapos.models.sale import Sale, SaleItem
from pharmapos.services.inventory import D, ZERO
from pharmapos.services.notifications import get_alert_settings
from pharmapos.utils.timezone import local_range_to_utc, today_local

logger = logging.getLogger(__name__)

RANGES = ("today", "week", "month", "all", "custom")


def resolve_range(range_: str, date_from: Optional[date] = None, date_to: Optional[date] = None,
                  today: Optional[date] = None) -> Tuple[Optional[date], Optional[date]]:
    """Local first/last day of the window; (None, None) for `all`."""
    today = today or today_local()
    if range_ == "today":
        return today, today
    if range_ == "week":
        monday = today - timedelta(days=today.weekday())
        return monday, monday + timedelta(days=6)
    if range_ == "month":
        last = calendar.monthrange(today.year, today.month)[1]
        return today.replace(day=1), today.replace(day=last)
    if range_ == "all":
        return None, None
    if range_ == "custom":
        if date_from is None or date_to is None or date_to < date_from:
            raise ValidationFailed("Custom range needs from <= to")
        return date_from, date_to
    raise ValidationFailed(f"Unknown range '{range_}'", details={"allowed": list(RANGES)})


def _top_products(db: Session, pharmacy_id: int, start_utc, end_utc, limit: int) -> list:
    total_qty = func.sum(SaleItem.quantity).label("total_qty")
    q = (
        select(
            SaleItem.product_barcode,
            SaleItem.product_name,
            total_qty,
            func.sum(SaleItem.subtotal).label("total_subtotal"),
        )
        .join(Sale, Sale.id == SaleItem.sale_id)
        .where(Sale.pharmacy_id == pharmacy_id)
    )
    if start_utc and end_utc:
        q = q.where(Sale.created_at >= start_utc, Sale.created_at <= end_utc)
    q = q.group_by(SaleItem.product_barcode, SaleItem.product_name).order_by(total_qty.desc()).limit(limit)

    return [
        {
            "barcode": barcode,
            "name": name,
            "quantity": D(qty or 0),
            "subtotal": D(subtotal or 0),
        }
        for barcode, name, qty, subtotal in db.execute(q).all()
    ]


def get_dashboard_stats(
    db: Session,
    *,
    pharmacy_id: int,
    range_: str = "today",
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    top_limit: int = 5,
    today: Optional[date] = None,
) -> dict:
    today = today or today_local()
    top_limit = min(max(int(top_limit or 5), 1), 50)
    first_day, last_day = resolve_range(range_, date_from, date_to, today=today)
    start_utc, end_utc = local_range_to_utc(first_day, last_day)

    alert = get_alert_settings(db, pharmacy_id)

    sales_q = select(func.count(Sale.id), func.coalesce(func.sum(Sale.total), 0)).where(
        Sale.pharmacy_id == pharmacy_id
    )
    if start_utc and end_utc:
        sales_q = sales_q.where(Sale.created_at >= start_utc, Sale.created_at <= end_utc)
    sales_count, revenue = db.execute(sales_q).one()
    sales_count = int(sales_count or 0)
    revenue = D(revenue or 0)
    avg_order_value = (revenue / sales_count).quantize(Decimal("0.01")) if sales_count else ZERO

    qty = PharmacyProduct.quantity
    expiring_soon = (
        PharmacyProduct.expiry_date.is_not(None)
        & (PharmacyProduct.expiry_date >= today)
        & (PharmacyProduct.expiry_date < today + timedelta(days=alert.expiry_alert_days))
        & (qty > 0)
    )
    stock_row = db.execute(
        select(
            func.count(PharmacyProduct.id),
            func.coalesce(func.sum(case((qty > 0, 1), else_=0)), 0),
            func.coalesce(func.sum(qty), 0),
            func.coalesce(func.sum(qty * PharmacyProduct.price), 0),
            func.coalesce(func.sum(case((qty <= alert.low_stock_threshold, 1), else_=0)), 0),
            func.coalesce(func.sum(case((expiring_soon, 1), else_=0)), 0),
        ).where(PharmacyProduct.pharmacy_id == pharmacy_id)
    ).one()
    distinct, in_stock, units, value, low, expiring = stock_row

    logger.debug("Dashboard pharmacy=%s range=%s sales=%s", pharmacy_id, range_, sales_count)
    return {
        "range": range_,
        "window": {
            "from": first_day,
            "to": last_day,
            "start_utc": start_utc,
            "end_utc": end_utc,
        },
        "sales": {
            "sales_count": sales_count,
            "revenue": revenue,
            "avg_order_value": avg_order_value,
            "top_products": _top_products(db, pharmacy_id, start_utc, end_utc, top_limit),
        },
        "inventory": {
            "distinct_products": int(distinct or 0),
            "products_in_stock": int(in_stock or 0),
            "total_units": D(units or 0),
            "inventory_value": D(value or 0).quantize(Decimal("0.01")),
            "low_stock_count": int(low or 0),
            "expiring_soon_count": int(expiring or 0),
            "thresholds": {
                "low_stock_threshold": alert.low_stock_threshold,
                "expiry_alert_days": alert.expiry_alert_days,
            },
        },
    }
