# FILE: pharmapos/services/sweeps.py
"""
Housekeeping passes an external scheduler (cron, systemd timer, the
`python -m pharmapos.jobs` CLI) calls periodically.

Each pass is idempotent: running it twice on the same day changes nothing
the second time. Every product is handled in its own unit of work so one
bad row does not hold back the rest of the pharmacy.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from pharmapos.core.config import settings
from pharmapos.db.unit_of_work import InventoryUnitOfWork
from pharmapos.models.batch import BatchStatus, ProductBatch
from pharmapos.models.notification import NotificationType
from pharmapos.models.product import PharmacyProduct
from pharmapos.services.inventory import D, recalc_product_snapshot
from pharmapos.services.notifications import (
    evaluate_product_stock,
    get_alert_settings,
    notify_batch_expiry,
    queue_emails,
)
from pharmapos.utils.timezone import today_local

logger = logging.getLogger(__name__)


@dataclass
class SweepSummary:
    products: int = 0
    batches: int = 0
    notifications: int = 0
    failed: List[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "products": self.products,
            "batches": self.batches,
            "notifications": self.notifications,
            "failed": list(self.failed),
        }


def _group_by_product(rows) -> Dict[Tuple[int, int], List[int]]:
    grouped: Dict[Tuple[int, int], List[int]] = {}
    for batch_id, pharmacy_id, product_id in rows:
        grouped.setdefault((pharmacy_id, product_id), []).append(batch_id)
    return grouped


def sweep_expired(db: Session, today: Optional[date] = None,
                  pharmacy_id: Optional[int] = None) -> SweepSummary:
    """
    active batches whose expiry_date < today -> expired.

    Batches that still held stock get a one-shot `expired` notification;
    the product snapshot and stock alerts are re-evaluated.
    """
    today = today or today_local()
    q = select(ProductBatch.id, ProductBatch.pharmacy_id, ProductBatch.pharmacy_product_id).where(
        ProductBatch.status == BatchStatus.ACTIVE,
        ProductBatch.expiry_date.is_not(None),
        ProductBatch.expiry_date < today,
    )
    if pharmacy_id:
        q = q.where(ProductBatch.pharmacy_id == pharmacy_id)
    candidates = _group_by_product(db.execute(q.order_by(ProductBatch.pharmacy_product_id, ProductBatch.id)).all())
    db.rollback()

    summary = SweepSummary()
    for (pid, product_id), batch_ids in candidates.items():
        try:
            with InventoryUnitOfWork(db, pid) as uow:
                product = uow.lock_product(product_id)
                flipped = 0
                for batch_id in batch_ids:
                    batch = db.execute(
                        select(ProductBatch).where(ProductBatch.id == batch_id).with_for_update()
                    ).scalar_one_or_none()
                    # re-check under lock; a concurrent edit may have moved it
                    if batch is None or batch.status != BatchStatus.ACTIVE:
                        continue
                    if batch.expiry_date is None or batch.expiry_date >= today:
                        continue

                    batch.status = BatchStatus.EXPIRED
                    flipped += 1
                    if D(batch.quantity) > 0:
                        emails = notify_batch_expiry(db, product, batch, NotificationType.EXPIRED, today)
                        summary.notifications += len(emails)
                        queue_emails(uow, emails)

                recalc_product_snapshot(db, pid, product.id, today=today)
                queue_emails(uow, evaluate_product_stock(db, product))
        except Exception:
            logger.exception("Expiry sweep failed for product %s (pharmacy %s)", product_id, pid)
            summary.failed.append(product_id)
            continue

        summary.products += 1
        summary.batches += flipped

    logger.info("Expiry sweep %s: products=%s batches=%s notifications=%s failed=%s",
                today.isoformat(), summary.products, summary.batches,
                summary.notifications, len(summary.failed))
    return summary


def _near_expiry_type(days_left: int, alert_days: int) -> Optional[NotificationType]:
    if days_left < 0:
        return None
    if days_left <= settings.NEAR_EXPIRY_FINAL_DAYS:
        return NotificationType.NEAR_EXPIRY_7D
    if days_left <= alert_days:
        return NotificationType.NEAR_EXPIRY_INITIAL
    return None


def sweep_near_expiry(db: Session, pharmacy_id: Optional[int] = None,
                      today: Optional[date] = None) -> SweepSummary:
    """
    One-shot heads-up per batch: near_expiry_initial once a stocked batch is
    inside the pharmacy's expiry_alert_days window, near_expiry_7d once it is
    inside the final week.
    """
    today = today or today_local()
    q = select(ProductBatch.id, ProductBatch.pharmacy_id, ProductBatch.pharmacy_product_id).where(
        ProductBatch.status == BatchStatus.ACTIVE,
        ProductBatch.quantity > 0,
        ProductBatch.expiry_date.is_not(None),
        ProductBatch.expiry_date >= today,
    )
    if pharmacy_id:
        q = q.where(ProductBatch.pharmacy_id == pharmacy_id)
    candidates = _group_by_product(db.execute(q.order_by(ProductBatch.pharmacy_product_id, ProductBatch.id)).all())
    db.rollback()

    summary = SweepSummary()
    alert_days: Dict[int, int] = {}
    for (pid, product_id), batch_ids in candidates.items():
        if pid not in alert_days:
            alert_days[pid] = get_alert_settings(db, pid).expiry_alert_days
        try:
            with InventoryUnitOfWork(db, pid) as uow:
                product = uow.lock_product(product_id)
                for batch_id in batch_ids:
                    batch = db.execute(
                        select(ProductBatch).where(ProductBatch.id == batch_id).with_for_update()
                    ).scalar_one_or_none()
                    # disposed or emptied since the candidate query
                    if batch is None or batch.status != BatchStatus.ACTIVE:
                        continue
                    if D(batch.quantity) <= 0 or batch.expiry_date is None:
                        continue
                    ntype = _near_expiry_type((batch.expiry_date - today).days, alert_days[pid])
                    if ntype is None:
                        continue
                    summary.batches += 1
                    emails = notify_batch_expiry(db, product, batch, ntype, today)
                    summary.notifications += len(emails)
                    queue_emails(uow, emails)
        except Exception:
            logger.exception("Near-expiry sweep failed for product %s (pharmacy %s)", product_id, pid)
            summary.failed.append(product_id)
            continue
        summary.products += 1

    logger.info("Near-expiry sweep %s: products=%s batches=%s notifications=%s failed=%s",
                today.isoformat(), summary.products, summary.batches,
                summary.notifications, len(summary.failed))
    return summary


def evaluate_low_stock(db: Session, pharmacy_id: int, today: Optional[date] = None) -> SweepSummary:
    """Re-run the stock alert rules for every product of a pharmacy (thresholds may have changed)."""
    today = today or today_local()
    product_ids = db.execute(
        select(PharmacyProduct.id)
        .where(PharmacyProduct.pharmacy_id == pharmacy_id)
        .order_by(PharmacyProduct.id.asc())
    ).scalars().all()
    alert = get_alert_settings(db, pharmacy_id)
    db.rollback()

    summary = SweepSummary()
    for product_id in product_ids:
        try:
            with InventoryUnitOfWork(db, pharmacy_id) as uow:
                product = uow.lock_product(product_id)
                # batches may have aged past expiry since the last write
                recalc_product_snapshot(db, pharmacy_id, product.id, today=today)
                emails = evaluate_product_stock(db, product, alert)
                summary.notifications += len(emails)
                queue_emails(uow, emails)
        except Exception:
            logger.exception("Low-stock evaluation failed for product %s (pharmacy %s)", product_id, pharmacy_id)
            summary.failed.append(product_id)
            continue
        summary.products += 1

    logger.info("Low-stock evaluation pharmacy=%s: products=%s new_alerts=%s failed=%s",
                pharmacy_id, summary.products, summary.notifications, len(summary.failed))
    return summary


def pharmacy_ids_with_products(db: Session) -> List[int]:
    return list(db.execute(
        select(PharmacyProduct.pharmacy_id).distinct().order_by(PharmacyProduct.pharmacy_id)
    ).scalars().all())
