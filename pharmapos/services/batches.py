# FILE: pharmapos/services/batches.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pharmapos.core.config import settings
from pharmapos.core.errors import BatchConflict, NotFound, ValidationFailed
from pharmapos.db.unit_of_work import InventoryUnitOfWork
from pharmapos.models.batch import BatchStatus, ProductBatch, TERMINAL_BATCH_STATUSES
from pharmapos.models.product import GlobalProduct, PharmacyProduct
from pharmapos.models.sale import SaleBatchUsage
from pharmapos.services.inventory import D, Snapshot, recalc_product_snapshot, resolve_pharmacy_product
from pharmapos.services.notifications import evaluate_product_stock, queue_emails
from pharmapos.utils.timezone import today_local

logger = logging.getLogger(__name__)

UNSET: Any = object()

QTY_MODES = ("delta", "set")


@dataclass
class BatchChanges:
    """
    The legal partial edits of a batch. A field left as UNSET is not touched;
    expiry_date=None clears the expiry.
    """
    quantity: Any = UNSET
    quantity_mode: str = "delta"
    expiry_date: Any = UNSET
    status: Any = UNSET

    def is_empty(self) -> bool:
        return self.quantity is UNSET and self.expiry_date is UNSET and self.status is UNSET


@dataclass
class BatchResult:
    batch: Optional[ProductBatch]
    snapshot: Snapshot
    deleted: bool = False


@dataclass
class StockIntakeResult:
    product: PharmacyProduct
    batch: ProductBatch
    snapshot: Snapshot
    created_product: bool = False


def _finish(uow: InventoryUnitOfWork, product: PharmacyProduct) -> Snapshot:
    snap = recalc_product_snapshot(uow.db, uow.pharmacy_id, product.id)
    queue_emails(uow, evaluate_product_stock(uow.db, product))
    return snap


def _coerce_status(value) -> BatchStatus:
    try:
        return BatchStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in BatchStatus)
        raise ValidationFailed(f"Invalid status '{value}'. Allowed: {allowed}")


def update_batch(db: Session, *, pharmacy_id: int, batch_id: int, changes: BatchChanges) -> BatchResult:
    if changes.is_empty():
        raise ValidationFailed("Nothing to update")

    with InventoryUnitOfWork(db, pharmacy_id) as uow:
        batch = uow.lock_batch(batch_id)
        product = uow.lock_product(batch.pharmacy_product_id)

        if batch.is_terminal:
            raise BatchConflict(f"Batch {batch.id} is {batch.status.value}; it can no longer be changed")

        if changes.quantity is not UNSET:
            if changes.quantity_mode not in QTY_MODES:
                raise ValidationFailed("Invalid mode. Allowed: delta | set")
            q = D(changes.quantity, default="NaN")
            if q.is_nan():
                raise ValidationFailed("Invalid quantity")
            new_qty = D(batch.quantity) + q if changes.quantity_mode == "delta" else q
            if new_qty < 0:
                raise ValidationFailed("Batch quantity cannot become negative")
            batch.quantity = new_qty

        if changes.expiry_date is not UNSET:
            batch.expiry_date = changes.expiry_date

        if changes.status is not UNSET:
            new_status = _coerce_status(changes.status)
            if new_status in TERMINAL_BATCH_STATUSES:
                # disposal / supplier return writes the stock off
                logger.info("Batch %s -> %s, writing off qty=%s", batch.id, new_status.value, batch.quantity)
                batch.quantity = Decimal("0")
            batch.status = new_status

        snap = _finish(uow, product)

    return BatchResult(batch=batch, snapshot=snap)


def _usage_count(db: Session, batch_id: int) -> int:
    return db.execute(
        select(func.count(SaleBatchUsage.id)).where(SaleBatchUsage.batch_id == batch_id)
    ).scalar_one()


def delete_batch(db: Session, *, pharmacy_id: int, batch_id: int, hard: bool = False) -> BatchResult:
    """
    Soft delete (default): status=void, quantity=0.
    Hard delete: refused while any sale still references the batch, and while it
    holds stock unless BATCH_HARD_DELETE_REQUIRES_EMPTY is off.
    """
    with InventoryUnitOfWork(db, pharmacy_id) as uow:
        batch = uow.lock_batch(batch_id)
        product = uow.lock_product(batch.pharmacy_product_id)

        if hard:
            if settings.BATCH_HARD_DELETE_REQUIRES_EMPTY and D(batch.quantity) != 0:
                raise BatchConflict("A batch with quantity > 0 cannot be deleted; void it instead")
            if _usage_count(db, batch.id) > 0:
                raise BatchConflict("Batch is referenced by recorded sales; void it instead")
            db.delete(batch)
            logger.info("Hard-deleted batch %s of product %s", batch_id, product.id)
        else:
            batch.status = BatchStatus.VOID
            batch.quantity = Decimal("0")
            logger.info("Voided batch %s of product %s", batch_id, product.id)

        snap = _finish(uow, product)

    return BatchResult(batch=None if hard else batch, snapshot=snap, deleted=hard)


def add_stock_by_barcode(
    db: Session,
    *,
    pharmacy_id: int,
    barcode: str,
    quantity,
    expiry_date: Optional[date] = None,
    price=None,
    custom_name: Optional[str] = None,
) -> StockIntakeResult:
    """
    Stock intake from a scanned barcode: one new active batch.
    Links the global product to the pharmacy first when it is not stocked yet.
    """
    qty = D(quantity)
    if qty <= 0:
        raise ValidationFailed("Quantity must be > 0")
    if expiry_date is not None and expiry_date < today_local():
        raise ValidationFailed("Expiry date is in the past")
    if price is not None and D(price) < 0:
        raise ValidationFailed("Price cannot be negative")

    barcode = str(barcode or "").strip()
    if not barcode:
        raise ValidationFailed("Barcode is required")

    with InventoryUnitOfWork(db, pharmacy_id) as uow:
        gp = db.execute(
            select(GlobalProduct).where(GlobalProduct.barcode == barcode)
        ).scalar_one_or_none()
        if gp is None:
            raise NotFound(f"Product with barcode {barcode} is not registered globally")

        product_id = db.execute(
            select(PharmacyProduct.id).where(
                PharmacyProduct.pharmacy_id == pharmacy_id,
                PharmacyProduct.global_product_id == gp.id,
            )
        ).scalar_one_or_none()

        created = False
        if product_id is None:
            if price is None:
                raise ValidationFailed("Price is required the first time a product is stocked")
            product = PharmacyProduct(
                pharmacy_id=pharmacy_id,
                global_product_id=gp.id,
                custom_name=(custom_name or "").strip() or None,
                quantity=Decimal("0"),
                price=D(price),
            )
            db.add(product)
            db.flush()
            product_id = product.id
            created = True

        product = uow.lock_product(product_id)
        if price is not None:
            product.price = D(price)

        batch = ProductBatch(
            pharmacy_id=pharmacy_id,
            pharmacy_product_id=product.id,
            quantity=qty,
            expiry_date=expiry_date,
            status=BatchStatus.ACTIVE,
        )
        db.add(batch)
        db.flush()

        snap = _finish(uow, product)
        logger.info("Stock intake barcode=%s product=%s batch=%s qty=%s", barcode, product.id, batch.id, qty)

    return StockIntakeResult(product=product, batch=batch, snapshot=snap, created_product=created)


def get_product_by_barcode(db: Session, *, pharmacy_id: int, barcode: str) -> PharmacyProduct:
    product = resolve_pharmacy_product(db, pharmacy_id, barcode)
    if product is None:
        raise NotFound("Product not found in your pharmacy stock")
    return product


def list_pharmacy_products(
    db: Session,
    *,
    pharmacy_id: int,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
) -> dict:
    """Stock list of one pharmacy, A-Z by catalogue name."""
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 20), 1), 100)

    q = (
        select(PharmacyProduct)
        .join(GlobalProduct, GlobalProduct.id == PharmacyProduct.global_product_id)
        .where(PharmacyProduct.pharmacy_id == pharmacy_id)
    )
    search = (search or "").strip()
    if search:
        like = f"%{search}%"
        q = q.where(
            GlobalProduct.name.like(like)
            | GlobalProduct.barcode.like(like)
            | PharmacyProduct.custom_name.like(like)
        )

    total = db.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    rows = db.execute(
        q.order_by(GlobalProduct.name.asc(), PharmacyProduct.id.asc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).scalars().all()

    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit,
        "data": list(rows),
    }
