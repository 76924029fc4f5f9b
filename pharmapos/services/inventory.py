# FILE: pharmapos/services/inventory.py
"""
Batch-level stock engine.

- consume_fefo: debit saleable batches earliest-expiry first and log every slice
- reverse_to_batches: credit logged slices back to the exact batches, newest first
- recalc_product_snapshot: the only writer of PharmacyProduct.quantity / expiry_date

All functions expect the caller to hold the parent product row lock
(see db.unit_of_work.InventoryUnitOfWork) and never commit themselves.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.orm import Session

from pharmapos.core.errors import InsufficientStock, ValidationFailed
from pharmapos.models.batch import BatchStatus, ProductBatch
from pharmapos.models.product import GlobalProduct, PharmacyProduct
from pharmapos.models.sale import SaleBatchUsage
from pharmapos.utils.timezone import today_local

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def D(v, default="0") -> Decimal:
    try:
        if v is None:
            return Decimal(default)
        if isinstance(v, Decimal):
            return v
        return Decimal(str(v))
    except Exception:
        return Decimal(default)


@dataclass
class Allocation:
    batch_id: int
    qty: Decimal


@dataclass
class ConsumeResult:
    consumed: Decimal
    allocations: List[Allocation] = field(default_factory=list)


@dataclass
class ReverseResult:
    returned: Decimal
    credits: List[Allocation] = field(default_factory=list)


@dataclass
class Snapshot:
    quantity: Decimal
    next_expiry: Optional[date]


def _saleable_clause(pharmacy_id: int, pharmacy_product_id: int, today: date):
    return and_(
        ProductBatch.pharmacy_id == pharmacy_id,
        ProductBatch.pharmacy_product_id == pharmacy_product_id,
        ProductBatch.status == BatchStatus.ACTIVE,
        ProductBatch.quantity > 0,
        or_(
            ProductBatch.expiry_date.is_(None),
            ProductBatch.expiry_date >= today,
        ),
    )


def resolve_pharmacy_product(db: Session, pharmacy_id: int, barcode: str) -> Optional[PharmacyProduct]:
    return db.execute(
        select(PharmacyProduct)
        .join(GlobalProduct, GlobalProduct.id == PharmacyProduct.global_product_id)
        .where(
            GlobalProduct.barcode == str(barcode).strip(),
            PharmacyProduct.pharmacy_id == pharmacy_id,
        )
    ).scalar_one_or_none()


# -------------------------
# Snapshot
# -------------------------
def compute_snapshot(db: Session, pharmacy_id: int, pharmacy_product_id: int,
                     today: Optional[date] = None) -> Snapshot:
    today = today or today_local()
    db.flush()

    saleable = _saleable_clause(pharmacy_id, pharmacy_product_id, today)
    qty = db.execute(
        select(func.coalesce(func.sum(ProductBatch.quantity), 0)).where(saleable)
    ).scalar_one()
    next_expiry = db.execute(
        select(func.min(ProductBatch.expiry_date)).where(
            saleable, ProductBatch.expiry_date.is_not(None))
    ).scalar_one()
    return Snapshot(quantity=D(qty), next_expiry=next_expiry)


def recalc_product_snapshot(db: Session, pharmacy_id: int, pharmacy_product_id: int,
                            today: Optional[date] = None) -> Snapshot:
    """
    Rewrite quantity + nearest expiry on the product from its saleable batches.
    Must run after every batch mutation.
    """
    snap = compute_snapshot(db, pharmacy_id, pharmacy_product_id, today=today)

    product = db.get(PharmacyProduct, pharmacy_product_id)
    if product is None or product.pharmacy_id != pharmacy_id:
        return snap

    product.quantity = snap.quantity
    product.expiry_date = snap.next_expiry
    db.flush()
    return snap


# -------------------------
# Usage ledger
# -------------------------
def log_batch_usage(
    db: Session,
    *,
    sale_id: int,
    sale_item_id: Optional[int],
    pharmacy_id: int,
    pharmacy_product_id: int,
    batch_id: int,
    barcode: str,
    qty: Decimal,
) -> SaleBatchUsage:
    row = SaleBatchUsage(
        sale_id=sale_id,
        sale_item_id=sale_item_id,
        pharmacy_id=pharmacy_id,
        pharmacy_product_id=pharmacy_product_id,
        batch_id=batch_id,
        product_barcode=str(barcode),
        qty=qty,
    )
    db.add(row)
    return row


def usage_total(db: Session, sale_id: int, pharmacy_product_id: int) -> Decimal:
    db.flush()
    total = db.execute(
        select(func.coalesce(func.sum(SaleBatchUsage.qty), 0)).where(
            SaleBatchUsage.sale_id == sale_id,
            SaleBatchUsage.pharmacy_product_id == pharmacy_product_id,
        )
    ).scalar_one()
    return D(total)


def list_sale_usage(db: Session, sale_id: int) -> List[SaleBatchUsage]:
    return list(db.execute(
        select(SaleBatchUsage)
        .where(SaleBatchUsage.sale_id == sale_id)
        .order_by(SaleBatchUsage.id.asc())
    ).scalars().all())


# -------------------------
# Consume (FEFO)
# -------------------------
def saleable_batches_fefo(db: Session, pharmacy_id: int, pharmacy_product_id: int,
                          today: Optional[date] = None) -> List[ProductBatch]:
    today = today or today_local()
    db.flush()

    # MySQL-safe NULLS LAST: non-null expiry (0) first, NULL (1) last
    nulls_last_expr = case(
        (ProductBatch.expiry_date.is_(None), 1),
        else_=0,
    )

    return list(db.execute(
        select(ProductBatch)
        .where(_saleable_clause(pharmacy_id, pharmacy_product_id, today))
        .order_by(
            nulls_last_expr.asc(),
            ProductBatch.expiry_date.asc(),
            ProductBatch.id.asc(),  # same expiry: oldest lot first
        )
        .with_for_update()
    ).scalars().all())


def consume_fefo(
    db: Session,
    *,
    pharmacy_id: int,
    pharmacy_product_id: int,
    barcode: str,
    qty,
    sale_id: int,
    sale_item_id: Optional[int] = None,
    today: Optional[date] = None,
) -> ConsumeResult:
    """
    Debit `qty` from saleable batches (earliest expiry first, NULL expiry last,
    then lowest id) and log one usage row per batch slice.

    Raises InsufficientStock before touching anything when the saleable
    total is short.
    """
    need = D(qty)
    if need <= 0:
        raise ValidationFailed("Quantity must be > 0")

    today = today or today_local()
    batches = saleable_batches_fefo(db, pharmacy_id, pharmacy_product_id, today=today)

    available = sum((D(b.quantity) for b in batches), ZERO)
    if available < need:
        raise InsufficientStock(available=available, requested=need, barcode=str(barcode))

    remaining = need
    allocations: List[Allocation] = []
    for batch in batches:
        if remaining <= 0:
            break

        use_qty = min(D(batch.quantity), remaining)
        if use_qty <= 0:
            continue

        batch.quantity = D(batch.quantity) - use_qty
        allocations.append(Allocation(batch_id=batch.id, qty=use_qty))
        log_batch_usage(
            db,
            sale_id=sale_id,
            sale_item_id=sale_item_id,
            pharmacy_id=pharmacy_id,
            pharmacy_product_id=pharmacy_product_id,
            batch_id=batch.id,
            barcode=barcode,
            qty=use_qty,
        )
        remaining -= use_qty

    recalc_product_snapshot(db, pharmacy_id, pharmacy_product_id, today=today)
    return ConsumeResult(consumed=need, allocations=allocations)


# -------------------------
# Reverse (LIFO over the usage ledger)
# -------------------------
def reverse_to_batches(
    db: Session,
    *,
    pharmacy_id: int,
    pharmacy_product_id: int,
    barcode: str,
    qty,
    sale_id: int,
    sale_item_id: Optional[int] = None,
    today: Optional[date] = None,
) -> ReverseResult:
    """
    Give `qty` back to the exact batches this sale drew from, newest slice first.

    A batch receives its units back whatever its status is now; expired or
    written-off stock stays non-saleable. `returned` is lower than `qty` only
    when the ledger holds less than requested; callers treat that as a
    ReversalMismatch.
    """
    remaining = D(qty)
    if remaining <= 0:
        return ReverseResult(returned=ZERO)
    db.flush()

    q = select(SaleBatchUsage).where(
        SaleBatchUsage.sale_id == sale_id,
        SaleBatchUsage.pharmacy_id == pharmacy_id,
        SaleBatchUsage.pharmacy_product_id == pharmacy_product_id,
        SaleBatchUsage.product_barcode == str(barcode),
    )
    if sale_item_id:
        q = q.where(SaleBatchUsage.sale_item_id == sale_item_id)

    usage_rows = db.execute(
        q.order_by(SaleBatchUsage.id.desc()).with_for_update()
    ).scalars().all()

    returned = ZERO
    credits: List[Allocation] = []
    for row in usage_rows:
        if remaining <= 0:
            break

        row_qty = D(row.qty)
        give = min(row_qty, remaining)

        batch = db.get(ProductBatch, row.batch_id, with_for_update=True)
        if batch is None:
            logger.warning("usage row %s points at missing batch %s", row.id, row.batch_id)
            continue
        batch.quantity = D(batch.quantity) + give

        if give == row_qty:
            db.delete(row)
        else:
            row.qty = row_qty - give

        credits.append(Allocation(batch_id=batch.id, qty=give))
        returned += give
        remaining -= give

    recalc_product_snapshot(db, pharmacy_id, pharmacy_product_id, today=today)
    return ReverseResult(returned=returned, credits=credits)
