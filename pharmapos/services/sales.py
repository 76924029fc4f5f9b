# FILE: pharmapos/services/sales.py
from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.orm import Session

from pharmapos.core.config import settings
from pharmapos.core.errors import (
    InsufficientPayment,
    NotFound,
    ReversalMismatch,
    ValidationFailed,
)
from pharmapos.db.unit_of_work import InventoryUnitOfWork
from pharmapos.models.product import PharmacyProduct
from pharmapos.models.sale import Sale, SaleBatchUsage, SaleItem
from pharmapos.services.inventory import (
    D,
    ZERO,
    Allocation,
    consume_fefo,
    list_sale_usage,
    resolve_pharmacy_product,
    reverse_to_batches,
    usage_total,
)
from pharmapos.services.notifications import evaluate_product_stock, queue_emails
from pharmapos.utils.timezone import local_range_to_utc

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _money(v) -> Decimal:
    return D(v).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class SaleLine:
    barcode: str
    quantity: Decimal


@dataclass
class SaleResult:
    sale: Sale
    items: List[SaleItem]
    allocations: Dict[str, List[Allocation]] = field(default_factory=dict)


def clean_description(description: Optional[str]) -> Optional[str]:
    if not isinstance(description, str):
        return None
    trimmed = description.strip()
    if not trimmed:
        return None
    if len(trimmed) > settings.SALE_DESCRIPTION_MAX_LEN:
        raise ValidationFailed(
            f"Description is too long (max {settings.SALE_DESCRIPTION_MAX_LEN} characters)")
    return trimmed


def _normalize_lines(items: Sequence) -> List[SaleLine]:
    if not items:
        raise ValidationFailed("Cart is empty")

    lines: List[SaleLine] = []
    for it in items:
        barcode = getattr(it, "barcode", None) if not isinstance(it, dict) else it.get("barcode")
        qty = getattr(it, "quantity", None) if not isinstance(it, dict) else it.get("quantity")
        barcode = str(barcode or "").strip()
        if not barcode:
            raise ValidationFailed("Every line needs a barcode")
        q = D(qty)
        if q <= 0:
            raise ValidationFailed(f"Quantity for {barcode} must be > 0")
        lines.append(SaleLine(barcode=barcode, quantity=q))
    return lines


def aggregate_by_barcode(lines) -> "OrderedDict[str, Decimal]":
    out: "OrderedDict[str, Decimal]" = OrderedDict()
    for ln in lines:
        barcode = ln.barcode if isinstance(ln, SaleLine) else ln.product_barcode
        qty = ln.quantity
        out[barcode] = out.get(barcode, ZERO) + D(qty)
    return out


def compute_item_deltas(old_items: Sequence[SaleItem], new_lines: Sequence[SaleLine]) -> "OrderedDict[str, Decimal]":
    """new aggregated qty - old aggregated qty per barcode; zero deltas dropped."""
    old = aggregate_by_barcode(old_items)
    new = aggregate_by_barcode(new_lines)
    deltas: "OrderedDict[str, Decimal]" = OrderedDict()
    for barcode in list(old.keys()) + [k for k in new.keys() if k not in old]:
        delta = new.get(barcode, ZERO) - old.get(barcode, ZERO)
        if delta != 0:
            deltas[barcode] = delta
    return deltas


def _resolve_products(db: Session, pharmacy_id: int, barcodes) -> Dict[str, PharmacyProduct]:
    resolved: Dict[str, PharmacyProduct] = {}
    for barcode in barcodes:
        if barcode in resolved:
            continue
        product = resolve_pharmacy_product(db, pharmacy_id, barcode)
        if product is None:
            raise NotFound(f"Product with barcode {barcode} was not found in stock")
        resolved[barcode] = product
    return resolved


def _lock_resolved(uow: InventoryUnitOfWork, resolved: Dict[str, PharmacyProduct]) -> Dict[str, PharmacyProduct]:
    locked = uow.lock_products(p.id for p in resolved.values())
    return {barcode: locked[p.id] for barcode, p in resolved.items()}


# -------------------------
# Confirm
# -------------------------
def confirm_sale(
    db: Session,
    *,
    pharmacy_id: int,
    user_id: Optional[int],
    items: Sequence,
    amount_given,
    description: Optional[str] = None,
) -> SaleResult:
    lines = _normalize_lines(items)
    if amount_given is None:
        raise ValidationFailed("Amount given is required")
    given = _money(amount_given)
    if given < 0:
        raise ValidationFailed("Amount given cannot be negative")
    sale_description = clean_description(description)

    with InventoryUnitOfWork(db, pharmacy_id) as uow:
        products = _lock_resolved(uow, _resolve_products(db, pharmacy_id, [ln.barcode for ln in lines]))

        # price from the product row, never from the client
        priced = []
        total = ZERO
        for ln in lines:
            product = products[ln.barcode]
            price = _money(product.price)
            subtotal = _money(price * ln.quantity)
            total += subtotal
            priced.append((ln, product, price, subtotal))

        change = given - total
        if change < 0:
            raise InsufficientPayment(
                "Payment does not cover the total",
                details={"total": total, "amount_given": given},
            )

        sale = Sale(
            pharmacy_id=pharmacy_id,
            user_id=user_id,
            total=total,
            amount_given=given,
            change_given=change,
            description=sale_description,
        )
        db.add(sale)
        db.flush()

        sale_items: List[SaleItem] = []
        allocations: Dict[str, List[Allocation]] = {}
        for ln, product, price, subtotal in priced:
            item = SaleItem(
                sale_id=sale.id,
                product_barcode=product.barcode,
                product_name=product.display_name,
                quantity=ln.quantity,
                price=price,
                subtotal=subtotal,
            )
            db.add(item)
            db.flush()
            sale_items.append(item)

            result = consume_fefo(
                db,
                pharmacy_id=pharmacy_id,
                pharmacy_product_id=product.id,
                barcode=product.barcode,
                qty=ln.quantity,
                sale_id=sale.id,
                sale_item_id=item.id,
            )
            allocations.setdefault(product.barcode, []).extend(result.allocations)

            queue_emails(uow, evaluate_product_stock(db, product))

    logger.info("Sale %s confirmed pharmacy_id=%s total=%s lines=%s", sale.id, pharmacy_id, total, len(lines))
    return SaleResult(sale=sale, items=sale_items, allocations=allocations)


# -------------------------
# Update
# -------------------------
def _historical_prices(items: Sequence[SaleItem]) -> Dict[str, Decimal]:
    prices: Dict[str, Decimal] = {}
    for it in items:
        prices.setdefault(it.product_barcode, _money(it.price))
    return prices


def update_sale(
    db: Session,
    *,
    pharmacy_id: int,
    sale_id: int,
    items: Sequence,
    amount_given=None,
    description: Optional[str] = None,
) -> SaleResult:
    """
    Replace the lines of a sale and move stock by the per-barcode delta only:
    more units are consumed FEFO, fewer units go back to the batches this
    sale drew from (newest slice first).

    Barcodes already on the sale keep their historical unit price; new
    barcodes are priced from the product. amount_given=None keeps the old
    amount; description=None keeps the old text, "" clears it.
    """
    new_lines = _normalize_lines(items)
    new_description = clean_description(description) if description is not None else None

    with InventoryUnitOfWork(db, pharmacy_id) as uow:
        sale = uow.lock_sale(sale_id)
        old_items = list(db.execute(
            select(SaleItem).where(SaleItem.sale_id == sale.id).order_by(SaleItem.id.asc())
        ).scalars().all())

        barcodes = [it.product_barcode for it in old_items] + [ln.barcode for ln in new_lines]
        products = _lock_resolved(uow, _resolve_products(db, pharmacy_id, barcodes))

        old_prices = _historical_prices(old_items)
        priced = []
        total = ZERO
        for ln in new_lines:
            product = products[ln.barcode]
            price = old_prices.get(product.barcode, _money(product.price))
            subtotal = _money(price * ln.quantity)
            total += subtotal
            priced.append((ln, product, price, subtotal))

        given = _money(amount_given) if amount_given is not None else _money(sale.amount_given)
        change = given - total
        if change < 0:
            raise InsufficientPayment(
                "Payment does not cover the total",
                details={"total": total, "amount_given": given},
            )

        allocations: Dict[str, List[Allocation]] = {}
        for barcode, delta in compute_item_deltas(old_items, new_lines).items():
            product = products[barcode]
            if delta > 0:
                result = consume_fefo(
                    db,
                    pharmacy_id=pharmacy_id,
                    pharmacy_product_id=product.id,
                    barcode=product.barcode,
                    qty=delta,
                    sale_id=sale.id,
                    sale_item_id=None,
                )
                allocations[barcode] = result.allocations
            else:
                to_return = -delta
                result = reverse_to_batches(
                    db,
                    pharmacy_id=pharmacy_id,
                    pharmacy_product_id=product.id,
                    barcode=product.barcode,
                    qty=to_return,
                    sale_id=sale.id,
                    sale_item_id=None,
                )
                if result.returned != to_return:
                    logger.warning("Reversal mismatch sale=%s barcode=%s wanted=%s got=%s",
                                   sale.id, barcode, to_return, result.returned)
                    raise ReversalMismatch(barcode, to_return, result.returned)
            queue_emails(uow, evaluate_product_stock(db, product))

        # ledger rows outlive the replaced lines; keep them as sale-level slices
        db.execute(
            update(SaleBatchUsage)
            .where(SaleBatchUsage.sale_id == sale.id)
            .values(sale_item_id=None)
            .execution_options(synchronize_session="fetch")
        )
        db.execute(delete(SaleItem).where(SaleItem.sale_id == sale.id)
                   .execution_options(synchronize_session="fetch"))

        sale_items: List[SaleItem] = []
        for ln, product, price, subtotal in priced:
            item = SaleItem(
                sale_id=sale.id,
                product_barcode=product.barcode,
                product_name=product.display_name,
                quantity=ln.quantity,
                price=price,
                subtotal=subtotal,
            )
            db.add(item)
            sale_items.append(item)

        sale.total = total
        sale.amount_given = given
        sale.change_given = change
        if description is not None:
            sale.description = new_description
        db.flush()

    logger.info("Sale %s updated pharmacy_id=%s total=%s", sale_id, pharmacy_id, total)
    return SaleResult(sale=sale, items=sale_items, allocations=allocations)


# -------------------------
# Delete
# -------------------------
def delete_sale(db: Session, *, pharmacy_id: int, sale_id: int) -> int:
    """Put every unit of the sale back into its source batches, then drop the sale."""
    with InventoryUnitOfWork(db, pharmacy_id) as uow:
        sale = uow.lock_sale(sale_id)
        items = list(db.execute(
            select(SaleItem).where(SaleItem.sale_id == sale.id).order_by(SaleItem.id.asc())
        ).scalars().all())

        products = _lock_resolved(uow, _resolve_products(db, pharmacy_id, [it.product_barcode for it in items]))

        for it in items:
            product = products[it.product_barcode]
            qty = D(it.quantity)
            result = reverse_to_batches(
                db,
                pharmacy_id=pharmacy_id,
                pharmacy_product_id=product.id,
                barcode=it.product_barcode,
                qty=qty,
                sale_id=sale.id,
                sale_item_id=None,
            )
            if result.returned != qty:
                logger.warning("Reversal mismatch on delete sale=%s barcode=%s wanted=%s got=%s",
                               sale.id, it.product_barcode, qty, result.returned)
                raise ReversalMismatch(it.product_barcode, qty, result.returned)

        for barcode, product in products.items():
            leftover = usage_total(db, sale.id, product.id)
            if leftover != 0:
                # ledger holds more than the lines say; refuse rather than orphan it
                reversed_qty = aggregate_by_barcode(items).get(barcode, ZERO)
                raise ReversalMismatch(barcode, reversed_qty + leftover, reversed_qty)
            queue_emails(uow, evaluate_product_stock(db, product))

        stray = list_sale_usage(db, sale.id)
        if stray:
            raise ReversalMismatch(stray[0].product_barcode, D(stray[0].qty), ZERO)

        db.execute(delete(SaleItem).where(SaleItem.sale_id == sale.id)
                   .execution_options(synchronize_session="fetch"))
        db.delete(sale)

    logger.info("Sale %s deleted pharmacy_id=%s", sale_id, pharmacy_id)
    return sale_id


# -------------------------
# Queries
# -------------------------
def get_sale(db: Session, *, pharmacy_id: int, sale_id: int) -> dict:
    sale = db.execute(
        select(Sale).where(Sale.id == sale_id, Sale.pharmacy_id == pharmacy_id)
    ).scalar_one_or_none()
    if sale is None:
        raise NotFound("Sale not found")

    items = list(db.execute(
        select(SaleItem).where(SaleItem.sale_id == sale.id).order_by(SaleItem.id.asc())
    ).scalars().all())
    return {"sale": sale, "items": items, "usage": list_sale_usage(db, sale.id)}


def list_sales(
    db: Session,
    *,
    pharmacy_id: int,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    user_id: Optional[int] = None,
    min_total=None,
    max_total=None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> dict:
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 20), 1), 100)

    q = select(Sale).where(Sale.pharmacy_id == pharmacy_id)
    if user_id:
        q = q.where(Sale.user_id == user_id)
    if min_total is not None:
        q = q.where(Sale.total >= D(min_total))
    if max_total is not None:
        q = q.where(Sale.total <= D(max_total))
    start_utc, end_utc = local_range_to_utc(date_from, date_to)
    if start_utc:
        q = q.where(Sale.created_at >= start_utc)
    if end_utc:
        q = q.where(Sale.created_at <= end_utc)

    search = (search or "").strip()
    if search:
        like = f"%{search}%"
        item_match = exists().where(
            SaleItem.sale_id == Sale.id,
            or_(SaleItem.product_barcode.like(like), SaleItem.product_name.like(like)),
        )
        sale_id = int(search) if search.isdigit() else -1
        q = q.where(or_(Sale.id == sale_id, item_match))

    total_rows = db.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    rows = db.execute(
        q.order_by(Sale.id.desc()).limit(limit).offset((page - 1) * limit)
    ).scalars().all()

    counts: Dict[int, int] = {}
    ids = [r.id for r in rows]
    if ids:
        for sid, cnt in db.execute(
            select(SaleItem.sale_id, func.count(SaleItem.id))
            .where(SaleItem.sale_id.in_(ids))
            .group_by(SaleItem.sale_id)
        ).all():
            counts[sid] = cnt

    return {
        "page": page,
        "limit": limit,
        "total": total_rows,
        "pages": (total_rows + limit - 1) // limit,
        "data": [{"sale": r, "item_count": counts.get(r.id, 0)} for r in rows],
    }
