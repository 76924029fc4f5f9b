# FILE: pharmapos/db/unit_of_work.py
from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from pharmapos.core.errors import NotFound
from pharmapos.models.batch import ProductBatch
from pharmapos.models.product import PharmacyProduct
from pharmapos.models.sale import Sale

logger = logging.getLogger(__name__)


class InventoryUnitOfWork:
    """
    One database transaction for one inventory-mutating operation.

    Usage:
        with InventoryUnitOfWork(db, pharmacy_id) as uow:
            product = uow.lock_product(product_id)
            ...

    - Commits when the block exits cleanly, rolls back on any exception
      (the exception is re-raised).
    - Lock order is always: product rows (ascending id), then their batches.
      Every entry point goes through lock_* so two terminals selling the same
      product serialize on the product row instead of overselling.
    - Hooks registered with after_commit() run only once the commit has
      succeeded; their failures are logged and never undo the commit.
    """

    def __init__(self, db: Session, pharmacy_id: int):
        self.db = db
        self.pharmacy_id = pharmacy_id
        self._products: Dict[int, PharmacyProduct] = {}
        self._after_commit: List[Callable[[Session], None]] = []

    def __enter__(self) -> "InventoryUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.db.rollback()
            self._after_commit.clear()
            return False

        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            self._after_commit.clear()
            raise

        self._run_after_commit()
        return False

    # -------------------------
    # Locks
    # -------------------------
    def lock_product(self, product_id: int) -> PharmacyProduct:
        cached = self._products.get(product_id)
        if cached is not None:
            return cached

        product = self.db.execute(
            select(PharmacyProduct)
            .where(
                PharmacyProduct.id == product_id,
                PharmacyProduct.pharmacy_id == self.pharmacy_id,
            )
            .with_for_update()
        ).scalar_one_or_none()
        if product is None:
            raise NotFound(f"Product {product_id} not found")

        self._products[product_id] = product
        return product

    def lock_products(self, product_ids: Iterable[int]) -> Dict[int, PharmacyProduct]:
        # ascending id keeps multi-product sales from deadlocking each other
        return {pid: self.lock_product(pid) for pid in sorted(set(product_ids))}

    def lock_batch(self, batch_id: int) -> ProductBatch:
        """Lock the batch's parent product first, then the batch itself."""
        product_id = self.db.execute(
            select(ProductBatch.pharmacy_product_id).where(
                ProductBatch.id == batch_id,
                ProductBatch.pharmacy_id == self.pharmacy_id,
            )
        ).scalar_one_or_none()
        if product_id is None:
            raise NotFound(f"Batch {batch_id} not found")

        self.lock_product(product_id)
        batch = self.db.execute(
            select(ProductBatch)
            .where(ProductBatch.id == batch_id, ProductBatch.pharmacy_id == self.pharmacy_id)
            .with_for_update()
        ).scalar_one_or_none()
        if batch is None:
            raise NotFound(f"Batch {batch_id} not found")
        return batch

    def lock_sale(self, sale_id: int) -> Sale:
        sale = self.db.execute(
            select(Sale)
            .where(Sale.id == sale_id, Sale.pharmacy_id == self.pharmacy_id)
            .with_for_update()
        ).scalar_one_or_none()
        if sale is None:
            raise NotFound(f"Sale {sale_id} not found")
        return sale

    # -------------------------
    # Post-commit work
    # -------------------------
    def after_commit(self, fn: Callable[[Session], None]) -> None:
        self._after_commit.append(fn)

    def _run_after_commit(self) -> None:
        hooks, self._after_commit = self._after_commit, []
        for fn in hooks:
            try:
                fn(self.db)
            except Exception:
                logger.exception("after-commit hook failed pharmacy_id=%s", self.pharmacy_id)
                self.db.rollback()
