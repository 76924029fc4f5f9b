# FILE: pharmapos/core/errors.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional


class InventoryError(RuntimeError):
    """
    Base for every failure the core reports to its callers.

    `code` is stable (clients switch on it), `status_code` is the HTTP
    status the API layer maps it to, `details` is safe to show to users.
    """
    code = "error"
    status_code = 500

    def __init__(self, msg: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(msg)
        self.msg = msg
        self.details = details


class ValidationFailed(InventoryError):
    code = "validation_error"
    status_code = 400


class InsufficientPayment(ValidationFailed):
    code = "insufficient_payment"


class NotFound(InventoryError):
    code = "not_found"
    status_code = 404


class InsufficientStock(InventoryError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, available: Decimal, requested: Decimal, *, barcode: Optional[str] = None):
        self.available = available
        self.requested = requested
        self.barcode = barcode
        super().__init__(
            f"Insufficient stock (requested: {requested}; available: {available})",
            details={"available": available, "requested": requested, "barcode": barcode},
        )


class ReversalMismatch(InventoryError):
    code = "reversal_mismatch"
    status_code = 409

    def __init__(self, barcode: str, requested: Decimal, returned: Decimal):
        self.barcode = barcode
        self.requested = requested
        self.returned = returned
        super().__init__(
            f"Inventory reversal mismatch for {barcode} "
            f"(wanted {requested}, reversed {returned})",
            details={"barcode": barcode, "requested": requested, "returned": returned},
        )


class BatchConflict(InventoryError):
    code = "batch_conflict"
    status_code = 409
