# pharmapos/models/__init__.py
from .pharmacy import Pharmacy, PharmacySettings, User
from .product import GlobalProduct, PharmacyProduct
from .batch import ProductBatch, BatchStatus, TERMINAL_BATCH_STATUSES
from .sale import Sale, SaleItem, SaleBatchUsage
from .notification import Notification, NotificationType, EXPIRY_NOTIFICATION_TYPES

__all__ = [
    "Pharmacy",
    "PharmacySettings",
    "User",
    "GlobalProduct",
    "PharmacyProduct",
    "ProductBatch",
    "BatchStatus",
    "TERMINAL_BATCH_STATUSES",
    "Sale",
    "SaleItem",
    "SaleBatchUsage",
    "Notification",
    "NotificationType",
    "EXPIRY_NOTIFICATION_TYPES",
]
