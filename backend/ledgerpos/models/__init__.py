from .inventory import Category, Product, InventoryMovement
from .customers import Customer, LoyaltyPointEntry
from .sales import Sale, SaleLine
from .purchases import Supplier, Purchase, PurchaseLine
from .documents import DocumentSequence

__all__ = [
    'Category', 'Product', 'InventoryMovement',
    'Customer', 'LoyaltyPointEntry',
    'Sale', 'SaleLine',
    'Supplier', 'Purchase', 'PurchaseLine',
    'DocumentSequence',
]
