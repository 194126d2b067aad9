from .shops import Shop
from .auth import User, ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES, ROLES
from .inventory import Product, StockMovement, MOVEMENT_TYPES
from .sales import Sale, SaleLine
from .transfers import Transfer
from .imports import ImportBatch

__all__ = [
    'Shop',
    'User', 'ROLE_ADMIN', 'ROLE_MANAGER', 'ROLE_SALES', 'ROLES',
    'Product', 'StockMovement', 'MOVEMENT_TYPES',
    'Sale', 'SaleLine',
    'Transfer',
    'ImportBatch',
]
