"""Models package - exports all SQLAlchemy models."""
from order_hub.models.app_user import AppUser, UserRole
from order_hub.models.vendor import Vendor
from order_hub.models.product import Product
from order_hub.models.order import (
    Order, OrderStatus, PricingMode, UnavailableAction, TERMINAL_STATUSES, REPLACE_ACTIONS
)
from order_hub.models.order_modification import OrderModification, ChangeType

__all__ = [
    'AppUser', 'UserRole',
    'Vendor', 'Product',
    'Order', 'OrderStatus', 'PricingMode', 'UnavailableAction', 'TERMINAL_STATUSES', 'REPLACE_ACTIONS',
    'OrderModification', 'ChangeType',
]
