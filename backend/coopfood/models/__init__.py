from .reference import Branch, Department, GradeLimit, Member, Item
from .pricing import BranchItemPrice, BranchItemMarkup
from .orders import Order, OrderLine, OrderEvent, ORDER_STATUSES, PAYMENT_OPTIONS
from .inventory import Cycle, InventoryMovement, MOVEMENT_TYPES, REFERENCE_TYPES
from .auth import SessionToken
from .system import AppSetting, RateLimitHit

__all__ = [
    'Branch', 'Department', 'GradeLimit', 'Member', 'Item',
    'BranchItemPrice', 'BranchItemMarkup',
    'Order', 'OrderLine', 'OrderEvent', 'ORDER_STATUSES', 'PAYMENT_OPTIONS',
    'Cycle', 'InventoryMovement', 'MOVEMENT_TYPES', 'REFERENCE_TYPES',
    'SessionToken',
    'AppSetting', 'RateLimitHit',
]
