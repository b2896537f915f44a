from .catalog import User, Product
from .inventory import StoreInventoryRecord
from .orders import Order, OrderItem, OrderItemAllocation
from .loyalty import LoyaltyAccount, LoyaltyTransaction, DiscountCoupon, LoyaltyAccrualOutbox
from .payments import Payment

__all__ = [
    'User', 'Product',
    'StoreInventoryRecord',
    'Order', 'OrderItem', 'OrderItemAllocation',
    'LoyaltyAccount', 'LoyaltyTransaction', 'DiscountCoupon', 'LoyaltyAccrualOutbox',
    'Payment',
]
