from .outlets import Outlet
from .auth import User, CustomerDetails, SessionToken
from .catalog import Product, Inventory, StockHistory
from .carts import Cart, CartItem
from .wallets import Wallet, WalletTransaction
from .promotions import Coupon, CouponUsage
from .orders import Order, OrderItem, UserFreeQuota
from .feedback import Feedback

__all__ = [
    'Outlet',
    'User', 'CustomerDetails', 'SessionToken',
    'Product', 'Inventory', 'StockHistory',
    'Cart', 'CartItem',
    'Wallet', 'WalletTransaction',
    'Coupon', 'CouponUsage',
    'Order', 'OrderItem', 'UserFreeQuota',
    'Feedback',
]
