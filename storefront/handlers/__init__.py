# storefront/handlers/__init__.py
"""HTTP handlers"""
from .base_handler import SESSIONS, auth_middleware, error_middleware
from .admin_handlers import AdminHandler
from .cart_handler import CartHandler
from .order_handler import OrderHandler
from .payment_handler import PaymentHandler
from .wallet_handler import WalletHandler

__all__ = [
    'SESSIONS',
    'auth_middleware',
    'error_middleware',
    'AdminHandler',
    'CartHandler',
    'OrderHandler',
    'PaymentHandler',
    'WalletHandler'
]
