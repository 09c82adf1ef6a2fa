from .tenancy import Store, StoreMembership, STORE_ROLES
from .auth import User, SessionToken
from .inventory import Category, Product, StockMovement
from .customers import Customer
from .sales import Transaction, TransactionItem, PAYMENT_METHODS

__all__ = [
    'Store', 'StoreMembership', 'STORE_ROLES',
    'User', 'SessionToken',
    'Category', 'Product', 'StockMovement',
    'Customer',
    'Transaction', 'TransactionItem', 'PAYMENT_METHODS',
]
