from .enums import (
    AuditAction,
    CapitalChangeType,
    CreditStatus,
    InventoryChangeType,
    PaymentMethod,
    PaymentStatus,
    SessionStatus,
    TransactionType,
    UserRole,
)
from .branches import Branch, Subdivision, CashbackCapitalLog
from .auth import User
from .inventory import Category, Product, ProductVariant, InventoryLog
from .sales import Sale, SaleItem, Payment
from .sessions import CashierSession
from .expenses import Expense
from .sequences import ReceiptSequence
from .audit import AuditLog

__all__ = [
    'AuditAction', 'CapitalChangeType', 'CreditStatus', 'InventoryChangeType',
    'PaymentMethod', 'PaymentStatus', 'SessionStatus', 'TransactionType', 'UserRole',
    'Branch', 'Subdivision', 'CashbackCapitalLog',
    'User',
    'Category', 'Product', 'ProductVariant', 'InventoryLog',
    'Sale', 'SaleItem', 'Payment',
    'CashierSession',
    'Expense',
    'ReceiptSequence',
    'AuditLog',
]
