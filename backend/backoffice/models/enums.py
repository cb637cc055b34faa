from __future__ import annotations

from enum import Enum


class TransactionType(str, Enum):
    PURCHASE = "PURCHASE"
    CASHBACK = "CASHBACK"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    TRANSFER = "TRANSFER"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class CreditStatus(str, Enum):
    OPEN = "OPEN"
    SETTLED = "SETTLED"


class InventoryChangeType(str, Enum):
    RESTOCK = "RESTOCK"
    SALE = "SALE"
    ADJUSTMENT = "ADJUSTMENT"
    EXPIRY = "EXPIRY"
    DAMAGE = "DAMAGE"
    RETURN = "RETURN"


class SessionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class CapitalChangeType(str, Enum):
    CASHBACK_SALE = "CASHBACK_SALE"
    ADJUSTMENT = "ADJUSTMENT"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    CASHIER = "CASHIER"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
