from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional, Type, TypeVar

from backoffice.models.enums import PaymentMethod, TransactionType
from backoffice.time_utils import parse_iso_datetime


# Maximum single amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_CENTS = 999_999_999

E = TypeVar("E", bound=Enum)


class ServiceError(Exception):
    """Base for errors that map onto an HTTP status and carry details."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class BadRequestError(ServiceError):
    """400-level problem: nothing was written."""
    status_code = 400


class NotFoundError(ServiceError):
    """404: a referenced product/variant/session/branch/sale is absent."""
    status_code = 404


class ValidationError(BadRequestError):
    """400-level input problem."""


# =============================================================================
# SCALAR COERCION
# =============================================================================

def coerce_int(value: Any, name: str) -> int:
    """
    Strict integer coercion for quantities and ids.

    Accepts ints and plain-digit strings; rejects bools, floats,
    decimals and scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def to_cents(value: Any, name: str) -> int:
    """
    Convert a wire amount in currency units ("12.50", 12.5, 12) to integer cents.

    Rounds half-up to the cent. Rejects bools, NaN/Infinity and junk.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{name} must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{name} must be a finite number")

    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_AMOUNT_CENTS / 100:,.2f}")
    return cents


def coerce_enum(enum_cls: Type[E], value: Any, name: str) -> E:
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be one of {[m.value for m in enum_cls]}")
    try:
        return enum_cls(value.strip().upper())
    except ValueError:
        raise ValidationError(f"{name} must be one of {[m.value for m in enum_cls]}")


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def coerce_datetime(value: Any, name: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{name} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{name} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{name} must be a datetime")


def optional_text(value: Any, name: str, max_length: int = 255) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{name} exceeds max length {max_length}")
    return text


# =============================================================================
# REQUEST SHAPES
# =============================================================================

@dataclass(frozen=True)
class SaleItemRequest:
    quantity: int
    unit_price_cents: int
    product_id: Optional[int] = None
    variant_id: Optional[int] = None


@dataclass(frozen=True)
class PaymentRequest:
    method: PaymentMethod
    amount_cents: int
    reference: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class SaleRequest:
    transaction_type: TransactionType
    items: list[SaleItemRequest] = field(default_factory=list)
    payments: list[PaymentRequest] = field(default_factory=list)
    cashback_amount_cents: Optional[int] = None
    service_charge_cents: Optional[int] = None
    is_credit_sale: bool = False
    is_settlement: bool = False
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = None


def parse_payment(payload: Any, name: str = "payment") -> PaymentRequest:
    if not isinstance(payload, dict):
        raise ValidationError(f"{name} must be an object")
    if "amount" not in payload:
        raise ValidationError(f"{name}.amount is required")

    amount_cents = to_cents(payload.get("amount"), f"{name}.amount")
    if amount_cents <= 0:
        raise ValidationError(f"{name}.amount must be positive")

    return PaymentRequest(
        method=coerce_enum(PaymentMethod, payload.get("method"), f"{name}.method"),
        amount_cents=amount_cents,
        reference=optional_text(payload.get("reference"), f"{name}.reference", 128),
        notes=optional_text(payload.get("notes"), f"{name}.notes"),
    )


def _parse_item(payload: Any, index: int) -> SaleItemRequest:
    name = f"items[{index}]"
    if not isinstance(payload, dict):
        raise ValidationError(f"{name} must be an object")

    product_id = payload.get("productId")
    variant_id = payload.get("variantId")
    if product_id is None and variant_id is None:
        raise ValidationError(f"{name} requires productId or variantId")

    quantity = coerce_int(payload.get("quantity"), f"{name}.quantity")
    if quantity <= 0:
        raise ValidationError(f"{name}.quantity must be positive")

    if "unitPrice" not in payload:
        raise ValidationError(f"{name}.unitPrice is required")
    unit_price_cents = to_cents(payload.get("unitPrice"), f"{name}.unitPrice")
    if unit_price_cents < 0:
        raise ValidationError(f"{name}.unitPrice must be >= 0")

    return SaleItemRequest(
        quantity=quantity,
        unit_price_cents=unit_price_cents,
        product_id=coerce_int(product_id, f"{name}.productId") if product_id is not None else None,
        variant_id=coerce_int(variant_id, f"{name}.variantId") if variant_id is not None else None,
    )


def parse_sale_request(payload: Any) -> SaleRequest:
    """
    Validate + normalize a sale JSON body (camelCase, currency units) into a
    SaleRequest with cents. Business rules (stock, payment sufficiency)
    are enforced by the sales service, not here.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    raw_type = payload.get("transactionType") or TransactionType.PURCHASE.value
    transaction_type = coerce_enum(TransactionType, raw_type, "transactionType")

    raw_items = payload.get("items") or []
    raw_payments = payload.get("payments") or []
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")
    if not isinstance(raw_payments, list):
        raise ValidationError("payments must be a list")

    cashback_amount_cents = None
    if payload.get("cashbackAmount") is not None:
        cashback_amount_cents = to_cents(payload["cashbackAmount"], "cashbackAmount")

    service_charge_cents = None
    if payload.get("serviceCharge") is not None:
        service_charge_cents = to_cents(payload["serviceCharge"], "serviceCharge")
        if service_charge_cents < 0:
            raise ValidationError("serviceCharge must be >= 0")

    return SaleRequest(
        transaction_type=transaction_type,
        items=[_parse_item(item, i) for i, item in enumerate(raw_items)],
        payments=[parse_payment(p, f"payments[{i}]") for i, p in enumerate(raw_payments)],
        cashback_amount_cents=cashback_amount_cents,
        service_charge_cents=service_charge_cents,
        is_credit_sale=coerce_bool(payload.get("isCreditSale", False)),
        is_settlement=coerce_bool(payload.get("isSettlement", False)),
        customer_name=optional_text(payload.get("customerName"), "customerName"),
        customer_phone=optional_text(payload.get("customerPhone"), "customerPhone", 32),
        notes=optional_text(payload.get("notes"), "notes", 1000),
    )
