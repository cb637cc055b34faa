"""
Sales Service - sale transaction engine

Turns a cashier's cart (PURCHASE) or a cashback request (CASHBACK) into one
committed Sale aggregate (Sale + SaleItems + Payments) while moving stock
through the inventory ledger or money out of the branch cashback float.

UNIT OF WORK:
- All business validation runs before the first write.
- Receipt number, sale rows, stock/capital changes and their ledger rows
  commit together or not at all (one DB transaction per attempt).
- Lost compare-and-swap updates raise StaleDataError and the whole unit is
  replayed by run_with_retry from committed state.
- The audit entry is written after the commit and never affects the sale.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from math import ceil

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import (
    AuditAction,
    Branch,
    CreditStatus,
    InventoryChangeType,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Product,
    ProductVariant,
    Sale,
    SaleItem,
    TransactionType,
    User,
)
from backoffice.time_utils import business_date, business_day_bounds
from backoffice.validation import (
    BadRequestError,
    NotFoundError,
    PaymentRequest,
    SaleItemRequest,
    SaleRequest,
)
from .audit_service import record_audit
from .cashback_service import current_capital, decrement_capital, service_charge_for
from .concurrency import begin_immediate, lock_for_update, run_with_retry
from .inventory_service import apply_stock_change
from .receipt_service import allocate_receipt_number
from .session_service import get_active_session


class SaleError(BadRequestError):
    """Raised for sale operation errors."""
    pass


def _money(cents: int) -> str:
    return f"{cents / 100:.2f}"


def derive_payment_state(total_cents: int, paid_cents: int) -> tuple[PaymentStatus, int, int]:
    """
    (payment_status, amount_due_cents, change_given_cents) for a total and paid amount.

    PAID iff paid >= total; PARTIAL iff 0 < paid < total; PENDING iff paid == 0.
    """
    if paid_cents >= total_cents:
        status = PaymentStatus.PAID
    elif paid_cents > 0:
        status = PaymentStatus.PARTIAL
    else:
        status = PaymentStatus.PENDING
    return status, total_cents - paid_cents, max(0, paid_cents - total_cents)


# =============================================================================
# CREATE
# =============================================================================

@dataclass
class _PreparedLine:
    product: Product
    variant: ProductVariant | None
    quantity: int
    unit_price_cents: int
    cost_price_cents: int
    item_name: str
    item_sku: str

    @property
    def subtotal_cents(self) -> int:
        return self.quantity * self.unit_price_cents


def _validate_request(request: SaleRequest) -> None:
    if request.transaction_type == TransactionType.PURCHASE:
        if not request.items:
            raise SaleError("Purchase must have at least one item")
        for item in request.items:
            if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
                raise SaleError("Item quantity must be a positive integer")
            if item.unit_price_cents < 0:
                raise SaleError("Item unit price cannot be negative")
    elif request.transaction_type == TransactionType.CASHBACK:
        if not request.cashback_amount_cents or request.cashback_amount_cents <= 0:
            raise SaleError("Cashback amount is required and must be greater than 0")

    if request.is_credit_sale:
        if not (request.customer_name or request.customer_phone):
            raise SaleError("Credit sales require a customer name or phone")
    elif not request.is_settlement and not request.payments:
        raise SaleError("Sale must have at least one payment")

    for payment in request.payments:
        _check_payment_amount(payment)


def _check_payment_amount(payment: PaymentRequest) -> None:
    if payment.amount_cents <= 0:
        raise SaleError("Payment amount must be positive")


def _prepare_line(item: SaleItemRequest) -> _PreparedLine:
    """Resolve the stock holder for one cart line (variant takes precedence)."""
    if item.variant_id is not None:
        variant = db.session.get(ProductVariant, item.variant_id)
        if variant is None or not variant.is_active:
            raise NotFoundError(f"Variant with ID {item.variant_id} not found")
        product = variant.product
        if not product.is_active:
            raise SaleError("Product is not active")
        return _PreparedLine(
            product=product,
            variant=variant,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            cost_price_cents=variant.cost_price_cents or 0,
            item_name=variant.display_name,
            item_sku=variant.sku,
        )

    product = db.session.get(Product, item.product_id)
    if product is None or not product.is_active:
        raise NotFoundError(f"Product with ID {item.product_id} not found")
    if product.has_variants:
        raise SaleError("Product has variants, please specify variantId")
    return _PreparedLine(
        product=product,
        variant=None,
        quantity=item.quantity,
        unit_price_cents=item.unit_price_cents,
        cost_price_cents=product.cost_price_cents or 0,
        item_name=product.name,
        item_sku=product.sku,
    )


def _prepare_purchase(items: list[SaleItemRequest]) -> list[_PreparedLine]:
    lines = [_prepare_line(item) for item in items]

    # Same holder on several lines draws from one stock count
    requested: dict[tuple, int] = {}
    for line in lines:
        key = ("variant", line.variant.id) if line.variant is not None else ("product", line.product.id)
        requested[key] = requested.get(key, 0) + line.quantity
        holder = line.variant if line.variant is not None else line.product
        available = holder.quantity_in_stock or 0
        if available < requested[key]:
            raise SaleError(
                f"Insufficient stock for {line.item_name}. "
                f"Available: {available}, Requested: {requested[key]}",
                details={
                    "product_id": line.product.id,
                    "variant_id": line.variant.id if line.variant is not None else None,
                    "available": available,
                    "requested": requested[key],
                },
            )
    return lines


def create_sale(request: SaleRequest, cashier_id: int, branch_id: int) -> Sale:
    """
    Create and commit a PURCHASE or CASHBACK sale.

    Raises NotFoundError / SaleError / InventoryError / CashbackError before
    anything is written; nothing is left behind on failure.
    """
    _validate_request(request)

    def _op() -> Sale:
        begin_immediate()

        branch = db.session.get(Branch, branch_id)
        if branch is None:
            raise NotFoundError("Branch not found")
        cashier = db.session.get(User, cashier_id)
        if cashier is None:
            raise NotFoundError("Cashier not found")

        active_session = get_active_session(branch_id, cashier_id)
        subdivision_id = cashier.assigned_subdivision_id

        lines: list[_PreparedLine] = []
        notes = request.notes
        if request.transaction_type == TransactionType.PURCHASE:
            lines = _prepare_purchase(request.items)
            subtotal = sum(line.subtotal_cents for line in lines)
            tax_amount = 0
            total_amount = subtotal + tax_amount
        else:
            cashback_amount = request.cashback_amount_cents
            available = current_capital(branch_id) or 0
            if available < cashback_amount:
                raise SaleError(
                    f"Insufficient cashback capital. Available: {_money(available)}, "
                    f"Required: {_money(cashback_amount)}",
                    details={"available_cents": available, "required_cents": cashback_amount},
                )
            service_charge = request.service_charge_cents
            if service_charge is None:
                service_charge = service_charge_for(branch, cashback_amount)
            subtotal = cashback_amount + service_charge
            tax_amount = 0
            total_amount = cashback_amount
            if not notes:
                notes = f"Service Charge: {_money(service_charge)}"

        total_paid = sum(p.amount_cents for p in request.payments)
        if not request.is_credit_sale and not request.is_settlement and total_paid < total_amount:
            raise SaleError(
                f"Insufficient payment. Total: {_money(total_amount)}, Paid: {_money(total_paid)}",
                details={"total_cents": total_amount, "paid_cents": total_paid},
            )
        payment_status, amount_due, change_given = derive_payment_state(total_amount, total_paid)
        credit_status = None
        if request.is_credit_sale:
            credit_status = CreditStatus.SETTLED if amount_due <= 0 else CreditStatus.OPEN

        receipt_number = allocate_receipt_number()

        sale = Sale(
            receipt_number=receipt_number,
            branch_id=branch_id,
            cashier_id=cashier_id,
            session_id=active_session.id if active_session is not None else None,
            subdivision_id=subdivision_id,
            transaction_type=request.transaction_type,
            subtotal_cents=subtotal,
            tax_amount_cents=tax_amount,
            discount_amount_cents=0,
            total_amount_cents=total_amount,
            amount_paid_cents=total_paid,
            amount_due_cents=amount_due,
            change_given_cents=change_given,
            payment_status=payment_status,
            is_credit_sale=request.is_credit_sale,
            credit_status=credit_status,
            customer_name=request.customer_name,
            customer_phone=request.customer_phone,
            notes=notes,
        )
        db.session.add(sale)
        db.session.flush()

        for line in lines:
            db.session.add(SaleItem(
                sale_id=sale.id,
                product_id=line.product.id,
                variant_id=line.variant.id if line.variant is not None else None,
                item_name=line.item_name,
                item_sku=line.item_sku,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                cost_price_cents=line.cost_price_cents,
                tax_rate_bps=0,
                tax_amount_cents=0,
                subtotal_cents=line.subtotal_cents,
                total_cents=line.subtotal_cents,
            ))

        for p in request.payments:
            db.session.add(Payment(
                sale_id=sale.id,
                method=p.method,
                amount_cents=p.amount_cents,
                reference=p.reference,
                notes=p.notes,
                created_by_user_id=cashier_id,
            ))

        if request.transaction_type == TransactionType.PURCHASE:
            for line in lines:
                apply_stock_change(
                    line.product,
                    line.variant,
                    -line.quantity,
                    InventoryChangeType.SALE,
                    sale_id=sale.id,
                    user_id=cashier_id,
                    reason="Sale",
                    notes=f"Sale {receipt_number}",
                )
        else:
            decrement_capital(
                branch_id,
                total_amount,
                sale_id=sale.id,
                user_id=cashier_id,
                notes=f"Cashback {receipt_number}",
            )

        db.session.commit()
        return sale

    sale = run_with_retry(_op)

    current_app.logger.info(
        "Sale %s created: %s %s total=%s paid=%s status=%s",
        sale.id, sale.receipt_number, sale.transaction_type.value,
        sale.total_amount_cents, sale.amount_paid_cents, sale.payment_status.value,
    )
    record_audit(
        cashier_id,
        AuditAction.CREATE,
        "Sale",
        sale.id,
        new_values={
            "receipt_number": sale.receipt_number,
            "transaction_type": sale.transaction_type.value,
            "total_amount_cents": sale.total_amount_cents,
            "amount_paid_cents": sale.amount_paid_cents,
            "payment_status": sale.payment_status.value,
            "is_credit_sale": sale.is_credit_sale,
        },
    )
    return sale


# =============================================================================
# CREDIT PAYMENTS
# =============================================================================

def add_payment(sale_id: int, payment: PaymentRequest, user_id: int | None = None) -> Sale:
    """
    Append a payment to an open credit sale.

    Only amount_paid/amount_due/change_given/payment_status/credit_status
    change; items and totals never do. The sale settles once nothing is due.
    """
    _check_payment_amount(payment)

    def _op() -> Sale:
        begin_immediate()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFoundError("Sale not found")
        if not sale.is_credit_sale:
            raise SaleError("Payments can only be added to credit sales")
        if sale.credit_status == CreditStatus.SETTLED:
            raise SaleError("Credit sale is already settled")

        outstanding = sale.total_amount_cents - sale.amount_paid_cents
        if outstanding <= 0:
            raise SaleError("Sale has no outstanding balance")
        if payment.amount_cents > outstanding and payment.method != PaymentMethod.CASH:
            raise SaleError(
                f"Payment exceeds amount due. Due: {_money(outstanding)}, "
                f"Payment: {_money(payment.amount_cents)}",
                details={"amount_due_cents": outstanding, "payment_cents": payment.amount_cents},
            )

        db.session.add(Payment(
            sale_id=sale.id,
            method=payment.method,
            amount_cents=payment.amount_cents,
            reference=payment.reference,
            notes=payment.notes,
            created_by_user_id=user_id,
        ))

        paid = sale.amount_paid_cents + payment.amount_cents
        status, amount_due, change_given = derive_payment_state(sale.total_amount_cents, paid)
        sale.amount_paid_cents = paid
        sale.amount_due_cents = amount_due
        sale.change_given_cents = change_given
        sale.payment_status = status
        if amount_due <= 0:
            sale.credit_status = CreditStatus.SETTLED

        db.session.commit()
        return sale

    sale = run_with_retry(_op)

    current_app.logger.info(
        "Payment of %s (%s) added to sale %s; due=%s credit_status=%s",
        payment.amount_cents, payment.method.value, sale.receipt_number,
        sale.amount_due_cents, sale.credit_status.value,
    )
    record_audit(
        user_id,
        AuditAction.UPDATE,
        "Sale",
        sale.id,
        new_values={
            "payment_method": payment.method.value,
            "payment_cents": payment.amount_cents,
            "amount_paid_cents": sale.amount_paid_cents,
            "amount_due_cents": sale.amount_due_cents,
            "payment_status": sale.payment_status.value,
            "credit_status": sale.credit_status.value,
        },
    )
    return sale


def list_open_credit_sales(branch_id: int) -> dict:
    """OPEN credit sales of a branch with the outstanding total."""
    sales = (
        db.session.query(Sale)
        .filter(
            Sale.branch_id == branch_id,
            Sale.is_credit_sale.is_(True),
            Sale.credit_status == CreditStatus.OPEN,
            Sale.amount_due_cents > 0,
        )
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .all()
    )
    return {
        "sales": sales,
        "count": len(sales),
        "total_debt_cents": sum(s.amount_due_cents for s in sales),
    }


# =============================================================================
# READS
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = (
        db.session.query(Sale)
        .options(selectinload(Sale.items), selectinload(Sale.payments))
        .filter(Sale.id == sale_id)
        .first()
    )
    if sale is None:
        raise NotFoundError("Sale not found")
    return sale


def list_sales(
    *,
    branch_id: int | None = None,
    cashier_id: int | None = None,
    payment_status: PaymentStatus | None = None,
    transaction_type: TransactionType | None = None,
    credit_status: CreditStatus | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int | None = None,
) -> tuple[list[Sale], dict]:
    """Paginated sales, newest first. Returns (rows, {total, page, last_page})."""
    if limit is None:
        limit = current_app.config.get("DEFAULT_PAGE_SIZE", 50)
    limit = max(1, min(int(limit), current_app.config.get("MAX_PAGE_SIZE", 200)))
    page = max(1, int(page))

    query = db.session.query(Sale)
    if branch_id is not None:
        query = query.filter(Sale.branch_id == branch_id)
    if cashier_id is not None:
        query = query.filter(Sale.cashier_id == cashier_id)
    if payment_status is not None:
        query = query.filter(Sale.payment_status == payment_status)
    if transaction_type is not None:
        query = query.filter(Sale.transaction_type == transaction_type)
    if credit_status is not None:
        query = query.filter(Sale.credit_status == credit_status)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Sale.receipt_number.ilike(pattern),
            Sale.customer_name.ilike(pattern),
            Sale.customer_phone.ilike(pattern),
        ))

    total = query.count()
    rows = (
        query.options(selectinload(Sale.items), selectinload(Sale.payments))
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, {"total": total, "page": page, "last_page": ceil(total / limit)}


def get_daily_summary(cashier_id: int, branch_id: int, day: date | None = None) -> dict:
    """
    PAID purchase sales of one cashier for one business day.

    profit = sum((unit_price - cost_price) * quantity) over the day's items.
    """
    if day is None:
        day = business_date()
    start, end = business_day_bounds(day)

    sales = (
        db.session.query(Sale)
        .options(selectinload(Sale.items), selectinload(Sale.payments))
        .filter(
            Sale.cashier_id == cashier_id,
            Sale.branch_id == branch_id,
            Sale.transaction_type == TransactionType.PURCHASE,
            Sale.payment_status == PaymentStatus.PAID,
            Sale.created_at >= start,
            Sale.created_at < end,
        )
        .all()
    )

    breakdown = {m.value: 0 for m in PaymentMethod}
    for sale in sales:
        for payment in sale.payments:
            breakdown[payment.method.value] += payment.amount_cents

    return {
        "date": day.isoformat(),
        "total_sales": len(sales),
        "total_revenue_cents": sum(s.total_amount_cents for s in sales),
        "total_profit_cents": sum(
            (item.unit_price_cents - item.cost_price_cents) * item.quantity
            for s in sales
            for item in s.items
        ),
        "payment_breakdown": breakdown,
    }


def get_receipt_data(sale_id: int) -> dict:
    """Printable view of a PURCHASE sale. Cashback sales produce no receipt."""
    sale = get_sale(sale_id)
    if sale.transaction_type == TransactionType.CASHBACK:
        raise SaleError("Cashback transactions do not generate receipts")

    branch = sale.branch
    return {
        "business": {
            "name": branch.business_name or branch.name,
            "address": branch.business_address,
            "phone": branch.business_phone,
        },
        "branch": branch.name,
        "receipt_number": sale.receipt_number,
        "transaction_type": sale.transaction_type.value,
        "date": sale.to_dict()["created_at"],
        "cashier": sale.cashier.display_name,
        "items": [
            {
                "name": item.item_name,
                "sku": item.item_sku,
                "quantity": item.quantity,
                "unit_price_cents": item.unit_price_cents,
                "tax_rate_bps": item.tax_rate_bps,
                "tax_amount_cents": item.tax_amount_cents,
                "subtotal_cents": item.subtotal_cents,
                "total_cents": item.total_cents,
            }
            for item in sale.items
        ],
        "subtotal_cents": sale.subtotal_cents,
        "tax_cents": sale.tax_amount_cents,
        "discount_cents": sale.discount_amount_cents,
        "total_cents": sale.total_amount_cents,
        "payments": [
            {"method": p.method.value, "amount_cents": p.amount_cents, "reference": p.reference}
            for p in sale.payments
        ],
        "change_cents": sale.change_given_cents,
        "footer": branch.receipt_footer or "Thank you for your purchase!",
        "currency": branch.currency or current_app.config.get("CURRENCY", "NGN"),
    }
