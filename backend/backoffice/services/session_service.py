"""
Cashier Session Service

Lifecycle of a cashier's working shift and the cash-drawer reconciliation
report built from the sales and expenses linked to it.

DESIGN PRINCIPLES:
- One OPEN session per (branch, opener) at a time
- Sessions are immutable once closed
- Reconciliation is read-only (expected vs actual cash)
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import (
    AuditAction,
    Branch,
    CashierSession,
    PaymentMethod,
    Sale,
    SaleItem,
    SessionStatus,
    TransactionType,
    User,
)
from backoffice.time_utils import to_business_time, utcnow
from backoffice.validation import BadRequestError, NotFoundError
from .audit_service import record_audit
from .concurrency import begin_immediate, lock_for_update, run_with_retry


class SessionError(BadRequestError):
    """Raised for cashier session errors."""
    pass


TOP_PRODUCTS_LIMIT = 10


# =============================================================================
# LIFECYCLE
# =============================================================================

def get_active_session(branch_id: int, user_id: int) -> CashierSession | None:
    """The user's OPEN session in this branch, if any."""
    return db.session.query(CashierSession).filter_by(
        branch_id=branch_id,
        opened_by_id=user_id,
        status=SessionStatus.OPEN,
    ).first()


def start_session(
    branch_id: int,
    user_id: int,
    opening_balance_cents: int = 0,
    name: str | None = None,
) -> CashierSession:
    """
    Open a new shift for user in branch.

    Raises:
        NotFoundError: branch or user missing
        SessionError: inactive branch/user, negative float, or an OPEN
            session already exists for (branch, user)
    """
    if opening_balance_cents < 0:
        raise SessionError("Opening balance cannot be negative")

    def _op() -> CashierSession:
        begin_immediate()
        branch = db.session.get(Branch, branch_id)
        if branch is None:
            raise NotFoundError("Branch not found")
        if not branch.is_active:
            raise SessionError("Cannot start a session in an inactive branch")

        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        if not user.is_active:
            raise SessionError("User account is inactive")

        if get_active_session(branch_id, user_id) is not None:
            raise SessionError("You already have an active session in this branch.")

        session = CashierSession(
            branch_id=branch_id,
            opened_by_id=user_id,
            name=name,
            status=SessionStatus.OPEN,
            opening_balance_cents=opening_balance_cents,
            start_time=utcnow(),
        )
        db.session.add(session)
        try:
            db.session.commit()
        except IntegrityError:
            # Partial unique index caught a concurrent start
            db.session.rollback()
            raise SessionError("You already have an active session in this branch.")
        return session

    session = run_with_retry(_op)

    current_app.logger.info(
        "Session %s opened in branch %s by user %s (float %s)",
        session.id, branch_id, user_id, opening_balance_cents,
    )
    record_audit(
        user_id,
        AuditAction.CREATE,
        "Session",
        session.id,
        new_values={
            "branch_id": branch_id,
            "opening_balance_cents": opening_balance_cents,
            "name": name,
        },
    )
    return session


def end_session(session_id: int, user_id: int, closing_balance_cents: int) -> CashierSession:
    """
    Close a shift with the counted drawer cash.

    IMMUTABLE: Once closed, session cannot be reopened or modified.
    """
    if closing_balance_cents < 0:
        raise SessionError("Closing balance cannot be negative")

    def _op() -> CashierSession:
        begin_immediate()
        session = lock_for_update(
            db.session.query(CashierSession).filter_by(id=session_id)
        ).first()
        if session is None:
            raise NotFoundError("Session not found")
        if session.status == SessionStatus.CLOSED:
            raise SessionError("Session is already closed")

        session.status = SessionStatus.CLOSED
        session.end_time = utcnow()
        session.closing_balance_cents = closing_balance_cents
        session.closed_by_id = user_id
        db.session.commit()
        return session

    session = run_with_retry(_op)

    current_app.logger.info(
        "Session %s closed by user %s (counted %s)", session.id, user_id, closing_balance_cents,
    )
    record_audit(
        user_id,
        AuditAction.UPDATE,
        "Session",
        session.id,
        old_values={"status": SessionStatus.OPEN.value},
        new_values={
            "status": SessionStatus.CLOSED.value,
            "closing_balance_cents": closing_balance_cents,
        },
    )
    return session


def get_session_history(branch_id: int, limit: int = 20) -> list[CashierSession]:
    """Most recent sessions of a branch, newest first."""
    return (
        db.session.query(CashierSession)
        .filter_by(branch_id=branch_id)
        .order_by(CashierSession.created_at.desc(), CashierSession.id.desc())
        .limit(limit)
        .all()
    )


# =============================================================================
# RECONCILIATION
# =============================================================================

def _payment_breakdown(sales: list[Sale]) -> dict:
    breakdown = {m.value.lower(): {"count": 0, "amount_cents": 0} for m in PaymentMethod}
    for sale in sales:
        for payment in sale.payments:
            bucket = breakdown[payment.method.value.lower()]
            bucket["count"] += 1
            bucket["amount_cents"] += payment.amount_cents
    return breakdown


def _hourly_breakdown(purchases: list[Sale]) -> list[dict]:
    hours: dict[str, dict] = {}
    for sale in purchases:
        key = f"{to_business_time(sale.created_at).hour:02d}:00"
        bucket = hours.setdefault(key, {"sales_count": 0, "revenue_cents": 0})
        bucket["sales_count"] += 1
        bucket["revenue_cents"] += sale.total_amount_cents
    return [{"hour": hour, **data} for hour, data in sorted(hours.items())]


def _item_label(item: SaleItem) -> str:
    if item.variant is not None:
        return f"{item.product.name} - {item.variant.name}"
    return item.product.name


def _product_and_category_breakdown(purchases: list[Sale]) -> tuple[list[dict], list[dict]]:
    products: dict[tuple, dict] = {}
    categories: dict[str, dict] = {}
    for sale in purchases:
        for item in sale.items:
            key = ("variant", item.variant_id) if item.variant_id else ("product", item.product_id)
            row = products.setdefault(
                key,
                {
                    "product_id": item.product_id,
                    "variant_id": item.variant_id,
                    "name": _item_label(item),
                    "quantity": 0,
                    "revenue_cents": 0,
                },
            )
            row["quantity"] += item.quantity
            row["revenue_cents"] += item.total_cents

            category = item.product.category
            category_name = category.name if category is not None else "Uncategorized"
            cat = categories.setdefault(category_name, {"items_sold": 0, "revenue_cents": 0})
            cat["items_sold"] += item.quantity
            cat["revenue_cents"] += item.total_cents

    top = sorted(products.values(), key=lambda r: r["revenue_cents"], reverse=True)
    breakdown = [{"category_name": name, **data} for name, data in categories.items()]
    return top[:TOP_PRODUCTS_LIMIT], breakdown


def reconcile(session: CashierSession) -> dict:
    """
    Build the reconciliation summary for a session.

    expected = opening + cash payments - cashback paid out - expenses
    variance = counted - expected (0 while the session is open)
    All amounts in cents.
    """
    sales = (
        db.session.query(Sale)
        .options(
            selectinload(Sale.payments),
            selectinload(Sale.items).selectinload(SaleItem.product),
            selectinload(Sale.items).selectinload(SaleItem.variant),
        )
        .filter(Sale.session_id == session.id)
        .order_by(Sale.created_at, Sale.id)
        .all()
    )
    expenses = list(session.expenses)

    purchases = [s for s in sales if s.transaction_type == TransactionType.PURCHASE]
    cashbacks = [s for s in sales if s.transaction_type == TransactionType.CASHBACK]

    payments = _payment_breakdown(sales)

    cashback = {
        "count": len(cashbacks),
        "total_amount_cents": sum(s.total_amount_cents for s in cashbacks),
        "total_service_charge_cents": sum(s.subtotal_cents - s.total_amount_cents for s in cashbacks),
        "total_received_cents": sum(s.amount_paid_cents for s in cashbacks),
    }

    by_category: dict[str, int] = {}
    for expense in expenses:
        name = expense.category or "Uncategorized"
        by_category[name] = by_category.get(name, 0) + expense.amount_cents
    total_expenses = sum(e.amount_cents for e in expenses)

    cash_sales = payments[PaymentMethod.CASH.value.lower()]["amount_cents"]
    cashback_paid = cashback["total_amount_cents"]
    expected = session.opening_balance_cents + cash_sales - cashback_paid - total_expenses
    # Cash sales count tendered amounts; change handed back is reported alongside
    change_given = sum(s.change_given_cents for s in sales)

    closed = session.closing_balance_cents is not None
    actual = session.closing_balance_cents if closed else None
    variance = actual - expected if closed else 0
    variance_pct = round(variance / expected * 100, 2) if expected > 0 else 0.0

    top_products, category_breakdown = _product_and_category_breakdown(purchases)

    return {
        "total_sales": len(purchases),
        "total_revenue_cents": sum(s.total_amount_cents for s in purchases),
        "payments": payments,
        "cashback": cashback,
        "expenses": {
            "count": len(expenses),
            "total_amount_cents": total_expenses,
            "by_category": [{"category": k, "amount_cents": v} for k, v in by_category.items()],
        },
        "cash_flow": {
            "opening_balance_cents": session.opening_balance_cents,
            "cash_sales_cents": cash_sales,
            "cashback_paid_cents": cashback_paid,
            "expenses_paid_cents": total_expenses,
            "expected_cash_cents": expected,
            "change_given_cents": change_given,
            "expected_cash_net_of_change_cents": expected - change_given,
            "actual_cash_cents": actual,
            "variance_cents": variance,
            "variance_percentage": variance_pct,
            "is_balanced": abs(variance) < 1,
        },
        "duration_minutes": session.duration_minutes,
        "hourly_breakdown": _hourly_breakdown(purchases),
        "top_products": top_products,
        "category_breakdown": category_breakdown,
    }


def get_session_details(session_id: int) -> dict:
    """Session row plus its reconciliation summary."""
    session = db.session.get(CashierSession, session_id)
    if session is None:
        raise NotFoundError("Session not found")
    data = session.to_dict()
    data["summary"] = reconcile(session)
    return data
