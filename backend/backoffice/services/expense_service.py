# Overview: Service-layer operations for expenses; cash paid out of a branch, linked to sessions.

from __future__ import annotations

from datetime import date, datetime, timezone

from flask import current_app

from ..extensions import db
from ..models import AuditAction, Branch, CashierSession, Expense
from backoffice.time_utils import business_tz, parse_iso_datetime, to_business_time, utcnow
from backoffice.validation import BadRequestError, NotFoundError
from .audit_service import record_audit
from .session_service import get_active_session


class ExpenseError(BadRequestError):
    """Raised for expense errors."""
    pass


def parse_expense_date(value) -> datetime:
    """
    Normalize an expense date to UTC-naive.

    - None -> now
    - "YYYY-MM-DD" -> that business day at the current time of day
    - full ISO datetime -> converted to UTC
    """
    if value is None:
        return utcnow()
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if not isinstance(value, str):
        raise ExpenseError("Invalid date format")

    raw = value.strip()
    try:
        if "T" in raw or ":" in raw:
            parsed = parse_iso_datetime(raw)
            if parsed is None:
                raise ValueError(raw)
            return parsed
        day = date.fromisoformat(raw)
    except ValueError:
        raise ExpenseError("Invalid date format")

    now_local = to_business_time(utcnow())
    local = datetime.combine(day, now_local.time()).replace(tzinfo=business_tz())
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def record_expense(
    *,
    branch_id: int,
    user_id: int,
    title: str,
    amount_cents: int,
    category: str | None = None,
    description: str | None = None,
    expense_date=None,
    session_id: int | None = None,
) -> Expense:
    """
    Record cash paid out of the branch.

    Without an explicit session_id, the creator's OPEN session in the branch
    (if any) is linked, so the expense reduces that drawer's expected cash.
    """
    if not title or not title.strip():
        raise ExpenseError("title is required")
    if amount_cents <= 0:
        raise ExpenseError("Amount must be greater than 0")

    occurred_at = parse_expense_date(expense_date)

    if db.session.get(Branch, branch_id) is None:
        raise NotFoundError("Branch not found")

    if session_id is not None:
        session = db.session.get(CashierSession, session_id)
        if session is None:
            raise NotFoundError("Session not found")
        if session.branch_id != branch_id:
            raise ExpenseError("Session does not belong to this branch")
    else:
        active = get_active_session(branch_id, user_id)
        session_id = active.id if active is not None else None

    expense = Expense(
        branch_id=branch_id,
        session_id=session_id,
        title=title.strip(),
        category=category,
        amount_cents=amount_cents,
        description=description,
        date=occurred_at,
        created_by_id=user_id,
    )
    db.session.add(expense)
    db.session.commit()

    current_app.logger.info(
        "Expense %s recorded in branch %s: %s (%s cents)", expense.id, branch_id, expense.title, amount_cents,
    )
    record_audit(user_id, AuditAction.CREATE, "Expense", expense.id, new_values=expense.to_dict())
    return expense


def list_expenses(
    branch_id: int,
    *,
    session_id: int | None = None,
    category: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
) -> list[Expense]:
    query = db.session.query(Expense).filter(Expense.branch_id == branch_id)
    if session_id is not None:
        query = query.filter(Expense.session_id == session_id)
    if category:
        query = query.filter(Expense.category == category)
    if start is not None:
        query = query.filter(Expense.date >= start)
    if end is not None:
        query = query.filter(Expense.date <= end)
    return query.order_by(Expense.date.desc(), Expense.id.desc()).limit(limit).all()
