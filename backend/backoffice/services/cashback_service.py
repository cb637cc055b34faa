# Overview: Service-layer operations for the cashback float; guarded per-branch balance.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import AuditAction, Branch, CapitalChangeType, CashbackCapitalLog
from backoffice.validation import BadRequestError, NotFoundError
from .audit_service import record_audit
from .concurrency import begin_immediate, run_with_retry


class CashbackError(BadRequestError):
    """Raised for cashback capital errors."""
    pass


def _get_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if branch is None:
        raise NotFoundError("Branch not found")
    return branch


def current_capital(branch_id: int) -> int | None:
    return (
        db.session.query(Branch.cashback_capital_cents)
        .filter(Branch.id == branch_id)
        .scalar()
    )


def service_charge_for(branch: Branch, amount_cents: int) -> int:
    """Default service charge: amount * rate (basis points), rounded half-up to the cent."""
    return (amount_cents * branch.cashback_service_charge_rate_bps + 5_000) // 10_000


def apply_capital_change(
    branch_id: int,
    change_cents: int,
    change_type: CapitalChangeType,
    *,
    sale_id: int | None = None,
    user_id: int | None = None,
    notes: str | None = None,
) -> CashbackCapitalLog:
    """
    Move the branch float by change_cents and log it.

    The UPDATE is conditional on the balance we read, so a concurrent
    change makes it miss and raise StaleDataError for the retry loop.
    Runs inside the caller's transaction and does not commit.
    """
    previous = current_capital(branch_id)
    if previous is None:
        raise NotFoundError("Branch not found")

    new_capital = previous + change_cents
    if new_capital < 0:
        if change_type == CapitalChangeType.CASHBACK_SALE:
            message = (
                f"Insufficient cashback capital. Available: {previous / 100:.2f}, "
                f"Required: {-change_cents / 100:.2f}"
            )
        else:
            message = (
                f"Insufficient capital. Current: {previous / 100:.2f}, "
                f"Adjustment: {change_cents / 100:.2f}"
            )
        raise CashbackError(
            message,
            details={"available_cents": previous, "change_cents": change_cents},
        )

    stmt = (
        update(Branch)
        .where(Branch.id == branch_id, Branch.cashback_capital_cents == previous)
        .values(cashback_capital_cents=new_capital)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise StaleDataError(f"Branch {branch_id} capital changed concurrently (expected {previous})")

    branch = db.session.get(Branch, branch_id)
    if branch is not None:
        db.session.expire(branch, ["cashback_capital_cents"])

    entry = CashbackCapitalLog(
        branch_id=branch_id,
        change_type=change_type,
        change_cents=change_cents,
        previous_capital_cents=previous,
        new_capital_cents=new_capital,
        sale_id=sale_id,
        user_id=user_id,
        notes=notes,
    )
    db.session.add(entry)
    return entry


def decrement_capital(
    branch_id: int,
    amount_cents: int,
    *,
    sale_id: int | None = None,
    user_id: int | None = None,
    notes: str | None = None,
) -> CashbackCapitalLog:
    """Pay a cashback out of the float, as part of the owning sale's transaction."""
    if amount_cents <= 0:
        raise CashbackError("Cashback amount must be greater than 0")
    return apply_capital_change(
        branch_id,
        -amount_cents,
        CapitalChangeType.CASHBACK_SALE,
        sale_id=sale_id,
        user_id=user_id,
        notes=notes,
    )


def adjust_capital(
    branch_id: int,
    adjustment_cents: int,
    *,
    user_id: int | None = None,
    notes: str | None = None,
) -> dict:
    """
    Administrative top-up (positive) or drawdown (negative) of the float.

    Returns {previous_capital_cents, adjustment_cents, new_capital_cents, notes}.
    """
    if adjustment_cents == 0:
        raise CashbackError("Adjustment must not be zero")

    def _op() -> CashbackCapitalLog:
        begin_immediate()
        _get_branch(branch_id)
        entry = apply_capital_change(
            branch_id,
            adjustment_cents,
            CapitalChangeType.ADJUSTMENT,
            user_id=user_id,
            notes=notes,
        )
        db.session.commit()
        return entry

    entry = run_with_retry(_op)

    current_app.logger.info(
        "Cashback capital adjusted for branch %s: %+d cents (%s → %s)",
        branch_id, adjustment_cents, entry.previous_capital_cents, entry.new_capital_cents,
    )

    result = {
        "previous_capital_cents": entry.previous_capital_cents,
        "adjustment_cents": adjustment_cents,
        "new_capital_cents": entry.new_capital_cents,
        "notes": notes,
    }
    record_audit(
        user_id,
        AuditAction.UPDATE,
        "Branch",
        branch_id,
        old_values={"cashback_capital_cents": entry.previous_capital_cents},
        new_values={"cashback_capital_cents": entry.new_capital_cents, "notes": notes},
    )
    return result


def get_capital(branch_id: int) -> dict:
    branch = _get_branch(branch_id)
    return {
        "branch_id": branch.id,
        "cashback_capital_cents": branch.cashback_capital_cents,
        "cashback_service_charge_rate_bps": branch.cashback_service_charge_rate_bps,
    }


def get_capital_logs(branch_id: int, limit: int = 100) -> list[CashbackCapitalLog]:
    _get_branch(branch_id)
    return (
        db.session.query(CashbackCapitalLog)
        .filter(CashbackCapitalLog.branch_id == branch_id)
        .order_by(CashbackCapitalLog.id.desc())
        .limit(limit)
        .all()
    )
