# Overview: Service-layer operations for receipt numbers; per-day atomic sequence.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import ReceiptSequence
from backoffice.time_utils import business_date
from backoffice.validation import BadRequestError


class ReceiptSequenceError(BadRequestError):
    """Raised when receipt sequence operations fail."""
    pass


def format_receipt_number(day: date, number: int, prefix: str | None = None) -> str:
    if prefix is None:
        prefix = current_app.config.get("RECEIPT_PREFIX", "RCP")
    return f"{prefix}-{day:%Y%m%d}-{number:04d}"


def allocate_receipt_number(day: date | None = None) -> str:
    """
    Allocate the next receipt number for a business day (RCP-YYYYMMDD-####).

    Must be called inside the caller's transaction (the sale's unit of
    work); nothing is committed here. The counter row is bumped with one
    atomic UPDATE, so two sales on the same day never share a number. A
    lost race on first use of a day surfaces as StaleDataError so the
    caller's run_with_retry replays the whole unit.
    """
    if day is None:
        day = business_date()
    if not isinstance(day, date):
        raise ReceiptSequenceError("day must be a date")

    stmt = (
        update(ReceiptSequence)
        .where(ReceiptSequence.business_date == day)
        .values(next_number=ReceiptSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(ReceiptSequence.next_number)
            .filter(ReceiptSequence.business_date == day)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = ReceiptSequence(business_date=day, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # Another writer created today's row first
            raise StaleDataError(f"receipt sequence for {day} created concurrently") from exc
        next_num = 1

    return format_receipt_number(day, next_num)


def peek_next_number(day: date | None = None) -> int:
    """Next number that would be issued for a day (read-only)."""
    if day is None:
        day = business_date()
    current = (
        db.session.query(ReceiptSequence.next_number)
        .filter(ReceiptSequence.business_date == day)
        .scalar()
    )
    return current or 1
