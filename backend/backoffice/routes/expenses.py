# Overview: Flask API routes for expenses; parses input and returns JSON responses.

"""Expense API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import expense_service
from ..validation import (
    ServiceError,
    ValidationError,
    coerce_datetime,
    coerce_int,
    optional_text,
    to_cents,
)
from ..decorators import require_user


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


def _error(e: ServiceError):
    return jsonify({"error": str(e), "details": e.details}), e.status_code


@expenses_bp.post("")
@require_user
def create_expense_route():
    """
    Record cash paid out of the branch.

    Body: {title, amount, category?, description?, date?, sessionId?}
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("amount") is None:
            raise ValidationError("amount is required")
        session_id = data.get("sessionId")

        expense = expense_service.record_expense(
            branch_id=g.branch_id,
            user_id=g.current_user.id,
            title=optional_text(data.get("title"), "title") or "",
            amount_cents=to_cents(data["amount"], "amount"),
            category=optional_text(data.get("category"), "category", 120),
            description=optional_text(data.get("description"), "description", 2000),
            expense_date=data.get("date"),
            session_id=coerce_int(session_id, "sessionId") if session_id is not None else None,
        )
        return jsonify({"expense": expense.to_dict()}), 201

    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to record expense")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.get("")
@require_user
def list_expenses_route():
    try:
        args = request.args
        expenses = expense_service.list_expenses(
            g.branch_id,
            session_id=coerce_int(args["session_id"], "session_id") if args.get("session_id") else None,
            category=args.get("category") or None,
            start=coerce_datetime(args["start_date"], "start_date") if args.get("start_date") else None,
            end=coerce_datetime(args["end_date"], "end_date") if args.get("end_date") else None,
        )
        return jsonify({"expenses": [e.to_dict() for e in expenses]}), 200

    except ServiceError as e:
        return _error(e)
