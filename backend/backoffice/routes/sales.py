# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""Sales API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import CreditStatus, PaymentStatus, TransactionType
from ..services import sales_service
from ..validation import (
    ServiceError,
    coerce_datetime,
    coerce_enum,
    coerce_int,
    parse_payment,
    parse_sale_request,
)
from ..decorators import require_user
from backoffice.time_utils import parse_business_date


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _error(e: ServiceError):
    return jsonify({"error": str(e), "details": e.details}), e.status_code


def _optional_arg(name, coerce):
    value = request.args.get(name)
    if value is None or value == "":
        return None
    return coerce(value, name)


@sales_bp.post("")
@require_user
def create_sale_route():
    """
    Create a PURCHASE or CASHBACK sale for the acting cashier.

    Body (camelCase, currency units): transactionType, items[], payments[],
    cashbackAmount, serviceCharge, isCreditSale, isSettlement,
    customerName, customerPhone, notes.
    """
    try:
        sale_request = parse_sale_request(request.get_json(silent=True))
        sale = sales_service.create_sale(sale_request, g.current_user.id, g.branch_id)
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 201

    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_user
def list_sales_route():
    try:
        rows, meta = sales_service.list_sales(
            branch_id=g.branch_id,
            cashier_id=_optional_arg("cashier_id", coerce_int),
            payment_status=_optional_arg("payment_status", lambda v, n: coerce_enum(PaymentStatus, v, n)),
            transaction_type=_optional_arg("transaction_type", lambda v, n: coerce_enum(TransactionType, v, n)),
            credit_status=_optional_arg("credit_status", lambda v, n: coerce_enum(CreditStatus, v, n)),
            start=_optional_arg("start_date", coerce_datetime),
            end=_optional_arg("end_date", coerce_datetime),
            search=request.args.get("search"),
            page=_optional_arg("page", coerce_int) or 1,
            limit=_optional_arg("limit", coerce_int),
        )
        return jsonify({"data": [s.to_dict(include_lines=True) for s in rows], "meta": meta}), 200

    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/daily-summary")
@require_user
def daily_summary_route():
    try:
        try:
            day = parse_business_date(request.args.get("date"))
        except ValueError:
            return jsonify({"error": "Invalid date format"}), 400
        summary = sales_service.get_daily_summary(g.current_user.id, g.branch_id, day)
        return jsonify({"summary": summary}), 200

    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to build daily summary")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/credit")
@require_user
def open_credit_sales_route():
    try:
        result = sales_service.list_open_credit_sales(g.branch_id)
        return jsonify({
            "sales": [s.to_dict() for s in result["sales"]],
            "count": result["count"],
            "total_debt_cents": result["total_debt_cents"],
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list credit sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_user
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 200

    except ServiceError as e:
        return _error(e)


@sales_bp.get("/<int:sale_id>/receipt")
@require_user
def receipt_route(sale_id: int):
    try:
        receipt = sales_service.get_receipt_data(sale_id)
        return jsonify({"receipt": receipt}), 200

    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to build receipt")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/payments")
@require_user
def add_payment_route(sale_id: int):
    """
    Append a payment to an open credit sale.

    Body: {method, amount, reference?, notes?}
    """
    try:
        payment = parse_payment(request.get_json(silent=True))
        sale = sales_service.add_payment(sale_id, payment, g.current_user.id)
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 200

    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to add payment")
        return jsonify({"error": "Internal server error"}), 500
