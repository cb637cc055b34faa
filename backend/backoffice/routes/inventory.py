# Overview: Flask API routes for inventory operations; parses input and returns JSON responses.

"""Inventory ledger API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import InventoryChangeType
from ..services import inventory_service
from ..validation import (
    ServiceError,
    ValidationError,
    coerce_datetime,
    coerce_enum,
    coerce_int,
    optional_text,
)
from ..decorators import require_user


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _error(e: ServiceError):
    return jsonify({"error": str(e), "details": e.details}), e.status_code


def _optional_arg(name, coerce):
    value = request.args.get(name)
    if value is None or value == "":
        return None
    return coerce(value, name)


@inventory_bp.post("/adjust")
@require_user
def adjust_stock_route():
    """
    Manual stock adjustment.

    Body: {productId | variantId, quantityChange, changeType, reason?, notes?}
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("productId") is None and data.get("variantId") is None:
            raise ValidationError("productId or variantId is required")
        if data.get("quantityChange") is None:
            raise ValidationError("quantityChange is required")

        entry = inventory_service.adjust_stock(
            user_id=g.current_user.id,
            branch_id=g.branch_id,
            product_id=coerce_int(data["productId"], "productId") if data.get("productId") is not None else None,
            variant_id=coerce_int(data["variantId"], "variantId") if data.get("variantId") is not None else None,
            quantity_change=coerce_int(data["quantityChange"], "quantityChange"),
            change_type=coerce_enum(InventoryChangeType, data.get("changeType"), "changeType"),
            reason=optional_text(data.get("reason"), "reason"),
            notes=optional_text(data.get("notes"), "notes", 1000),
        )
        return jsonify({"log": entry.to_dict()}), 201

    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/logs")
@require_user
def inventory_logs_route():
    try:
        rows, meta = inventory_service.get_inventory_logs(
            g.branch_id,
            page=_optional_arg("page", coerce_int) or 1,
            limit=_optional_arg("limit", coerce_int),
            product_id=_optional_arg("product_id", coerce_int),
            variant_id=_optional_arg("variant_id", coerce_int),
            change_type=_optional_arg("change_type", lambda v, n: coerce_enum(InventoryChangeType, v, n)),
            start=_optional_arg("start_date", coerce_datetime),
            end=_optional_arg("end_date", coerce_datetime),
        )
        return jsonify({"data": [r.to_dict() for r in rows], "meta": meta}), 200

    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to list inventory logs")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/low-stock")
@require_user
def low_stock_route():
    return jsonify({"items": inventory_service.get_low_stock_items(g.branch_id)}), 200


@inventory_bp.get("/expiring")
@require_user
def expiring_route():
    try:
        days = _optional_arg("days", coerce_int) or 30
        return jsonify({"items": inventory_service.get_expiring_items(g.branch_id, days)}), 200

    except ServiceError as e:
        return _error(e)
