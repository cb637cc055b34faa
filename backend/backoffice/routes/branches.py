# Overview: Flask API routes for branch cashback capital; parses input and returns JSON responses.

"""Branch cashback float API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import UserRole
from ..services import cashback_service
from ..validation import ServiceError, ValidationError, optional_text, to_cents
from ..decorators import require_role, require_user


branches_bp = Blueprint("branches", __name__, url_prefix="/api/branches")


def _error(e: ServiceError):
    return jsonify({"error": str(e), "details": e.details}), e.status_code


def _forbidden_branch(branch_id: int):
    if g.current_user.role != UserRole.ADMIN and g.current_user.branch_id != branch_id:
        return jsonify({"error": "Branch access denied"}), 403
    return None


@branches_bp.get("/<int:branch_id>/cashback-capital")
@require_user
def get_capital_route(branch_id: int):
    denied = _forbidden_branch(branch_id)
    if denied:
        return denied
    try:
        return jsonify({"capital": cashback_service.get_capital(branch_id)}), 200

    except ServiceError as e:
        return _error(e)


@branches_bp.post("/<int:branch_id>/cashback-capital")
@require_user
@require_role(UserRole.ADMIN, UserRole.MANAGER)
def adjust_capital_route(branch_id: int):
    """
    Top up (positive) or draw down (negative) the branch cashback float.

    Body: {amount, notes?}
    """
    denied = _forbidden_branch(branch_id)
    if denied:
        return denied
    try:
        data = request.get_json(silent=True) or {}
        if data.get("amount") is None:
            raise ValidationError("amount is required")

        result = cashback_service.adjust_capital(
            branch_id,
            to_cents(data["amount"], "amount"),
            user_id=g.current_user.id,
            notes=optional_text(data.get("notes"), "notes"),
        )
        return jsonify({"capital": result}), 200

    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to adjust cashback capital")
        return jsonify({"error": "Internal server error"}), 500


@branches_bp.get("/<int:branch_id>/cashback-capital/logs")
@require_user
def capital_logs_route(branch_id: int):
    denied = _forbidden_branch(branch_id)
    if denied:
        return denied
    try:
        logs = cashback_service.get_capital_logs(branch_id)
        return jsonify({"logs": [entry.to_dict() for entry in logs]}), 200

    except ServiceError as e:
        return _error(e)
