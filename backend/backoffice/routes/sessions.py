# Overview: Flask API routes for cashier sessions; parses input and returns JSON responses.

"""Cashier session API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import session_service
from ..validation import ServiceError, ValidationError, coerce_int, optional_text, to_cents
from ..decorators import require_user


sessions_bp = Blueprint("sessions", __name__, url_prefix="/api/sessions")


def _error(e: ServiceError):
    return jsonify({"error": str(e), "details": e.details}), e.status_code


@sessions_bp.post("/start")
@require_user
def start_session_route():
    """
    Open a shift for the acting user in their branch.

    Body: {openingBalance?, name?}
    """
    try:
        data = request.get_json(silent=True) or {}
        opening = data.get("openingBalance")
        opening_cents = to_cents(opening, "openingBalance") if opening is not None else 0

        session = session_service.start_session(
            g.branch_id,
            g.current_user.id,
            opening_balance_cents=opening_cents,
            name=optional_text(data.get("name"), "name", 120),
        )
        return jsonify({"session": session.to_dict()}), 201

    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to start session")
        return jsonify({"error": "Internal server error"}), 500


@sessions_bp.post("/<int:session_id>/end")
@require_user
def end_session_route(session_id: int):
    """
    Close a shift with the counted drawer cash.

    Body: {closingBalance}
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("closingBalance") is None:
            raise ValidationError("closingBalance is required")
        closing_cents = to_cents(data["closingBalance"], "closingBalance")

        session = session_service.end_session(session_id, g.current_user.id, closing_cents)
        return jsonify({"session": session.to_dict()}), 200

    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to end session")
        return jsonify({"error": "Internal server error"}), 500


@sessions_bp.get("/active")
@require_user
def active_session_route():
    session = session_service.get_active_session(g.branch_id, g.current_user.id)
    return jsonify({"session": session.to_dict() if session else None}), 200


@sessions_bp.get("/history")
@require_user
def session_history_route():
    try:
        limit = request.args.get("limit")
        limit = coerce_int(limit, "limit") if limit else 20
        sessions = session_service.get_session_history(g.branch_id, limit=limit)
        return jsonify({"sessions": [s.to_dict() for s in sessions]}), 200

    except ServiceError as e:
        return _error(e)


@sessions_bp.get("/<int:session_id>")
@require_user
def session_details_route(session_id: int):
    try:
        return jsonify({"session": session_service.get_session_details(session_id)}), 200

    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to build session report")
        return jsonify({"error": "Internal server error"}), 500
