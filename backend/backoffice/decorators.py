# Overview: Request decorators for API routes; acting user and branch context.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import Branch, User, UserRole


def _requested_branch_id():
    raw = request.args.get("branch_id")
    if raw is None and request.is_json:
        body = request.get_json(silent=True) or {}
        raw = body.get("branch_id", body.get("branchId"))
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def require_user(f):
    """
    Establish the acting user from the upstream auth layer.

    Sets the following Flask g attributes:
    - g.current_user: the active User named by the X-User-Id header
    - g.branch_id: the user's branch; admins may override with branch_id

    Returns 401 when the header is missing or names no active user, and 400
    when no branch can be determined.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_user_id = request.headers.get("X-User-Id")
        if not raw_user_id or not raw_user_id.strip().isdigit():
            return jsonify({"error": "Authentication required"}), 401

        user = db.session.get(User, int(raw_user_id))
        if user is None or not user.is_active:
            return jsonify({"error": "Invalid or inactive user"}), 401

        branch_id = user.branch_id
        if user.role == UserRole.ADMIN:
            override = _requested_branch_id()
            if override is not None:
                if db.session.get(Branch, override) is None:
                    return jsonify({"error": "Branch not found"}), 404
                branch_id = override

        if branch_id is None:
            return jsonify({"error": "User is not assigned to a branch"}), 400

        g.current_user = user
        g.branch_id = branch_id
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: UserRole):
    """Require the acting user (see require_user) to hold one of roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return jsonify({"error": "Authentication required"}), 401
            if g.current_user.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": [r.value for r in roles],
                }), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator
