# Overview: Request identity and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import Business

ROLES = ("admin", "operator")


def _is_authenticated() -> bool:
    return hasattr(g, 'business_id') and hasattr(g, 'user_role')


def require_auth(f):
    """
    Establish tenant context from the identity headers set by the upstream
    auth service.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.business_id: The business (tenant) every query is scoped to
    - g.user_id: The authenticated user, recorded on sales
    - g.user_role: "admin" or "operator"

    SECURITY: Returns 401 if:
    - Any identity header is missing
    - The role is not a known role
    - The business does not exist
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        business_id = (request.headers.get("X-Business-Id") or "").strip()
        user_id = (request.headers.get("X-User-Id") or "").strip()
        role = (request.headers.get("X-User-Role") or "").strip().lower()

        if not business_id or not user_id or not role:
            return jsonify({"error": "Authentication required"}), 401

        if role not in ROLES:
            return jsonify({"error": "Invalid user role"}), 401

        if db.session.get(Business, business_id) is None:
            return jsonify({"error": "Unknown business"}), 401

        g.business_id = business_id
        g.user_id = user_id
        g.user_role = role

        return f(*args, **kwargs)

    return decorated_function


def require_role(role: str):
    """
    Require a minimum role. Admins pass every role check; operators only
    pass operator checks.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.user_role != "admin" and g.user_role != role:
                return jsonify({
                    "error": "Permission denied",
                    "required_role": role,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
