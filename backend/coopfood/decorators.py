# Overview: Request authentication and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def require_auth(f):
    """
    Require a valid Bearer session.

    Sets the following Flask g attributes:
    - g.session_context: the full SessionContext
    - g.role: admin | rep | member
    - g.actor: display name recorded on audit fields
    - g.branch_id: rep's bound delivery branch (None otherwise)
    - g.member_id: member's own id (None otherwise)
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.session_context = context
        g.role = context.role
        g.actor = context.actor
        g.branch_id = context.branch_id
        g.member_id = context.member_id

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Require the authenticated caller to hold one of roles (use after @require_auth)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "role"):
                return jsonify({"error": "Authentication required"}), 401
            if g.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def scope_branch_id():
    """Delivery branch a rep is bound to; admins are unscoped."""
    return g.branch_id if getattr(g, "role", None) == "rep" else None
