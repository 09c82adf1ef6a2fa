# Overview: Request decorators for API routes; bearer authentication and store-role gates.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'session_context')


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer token and establish the request identity.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.store_id: The store the token is bound to (may be None)
    - g.store_role: The caller's active role in that store (None if not a member)
    - g.session_context: The full SessionContext object

    Returns 401 if the header is missing, or the token is unknown, expired,
    revoked, or belongs to a deactivated account.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.store_id = context.store_id
        g.store_role = context.store_role
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_store(f):
    """
    Require the session to carry a store the caller is still an active member of.

    Use after @require_auth.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401
        if g.store_id is None:
            return jsonify({"error": "No store associated with user"}), 400
        if g.store_role is None:
            return jsonify({"error": "No active membership in this store"}), 403
        return f(*args, **kwargs)

    return decorated_function


def require_store_role(*roles: str):
    """
    Require one of the given membership roles in the active store.

    Use after @require_auth and @require_store.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.store_role not in roles:
                return jsonify({
                    "error": "Insufficient permissions",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
