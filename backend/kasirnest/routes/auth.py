# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/kasirnest/routes/auth.py
"""
Authentication API routes

- register: account + own store + owner membership, returns a token
- login: email or username, token bound to the strongest membership
- switch-store: new token bound to another store of the caller
- logout: revokes the presented token server-side
"""

from flask import Blueprint, request, g

from ..models import Store
from ..extensions import db
from ..services import auth_service
from ..services import session_service
from ..decorators import require_auth, bearer_token
from ..responses import DOMAIN_ERRORS, error, internal_error, service_error, success
from ..validation import parse_int


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _session_payload(user, membership, token: str, session) -> dict:
    store = db.session.get(Store, membership.store_id) if membership else None
    return {
        "user": user.to_dict(),
        "token": token,
        "expires_at": session.to_dict()["expires_at"],
        "store": store.to_dict() if store else None,
        "store_id": membership.store_id if membership else None,
        "store_role": membership.role if membership else None,
    }


def _issue(user, membership):
    session, token = session_service.create_session(
        user_id=user.id,
        store_id=membership.store_id if membership else None,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    return _session_payload(user, membership, token, session)


@auth_bp.post("/register")
def register_route():
    """
    Create an account with its own store.

    Body: username, email, password, display_name?, store_name?
    """
    data = request.get_json(silent=True) or {}
    try:
        username = data.get("username")
        email = data.get("email")
        password = data.get("password")
        if not all([username, email, password]):
            return error("Username, email and password are required", 400)

        user, _store, membership = auth_service.register_user(
            username,
            email,
            password,
            display_name=data.get("display_name"),
            store_name=data.get("store_name"),
        )
        return success(_issue(user, membership), 201, message="User registered successfully")
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to register user")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    Body: email (or username / identifier), password.
    The token is bound to the active membership with the strongest role.
    """
    data = request.get_json(silent=True) or {}
    try:
        identifier = data.get("email") or data.get("username") or data.get("identifier")
        password = data.get("password")
        if not all([identifier, password]):
            return error("Email and password are required", 400)

        user = auth_service.authenticate(identifier, password)
        membership = auth_service.resolve_active_membership(user.id)
        return success(_issue(user, membership), message="Login successful")
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to login user")


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current user plus the store and role the token is bound to."""
    store = db.session.get(Store, g.store_id) if g.store_id else None
    return success({
        "user": g.current_user.to_dict(),
        "store": store.to_dict() if store else None,
        "store_id": g.store_id,
        "store_role": g.store_role,
    })


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(bearer_token())
        return success(None, message="Logged out successfully")
    except Exception:
        return internal_error("Failed to logout user")


@auth_bp.post("/switch-store")
@require_auth
def switch_store_route():
    """
    Issue a new token bound to another store the caller belongs to.

    Body: store_id. The presented token stays valid until it expires or is
    logged out.
    """
    data = request.get_json(silent=True) or {}
    try:
        store_id = parse_int(data.get("store_id"), "store_id", minimum=1)
        membership = auth_service.resolve_active_membership(g.current_user.id, store_id=store_id)
        if membership is None:
            return error("No active membership in this store", 403)
        return success(_issue(g.current_user, membership), message="Store switched")
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to switch store")
