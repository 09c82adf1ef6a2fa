# Overview: Flask API routes for store members; parses input and returns JSON responses.

# backend/kasirnest/routes/users.py
"""
Store membership routes. Ids in paths are user ids.

Reads: any member of the store. Mutations: owner or admin; the owner-only
rules live in user_service.
"""
from flask import Blueprint, request, g

from ..services import user_service
from ..decorators import require_auth, require_store, require_store_role
from ..responses import DOMAIN_ERRORS, internal_error, service_error, success

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_store
def list_users():
    try:
        return success(user_service.list_members(g.store_id))
    except Exception:
        return internal_error("Failed to get users")


@users_bp.get("/<int:user_id>")
@require_auth
@require_store
def get_user(user_id: int):
    try:
        return success(user_service.get_member(g.store_id, user_id))
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to get user")


@users_bp.post("")
@require_auth
@require_store
@require_store_role(*user_service.MEMBER_MANAGER_ROLES)
def add_user():
    """
    Body: email, role (default staff); username, password and display_name
    when the email has no account yet.
    """
    data = request.get_json(silent=True) or {}
    try:
        member = user_service.add_member(
            g.store_id,
            g.store_role,
            email=data.get("email"),
            role=data.get("role") or "staff",
            username=data.get("username"),
            password=data.get("password"),
            display_name=data.get("display_name"),
        )
        return success(member, 201, message="User added to store successfully")
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to add user")


@users_bp.put("/<int:user_id>")
@require_auth
@require_store
@require_store_role(*user_service.MEMBER_MANAGER_ROLES)
def update_user(user_id: int):
    """Body: display_name, is_active, role (any subset)."""
    try:
        member = user_service.update_member(
            g.store_id,
            user_id,
            request.get_json(silent=True) or {},
            actor_id=g.current_user.id,
            actor_role=g.store_role,
        )
        return success(member, message="User updated successfully")
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to update user")


@users_bp.put("/<int:user_id>/role")
@require_auth
@require_store
@require_store_role(*user_service.MEMBER_MANAGER_ROLES)
def update_user_role(user_id: int):
    data = request.get_json(silent=True) or {}
    try:
        member = user_service.update_member_role(
            g.store_id,
            user_id,
            data.get("role"),
            actor_id=g.current_user.id,
            actor_role=g.store_role,
        )
        return success(member, message="User role updated successfully")
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to update user role")


@users_bp.delete("/<int:user_id>")
@require_auth
@require_store
@require_store_role(*user_service.MEMBER_MANAGER_ROLES)
def remove_user(user_id: int):
    try:
        user_service.remove_member(
            g.store_id,
            user_id,
            actor_id=g.current_user.id,
            actor_role=g.store_role,
        )
        return success(None, message="User removed from store successfully")
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to remove user from store")
