# Overview: Service-layer operations for store members; listing, invites, roles and removal.

"""
Store membership management.

Rules enforced here (the routes only check the caller is owner/admin):
- only an owner may grant the owner role or change/remove an owner
- a store always keeps at least one active owner
- nobody removes or deactivates themself
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import STORE_ROLES, StoreMembership, User
from ..validation import ConflictError, ForbiddenError, NotFoundError, ValidationError
from kasirnest.time_utils import to_utc_z
from .auth_service import new_user, normalize_email
from .concurrency import begin_write, lock_for_update, run_with_retry


MEMBER_MANAGER_ROLES = ("owner", "admin")


def member_dict(membership: StoreMembership) -> dict:
    user = membership.user
    data = user.to_dict()
    data.update({
        "global_role": user.role,
        "store_role": membership.role,
        "membership_active": membership.is_active,
        "joined_at": to_utc_z(membership.joined_at),
    })
    return data


def _validate_role(role) -> str:
    if role not in STORE_ROLES:
        raise ValidationError("Invalid role")
    return role


def _membership(store_id: int, user_id: int, *, active_only: bool = True, lock: bool = False):
    query = db.session.query(StoreMembership).filter_by(store_id=store_id, user_id=user_id)
    if active_only:
        query = query.filter(StoreMembership.is_active.is_(True))
    if lock:
        query = lock_for_update(query)
    membership = query.first()
    if membership is None:
        raise NotFoundError("User not found in store")
    return membership


def _active_owner_count(store_id: int) -> int:
    owners = lock_for_update(
        db.session.query(StoreMembership).filter_by(store_id=store_id, role="owner", is_active=True)
    ).all()
    return len(owners)


def _guard_owner_change(store_id: int, membership: StoreMembership, actor_role: str, *, losing_owner: bool) -> None:
    if membership.role == "owner" and actor_role != "owner":
        raise ForbiddenError("Only owners can change or remove an owner")
    if losing_owner and membership.role == "owner" and _active_owner_count(store_id) <= 1:
        raise ConflictError("A store must keep at least one owner")


def list_members(store_id: int, *, include_inactive: bool = False) -> list[dict]:
    query = (
        db.session.query(StoreMembership)
        .join(User, User.id == StoreMembership.user_id)
        .filter(StoreMembership.store_id == store_id)
    )
    if not include_inactive:
        query = query.filter(StoreMembership.is_active.is_(True))
    memberships = query.order_by(User.created_at.desc(), User.id.desc()).all()
    return [member_dict(m) for m in memberships]


def get_member(store_id: int, user_id: int) -> dict:
    try:
        return member_dict(_membership(store_id, user_id, active_only=False))
    except NotFoundError:
        raise NotFoundError("User not found")


def add_member(
    store_id: int,
    actor_role: str,
    *,
    email: str,
    role: str = "staff",
    username: str | None = None,
    password: str | None = None,
    display_name: str | None = None,
) -> dict:
    """
    Give someone access to the store.

    An existing account is attached by email (an inactive membership is
    reactivated); otherwise username and password create the account.
    """
    role = _validate_role(role)
    email = normalize_email(email)
    if role == "owner" and actor_role != "owner":
        raise ForbiddenError("Only owners can grant the owner role")

    def _op():
        begin_write()
        user = db.session.query(User).filter_by(email=email).first()
        if user is None:
            if not username or not password:
                raise ValidationError("username and password are required for a new user")
            user = new_user(username, email, password, display_name=display_name)
            db.session.flush()

        membership = db.session.query(StoreMembership).filter_by(store_id=store_id, user_id=user.id).first()
        if membership is not None and membership.is_active:
            raise ConflictError("User is already a member of this store")
        if membership is None:
            membership = StoreMembership(store_id=store_id, user_id=user.id)
            db.session.add(membership)
        membership.role = role
        membership.is_active = True

        db.session.commit()
        return membership

    try:
        membership = run_with_retry(_op)
    except IntegrityError:
        raise ConflictError("Username or email already exists")

    current_app.logger.info(
        "Member added store_id=%s user_id=%s role=%s", store_id, membership.user_id, role
    )
    return member_dict(membership)


def update_member_role(store_id: int, user_id: int, role: str, *, actor_id: int, actor_role: str) -> dict:
    role = _validate_role(role)
    if role == "owner" and actor_role != "owner":
        raise ForbiddenError("Only owners can grant the owner role")

    def _op():
        begin_write()
        membership = _membership(store_id, user_id, lock=True)
        if membership.role != role:
            _guard_owner_change(store_id, membership, actor_role, losing_owner=True)
            membership.role = role
        db.session.commit()
        return membership

    membership = run_with_retry(_op)
    current_app.logger.info(
        "Member role changed store_id=%s user_id=%s role=%s by=%s", store_id, user_id, role, actor_id
    )
    return member_dict(membership)


def remove_member(store_id: int, user_id: int, *, actor_id: int, actor_role: str) -> None:
    """Deactivate the membership; the account itself stays."""
    if user_id == actor_id:
        raise ValidationError("Cannot remove yourself from store")

    def _op():
        begin_write()
        membership = _membership(store_id, user_id, lock=True)
        _guard_owner_change(store_id, membership, actor_role, losing_owner=True)
        membership.is_active = False
        db.session.commit()

    run_with_retry(_op)
    current_app.logger.info("Member removed store_id=%s user_id=%s by=%s", store_id, user_id, actor_id)


def update_member(store_id: int, user_id: int, payload: dict, *, actor_id: int, actor_role: str) -> dict:
    """
    Edit a member: display_name, is_active (membership) and optionally role.

    The payload is checked in full before anything is written, then every
    change lands in one commit. Deactivating cannot be combined with other
    edits.
    """
    if not isinstance(payload, dict) or not payload:
        raise ValidationError("No fields to update")
    allowed = {"display_name", "is_active", "role"}
    for key in payload:
        if key not in allowed:
            raise ValidationError(f"Field not allowed: {key}")

    if "is_active" in payload and not isinstance(payload["is_active"], bool):
        raise ValidationError("is_active must be a boolean")
    if payload.get("is_active") is False:
        if len(payload) > 1:
            raise ValidationError("is_active=false cannot be combined with other fields")
        remove_member(store_id, user_id, actor_id=actor_id, actor_role=actor_role)
        return get_member(store_id, user_id)

    role = None
    if "role" in payload:
        role = _validate_role(payload["role"])
        if role == "owner" and actor_role != "owner":
            raise ForbiddenError("Only owners can grant the owner role")

    display_name = payload.get("display_name")
    if "display_name" in payload:
        if display_name is not None and not isinstance(display_name, str):
            raise ValidationError("display_name must be a string")
        if display_name and len(display_name.strip()) > 128:
            raise ValidationError("display_name exceeds max length 128")

    def _op():
        begin_write()
        membership = _membership(store_id, user_id, active_only=("is_active" not in payload), lock=True)
        if membership.role == "owner" and actor_role != "owner" and user_id != actor_id:
            raise ForbiddenError("Only owners can edit an owner")
        if role is not None and membership.role != role:
            _guard_owner_change(store_id, membership, actor_role, losing_owner=True)
            membership.role = role
        if "display_name" in payload:
            membership.user.display_name = (display_name or "").strip() or None
        if payload.get("is_active") is True:
            membership.is_active = True
        db.session.commit()
        return membership

    membership = run_with_retry(_op)
    current_app.logger.info(
        "Member updated store_id=%s user_id=%s fields=%s by=%s",
        store_id, user_id, ",".join(sorted(payload)), actor_id,
    )
    return member_dict(membership)
