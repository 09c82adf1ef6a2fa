# Overview: Service-layer operations for auth; registration, password checks and login.

"""
Authentication Service

Every action must be attributable. Uses bcrypt for password hashing and
validates password strength at account creation.

TENANCY: A user may belong to several stores through StoreMembership.
Signup always creates the user's own store with an owner membership, in
the same commit as the user row.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor BCRYPT_ROUNDS, 12 by default)
- Minimum 8 characters, at least one letter and one digit
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Store, StoreMembership, STORE_ROLES, User
from ..validation import ConflictError, ValidationError
from kasirnest.time_utils import utcnow


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class AuthError(Exception):
    """Credential problem: unknown user, wrong password, inactive account."""


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one letter
    - At least one digit

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Za-z]', password):
        raise PasswordValidationError("Password must contain at least one letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    rounds = int(current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash. bcrypt.checkpw() is timing-safe.

    A malformed stored hash counts as a mismatch.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def normalize_email(email) -> str:
    if not isinstance(email, str) or not EMAIL_RE.match(email.strip()):
        raise ValidationError("A valid email is required")
    return email.strip().lower()


def normalize_username(username) -> str:
    if not isinstance(username, str) or not username.strip():
        raise ValidationError("Username is required")
    username = username.strip()
    if len(username) > 64:
        raise ValidationError("Username exceeds max length 64")
    return username


def optional_text(value, field: str, max_length: int) -> str | None:
    """Strip an optional free-text field; blank becomes None."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return value or None


def new_user(
    username: str,
    email: str,
    password: str,
    display_name: str | None = None,
    role: str = "staff",
) -> User:
    """
    Build (but do not commit) a user after uniqueness pre-checks.

    Raises:
        ValidationError / PasswordValidationError: bad input
        ConflictError: username or email already registered
    """
    username = normalize_username(username)
    display_name = optional_text(display_name, "display_name", 128)
    email = normalize_email(email)

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        if existing.username == username:
            raise ConflictError("Username already exists")
        raise ConflictError("Email already exists")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        display_name=display_name,
        role=role,
        is_active=True,
    )
    db.session.add(user)
    return user


def register_user(
    username: str,
    email: str,
    password: str,
    display_name: str | None = None,
    store_name: str | None = None,
) -> tuple[User, Store, StoreMembership]:
    """
    Create an account together with its store and owner membership.

    One commit: either all three rows exist afterwards or none do. A
    concurrent signup with the same username/email loses on the unique
    constraint and surfaces as ConflictError.
    """
    store_name = optional_text(store_name, "store_name", 120)
    try:
        user = new_user(username, email, password, display_name=display_name, role="admin")

        name = store_name or f"{user.display_name or user.username}'s Store"
        store = Store(
            name=name[:120],
            currency=current_app.config.get("DEFAULT_CURRENCY", "USD"),
            tax_rate_bps=int(current_app.config.get("DEFAULT_TAX_RATE_BPS", 1000)),
        )
        db.session.add(store)
        db.session.flush()
        store.created_by_user_id = user.id

        membership = StoreMembership(user_id=user.id, store_id=store.id, role="owner", is_active=True)
        db.session.add(membership)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Username or email already exists")
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("User registered user_id=%s store_id=%s", user.id, store.id)
    return user, store, membership


def authenticate(identifier: str, password: str) -> User:
    """
    Authenticate with username or email plus password.

    Raises AuthError with one generic message for every failure so the
    response does not reveal which accounts exist.
    Updates last_login_at on success.
    """
    if not isinstance(identifier, str) or not isinstance(password, str):
        raise ValidationError("Email and password must be strings")
    if not identifier.strip() or not password:
        raise ValidationError("Email and password are required")

    ident = identifier.strip()
    user = db.session.query(User).filter(
        db.or_(User.username == ident, User.email == ident.lower()),
    ).first()

    if not user or not user.is_active or not verify_password(password, user.password_hash):
        current_app.logger.warning("Failed login attempt")
        raise AuthError("Invalid credentials")

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def resolve_active_membership(user_id: int, store_id: int | None = None) -> StoreMembership | None:
    """
    Pick the membership a new session is bound to.

    With store_id: that store's active membership or None.
    Without: the strongest role first (owner, admin, manager, staff), then
    the earliest joined.
    """
    query = db.session.query(StoreMembership).filter_by(user_id=user_id, is_active=True)
    if store_id is not None:
        return query.filter_by(store_id=store_id).first()

    memberships = query.order_by(StoreMembership.joined_at.asc(), StoreMembership.id.asc()).all()
    if not memberships:
        return None

    rank = {role: i for i, role in enumerate(STORE_ROLES)}
    return min(memberships, key=lambda m: rank.get(m.role, len(STORE_ROLES)))
