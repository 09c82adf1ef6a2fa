# Overview: Service-layer operations for bearer sessions; issues, validates and revokes tokens.

"""
Session Token Management Service

Bearer credentials are opaque random tokens. The database keeps only the
SHA-256 hash of each token plus the identity it resolves to: the user and
the store that was active when the token was issued.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute expiry of TOKEN_EXPIRES_HOURS (7 days by default)
- Revocable on logout
- Store context is fixed for the token lifetime; switching stores issues a new token
"""

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, StoreMembership, User
from kasirnest.time_utils import utcnow


@dataclass
class SessionContext:
    """
    Complete session context returned by validate_session.

    store_id comes from the session record; store_role is re-read from the
    membership on every request so role changes and removals apply at once.
    """
    user: User
    session: SessionToken
    store_id: int | None
    store_role: str | None


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy); sent to the client, never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _token_lifetime() -> timedelta:
    return timedelta(hours=int(current_app.config.get("TOKEN_EXPIRES_HOURS", 168)))


def create_session(
    user_id: int,
    store_id: int | None,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Create a new session token bound to (user, store).

    Returns (session_record, plaintext_token).
    Client receives plaintext_token, database stores only the hash.
    """
    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user_id,
        store_id=store_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _token_lifetime(),
        user_agent=(user_agent or "")[:255] or None,
        ip_address=ip_address,
        is_revoked=False,
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    Validate session token and return SessionContext if valid.

    Returns None if:
    - Token is unknown, expired, or revoked
    - User account is deactivated (is_active=False)

    Updates last_used_at on successful validation.
    """
    if not token:
        return None

    now = utcnow()
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    user = session.user
    if not user or not user.is_active:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = "User account deactivated"
        db.session.commit()
        return None

    store_role = None
    if session.store_id is not None:
        membership = db.session.query(StoreMembership).filter_by(
            user_id=user.id,
            store_id=session.store_id,
            is_active=True,
        ).first()
        store_role = membership.role if membership else None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(
        user=user,
        session=session,
        store_id=session.store_id,
        store_role=store_role,
    )


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """
    Revoke session token.

    Returns True if session was revoked, False if not found.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return False

    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason

    db.session.commit()
    return True
