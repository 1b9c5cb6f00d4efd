# Overview: Service-layer operations for session tokens issued by the identity collaborator.

"""
Session Token Service

PIN/identity verification happens outside this system; once a caller is
verified, a session is issued here and presented as a Bearer token.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute expiry (SESSION_TTL_HOURS)
- Revocable
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..errors import ValidationError
from ..models import SessionToken
from ..time_utils import utcnow


ROLES = ("admin", "rep", "member")


@dataclass
class SessionContext:
    """
    Caller identity resolved from a token.

    branch_id is the rep's bound delivery branch (None for admins/members);
    member_id is set only for member sessions.
    """
    role: str
    actor: str
    branch_id: int | None
    member_id: str | None
    session: SessionToken


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(
    role: str,
    actor: str,
    *,
    branch_id: int | None = None,
    member_id: str | None = None,
    ttl_hours: int | None = None,
) -> tuple[SessionToken, str]:
    """Returns (session_row, plaintext_token). The plaintext is never stored."""
    if role not in ROLES:
        raise ValidationError(f"role must be one of {', '.join(ROLES)}", {"role": role})
    if not (actor or "").strip():
        raise ValidationError("actor is required")
    if role == "rep" and branch_id is None:
        raise ValidationError("rep sessions require a branch")
    if role == "member" and not member_id:
        raise ValidationError("member sessions require a member_id")

    ttl = ttl_hours if ttl_hours is not None else int(current_app.config.get("SESSION_TTL_HOURS", 12))
    token = generate_token()
    session = SessionToken(
        token_hash=hash_token(token),
        role=role,
        actor=actor.strip(),
        branch_id=branch_id if role == "rep" else None,
        member_id=member_id.strip().upper() if role == "member" else None,
        expires_at=utcnow() + timedelta(hours=ttl),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def validate_session(token: str) -> SessionContext | None:
    """None for unknown, revoked or expired tokens."""
    if not token:
        return None
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return None
    if session.expires_at <= utcnow():
        return None
    return SessionContext(
        role=session.role,
        actor=session.actor,
        branch_id=session.branch_id,
        member_id=session.member_id,
        session=session,
    )


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return False
    session.is_revoked = True
    db.session.commit()
    return True
