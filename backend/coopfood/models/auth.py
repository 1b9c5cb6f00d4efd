from __future__ import annotations

from ..extensions import db
from coopfood.time_utils import to_utc_z


class SessionToken(db.Model):
    """
    Verified session issued by the identity collaborator.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - Reps carry a bound delivery branch; services enforce it
    - Members carry their own member_id
    - Revocable
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # admin, rep, member
    role = db.Column(db.String(16), nullable=False)
    actor = db.Column(db.String(128), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)
    member_id = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    is_revoked = db.Column(db.Boolean, nullable=False, default=False)

    branch = db.relationship("Branch")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "actor": self.actor,
            "branch_code": self.branch.code if self.branch else None,
            "member_id": self.member_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
