from __future__ import annotations

from ..extensions import db


class AppSetting(db.Model):
    """System-wide key/value switches (e.g. shopping_open)."""
    __tablename__ = "app_settings"

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.String(255), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )


class RateLimitHit(db.Model):
    """
    One accepted request against a throttling bucket.

    Counters live in the shared database so every app instance sees the
    same window.
    """
    __tablename__ = "rate_limit_hits"
    __table_args__ = (
        db.Index("ix_rate_limit_bucket_key_occurred", "bucket", "client_key", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bucket = db.Column(db.String(64), nullable=False)
    client_key = db.Column(db.String(128), nullable=False)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
