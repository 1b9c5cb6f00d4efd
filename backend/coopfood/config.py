# backend/coopfood/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/coopfood.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///coopfood.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Inventory view: remaining_after_posted at or below this is flagged low
    LOW_STOCK_THRESHOLD = _env_int("LOW_STOCK_THRESHOLD", 20)

    # Default loan ceiling rule: min(savings * multiplier, global_limit) - loans
    LOAN_SAVINGS_MULTIPLIER = _env_int("LOAN_SAVINGS_MULTIPLIER", 5)

    # Bulk imports
    IMPORT_CHUNK_SIZE = _env_int("IMPORT_CHUNK_SIZE", 500)

    # Items-pack export (per-branch aggregation calls)
    EXPORT_PACING_SECONDS = _env_float("EXPORT_PACING_SECONDS", 0.35)
    EXPORT_BACKOFF_BASE_SECONDS = _env_float("EXPORT_BACKOFF_BASE_SECONDS", 0.9)
    EXPORT_BACKOFF_CAP_SECONDS = _env_float("EXPORT_BACKOFF_CAP_SECONDS", 15.0)
    EXPORT_MAX_ATTEMPTS = _env_int("EXPORT_MAX_ATTEMPTS", 8)
    EXPORT_REQUEST_TIMEOUT_SECONDS = _env_float("EXPORT_REQUEST_TIMEOUT_SECONDS", 6.0)

    # When set, the export fetches per-branch demand over HTTP from this base URL
    REPORT_SOURCE_URL = os.environ.get("REPORT_SOURCE_URL")
    REPORT_SOURCE_TOKEN = os.environ.get("REPORT_SOURCE_TOKEN")

    # Shared (DB-backed) request throttling for report endpoints
    REPORT_RATE_LIMIT = _env_int("REPORT_RATE_LIMIT", 30)
    REPORT_RATE_WINDOW_SECONDS = _env_int("REPORT_RATE_WINDOW_SECONDS", 60)

    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 12)
