# Overview: System key/value settings (shopping window switch).

from __future__ import annotations

from ..extensions import db
from ..errors import ValidationError
from ..models import AppSetting


SHOPPING_OPEN_KEY = "shopping_open"


def get_setting(key: str, default: str | None = None) -> str | None:
    row = db.session.get(AppSetting, key)
    return row.value if row and row.value is not None else default


def set_setting(key: str, value: str | None) -> AppSetting:
    row = db.session.get(AppSetting, key)
    if row is None:
        row = AppSetting(key=key, value=value)
        db.session.add(row)
    else:
        row.value = value
    db.session.commit()
    return row


def is_shopping_open() -> bool:
    """Shopping is closed unless explicitly switched on."""
    return get_setting(SHOPPING_OPEN_KEY) == "true"


def set_shopping_open(open_flag) -> bool:
    if not isinstance(open_flag, bool):
        raise ValidationError("open must be boolean", {"open": open_flag})
    set_setting(SHOPPING_OPEN_KEY, "true" if open_flag else "false")
    return open_flag
