# services/settings.py
import os

from flask import current_app, has_app_context


def cfg(key: str, default: str | None = None) -> str | None:
    """Env first, then Flask config."""
    v = os.environ.get(key)
    if v is not None:
        return v
    if has_app_context():
        return current_app.config.get(key, default)
    return default

