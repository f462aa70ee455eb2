# backend/medisupply/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/medisupply.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///medisupply.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Session lifetime for bearer tokens
    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 24)

    # Inventory alerting window (days before expiry that counts as "near expiry")
    NEAR_EXPIRY_DAYS = _env_int("NEAR_EXPIRY_DAYS", 30)

    # Above this received quantity, QC items are grouped into sub-batches
    QC_MAX_ITEMS_PER_PRODUCT = _env_int("QC_MAX_ITEMS_PER_PRODUCT", 50)

    DEFAULT_PAGE_LIMIT = _env_int("DEFAULT_PAGE_LIMIT", 50)
    MAX_PAGE_LIMIT = _env_int("MAX_PAGE_LIMIT", 500)

    # Browser origins allowed to call the API (comma-separated in the env)
    CORS_ALLOWED_ORIGINS = frozenset(
        o.strip()
        for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if o.strip()
    )
