# backend/cashbook/config.py
from __future__ import annotations
import os


def _csv_set(value: str | None) -> frozenset[str]:
    if not value:
        return frozenset()
    return frozenset(part.strip() for part in value.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///cashbook.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Browser origins allowed to call the API (comma separated)
    CORS_ORIGINS = _csv_set(os.environ.get("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"))

    # bcrypt cost factor for operator passwords
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Bounded waits for per-session / per-item read-modify-write units.
    # LOCK_TIMEOUT_SECONDS is the driver busy timeout; retries back off exponentially.
    LOCK_TIMEOUT_SECONDS = float(os.environ.get("LOCK_TIMEOUT_SECONDS", "5"))
    LOCK_RETRY_ATTEMPTS = int(os.environ.get("LOCK_RETRY_ATTEMPTS", "3"))
    LOCK_RETRY_BACKOFF_SECONDS = float(os.environ.get("LOCK_RETRY_BACKOFF_SECONDS", "0.05"))

    # Movement types allowed to take an item below zero (e.g. "adjustment").
    STOCK_NEGATIVE_ALLOWED_TYPES = _csv_set(os.environ.get("STOCK_NEGATIVE_ALLOWED_TYPES"))

    # Write the system-generated "POS Sales" income record when a session closes
    POS_INCOME_ON_CLOSE = os.environ.get("POS_INCOME_ON_CLOSE", "true").lower() == "true"


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOCK_RETRY_BACKOFF_SECONDS = 0.0
    BCRYPT_ROUNDS = 4
