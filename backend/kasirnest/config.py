# backend/kasirnest/config.py
from __future__ import annotations
import os


def _database_url() -> str:
    # A full URL wins; otherwise compose a MySQL URL from DB_* parts when a host is given
    url = os.environ.get("DATABASE_URL")
    if url:
        return url

    host = os.environ.get("DB_HOST")
    if not host:
        return "sqlite:///kasirnest.sqlite3"

    user = os.environ.get("DB_USER", "root")
    password = os.environ.get("DB_PASSWORD", "")
    port = os.environ.get("DB_PORT", "3307")
    name = os.environ.get("DB_NAME", "kasirnest")
    credentials = f"{user}:{password}" if password else user
    return f"mysql+pymysql://{credentials}@{host}:{port}/{name}?charset=utf8mb4"


def _cors_origins() -> set[str]:
    raw = os.environ.get("CORS_ORIGINS") or os.environ.get("CLIENT_URL")
    if not raw:
        return {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
    return {origin.strip() for origin in raw.split(",") if origin.strip()}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    PORT = int(os.environ.get("PORT", "3000"))
    CORS_ORIGINS = _cors_origins()

    # Bearer tokens live for 7 days unless configured otherwise
    TOKEN_EXPIRES_HOURS = int(os.environ.get("TOKEN_EXPIRES_HOURS", "168"))
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # New stores start with these values (1000 bps = 10%)
    DEFAULT_TAX_RATE_BPS = int(os.environ.get("DEFAULT_TAX_RATE_BPS", "1000"))
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
