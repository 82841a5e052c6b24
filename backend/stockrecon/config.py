# backend/stockrecon/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the backend by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockrecon.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Max adjustment lines applied per atomic unit. 0 applies a whole request in one transaction.
    ADJUSTMENT_APPLY_CHUNK_SIZE = int(os.environ.get("ADJUSTMENT_APPLY_CHUNK_SIZE", "0"))

    DEFAULT_LIST_LIMIT = 100
