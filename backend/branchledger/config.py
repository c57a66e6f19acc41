# backend/branchledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/branchledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///branchledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Concurrency retry policy for locked/deadlocked writes
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.1"))

    # Invoice numbering: business day boundary when a branch has no timezone
    DEFAULT_BRANCH_TIMEZONE = os.environ.get("DEFAULT_BRANCH_TIMEZONE", "UTC")
    INVOICE_SEQUENCE_PAD = int(os.environ.get("INVOICE_SEQUENCE_PAD", "4"))

    LEDGER_PAGE_LIMIT = int(os.environ.get("LEDGER_PAGE_LIMIT", "200"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
