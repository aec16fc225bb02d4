# backend/invoicebridge/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/invoicebridge.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///invoicebridge.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Repository read cache (seconds)
    REPOSITORY_CACHE_TTL_SECONDS = int(os.environ.get("REPOSITORY_CACHE_TTL_SECONDS", "900"))

    # Migration engine
    MIGRATION_BATCH_SIZE = int(os.environ.get("MIGRATION_BATCH_SIZE", "50"))
    MIGRATION_MAX_BATCH_SIZE = int(os.environ.get("MIGRATION_MAX_BATCH_SIZE", "500"))
    MIGRATION_LOCK_TIMEOUT_SECONDS = int(os.environ.get("MIGRATION_LOCK_TIMEOUT_SECONDS", "300"))
    MIGRATION_VERIFY_SAMPLE_SIZE = int(os.environ.get("MIGRATION_VERIFY_SAMPLE_SIZE", "10"))

    # Invoice numbering: prefix + 8 digits
    INVOICE_NUMBER_PREFIX = os.environ.get("INVOICE_NUMBER_PREFIX", "N")
    INVOICE_NUMBER_BASE = int(os.environ.get("INVOICE_NUMBER_BASE", "25000000"))

    # Buyer deduplication: "none" or "tax_id"
    CUSTOMER_SYNC = os.environ.get("CUSTOMER_SYNC", "none")

    # Control surface token; unset disables the check (local development only)
    ADMIN_API_TOKEN = os.environ.get("ADMIN_API_TOKEN")
