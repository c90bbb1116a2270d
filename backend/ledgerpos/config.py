# backend/ledgerpos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/ledgerpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///ledgerpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Document numbering: INV-YYYYMMDD-0001 / PUR-YYYYMMDD-0001
    INVOICE_PREFIX = "INV"
    PURCHASE_PREFIX = "PUR"
    DOCUMENT_NUMBER_PAD = 4

    LOYALTY_CARD_PREFIX = "LOY"
    CUSTOMER_BARCODE_PREFIX = "CUST"

    # Number of products returned by the "active alerts" widget
    ACTIVE_ALERT_LIMIT = 10

    # Retries on deadlocks / optimistic locking conflicts
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
