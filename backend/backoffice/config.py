# backend/backoffice/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/backoffice.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///backoffice.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Percentage applied to items whose product carries no commission rule
    COMMISSION_FALLBACK_PERCENT = float(os.environ.get("COMMISSION_FALLBACK_PERCENT", "5"))

    # Customer codes are zero-padded to this width ("00042")
    CUSTOMER_CODE_WIDTH = int(os.environ.get("CUSTOMER_CODE_WIDTH", "5"))

    ORDER_ID_PREFIX = os.environ.get("ORDER_ID_PREFIX", "PED")

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))

    # Bounded history kept by the in-process change feed
    CHANGE_FEED_HISTORY = int(os.environ.get("CHANGE_FEED_HISTORY", "1000"))
