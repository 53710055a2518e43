# backend/vitana/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/vitana.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///vitana.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Fiscal transmitter: "mock" (homologation without SEFAZ) or "http"
    FISCAL_TRANSMITTER = os.environ.get("FISCAL_TRANSMITTER", "mock")
    FISCAL_SEFAZ_URL = os.environ.get("FISCAL_SEFAZ_URL", "")
    FISCAL_TRANSMIT_TIMEOUT = float(os.environ.get("FISCAL_TRANSMIT_TIMEOUT", "10"))
    FISCAL_TRANSMIT_ATTEMPTS = int(os.environ.get("FISCAL_TRANSMIT_ATTEMPTS", "3"))
    FISCAL_TRANSMIT_BACKOFF = float(os.environ.get("FISCAL_TRANSMIT_BACKOFF", "0.5"))

    # Flat ICMS rate in basis points (1800 = 18.00%)
    FISCAL_ICMS_RATE_BPS = int(os.environ.get("FISCAL_ICMS_RATE_BPS", "1800"))
