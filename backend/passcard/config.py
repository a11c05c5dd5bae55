# backend/passcard/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() == "true"


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/passcard.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///passcard.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "development" or "production"; anything else is treated as production
    ENVIRONMENT = os.environ.get("PASSCARD_ENV", "production")

    # Synthesizes a super_admin principal for authenticated subjects without a
    # users row. Only honored when ENVIRONMENT == "development".
    DEV_FALLBACK_PRINCIPAL = _env_flag("DEV_FALLBACK_PRINCIPAL")

    # Feature flags checked by the security gateway (require_env_flag)
    ALLOW_DEMO_ROLE_UPGRADE = _env_flag("ALLOW_DEMO_ROLE_UPGRADE")
    ALLOW_USER_MANAGEMENT = _env_flag("ALLOW_USER_MANAGEMENT")
    # Self-service top-up records credit without capturing a payment
    ALLOW_DEMO_TOPUP = _env_flag("ALLOW_DEMO_TOPUP")

    QR_CODE_EXPIRY_MINUTES = int(os.environ.get("QR_CODE_EXPIRY_MINUTES", "15"))
    DEMO_ROLE_OVERRIDE_HOURS = int(os.environ.get("DEMO_ROLE_OVERRIDE_HOURS", "24"))

    OTP_EXPIRY_MINUTES = int(os.environ.get("OTP_EXPIRY_MINUTES", "10"))
    MAX_LOGIN_ATTEMPTS = int(os.environ.get("MAX_LOGIN_ATTEMPTS", "5"))
    SESSION_TIMEOUT_MINUTES = int(os.environ.get("SESSION_TIMEOUT_MINUTES", "120"))

    # $10,000.00 per single charge
    MAX_CHARGE_CENTS = 1_000_000
