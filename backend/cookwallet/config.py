# backend/cookwallet/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///cookwallet.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Commission (percent). Tenants without a CommissionChange row use this.
    PLATFORM_DEFAULT_COMMISSION_RATE = float(os.environ.get("PLATFORM_DEFAULT_COMMISSION_RATE", "10"))

    # Hold period before order earnings become withdrawable
    WITHDRAWABLE_HOLD_HOURS = int(os.environ.get("WITHDRAWABLE_HOLD_HOURS", "3"))

    # Withdrawal limits (whole XAF)
    MIN_WITHDRAWAL_AMOUNT = int(os.environ.get("MIN_WITHDRAWAL_AMOUNT", "1000"))
    MAX_DAILY_WITHDRAWAL_AMOUNT = int(os.environ.get("MAX_DAILY_WITHDRAWAL_AMOUNT", "500000"))
    WITHDRAWAL_TIMEZONE = os.environ.get("WITHDRAWAL_TIMEZONE", "Africa/Douala")

    # Minimum spacing between automatic payout retries
    PAYOUT_RETRY_INTERVAL_MINUTES = int(os.environ.get("PAYOUT_RETRY_INTERVAL_MINUTES", "15"))

    # A claimed retry attempt that never reported back is released after this
    PAYOUT_ATTEMPT_STALE_MINUTES = int(os.environ.get("PAYOUT_ATTEMPT_STALE_MINUTES", "10"))

    # Mobile-money transfer provider
    GATEWAY_BASE_URL = os.environ.get("GATEWAY_BASE_URL", "https://api.flutterwave.com/v3")
    GATEWAY_SECRET_KEY = os.environ.get("GATEWAY_SECRET_KEY", "")
    GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "30"))
    GATEWAY_WEBHOOK_HASH = os.environ.get("GATEWAY_WEBHOOK_HASH", "")
