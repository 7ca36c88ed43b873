import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


def _to_int(value, default: int) -> int:
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default


class Config:
    # --- Core ---
    MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017/kapeeshop")
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(
        hours=_to_int(os.getenv("JWT_ACCESS_TOKEN_HOURS"), 1)
    )
    TRUSTED_PROXY_HOPS = _to_int(os.getenv("TRUSTED_PROXY_HOPS"), 1)
    CORS_ALLOWED_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "")
    FRONTEND_URL = os.getenv("FRONTEND_URL", "").strip()

    # --- Accounts ---
    DEFAULT_ADMIN_EMAIL = (
        (os.getenv("DEFAULT_ADMIN_EMAIL") or "admin@kapeeshop.com").strip().lower()
    )
    PASSWORD_HASH_ROUNDS = _to_int(os.getenv("PASSWORD_HASH_ROUNDS"), 12)

    # --- OTP ---
    RESEND_API_KEY = (os.getenv("RESEND_API_KEY") or "").strip()
    OTP_SENDER_EMAIL = (
        os.getenv("OTP_SENDER_EMAIL", "verification@kapeeshop.com")
        or "verification@kapeeshop.com"
    )
    OTP_EMAIL_SUBJECT = "Your Kapee Shop Verification Code"
    OTP_EXPIRATION_MINUTES = _to_int(os.getenv("OTP_EXPIRATION_MINUTES"), 5)
    OTP_RESEND_COOLDOWN_SECONDS = _to_int(
        os.getenv("OTP_RESEND_COOLDOWN_SECONDS"), 60
    )
    OTP_HASH_ROUNDS = _to_int(os.getenv("OTP_HASH_ROUNDS"), 12)

    # --- Contact ---
    # admin copy of each contact message; empty disables the notification
    CONTACT_NOTIFICATION_EMAIL = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
    CONTACT_SENDER_EMAIL = (
        os.getenv("CONTACT_SENDER_EMAIL", "support@kapeeshop.com")
        or "support@kapeeshop.com"
    )

    # --- Best selling ---
    BEST_SELLING_DEFAULT_LIMIT = 10
    BEST_SELLING_MAX_LIMIT = 100
    FEATURED_DEFAULT_LIMIT = 8
    FEATURED_MAX_LIMIT = 50


class TestingConfig(Config):
    TESTING = True
    JWT_SECRET_KEY = "testing-secret-key-with-enough-length"
    DEFAULT_ADMIN_EMAIL = "admin@example.com"
    RESEND_API_KEY = ""
    CONTACT_NOTIFICATION_EMAIL = "support@example.com"
    # bcrypt's minimum cost keeps the suite fast
    PASSWORD_HASH_ROUNDS = 4
    OTP_HASH_ROUNDS = 4
