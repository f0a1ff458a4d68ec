# app/config.py
import os
from dotenv import load_dotenv

load_dotenv()

def _as_bool(val: str | None, default=False) -> bool:
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}

class Config:
    # --- Core ---
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
    APP_VERSION = os.getenv("APP_VERSION")
    EXTERNAL_BASE_URL = os.getenv("EXTERNAL_BASE_URL")

    # DB
    SQLALCHEMY_DATABASE_URI = (
        os.getenv("SQLALCHEMY_DATABASE_URI")
        or os.getenv("DATABASE_URL")
        or "sqlite:///gigescrow.db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF
    WTF_CSRF_TIME_LIMIT = None

    # --- Uploads ---
    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", "instance/uploads")
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", str(50 * 1024 * 1024)))  # 50MB

    # --- Mail ---
    MAIL_SERVER = os.getenv("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = _as_bool(os.getenv("MAIL_USE_TLS", "1"))
    MAIL_USE_SSL = _as_bool(os.getenv("MAIL_USE_SSL", "0"))  # don't enable together with TLS
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", MAIL_USERNAME)
    MAIL_SUPPRESS_SEND = _as_bool(os.getenv("MAIL_SUPPRESS_SEND", "0"))

    # --- Logging ---
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_FILENAME = os.getenv("LOG_FILENAME", "gigescrow.log")
    LOG_JSON = _as_bool(os.getenv("LOG_JSON", "0"))

    # --- Sentry ---
    SENTRY_DSN = os.getenv("SENTRY_DSN", "")
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0"))

    SERVER_NAME = os.getenv("SERVER_NAME")
    PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")

    # --- Payments: Paystack ---
    PAYSTACK_PUBLIC_KEY = os.getenv("PAYSTACK_PUBLIC_KEY", "")
    PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY", "")
    PAYSTACK_API_BASE = os.getenv("PAYSTACK_API_BASE", "https://api.paystack.co")
    PAYSTACK_SCRIPT_URL = os.getenv("PAYSTACK_SCRIPT_URL", "https://js.paystack.co/v1/inline.js")
    PAYSTACK_SCRIPT_TIMEOUT = float(os.getenv("PAYSTACK_SCRIPT_TIMEOUT", "30"))  # network
    PAYSTACK_ENTRY_TIMEOUT = float(os.getenv("PAYSTACK_ENTRY_TIMEOUT", "5"))     # PaystackPop present
    PAYSTACK_CALLBACK_URL = os.getenv("PAYSTACK_CALLBACK_URL")  # e.g. "https://your-domain.com/payments/callback"

    # Redirect-flow confirmation (2s x 15 = 30s deadline)
    PAYMENT_CONFIRM_INTERVAL = float(os.getenv("PAYMENT_CONFIRM_INTERVAL", "2"))
    PAYMENT_CONFIRM_MAX_ATTEMPTS = int(os.getenv("PAYMENT_CONFIRM_MAX_ATTEMPTS", "15"))
    # the callback request itself waits only this many attempts; the page polls for the rest
    PAYMENT_CALLBACK_MAX_ATTEMPTS = int(os.getenv("PAYMENT_CALLBACK_MAX_ATTEMPTS", "2"))
    PAYSTACK_SESSION_TTL = float(os.getenv("PAYSTACK_SESSION_TTL", "1800"))  # abandoned popups

    # --- Marketplace money rules ---
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "NGN")
    COMMISSION_RATE = os.getenv("COMMISSION_RATE", "0.20")
    WITHDRAWAL_MINIMUM = os.getenv("WITHDRAWAL_MINIMUM", "2000")

    # --- Rate limiting (token bucket per actor) ---
    RATE_LIMIT_CAPACITY = int(os.getenv("RATE_LIMIT_CAPACITY", "5"))
    RATE_LIMIT_REFILL_PER_SEC = float(os.getenv("RATE_LIMIT_REFILL_PER_SEC", str(5 / 60)))
    # public payment-return endpoints, per client address
    RATE_LIMIT_PUBLIC_CAPACITY = int(os.getenv("RATE_LIMIT_PUBLIC_CAPACITY", "30"))
    RATE_LIMIT_PUBLIC_REFILL_PER_SEC = float(os.getenv("RATE_LIMIT_PUBLIC_REFILL_PER_SEC", "0.5"))

    # --- Security cookies (recommended for prod) ---
    SESSION_COOKIE_SECURE = _as_bool(os.getenv("SESSION_COOKIE_SECURE", "1"))
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "Lax")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    MAIL_DEFAULT_SENDER = "noreply@gigescrow.test"
    SERVER_NAME = "localhost"
    PREFERRED_URL_SCHEME = "http"
    SESSION_COOKIE_SECURE = False
    LOG_DIR = os.getenv("TEST_LOG_DIR", "logs")
    PAYSTACK_PUBLIC_KEY = "pk_test_0000000000000000000000000000000000000000"
    PAYSTACK_SECRET_KEY = "sk_test_0000000000000000000000000000000000000000"
    PAYMENT_CONFIRM_INTERVAL = 0.0
    PAYMENT_CONFIRM_MAX_ATTEMPTS = 3
    RATE_LIMIT_CAPACITY = 100
