import os
from datetime import timedelta
from decimal import Decimal


def normalize_database_url(raw_url: str) -> str:
    if raw_url.startswith("postgres://"):
        return raw_url.replace("postgres://", "postgresql://", 1)
    return raw_url


class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-unsafe-key")
    SQLALCHEMY_DATABASE_URI = normalize_database_url(
        os.getenv("DATABASE_URL", "sqlite:///instance/servicehub.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_DEFAULT = os.getenv("RATELIMIT_DEFAULT", "200 per day;80 per hour")

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"
    PERMANENT_SESSION_LIFETIME = timedelta(days=int(os.getenv("SESSION_DAYS", "7")))
    REMEMBER_COOKIE_HTTPONLY = True
    SENTRY_DSN = os.getenv("SENTRY_DSN")

    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:5000")
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "XAF")
    PAYMENT_EXPIRY_MINUTES = int(os.getenv("PAYMENT_EXPIRY_MINUTES", "15"))
    PAYMENT_TIMEOUT_SECONDS = int(os.getenv("PAYMENT_TIMEOUT_SECONDS", "300"))
    PAYMENT_RETENTION_DAYS = int(os.getenv("PAYMENT_RETENTION_DAYS", "30"))
    MIN_PAYMENT_AMOUNT = Decimal(os.getenv("MIN_PAYMENT_AMOUNT", "100"))
    MAX_PAYMENT_AMOUNT = Decimal(os.getenv("MAX_PAYMENT_AMOUNT", "1000000"))
    MIN_WITHDRAWAL_AMOUNT = Decimal(os.getenv("MIN_WITHDRAWAL_AMOUNT", "1000"))
    MAX_WITHDRAWAL_AMOUNT = Decimal(os.getenv("MAX_WITHDRAWAL_AMOUNT", "500000"))
    # Caps on pending plus completed withdrawals in the current UTC day and month.
    DAILY_WITHDRAWAL_LIMIT = Decimal(os.getenv("DAILY_WITHDRAWAL_LIMIT", "1000000"))
    MONTHLY_WITHDRAWAL_LIMIT = Decimal(os.getenv("MONTHLY_WITHDRAWAL_LIMIT", "5000000"))
    COMMISSION_RATE = Decimal(os.getenv("COMMISSION_RATE", "0.10"))

    GATEWAY_TIMEOUT_SECONDS = int(os.getenv("GATEWAY_TIMEOUT_SECONDS", "30"))

    MTN_BASE_URL = os.getenv("MTN_BASE_URL", "https://sandbox.momodeveloper.mtn.com")
    MTN_SUBSCRIPTION_KEY = os.getenv("MTN_SUBSCRIPTION_KEY")
    MTN_API_USER = os.getenv("MTN_API_USER")
    MTN_API_KEY = os.getenv("MTN_API_KEY")
    MTN_TARGET_ENVIRONMENT = os.getenv("MTN_TARGET_ENVIRONMENT", "sandbox")
    # The MTN sandbox only accepts EUR. Amounts are sent unconverted, so a 25000 XAF
    # booking becomes a 25000 EUR sandbox request; use small test bookings there.
    MTN_CURRENCY = os.getenv("MTN_CURRENCY", "EUR")

    ORANGE_BASE_URL = os.getenv("ORANGE_BASE_URL", "https://api-s1.orange.cm")
    ORANGE_CLIENT_ID = os.getenv("ORANGE_CLIENT_ID")
    ORANGE_CLIENT_SECRET = os.getenv("ORANGE_CLIENT_SECRET")
    ORANGE_MERCHANT_KEY = os.getenv("ORANGE_MERCHANT_KEY")
    ORANGE_CHANNEL_MSISDN = os.getenv("ORANGE_CHANNEL_MSISDN")
    ORANGE_PIN = os.getenv("ORANGE_PIN")


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    SESSION_COOKIE_SECURE = False


class ProductionConfig(BaseConfig):
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True
    MTN_TARGET_ENVIRONMENT = os.getenv("MTN_TARGET_ENVIRONMENT", "mtncameroon")
    MTN_CURRENCY = os.getenv("MTN_CURRENCY", "XAF")


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    PUBLIC_BASE_URL = "https://api.test.local"
    MTN_SUBSCRIPTION_KEY = "test-subscription-key"
    MTN_API_USER = "test-api-user"
    MTN_API_KEY = "test-api-key"
    ORANGE_CLIENT_ID = "test-client-id"
    ORANGE_CLIENT_SECRET = "test-client-secret"
    ORANGE_MERCHANT_KEY = "test-merchant-key"
    ORANGE_CHANNEL_MSISDN = "691234567"
    ORANGE_PIN = "0000"


config_by_env = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
