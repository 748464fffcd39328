import os
from decimal import Decimal

from dotenv import load_dotenv

# Load .env from the project root
load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./storefront.db")
ENV = os.getenv("ENVIRONMENT", os.getenv("ENV", "dev"))
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_STAGE = ENV_NORMALIZED in {"stage", "staging"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}
IS_TEST = ENV_NORMALIZED == "test"

STORE_NAME = os.getenv("STORE_NAME", "Sound Wave Lab").strip()
APP_URL = os.getenv("APP_URL", "http://localhost:3000").strip().rstrip("/")

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

# Auth (JWT issued by the identity provider)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "CHANGE_ME_SUPER_SECRET")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Guest orders created before access tokens were issued
GUEST_LEGACY_ACCESS_ENABLED = _env_flag("GUEST_LEGACY_ACCESS_ENABLED", "1")

PAYMENT_WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET", "").strip()

# Rate limit
REDIS_URL = os.getenv("REDIS_URL", "").strip()
RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "redis" if REDIS_URL else "").strip().lower()
RATE_LIMIT_BUDGETS = {
    "checkout": os.getenv("RATE_LIMIT_CHECKOUT", "10/60"),
    "coupon": os.getenv("RATE_LIMIT_COUPON", "20/60"),
    "order_lookup": os.getenv("RATE_LIMIT_ORDER_LOOKUP", "30/60"),
}

# Email
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "").strip()
RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails").strip()
EMAIL_FROM = os.getenv("EMAIL_FROM", f"{STORE_NAME} <ordini@example.com>").strip()

# Checkout
SHIPPING_COST = Decimal(os.getenv("SHIPPING_COST", "4.99"))
FREE_SHIPPING_THRESHOLD = Decimal(os.getenv("FREE_SHIPPING_THRESHOLD", "50.00"))
TAX_RATE_PERCENT = Decimal(os.getenv("TAX_RATE_PERCENT", "0"))
ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "SWL").strip().upper() or "SWL"
