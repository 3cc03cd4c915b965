from pydantic_settings import BaseSettings
from typing import Optional, List


def _parse_allowed_origins(v: str) -> List[str]:
    """Parse comma-separated origins string; strip whitespace; keep non-empty."""
    if not v or not v.strip():
        return []
    return [o.strip() for o in v.split(",") if o.strip()]


_DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "postgresql://postgres:postgres@db:5432/coop"

    # CORS: comma-separated extra origins for production (e.g. https://app.coophub.ng)
    # Default localhost origins are always included.
    ALLOWED_ORIGINS_EXTRA: str = ""

    def get_allowed_origins(self) -> List[str]:
        """Return CORS allowed origins: default localhost + ALLOWED_ORIGINS_EXTRA."""
        return _DEFAULT_CORS_ORIGINS + _parse_allowed_origins(self.ALLOWED_ORIGINS_EXTRA)

    # Auth (tokens are issued by the main API; we only verify them)
    SECRET_KEY: str = "supersecret_jwt_key_change_in_production"
    ALGORITHM: str = "HS256"

    # Paystack
    PAYSTACK_SECRET_KEY: Optional[str] = None  # Also the webhook signing key
    PAYSTACK_PUBLIC_KEY: Optional[str] = None
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_CURRENCY: str = "NGN"
    PAYSTACK_TIMEOUT_SECONDS: float = 30.0

    # Frontend
    FRONTEND_URL: str = "http://localhost:3000"
    PAYMENT_CALLBACK_PATH: str = "/subscription/callback"  # Used when the caller sends no callback URL

    # Billing
    FREE_PLAN_NAME: str = "free"
    BILLING_TIMEZONE: str = "UTC"  # Calendar-month boundary for "loans this month"
    FREE_PLAN_PERIOD_END: str = "2099-12-31"  # Free subscriptions never reach a billing boundary

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


settings = Settings()
