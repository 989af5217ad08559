from pydantic_settings import BaseSettings
from typing import Optional, List


def _parse_csv(v: str) -> List[str]:
    """Parse comma-separated string; strip whitespace; keep non-empty."""
    if not v or not v.strip():
        return []
    return [o.strip() for o in v.split(",") if o.strip()]


_DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

# Converge webhook source ranges (demo + production). Loopback is allowed for local testing.
_DEFAULT_ELAVON_IP_PREFIXES = [
    "198.241.162.",
    "198.241.163.",
    "64.207.224.",
    "64.207.225.",
    "64.207.226.",
    "64.207.227.",
    "127.0.0.1",
    "::1",
]


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql://postgres:postgres@db:5432/prow"

    # CORS: comma-separated extra origins for production
    ALLOWED_ORIGINS_EXTRA: str = ""

    def get_allowed_origins(self) -> List[str]:
        """Return CORS allowed origins: default localhost + ALLOWED_ORIGINS_EXTRA."""
        return _DEFAULT_CORS_ORIGINS + _parse_csv(self.ALLOWED_ORIGINS_EXTRA)

    # Auth (tokens are issued by the web app; we only verify them)
    SECRET_KEY: str = "supersecret_jwt_key_change_in_production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    CHECKOUT_TOKEN_EXPIRE_MINUTES: int = 240  # Return-URL token; outlives the hosted page

    # Frontend
    FRONTEND_URL: str = "http://localhost:3000"  # Base URL for billing redirects

    # Billing
    FEATURE_BILLING_ENABLED: bool = False
    PAYMENT_GATEWAY: str = "elavon"
    HOSTED_SESSION_TTL_MINUTES: int = 30  # Advisory only; Converge enforces its own timeout

    # Elavon Converge
    ELAVON_MERCHANT_ID: Optional[str] = None
    ELAVON_USER_ID: Optional[str] = None
    ELAVON_PIN: Optional[str] = None
    ELAVON_API_URL: str = "https://api.demo.convergepay.com/VirtualMerchantDemo"
    ELAVON_HOSTED_URL: str = "https://www.convergepay.com/hosted-payments/"
    ELAVON_TIMEOUT_SECONDS: float = 30.0
    ELAVON_STRICT_INVOICE_MATCH: bool = False  # Callback must carry a matching invoice number
    ELAVON_STRICT_CARD_MATCH: bool = False  # Dedup saved cards by last4 + brand + expiry
    ELAVON_WEBHOOK_IP_PREFIXES: str = ""  # Comma-separated; empty = built-in Converge ranges

    def get_webhook_ip_prefixes(self) -> List[str]:
        return _parse_csv(self.ELAVON_WEBHOOK_IP_PREFIXES) or list(_DEFAULT_ELAVON_IP_PREFIXES)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        # Environment variables win over the .env file


settings = Settings()
