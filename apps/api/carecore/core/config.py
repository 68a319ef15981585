"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.03.00"

    # Proxy/Load Balancer Settings
    # Set to True when running behind nginx/Cloudflare to trust X-Forwarded-For
    TRUST_PROXY_HEADERS: bool = False

    # Database
    DATABASE_URL: str

    # Identity provider bearer tokens (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_AUDIENCE: str = "authenticated"

    # Origin allow-list (comma-separated, scheme://host[:port])
    ALLOWED_ORIGINS: str = "http://localhost:3000"
    # Native device requests carry no Origin header
    ALLOW_MISSING_ORIGIN: bool = True

    # Rate limit counters (shared across instances)
    REDIS_URL: str = ""

    # Rate Limiting
    RATE_LIMIT_API: int = 120  # General API (requests per minute)
    RATE_LIMIT_WINDOW_MINUTES: int = 5
    RATE_LIMIT_PAIR_INIT: int = 20
    RATE_LIMIT_PAIR_CLAIM: int = 50
    RATE_LIMIT_CLAIM_ACCESS: int = 30
    RATE_LIMIT_MISSED_CALL_CHECK: int = 10
    RATE_LIMIT_PROCESS_EVENT: int = 30
    RATE_LIMIT_CALL_STATUS: int = 60  # Per call session

    # Pairing
    PAIRING_TTL_MINUTES: int = 10

    # Push gateway (Notification Dispatcher transport)
    PUSH_GATEWAY_URL: str = ""  # Empty = log-only dispatcher
    PUSH_GATEWAY_TOKEN: str = ""
    PUSH_TIMEOUT_SECONDS: float = 5.0

    # Call provider webhook
    CALL_PROVIDER_WEBHOOK_SECRET: str = ""
    CALL_PROVIDER_WEBHOOK_TOLERANCE_SECONDS: int = 1800  # Reject stale (>30m)

    # Service-to-service calls (call status updates, alert events)
    INTERNAL_SECRET: str = ""

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    @property
    def allowed_origins_list(self) -> list[str]:
        """Parse ALLOWED_ORIGINS into a list."""
        return [o.strip().rstrip("/") for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets


settings = Settings()
