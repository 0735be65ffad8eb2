"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.04.00"

    # Public base URL (magic links, Twilio webhooks, email links)
    APP_URL: str = "http://localhost:8000"

    # Proxy/Load Balancer Settings
    # Set to True when running behind nginx/Cloudflare to trust X-Forwarded-For
    TRUST_PROXY_HEADERS: bool = False

    # Database
    DATABASE_URL: str

    # Client portal session cookie signing (HMAC-SHA256)
    CLIENT_SESSION_SECRET: str = ""
    CLIENT_SESSION_DAYS: int = 30

    # Agency login sessions
    AGENCY_SESSION_DAYS: int = 30
    AGENCY_MAGIC_LINK_HOURS: int = 24

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Scheduled endpoints (/api/cron/*), sent as a Bearer token
    CRON_SECRET: str = ""

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    # Twilio
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_PHONE_NUMBER: str = ""  # Platform number (OTP fallback, owner notices)

    # Email (Resend)
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "LeadRelay <notifications@leadrelay.app>"

    # Google Business Profile OAuth
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""

    # ElevenLabs voice
    ELEVENLABS_API_KEY: str = ""

    # Token Encryption (Google OAuth tokens at rest)
    FERNET_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute)
    RATE_LIMIT_AUTH: int = 5  # Login / OTP attempts
    RATE_LIMIT_API: int = 60  # General API

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def app_url(self) -> str:
        """APP_URL without a trailing slash."""
        return self.APP_URL.rstrip("/")

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies only in production."""
        return self.ENV != "dev"

    @property
    def twilio_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN)


settings = Settings()
