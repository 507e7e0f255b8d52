from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ENV: Literal["dev", "prod", "test"] = "prod"
    DEBUG: bool = False

    # App
    APP_NAME: str = "amusefit-verify"
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8000
    FRONTEND_ORIGIN: str = "http://localhost:5000"

    # Code storage
    CODE_STORE_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: str | None = None  # e.g., redis://localhost:6379/0 (required for the redis backend)

    # Verification codes
    EMAIL_CODE_TTL_SEC: int = 10 * 60
    SMS_CODE_TTL_SEC: int = 5 * 60
    CODE_MAX_ATTEMPTS: int = 3
    CODE_RESEND_COOLDOWN_SEC: int = 60  # per (contact, purpose)
    CODE_SWEEP_INTERVAL_SEC: int = 10 * 60

    # Delivery
    PROVIDER_TIMEOUT_SEC: float = 8.0
    # None -> on for dev/test, off for prod
    CONSOLE_DELIVERY_FALLBACK: bool | None = None

    # Rate limits (per IP, 10s fixed window)
    RL_CODE_REQ_PER_IP_10S: int = 5
    RL_CODE_VERIFY_PER_IP_10S: int = 10
    # X-Forwarded-For is honored only when the direct peer is one of these
    TRUSTED_PROXY_IPS: list[str] = []

    # Logging / Observability
    LOG_LEVEL: str = "INFO"
    METRICS_ENABLED: bool = True
    REQUEST_ID_HEADER: str = "X-Request-ID"

    # Email sender identity (shared by the API-based email providers)
    EMAIL_FROM_ADDRESS: str = "noreply@amusefit.co.kr"
    EMAIL_FROM_NAME: str = "AmuseFit"

    # Email providers
    BREVO_API_KEY: str | None = None
    RESEND_API_KEY: str | None = None
    RESEND_FROM: str = "AmuseFit <onboarding@resend.dev>"
    SENDGRID_API_KEY: str | None = None
    MAILGUN_API_KEY: str | None = None
    MAILGUN_DOMAIN: str | None = None
    EMAILJS_SERVICE_ID: str | None = None
    EMAILJS_TEMPLATE_ID: str | None = None
    EMAILJS_PUBLIC_KEY: str | None = None
    GMAIL_USER: str | None = None
    GMAIL_APP_PASSWORD: str | None = None
    OUTLOOK_USER: str | None = None
    OUTLOOK_PASSWORD: str | None = None

    # SMS providers
    NHN_SMS_APP_KEY: str | None = None
    NHN_SMS_SECRET_KEY: str | None = None
    NHN_SMS_SENDER_NUMBER: str = "15448080"
    TOAST_SMS_APP_KEY: str | None = None      # older name for the same NHN Cloud account
    TOAST_SMS_SECRET_KEY: str | None = None
    TOAST_SMS_SEND_NUMBER: str | None = None
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_PHONE_NUMBER: str | None = None
    ALIGO_API_KEY: str | None = None
    ALIGO_USER_ID: str | None = None
    ALIGO_SENDER_NUMBER: str = "15448080"

    @model_validator(mode="after")
    def _redis_backend_needs_url(self):
        if self.CODE_STORE_BACKEND == "redis" and not self.REDIS_URL:
            raise ValueError("REDIS_URL is required when CODE_STORE_BACKEND=redis")
        return self

    @property
    def console_fallback_enabled(self) -> bool:
        if self.CONSOLE_DELIVERY_FALLBACK is not None:
            return self.CONSOLE_DELIVERY_FALLBACK
        return self.ENV != "prod"

    @property
    def dev_tools_enabled(self) -> bool:
        return self.ENV != "prod"


def get_settings() -> Settings:
    # slightly faster singleton
    global _SETTINGS_SINGLETON
    try:
        return _SETTINGS_SINGLETON  # type: ignore[name-defined]
    except NameError:
        _SETTINGS_SINGLETON = Settings()  # type: ignore[assignment]
        return _SETTINGS_SINGLETON
