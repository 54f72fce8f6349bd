from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "phone-login"

    CORS_ORIGINS: str = "http://localhost:3000"

    DATABASE_URL: str = "sqlite+pysqlite:///./phone_login.db"
    REDIS_URL: str = "redis://localhost:6379/0"

    OTP_EXPIRY_MINUTES: int = 5
    OTP_MAX_ATTEMPTS: int = 5
    OTP_COOLDOWN_SECONDS: int = 15
    OTP_EXPOSE_REMAINING_ATTEMPTS: bool = True
    OTP_BRAND_NAME: str = "themanipalmarketplace"
    OTP_MESSAGE_TEMPLATE: str = "Your OTP for {brand} is: {code}. Will expire in {minutes} minutes."
    OTP_DEV_LOG_CODES: bool = False
    OTP_CLEANUP_INTERVAL_SECONDS: float = 3600.0

    # Per-IP throttle in front of both endpoints, independent of the per-phone cooldown.
    REQUEST_RATE_LIMIT_WINDOW_SECONDS: int = 300
    OTP_SEND_IP_LIMIT: int = 8
    OTP_VERIFY_IP_LIMIT: int = 20

    NOTIFIER_PROVIDER: str = "console"  # console | evolution
    EVOLUTION_API_URL: str = ""
    EVOLUTION_API_KEY: str = ""
    EVOLUTION_INSTANCE_NAME: str = ""
    EVOLUTION_VERIFY_TLS: bool = True
    NOTIFIER_TIMEOUT_SECONDS: float = 10.0

    IDENTITY_PROVIDER: str = "local"  # local | gotrue
    IDENTITY_URL: str = ""
    IDENTITY_SERVICE_KEY: str = ""
    IDENTITY_ANON_KEY: str = ""
    IDENTITY_JWT_SECRET: str = "change_me_identity"
    IDENTITY_TIMEOUT_SECONDS: float = 10.0
    IDENTITY_PAGE_SIZE: int = 200

    SESSION_STRATEGY: str = "ephemeral_credential"  # ephemeral_credential | signed_token
    SESSION_TTL_SECONDS: int = 3600

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
