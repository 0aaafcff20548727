from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "Notifier"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    LOG_LEVEL: str = "info"
    PUBLIC_PAGE_URL: str = "http://localhost:5173"

    # Shared secret for cron/job trigger endpoints
    JOBS_API_KEY: str = ""
    # Signs subscription manage links embedded in reminder emails
    MANAGE_TOKEN_SECRET: str = "<change-me-manage-token-signing-secret>"

    # Database
    DATABASE_URL: str = "sqlite:///./notifier.db"

    # Redis (Celery broker and lease service)
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Email (Resend)
    RESEND_API_KEY: str = ""
    RESEND_API_URL: str = "https://api.resend.com"
    EMAIL_FROM: str = "Notifier <noreply@example.com>"

    # SMS (Bird)
    ENABLE_SMS: bool = False
    BIRD_ACCESS_KEY: str = ""
    BIRD_WORKSPACE_ID: str = ""
    BIRD_CHANNEL_ID: str = ""
    BIRD_API_URL: str = "https://api.bird.com"
    # Markets where payment-critical reminders prefer SMS over email
    SMS_PREFERRED_COUNTRIES: Union[str, List[str]] = ["NG", "KE", "ZA", "GH", "TZ", "UG"]

    # Reminder engine
    REMINDER_BATCH_SIZE: int = 100
    REMINDER_MAX_ATTEMPTS: int = 3
    REMINDER_RETRY_DELAY_MINUTES: int = 60
    REMINDER_SCHEDULE_LEASE_TTL_MS: int = 10_000
    REMINDER_PROCESS_LEASE_TTL_MS: int = 60_000

    @field_validator("SMS_PREFERRED_COUNTRIES", mode="before")
    def assemble_sms_countries(cls, v: Union[str, List[str]]) -> List[str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip().upper() for i in v.split(",") if i.strip()]
        return v

    @property
    def REDIS_URL(self) -> str:
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def sms_configured(self) -> bool:
        return bool(
            self.ENABLE_SMS
            and self.BIRD_ACCESS_KEY
            and self.BIRD_WORKSPACE_ID
            and self.BIRD_CHANNEL_ID
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()
