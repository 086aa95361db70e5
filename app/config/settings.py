from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # Database
    DB_USER: str = Field("desk_admin")
    DB_PASSWORD: str = Field("DeskPass2024")
    DB_NAME: str = Field("support_desk")
    DB_HOST: str = Field("postgres")
    DB_PORT: int = Field(5432)
    # Full SQLAlchemy URL, overrides the DB_* parts when set (e.g. sqlite+aiosqlite for local runs)
    DATABASE_URL: str | None = Field(None)

    # Redis
    REDIS_HOST: str = Field("redis")
    REDIS_PORT: int = Field(6379)
    REDIS_PASSWORD: str | None = Field(None)

    # App
    API_HOST: str = Field("0.0.0.0")
    API_PORT: int = Field(8000)
    DEBUG: bool = Field(False)
    JWT_SECRET_KEY: str = Field("supersecret")
    JWT_ALGORITHM: str = Field("HS256")
    JWT_EXP_DAYS: int = Field(7)
    CORS_ORIGIN_REGEX: str = Field(r"http://(localhost|127\.0\.0\.1)(:\d+)?")

    # Video room provider (Daily REST API)
    DAILY_API_KEY: str | None = Field(None)
    DAILY_DOMAIN: str | None = Field(None)
    DAILY_API_URL: str = Field("https://api.daily.co/v1")

    # Email (Resend REST API)
    EMAIL_API_KEY: str | None = Field(None)
    EMAIL_FROM: str = Field("Support Desk <no-reply@support-desk.local>")
    EMAIL_API_URL: str = Field("https://api.resend.com/emails")
    DASHBOARD_URL: str = Field("http://localhost:3000")

    # Push notifications (FCM legacy HTTP API)
    FCM_SERVER_KEY: str | None = Field(None)
    FCM_API_URL: str = Field("https://fcm.googleapis.com/fcm/send")

    # Call lifecycle tuning
    ROOM_EXPIRY_MINUTES: int = Field(120)
    STANDARD_CALL_DURATION_MINUTES: int = Field(60)
    EXPIRY_SWEEP_INTERVAL_SEC: int = Field(300)
    OVERRUN_SWEEP_INTERVAL_SEC: int = Field(60)
    SWEEPER_ENABLED: bool = Field(True)

    # Prometheus exporter port (0 = disabled)
    METRICS_PORT: int = Field(0)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_file_encoding="utf-8"
    )

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


settings = Settings()
