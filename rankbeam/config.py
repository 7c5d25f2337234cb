from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = Field(default="RankBeam License Server", alias="APP_NAME")
    bind_addr: str = Field(default=":8080", alias="LICENSE_BIND_ADDR")
    db_path: str = Field(default="data/licenses.db", alias="LICENSE_DB_PATH")
    installer_token: str | None = Field(default=None, alias="LICENSE_API_TOKEN")
    license_expiry_days: int = Field(default=365, ge=0, alias="LICENSE_EXPIRY_DAYS")
    paystack_webhook_secret: str | None = Field(default=None, alias="PAYSTACK_WEBHOOK_SECRET")
    paystack_license_days: int = Field(default=30, ge=1, alias="PAYSTACK_LICENSE_DAYS")
    paystack_require_delivery: bool = Field(default=False, alias="PAYSTACK_REQUIRE_DELIVERY")
    read_timeout_seconds: float = Field(default=15.0, gt=0, alias="READ_TIMEOUT_SECONDS")
    write_timeout_seconds: float = Field(default=15.0, gt=0, alias="WRITE_TIMEOUT_SECONDS")
    idle_timeout_seconds: float = Field(default=60.0, gt=0, alias="IDLE_TIMEOUT_SECONDS")
    shutdown_timeout_seconds: float = Field(default=15.0, gt=0, alias="SHUTDOWN_TIMEOUT_SECONDS")
    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int = Field(default=465, alias="SMTP_PORT")
    smtp_username: str | None = Field(default=None, alias="SMTP_USERNAME")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_from: str | None = Field(default=None, alias="SMTP_FROM")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


@lru_cache
def get_settings() -> Settings:
    return Settings()
