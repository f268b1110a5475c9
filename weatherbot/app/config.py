from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "tmpweather"
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    # Full DSN wins over the individual postgres_* fields when set.
    db_dsn: str | None = None
    db_max_conns: int = 5
    db_ping_timeout_seconds: float = 0.3

    openweathermap_api_token: str | None = None
    forecast_base_url: str = "https://api.openweathermap.org"
    forecast_timeout_seconds: float = 1.0

    telegram_bot_token: str | None = None
    telegram_base_url: str = "https://api.telegram.org"
    telegram_poll_timeout: int = 60
    telegram_retry_seconds: float = 5.0

    http_host: str = "0.0.0.0"
    http_port: int = 8080
    api_key: str | None = None
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    @property
    def postgres_dsn(self) -> str:
        if self.db_dsn:
            return self.db_dsn
        return (
            f"postgresql://{self.postgres_user}:"
            f"{self.postgres_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
