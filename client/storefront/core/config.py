from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from STOREFRONT_* environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    app_name: str = "Storefront Client"
    app_version: str = "0.1.0"
    environment: str = "local"

    api_base_url: str = "http://localhost:8000/api"
    request_timeout_seconds: float = 10.0

    # Unset keeps session state in memory only.
    storage_path: str | None = None

    max_line_quantity: int = 10

    json_logs: bool = False
    log_level: str = "INFO"

    signin_path: str = "/signin.html"
    customer_home_path: str = "/"
    seller_home_path: str = "/seller-dashboard.html"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
