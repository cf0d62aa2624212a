from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized configuration.

    Loaded from:
    - environment variables (e.g. OPENWEATHER_API_KEY, DATABASE_URL)
    - .env file (if present)
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Required key (the app should fail fast if missing)
    openweather_api_key: str
    openweather_base_url: str = "https://api.openweathermap.org"

    app_name: str = "Resilient Weather Service"
    app_version: str = "1.0.0"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # PostgreSQL in production, e.g. postgresql+psycopg2://user:pass@db/weatherdb
    database_url: str = "sqlite:///weather_app.sqlite3"

    # Forecast window and fallback tiers
    forecast_days: int = 3
    fresh_window_minutes: int = 30
    data_age_threshold_minutes: int = 1440
    fallback_enabled: bool = True
    emergency_fallback_enabled: bool = True

    # Upstream call guard
    http_timeout_s: float = 10.0
    connect_timeout_s: float = 5.0
    retry_max_attempts: int = 3
    retry_min_wait_s: float = 0.5
    retry_max_wait_s: float = 4.0
    circuit_failure_threshold: int = 5
    circuit_reset_timeout_s: float = 30.0
    rate_limit_per_second: float = 1.0
    rate_limit_burst: int = 60
    rate_limit_timeout_s: float = 5.0


settings = Settings()
