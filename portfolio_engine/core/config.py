"""
Application configuration.

Loads settings from environment variables and .env file.
All configuration is centralized here; no scattered magic strings.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment.

    Attributes:
        project_name: Display name for the API.
        version: Current API version string.
        debug: Enable debug mode. Must be False in production.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        rate_limit_default: Default rate limit for all endpoints.
        rate_limit_heavy: Rate limit for endpoints that call model providers.
        database_url: SQLAlchemy URL. When unset, in-memory stores are used.
        optimization_cool_off_hours: Window after an applied optimization
            during which a new one cannot be requested.
        optimization_history_default_days: Default lookback of the history query.
        market_timezone: IANA zone the exchange hours are expressed in.
        market_open_time: Session open, "HH:MM" local exchange time.
        market_close_time: Session close, "HH:MM" local exchange time.
        apollo_base_url: Base URL of the Apollo prediction service.
        ignis_base_url: Base URL of the Ignis prediction service.
        gaia_base_url: Base URL of the Gaia optimization service.
        model_request_timeout_seconds: Timeout applied to every model call.
        scheduler_enabled: Start the background scheduler with the app.
        settlement_interval_seconds: Period of the pending settlement sweep.
        valuation_refresh_interval_seconds: Period of the holdings revaluation.
        prediction_refresh_hour: Hour (exchange time) of the daily prediction refresh.
        prediction_symbols: Comma separated symbols refreshed by the scheduler.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    project_name: str = "Portfolio Engine"
    version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    rate_limit_default: str = "60/minute"
    rate_limit_heavy: str = "10/minute"

    database_url: Optional[str] = None

    optimization_cool_off_hours: int = 24
    optimization_history_default_days: int = 30

    market_timezone: str = "America/New_York"
    market_open_time: str = "09:30"
    market_close_time: str = "16:00"

    apollo_base_url: str = "http://localhost:8001"
    ignis_base_url: str = "http://localhost:8002"
    gaia_base_url: str = "http://localhost:8003"
    model_request_timeout_seconds: float = 30.0

    scheduler_enabled: bool = False
    settlement_interval_seconds: int = 60
    valuation_refresh_interval_seconds: int = 900
    prediction_refresh_hour: int = 17
    prediction_symbols: str = ""

    def get_prediction_symbols(self) -> list[str]:
        """Return the configured prediction symbols as a clean list."""
        return [s.strip().upper() for s in self.prediction_symbols.split(",") if s.strip()]


settings = Settings()
