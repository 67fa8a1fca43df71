"""Application configuration loaded from environment variables via pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Portfolio tracker configuration.

    All fields are loaded from environment variables prefixed with ``PORTFOLIO_``.

    Example::

        export PORTFOLIO_USER_ID="d1JkQ0m3cXh2"
        export PORTFOLIO_QUOTE_API_BASE_URL="https://quotes.example.com/api"
        export PORTFOLIO_STORE_BACKEND=sheets
        export PORTFOLIO_GOOGLE_SHEETS_ID="1BxiMVs0XRA5nFMdKvBdBZjgmUUqptlbs74OgVE2upms"
    """

    model_config = SettingsConfigDict(
        env_prefix="PORTFOLIO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    user_id: str = Field(
        ...,
        description="ID of the signed-in user whose portfolio tree is read and written",
    )
    quote_api_base_url: str = Field(
        default="http://localhost:8000/api",
        description="Base URL of the quote/FX API exposing /stock-price and /stock-price/chart",
    )
    http_timeout_seconds: float = Field(
        default=20.0,
        description="Timeout applied to every quote API request",
    )
    default_usd_krw: float = Field(
        default=1450.0,
        description="USD/KRW rate used when no live or stored rate is available",
    )
    refresh_interval_seconds: int = Field(
        default=60,
        description="Seconds between two quote refresh passes",
    )
    run_once: bool = Field(
        default=False,
        description="When True run a single refresh pass and exit",
    )
    store_backend: Literal["memory", "sheets"] = Field(
        default="sheets",
        description="Document store implementation backing the portfolio tree",
    )
    google_sheets_id: str = Field(
        default="",
        description="The ID of the Google Spreadsheet holding the document tree",
    )
    service_account_json_path: str = Field(
        default="service-account.json",
        description="Path to the Google service account credentials JSON file",
    )
    stock_list_kr_path: str = Field(
        default="stock_list_kr.csv",
        description="CSV with Code,Name columns for Korean-market instruments",
    )
    stock_list_us_path: str = Field(
        default="stock_list_us.csv",
        description="CSV with Code,Name columns for US-market instruments",
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level written by the stderr log sink",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance."""
    return Settings()  # type: ignore[call-arg]
