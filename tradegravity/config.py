from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ComtradeConfig(BaseModel):
    """UN Comtrade provider configuration.

    Constructing this model directly never reads the environment; use
    ``ComtradeSettings`` for the env-backed variant.
    """

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(default="https://comtradeapi.un.org/")
    data_path: str = Field(default="data/v1/get/{type}/{freq}/{cl}")
    dataset: str = Field(default="", description="Optional path segment appended to the data URL")
    reporters_url: str = Field(default="https://comtradeapi.un.org/files/v1/app/reference/Reporters.json")
    partners_url: str = Field(default="https://comtradeapi.un.org/files/v1/app/reference/partnerAreas.json")
    primary_key: str | None = Field(default=None)
    secondary_key: str | None = Field(default=None)
    api_key_param: str = Field(default="subscription-key")
    api_key_header: str = Field(default="Ocp-Apim-Subscription-Key")
    type_code: str = Field(default="C")
    frequency: str = Field(default="A")
    classification: str = Field(default="HS")
    commodity: str = Field(default="TOTAL")
    flow_export: str = Field(default="X")
    flow_import: str = Field(default="M")
    format: str = Field(default="json")
    max_records: int = Field(default=50000)
    lookback_years: int = Field(default=5)
    rate_limit_per_sec: float = Field(default=2)
    rate_limit_burst: int = Field(default=2)
    timeout_seconds: float = Field(default=30)
    max_retries: int = Field(default=3)
    user_agent: str = Field(default="TradeGravity/0.1")
    value_multiplier: float = Field(default=1.0)
    allow_iso3_fallback: bool = Field(default=True)

    @field_validator("max_retries", "lookback_years")
    @classmethod
    def non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v


class WitsConfig(BaseModel):
    """World Bank WITS provider configuration (SDMX trade statistics)."""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(default="https://wits.worldbank.org/API/V1/")
    trade_path: str = Field(
        default=(
            "SDMX/V21/datasource/tradestats-trade/reporter/{reporter}/year/{year}"
            "/partner/{partner}/product/{product}/indicator/{indicator}"
        )
    )
    reporters_path: str = Field(default="wits/datasource/tradestats-trade/country/ALL")
    dataavail_path: str = Field(
        default="wits/datasource/tradestats-trade/dataavailability/country/{reporter}/indicator/{indicator}"
    )
    api_key: str | None = Field(default=None)
    secondary_key: str | None = Field(default=None)
    api_key_param: str = Field(default="token")
    format_param: str = Field(default="format")
    format_value: str = Field(default="JSON")
    rate_limit_per_sec: float = Field(default=5)
    rate_limit_burst: int = Field(default=5)
    timeout_seconds: float = Field(default=20)
    max_retries: int = Field(default=3)
    user_agent: str = Field(default="TradeGravity/0.1")
    indicator_export: str = Field(default="XPRT-TRD-VL")
    indicator_import: str = Field(default="MPRT-TRD-VL")
    product_code: str = Field(default="Total")
    year_all: str = Field(default="all")
    value_multiplier: float = Field(default=1000, description="WITS reports thousands of USD")
    auto_latest_year: bool = Field(default=True)
    allow_iso3_fallback: bool = Field(default=True)

    @field_validator("base_url")
    @classmethod
    def require_base_url(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("wits base url is required")
        return v.strip().rstrip("/") + "/"


class ComtradeSettings(ComtradeConfig, BaseSettings):
    """Comtrade configuration loaded from COMTRADE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="COMTRADE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
        frozen=True,
    )


class WitsSettings(WitsConfig, BaseSettings):
    """WITS configuration loaded from WITS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="WITS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
        frozen=True,
    )


class Settings(BaseSettings):
    """Collector configuration loaded from environment variables."""

    log_level: str = Field(default="INFO", alias="TRADEGRAVITY_LOG_LEVEL")
    db_path: str = Field(default="tradegravity.db", alias="TRADEGRAVITY_DB")
    allowlist_path: str = Field(default="configs/allowlist.csv", alias="TRADEGRAVITY_ALLOWLIST")
    default_provider: str = Field(default="wits", alias="TRADEGRAVITY_PROVIDER")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    @field_validator("log_level")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.strip().upper() or "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
