import pytest
from pydantic import ValidationError

from tradegravity.config import (
    ComtradeConfig,
    ComtradeSettings,
    WitsConfig,
    WitsSettings,
    get_settings,
)


class TestProviderConfig:

    def test_comtrade_defaults(self):
        config = ComtradeConfig()
        assert config.base_url == "https://comtradeapi.un.org/"
        assert config.api_key_param == "subscription-key"
        assert config.api_key_header == "Ocp-Apim-Subscription-Key"
        assert (config.type_code, config.frequency, config.classification) == ("C", "A", "HS")
        assert config.primary_key is None
        assert config.max_records == 50000

    def test_wits_defaults(self):
        config = WitsConfig()
        assert config.base_url == "https://wits.worldbank.org/API/V1/"
        assert config.value_multiplier == 1000
        assert config.indicator_export == "XPRT-TRD-VL"
        assert config.indicator_import == "MPRT-TRD-VL"
        assert config.year_all == "all"

    def test_wits_base_url_normalized(self):
        assert WitsConfig(base_url=" https://wits.test/api ").base_url == "https://wits.test/api/"
        with pytest.raises(ValidationError):
            WitsConfig(base_url="  ")

    def test_negative_retries_rejected(self):
        with pytest.raises(ValidationError):
            ComtradeConfig(max_retries=-1)
        with pytest.raises(ValidationError):
            ComtradeConfig(lookback_years=-2)

    def test_frozen(self):
        config = ComtradeConfig()
        with pytest.raises(ValidationError):
            config.primary_key = "changed"

    def test_plain_config_ignores_environment(self, monkeypatch):
        monkeypatch.setenv("COMTRADE_PRIMARY_KEY", "from-env")
        assert ComtradeConfig().primary_key is None


class TestEnvironmentSettings:

    def test_comtrade_from_env(self, monkeypatch):
        monkeypatch.setenv("COMTRADE_PRIMARY_KEY", "primary")
        monkeypatch.setenv("COMTRADE_SECONDARY_KEY", "secondary")
        monkeypatch.setenv("COMTRADE_LOOKBACK_YEARS", "3")
        monkeypatch.setenv("COMTRADE_TYPE_CODE", "S")

        settings = ComtradeSettings()
        assert settings.primary_key == "primary"
        assert settings.secondary_key == "secondary"
        assert settings.lookback_years == 3
        assert settings.type_code == "S"

    def test_wits_from_env(self, monkeypatch):
        monkeypatch.setenv("WITS_API_KEY", "token-value")
        monkeypatch.setenv("WITS_AUTO_LATEST_YEAR", "false")
        monkeypatch.setenv("WITS_BASE_URL", "https://mirror.test/wits")

        settings = WitsSettings()
        assert settings.api_key == "token-value"
        assert settings.auto_latest_year is False
        assert settings.base_url == "https://mirror.test/wits/"

    def test_empty_env_ignored(self, monkeypatch):
        monkeypatch.setenv("WITS_YEAR_ALL", "")
        assert WitsSettings().year_all == "all"

    def test_collector_settings(self, monkeypatch):
        monkeypatch.setenv("TRADEGRAVITY_DB", "/tmp/trade.db")
        monkeypatch.setenv("TRADEGRAVITY_LOG_LEVEL", "debug")
        monkeypatch.setenv("TRADEGRAVITY_PROVIDER", "comtrade")

        settings = get_settings()
        assert settings.db_path == "/tmp/trade.db"
        assert settings.log_level == "DEBUG"
        assert settings.default_provider == "comtrade"
        assert get_settings() is settings
