"""
Unit Tests for Configuration Module

These tests verify that the configuration system works correctly:
- Default values are applied when nothing is configured
- Environment variables override defaults
- Validation catches invalid configurations
- Property methods work as expected

Run with:
    pytest tests/unit/test_config.py -v
"""

import pytest
from core.config import Settings, settings, validate_configuration


def make_settings(**overrides) -> Settings:
    """Settings isolated from any local .env file"""
    return Settings(_env_file=None, **overrides)


class TestConfigurationLoading:
    """Test that configuration loads with sensible defaults"""

    def test_rest_provider_url_loaded(self):
        """Verify the REST provider URL is set"""
        assert settings.coingecko_base_url is not None
        assert settings.coingecko_base_url.startswith("http")

    def test_default_assets(self):
        config = make_settings()
        assert config.asset_ids_list == ["bitcoin", "ethereum", "cardano", "solana"]

    def test_default_cadence(self):
        config = make_settings()
        assert config.exchange_refresh_interval == 30.0
        assert config.rest_refresh_interval == 60.0
        assert config.static_refresh_interval == 30.0
        assert config.global_refresh_interval == 300.0

    def test_app_port_is_valid_integer(self):
        """Verify app port is a valid integer"""
        assert isinstance(settings.app_port, int)
        assert 1 <= settings.app_port <= 65535

    def test_env_overrides_defaults(self, monkeypatch):
        monkeypatch.setenv("ASSET_IDS", "dogecoin")
        monkeypatch.setenv("REST_REFRESH_INTERVAL", "15")
        monkeypatch.setenv("EXCHANGE_WS_ENABLED", "false")

        config = make_settings()

        assert config.asset_ids_list == ["dogecoin"]
        assert config.rest_refresh_interval == 15.0
        assert config.exchange_ws_enabled is False


class TestAssetIdsParsing:
    """Test that asset ids are parsed from the comma-separated string"""

    def test_ids_are_trimmed_and_lowercased(self):
        config = make_settings(asset_ids=" Bitcoin , ETHEREUM,,solana ")
        assert config.asset_ids_list == ["bitcoin", "ethereum", "solana"]

    def test_cors_origins_list(self):
        config = make_settings(cors_origins="http://a.test, http://b.test,")
        assert config.cors_origins_list == ["http://a.test", "http://b.test"]


class TestConfigurationProperties:
    """Test property methods and computed values"""

    def test_rest_min_spacing_in_seconds(self):
        assert make_settings(rest_min_spacing_ms=1500).rest_min_spacing == 1.5

    def test_headers_without_api_key(self):
        headers = make_settings(coingecko_api_key="").get_coingecko_headers()
        assert headers == {"Accept": "application/json"}

    def test_headers_include_api_key_when_set(self):
        """Verify API key is included in headers when configured"""
        headers = make_settings(coingecko_api_key="demo-key").get_coingecko_headers()
        assert headers["x-cg-demo-api-key"] == "demo-key"


class TestConfigurationValidation:
    """Test configuration validation function"""

    def test_validate_configuration_succeeds(self):
        """Verify validation passes with default configuration"""
        try:
            validate_configuration(make_settings())
        except ValueError as e:
            pytest.fail(f"Configuration validation failed: {e}")

    @pytest.mark.parametrize("overrides, message", [
        ({"asset_ids": " , "}, "ASSET_IDS"),
        ({"rest_refresh_interval": 0}, "REST_REFRESH_INTERVAL"),
        ({"global_refresh_interval": -5}, "GLOBAL_REFRESH_INTERVAL"),
        ({"rest_timeout": 0}, "REST_TIMEOUT"),
        ({"rest_min_spacing_ms": -1}, "REST_MIN_SPACING_MS"),
        ({"max_retry_attempts": -1}, "MAX_RETRY_ATTEMPTS"),
        ({"app_port": 70000}, "port"),
        ({"log_level": "VERBOSE"}, "LOG_LEVEL"),
    ])
    def test_validation_rejects_invalid_values(self, overrides, message):
        with pytest.raises(ValueError, match=message):
            validate_configuration(make_settings(**overrides))

    def test_log_level_is_case_insensitive(self):
        validate_configuration(make_settings(log_level="debug"))


# ============================================
# Run Tests
# ============================================

if __name__ == "__main__":
    # Allow running this test file directly
    pytest.main([__file__, "-v"])
