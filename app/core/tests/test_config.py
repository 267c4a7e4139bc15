"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from app.core.config import Settings, get_settings


def test_settings_has_defaults():
    """Settings should have sensible defaults."""
    settings = Settings()

    assert settings.app_name == "ServiceForecast"
    assert settings.app_env == "development"
    assert settings.debug is False
    assert settings.log_level == "INFO"
    assert settings.log_format == "json"
    assert settings.api_port == 8123


def test_settings_forecasting_defaults():
    """Forecasting and ensemble tunables should match the documented defaults."""
    settings = Settings()

    assert settings.forecast_season_length == 12
    assert settings.forecast_outlier_z_threshold == 2.0
    assert settings.forecast_validation_max_periods == 6
    assert settings.forecast_validation_decay == 0.9
    assert settings.forecast_partial_max_model_weight == 0.7
    assert settings.ensemble_max_decomposition_weight == 0.7
    assert settings.ensemble_max_holt_winters_weight == 0.6
    assert settings.ensemble_min_linear_weight == 0.1
    assert settings.historical_data_function == "get_historical_monthly_data"
    assert settings.current_period_function == "forensic_audit_current_period"


def test_settings_is_development_property():
    """is_development should return True for development env."""
    settings = Settings(app_env="development")
    assert settings.is_development is True
    assert settings.is_production is False


def test_settings_is_production_property():
    """is_production should return True for production env."""
    settings = Settings(app_env="production")
    assert settings.is_development is False
    assert settings.is_production is True


def test_get_settings_returns_singleton():
    """get_settings should return cached singleton."""
    settings1 = get_settings()
    settings2 = get_settings()

    assert settings1 is settings2


def test_settings_from_environment(monkeypatch):
    """Settings should load from environment variables."""
    monkeypatch.setenv("APP_NAME", "TestApp")
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("FORECAST_OUTLIER_Z_THRESHOLD", "2.5")

    # Create new settings instance (not cached)
    settings = Settings()

    assert settings.app_name == "TestApp"
    assert settings.debug is True
    assert settings.log_level == "DEBUG"
    assert settings.forecast_outlier_z_threshold == 2.5


def test_settings_accepts_schema_qualified_function():
    """Schema-qualified SQL function names should be accepted."""
    settings = Settings(historical_data_function="public.get_historical_monthly_data")
    assert settings.historical_data_function == "public.get_historical_monthly_data"


@pytest.mark.parametrize(
    "name",
    ["get_data(); DROP TABLE x", "1starts_with_digit", "has space", ""],
)
def test_settings_rejects_invalid_function_name(name):
    """Function names that are not SQL identifiers should be rejected."""
    with pytest.raises(ValidationError, match="Invalid SQL function name"):
        Settings(current_period_function=name)


def test_settings_rejects_decay_outside_unit_interval():
    """Decay must lie in (0, 1]."""
    with pytest.raises(ValidationError):
        Settings(forecast_validation_decay=0.0)
    with pytest.raises(ValidationError):
        Settings(forecast_validation_decay=1.5)


def test_settings_rejects_infeasible_ensemble_caps():
    """Caps that cannot cover a full unit of weight should be rejected."""
    with pytest.raises(ValidationError, match="Ensemble weight caps"):
        Settings(
            ensemble_max_decomposition_weight=0.3,
            ensemble_max_holt_winters_weight=0.3,
            ensemble_min_linear_weight=0.1,
        )


def test_settings_rejects_inverted_partial_thresholds():
    """Minimum elapsed fraction must be below the cap."""
    with pytest.raises(ValidationError, match="forecast_partial_min_elapsed"):
        Settings(forecast_partial_min_elapsed=0.96, forecast_partial_max_elapsed=0.95)


def test_settings_rejects_inverted_bound_factors():
    """Lower sanity-bound factor must be below the upper one."""
    with pytest.raises(ValidationError, match="ensemble_bounds_lower_factor"):
        Settings(ensemble_bounds_lower_factor=2.0, ensemble_bounds_upper_factor=1.5)
