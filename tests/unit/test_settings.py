import pytest
from pydantic import ValidationError

from metricscope.adapters.config.settings_loader import load_settings
from metricscope.core.domain.settings import SystemSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("METRICSCOPE_CONFIG_FILE", "METRICSCOPE_DATA_SOURCE_URL", "METRICSCOPE_LOG_LEVEL",
                 "METRICSCOPE_FORECAST_CACHE_TTL"):
        monkeypatch.delenv(name, raising=False)


def test_system_settings_defaults():
    settings = SystemSettings()
    assert settings.data_source_url == "http://localhost:8080"
    assert settings.series_cache_ttl == 300
    assert settings.decomposition_cache_ttl == 900
    assert settings.forecast_cache_ttl == 1800
    assert settings.analysis_cache_ttl == 300
    assert settings.default_max_points == 1000
    assert settings.decomposition_max_points == 500
    assert settings.log_level == "INFO"


def test_system_settings_validation():
    with pytest.raises(ValidationError):
        SystemSettings(default_max_points=2)
    with pytest.raises(ValidationError):
        SystemSettings(log_level="CHATTY")


def test_load_settings_from_env(monkeypatch):
    monkeypatch.setenv("METRICSCOPE_DATA_SOURCE_URL", "http://custom:9000")
    monkeypatch.setenv("METRICSCOPE_FORECAST_CACHE_TTL", "60")
    monkeypatch.setenv("METRICSCOPE_ANALYSIS_CACHE_TTL", "90")

    settings = load_settings(path="non_existent.yaml")

    assert settings.data_source_url == "http://custom:9000"
    assert settings.forecast_cache_ttl == 60
    assert settings.analysis_cache_ttl == 90


def test_load_settings_from_file(tmp_path):
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text("""
data_source_url: "http://file:8080"
series_cache_ttl: 120
    """)

    settings = load_settings(path=str(config_file))

    assert settings.data_source_url == "http://file:8080"
    assert settings.series_cache_ttl == 120
    # Defaults preserved
    assert settings.forecast_cache_ttl == 1800
    assert settings.analysis_cache_ttl == 300


def test_load_settings_path_from_env(tmp_path, monkeypatch):
    config_file = tmp_path / "other.yaml"
    config_file.write_text("log_level: DEBUG")
    monkeypatch.setenv("METRICSCOPE_CONFIG_FILE", str(config_file))

    assert load_settings().log_level == "DEBUG"


def test_load_settings_env_overrides_file(tmp_path, monkeypatch):
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text('data_source_url: "http://file:8080"')

    monkeypatch.setenv("METRICSCOPE_DATA_SOURCE_URL", "http://env:8080")

    settings = load_settings(path=str(config_file))

    # Env var should hold precedence
    assert settings.data_source_url == "http://env:8080"


def test_load_settings_corrupt_file(tmp_path):
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("data_source_url: [unclosed")

    with pytest.raises(RuntimeError, match="Failed to load configuration"):
        load_settings(path=str(config_file))


def test_load_settings_rejects_non_mapping(tmp_path):
    config_file = tmp_path / "list.yaml"
    config_file.write_text("- a\n- b\n")

    with pytest.raises(RuntimeError, match="must be a mapping"):
        load_settings(path=str(config_file))
