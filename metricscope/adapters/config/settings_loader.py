import os

import yaml

from metricscope.core.domain.settings import SystemSettings

# Environment variable -> settings field
ENV_OVERRIDES = {
    "METRICSCOPE_DATA_SOURCE_URL": "data_source_url",
    "METRICSCOPE_DATA_SOURCE_TIMEOUT": "data_source_timeout",
    "METRICSCOPE_SERIES_CACHE_TTL": "series_cache_ttl",
    "METRICSCOPE_DECOMPOSITION_CACHE_TTL": "decomposition_cache_ttl",
    "METRICSCOPE_FORECAST_CACHE_TTL": "forecast_cache_ttl",
    "METRICSCOPE_ANALYSIS_CACHE_TTL": "analysis_cache_ttl",
    "METRICSCOPE_LOG_LEVEL": "log_level",
}


def load_settings(path: str | None = None) -> SystemSettings:
    """
    Load system settings from a YAML file, then apply environment overrides.
    Env vars > File > Defaults.

    Args:
        path: Path to config.yaml. Defaults to METRICSCOPE_CONFIG_FILE env var or "config.yaml".
    """
    if path is None:
        path = os.getenv("METRICSCOPE_CONFIG_FILE", "config.yaml")

    config_data = {}

    if os.path.exists(path):
        try:
            with open(path, "r") as f:
                config_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise RuntimeError(f"Failed to load configuration from {path}: {e}") from e

    if not isinstance(config_data, dict):
        raise RuntimeError(f"Configuration in {path} must be a mapping")

    for env_var, field_name in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            config_data[field_name] = value

    return SystemSettings(**config_data)
