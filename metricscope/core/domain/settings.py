from typing import Literal

from pydantic import BaseModel, Field


class SystemSettings(BaseModel):
    """
    Global system configuration settings.
    """
    # Data access
    data_source_url: str = Field(default="http://localhost:8080", description="Base URL of the metrics data-access API")
    data_source_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds for data-access calls")

    # Cache TTLs (seconds) and entry caps per namespace
    series_cache_ttl: int = Field(default=5 * 60, gt=0, description="Raw time series TTL")
    decomposition_cache_ttl: int = Field(default=15 * 60, gt=0, description="Decomposition TTL")
    forecast_cache_ttl: int = Field(default=30 * 60, gt=0, description="Forecast TTL")
    analysis_cache_ttl: int = Field(default=5 * 60, gt=0, description="Anomaly, correlation and entropy TTL")
    series_cache_max_entries: int = Field(default=100, gt=0)
    decomposition_cache_max_entries: int = Field(default=50, gt=0)
    forecast_cache_max_entries: int = Field(default=50, gt=0)
    analysis_cache_max_entries: int = Field(default=100, gt=0)

    # Visualization defaults
    default_max_points: int = Field(default=1000, ge=3, description="Point budget for raw series responses")
    decomposition_max_points: int = Field(default=500, ge=3, description="Point budget per decomposition component")
    downsample_chunk_size: int = Field(default=10_000, gt=0, description="Buckets reduced per worker chunk")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
