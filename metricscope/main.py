import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime

import pydantic
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from metricscope.adapters.config.settings_loader import load_settings
from metricscope.adapters.sources.http_source import HttpSeriesSource
from metricscope.core.domain.options import ForecastOptions
from metricscope.core.domain.results import ForecastResult, ValidationIssue
from metricscope.core.domain.series import TimeSeries
from metricscope.core.domain.settings import SystemSettings
from metricscope.core.errors import AnalyticsError, ComputationError, DependencyError, ValidationError
from metricscope.core.services.analytics_service import DEFAULT_INTERVAL, AnalyticsService
from metricscope.core.services.cache import AnalyticsCache

VERSION = "0.1.0"

# Configuration (Load from YAML with Env Overrides)
settings = load_settings()

# Logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

STATUS_CODES = {
    ValidationError: 400,
    ComputationError: 422,
    DependencyError: 502,
}


class InvalidateRequest(BaseModel):
    pattern: str | None = None


def build_service(settings: SystemSettings) -> AnalyticsService:
    source = HttpSeriesSource(base_url=settings.data_source_url, timeout=settings.data_source_timeout)
    return AnalyticsService(source, AnalyticsCache.from_settings(settings), settings)


def create_app(service: AnalyticsService | None = None) -> FastAPI:
    """
    Build the API application around an analytics service.

    The application owns the service (and its cache) and closes the data
    source on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.service.source.close()

    app = FastAPI(title="MetricScope", version=VERSION, lifespan=lifespan)
    app.state.service = service or build_service(settings)

    @app.exception_handler(AnalyticsError)
    async def analytics_error_handler(request: Request, exc: AnalyticsError):
        status = STATUS_CODES.get(type(exc), 500)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc}")
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        error = ValidationError("Invalid request parameters", request.url.path, errors=exc.errors())
        return JSONResponse(status_code=400, content=error.to_dict())

    register_routes(app)
    return app


def get_service(request: Request) -> AnalyticsService:
    return request.app.state.service


def register_routes(app: FastAPI) -> None:

    @app.get("/health")
    def health_check(service: AnalyticsService = Depends(get_service)):
        return {"status": "ok", "version": VERSION, "cache": service.cache.stats()}

    @app.get("/metrics/{metric_id}/timeseries")
    async def get_time_series(
        metric_id: str,
        start: datetime,
        end: datetime,
        interval: str = DEFAULT_INTERVAL,
        max_points: int | None = None,
        method: str = "lttb",
        service: AnalyticsService = Depends(get_service),
    ):
        result = await service.get_time_series(metric_id, start, end, interval, max_points, method)
        return {
            "metric_id": metric_id,
            "data": series_payload(result.series),
            "metadata": {
                "total_points": result.total_points,
                "downsampled_points": result.downsampled_points,
                "was_downsampled": result.was_downsampled,
                "missing_count": result.metadata.missing_count,
                "outlier_count": result.metadata.outlier_count,
                "inserted_count": result.metadata.inserted_count,
                "is_regular": result.metadata.interval_stats.is_regular,
            },
            "warnings": [issue_payload(w) for w in result.warnings],
        }

    @app.get("/metrics/{metric_id}/decomposition")
    async def get_decomposition(
        metric_id: str,
        start: datetime,
        end: datetime,
        interval: str = DEFAULT_INTERVAL,
        window_size: int = 7,
        seasonal_period: int | None = None,
        max_points: int | None = None,
        service: AnalyticsService = Depends(get_service),
    ):
        result = await service.decompose(metric_id, start, end, interval, window_size, seasonal_period, max_points)
        d = result.decomposition
        return {
            "metric_id": metric_id,
            "trend": series_payload(d.trend),
            "seasonal": series_payload(d.seasonal),
            "residual": series_payload(d.residual),
            "original": series_payload(d.original),
            "window_size": d.window_size,
            "seasonal_period": d.seasonal_period,
            "metadata": {
                "total_points": result.total_points,
                "downsampled_points": result.downsampled_points,
                "was_downsampled": result.was_downsampled,
            },
        }

    @app.get("/metrics/{metric_id}/anomalies")
    async def get_anomalies(
        metric_id: str,
        start: datetime,
        end: datetime,
        interval: str = DEFAULT_INTERVAL,
        threshold: float = 3.0,
        lookback_window: int | None = None,
        service: AnalyticsService = Depends(get_service),
    ):
        result = await service.detect_anomalies(metric_id, start, end, interval, threshold, lookback_window)
        return {
            "metric_id": metric_id,
            "anomalies": [
                {"timestamp": a.timestamp.isoformat(), "value": a.value, "z_score": a.z_score}
                for a in result.anomalies
            ],
            "count": result.count,
            "total_points": result.total_points,
            "percentage": result.percentage,
            "threshold": result.threshold,
            "lookback_window": result.lookback_window,
        }

    @app.get("/metrics/{metric_id}/forecast")
    async def get_forecast(
        metric_id: str,
        start: datetime,
        end: datetime,
        interval: str = DEFAULT_INTERVAL,
        horizon: int = 30,
        method: str = "auto",
        window_size: int = 7,
        confidence_level: float = 0.95,
        validate_with_history: bool = False,
        seasonal_period: int | None = None,
        service: AnalyticsService = Depends(get_service),
    ):
        options = forecast_options(
            metric_id,
            window_size=window_size,
            confidence_level=confidence_level,
            validate_with_history=validate_with_history,
            seasonal_period=seasonal_period,
        )
        result = await service.forecast(metric_id, start, end, interval, horizon, method, options)
        return forecast_payload(metric_id, result)

    @app.get("/metrics/{metric_id}/entropy")
    async def get_entropy(
        metric_id: str,
        start: datetime,
        end: datetime,
        interval: str = DEFAULT_INTERVAL,
        embedding_dimension: int = 2,
        tolerance: float = 0.2,
        service: AnalyticsService = Depends(get_service),
    ):
        result = await service.entropy(metric_id, start, end, interval, embedding_dimension, tolerance)
        return {
            "metric_id": metric_id,
            "entropy": finite_or_none(result.entropy),
            "interpretation": result.interpretation,
            "embedding_dimension": result.embedding_dimension,
            "tolerance": result.tolerance,
        }

    @app.get("/correlation")
    async def get_correlation(
        metric_a: str,
        metric_b: str,
        start: datetime,
        end: datetime,
        interval: str = DEFAULT_INTERVAL,
        align: bool = False,
        service: AnalyticsService = Depends(get_service),
    ):
        result = await service.correlation(metric_a, metric_b, start, end, interval, align)
        return {
            "metric_a": result.metric_a,
            "metric_b": result.metric_b,
            "correlation": result.coefficient,
            "interpretation": result.interpretation,
            "aligned": result.aligned,
        }

    @app.post("/cache/invalidate")
    def invalidate_cache(body: InvalidateRequest | None = None, service: AnalyticsService = Depends(get_service)):
        pattern = body.pattern if body else None
        removed = service.invalidate_cache(pattern)
        return {"message": "Cache invalidated", "pattern": pattern, "removed": removed}


def forecast_options(metric_id: str, **fields) -> ForecastOptions:
    try:
        return ForecastOptions(**fields)
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Invalid forecast options", "forecast", metric_id=metric_id,
            errors=[f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()],
        ) from e


# Serialization

def finite_or_none(value: float | None) -> float | None:
    if value is None or not math.isfinite(value):
        return None
    return value


def series_payload(series: TimeSeries) -> list[dict]:
    return [{"timestamp": p.timestamp.isoformat(), "value": finite_or_none(p.value)} for p in series]


def issue_payload(issue: ValidationIssue) -> dict:
    return {
        "type": issue.type,
        "message": issue.message,
        "index": issue.index,
        "timestamp": issue.timestamp.isoformat() if issue.timestamp else None,
    }


def forecast_payload(metric_id: str, result: ForecastResult) -> dict:
    metrics = result.validation_metrics
    return {
        "metric_id": metric_id,
        "forecast": series_payload(result.forecast),
        "confidence": {
            "upper": series_payload(result.confidence.upper),
            "lower": series_payload(result.confidence.lower),
        },
        "accuracy": result.accuracy,
        "method": result.method.value,
        "requested_method": result.requested_method.value,
        "validation_metrics": None if metrics is None else {
            "mape": metrics.mape,
            "rmse": metrics.rmse,
            "mae": metrics.mae,
            "r2": metrics.r2,
        },
        "warnings": result.warnings,
    }


app = create_app()
