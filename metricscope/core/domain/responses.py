"""
Response Domain Models - What the analytics service hands back to callers.

Responses that may be downsampled carry total_points, downsampled_points and
was_downsampled so a consumer can tell when a rendering is lossy.
"""

from dataclasses import dataclass, field

from metricscope.core.domain.results import Anomaly, Decomposition, PreprocessMetadata, ValidationIssue
from metricscope.core.domain.series import TimeSeries


@dataclass
class SeriesResponse:
    series: TimeSeries
    total_points: int
    downsampled_points: int
    was_downsampled: bool
    metadata: PreprocessMetadata | None = None
    warnings: list[ValidationIssue] = field(default_factory=list)


@dataclass
class DecompositionResponse:
    """Decomposition whose four components were downsampled with the same buckets."""

    decomposition: Decomposition
    total_points: int
    downsampled_points: int
    was_downsampled: bool


@dataclass
class AnomalyResponse:
    metric_id: str
    anomalies: list[Anomaly]
    total_points: int
    threshold: float
    lookback_window: int | None = None

    @property
    def count(self) -> int:
        return len(self.anomalies)

    @property
    def percentage(self) -> float:
        if self.total_points == 0:
            return 0.0
        return 100.0 * self.count / self.total_points


@dataclass
class CorrelationResponse:
    metric_a: str
    metric_b: str
    coefficient: float
    interpretation: str
    aligned: bool


@dataclass
class EntropyResponse:
    metric_id: str
    entropy: float  # math.inf when no templates match
    interpretation: str
    embedding_dimension: int
    tolerance: float
