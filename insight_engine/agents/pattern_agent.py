# insight_engine/agents/pattern_agent.py
"""
Pattern detection over the row order of a dataset.

Each numeric field is scanned independently for a linear trend, a repeating
(seasonal) cycle and IQR anomalies/outliers. The first two numeric fields are
additionally clustered with k-means and scored by silhouette.
"""
import math
import numpy as np
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple
from dataclasses import dataclass, field
from datetime import datetime
import logging
from sklearn.metrics import silhouette_score

from insight_engine.agents.field_agent import (
    Dataset, ensure_dataset, numeric_fields, numeric_values, aligned_pairs
)
from insight_engine.agents.statistics_agent import iqr_outliers, IQR_MULTIPLIER
from insight_engine.utils.logging_config import log_execution_time

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.6
MIN_TREND_POINTS = 3
MIN_SEASONALITY_POINTS = 12
MIN_ANOMALY_POINTS = 10
MIN_CLUSTER_POINTS = 10
MAX_SEASONAL_LAG = 24
DEFAULT_K = 3
MAX_ITERATIONS = 100

ANOMALY_CONFIDENCE = 0.8
OUTLIER_CONFIDENCE = 0.9

# Pattern types gated by their own detector rather than the final confidence filter
SELF_GATED_TYPES = ('anomaly', 'outlier', 'cluster')


class RandomSource(Protocol):
    """Anything producing floats in [0, 1): random.Random, numpy Generator, ..."""

    def random(self) -> float:
        ...


def seeded_source(seed: Optional[int]) -> Optional[RandomSource]:
    """The random source every entry point builds from a seed; None means unseeded"""
    return np.random.default_rng(seed) if seed is not None else None


@dataclass(frozen=True)
class PatternMetadata:
    algorithm: str
    parameters: Dict[str, Any]
    detected_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'detectedAt': self.detected_at,
            'algorithm': self.algorithm,
            'parameters': dict(self.parameters),
        }


@dataclass(frozen=True)
class Pattern:
    """A detected trend, seasonality, anomaly, outlier or cluster."""
    type: str                 # trend | seasonality | anomaly | cluster | outlier
    field: str
    confidence: float
    strength: str             # weak | moderate | strong
    description: str
    metadata: PatternMetadata
    fields: Tuple[str, ...] = ()
    period: Optional[int] = None
    amplitude: Optional[float] = None
    phase: Optional[float] = None
    data_points: Optional[List[float]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'type': self.type,
            'field': self.field,
            'fields': list(self.fields) or [self.field],
            'confidence': self.confidence,
            'strength': self.strength,
            'description': self.description,
            'metadata': self.metadata.to_dict(),
        }
        if self.period is not None:
            result.update({'period': self.period, 'amplitude': self.amplitude, 'phase': self.phase})
        if self.data_points is not None:
            result['dataPoints'] = list(self.data_points)
        return result


@dataclass(frozen=True)
class TrendFit:
    slope: float
    intercept: float
    r_squared: float


@dataclass(frozen=True)
class SeasonalFit:
    strength: float           # best autocorrelation
    period: int
    amplitude: float
    phase: float


@dataclass
class ClusteringResult:
    labels: np.ndarray
    centroids: np.ndarray
    iterations: int
    silhouette_score: float

    @property
    def clusters(self) -> List[List[int]]:
        return [np.flatnonzero(self.labels == c).tolist() for c in range(len(self.centroids))]

    @property
    def cluster_sizes(self) -> List[int]:
        return [int(np.sum(self.labels == c)) for c in range(len(self.centroids))]

    @property
    def non_empty_clusters(self) -> int:
        return sum(1 for size in self.cluster_sizes if size > 0)


def _strength_bucket(score: float) -> str:
    if score > 0.7:
        return 'strong'
    if score > 0.5:
        return 'moderate'
    return 'weak'


# ──────────────────────────────────────────────────────────
# TREND
# ──────────────────────────────────────────────────────────

def linear_trend(values: Sequence[float]) -> TrendFit:
    """Least-squares line of value against row index; R^2 is 0 for a flat series"""
    y = np.asarray(values, dtype=float)
    n = len(y)
    if n < 2:
        return TrendFit(0.0, float(y[0]) if n else 0.0, 0.0)

    x = np.arange(n, dtype=float)
    sum_x, sum_y = x.sum(), y.sum()
    sum_xy, sum_xx = np.dot(x, y), np.dot(x, x)

    slope = float((n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x))
    intercept = float((sum_y - slope * sum_x) / n)

    if np.all(y == y[0]):
        return TrendFit(slope, intercept, 0.0)

    residuals = y - (slope * x + intercept)
    ss_res = float(np.dot(residuals, residuals))
    centered = y - y.mean()
    ss_tot = float(np.dot(centered, centered))
    r_squared = 0.0 if ss_tot == 0 else 1 - ss_res / ss_tot

    return TrendFit(slope, intercept, r_squared)


def detect_trends(dataset: Dataset, fields: Sequence[str]) -> List[Pattern]:
    patterns = []

    for field_name in fields:
        values = numeric_values(dataset, field_name)
        if len(values) < MIN_TREND_POINTS:
            logger.debug(f"Skipping trend for '{field_name}': {len(values)} points")
            continue

        trend = linear_trend(values)
        if abs(trend.slope) > 0.1 and trend.r_squared > 0.3:
            direction = 'positive' if trend.slope > 0 else 'negative'
            patterns.append(Pattern(
                type='trend',
                field=field_name,
                confidence=trend.r_squared,
                strength=_strength_bucket(trend.r_squared),
                description=f"Shows a {direction} trend with {trend.r_squared * 100:.1f}% confidence",
                metadata=PatternMetadata(
                    algorithm='linear_regression',
                    parameters={
                        'slope': trend.slope,
                        'intercept': trend.intercept,
                        'rSquared': trend.r_squared,
                    },
                ),
            ))

    return patterns


# ──────────────────────────────────────────────────────────
# SEASONALITY
# ──────────────────────────────────────────────────────────

def autocorrelation(values: Sequence[float], lag: int) -> float:
    """Sample autocorrelation at a lag, normalised by the full-series variance"""
    y = np.asarray(values, dtype=float)
    n = len(y)
    if lag >= n:
        return 0.0

    centered = y - y.mean()
    denominator = float(np.dot(centered, centered))
    if denominator == 0:
        return 0.0

    numerator = float(np.dot(centered[:n - lag], centered[lag:]))
    return numerator / denominator


def _phase_means(values: np.ndarray, period: int) -> np.ndarray:
    return np.array([values[offset::period].mean() for offset in range(period)])


def detect_seasonal_pattern(values: Sequence[float],
                            max_lag: int = MAX_SEASONAL_LAG) -> Optional[SeasonalFit]:
    """
    Best repeating period by autocorrelation over lags 2..min(n/2, max_lag).

    Returns None unless the best autocorrelation exceeds 0.3.
    """
    y = np.asarray(values, dtype=float)
    upper_lag = int(min(len(y) // 2, max_lag))

    best_correlation, best_period = 0.0, 0
    for lag in range(2, upper_lag + 1):
        correlation = autocorrelation(y, lag)
        if correlation > best_correlation:
            best_correlation, best_period = correlation, lag

    if best_correlation <= 0.3:
        return None

    means = _phase_means(y, best_period)
    return SeasonalFit(
        strength=best_correlation,
        period=best_period,
        amplitude=float((means.max() - means.min()) / 2),
        phase=float(int(np.argmax(means)) / best_period * 2 * math.pi),
    )


def detect_seasonality(dataset: Dataset, fields: Sequence[str],
                       max_lag: int = MAX_SEASONAL_LAG) -> List[Pattern]:
    patterns = []

    for field_name in fields:
        values = numeric_values(dataset, field_name)
        if len(values) < MIN_SEASONALITY_POINTS:
            logger.debug(f"Skipping seasonality for '{field_name}': {len(values)} points")
            continue

        seasonality = detect_seasonal_pattern(values, max_lag)
        if seasonality is None:
            continue

        patterns.append(Pattern(
            type='seasonality',
            field=field_name,
            confidence=seasonality.strength,
            strength='strong' if seasonality.strength > 0.7 else 'moderate',
            description=f"Shows seasonal pattern with {seasonality.strength * 100:.1f}% strength",
            period=seasonality.period,
            amplitude=seasonality.amplitude,
            phase=seasonality.phase,
            metadata=PatternMetadata(
                algorithm='autocorrelation',
                parameters={
                    'period': seasonality.period,
                    'amplitude': seasonality.amplitude,
                    'phase': seasonality.phase,
                },
            ),
        ))

    return patterns


# ──────────────────────────────────────────────────────────
# ANOMALIES / OUTLIERS
# ──────────────────────────────────────────────────────────

def _iqr_patterns(dataset: Dataset, fields: Sequence[str], pattern_type: str,
                  confidence: float, noun: str, algorithm: str,
                  parameters: Dict[str, Any]) -> List[Pattern]:
    patterns = []

    for field_name in fields:
        values = numeric_values(dataset, field_name)
        if len(values) < MIN_ANOMALY_POINTS:
            continue

        flagged = iqr_outliers(values, IQR_MULTIPLIER)
        if flagged:
            patterns.append(Pattern(
                type=pattern_type,
                field=field_name,
                confidence=confidence,
                strength='strong',
                description=f"Detected {len(flagged)} {noun} values",
                data_points=flagged,
                metadata=PatternMetadata(algorithm=algorithm, parameters=dict(parameters)),
            ))

    return patterns


def detect_anomalies(dataset: Dataset, fields: Sequence[str]) -> List[Pattern]:
    return _iqr_patterns(
        dataset, fields, 'anomaly', ANOMALY_CONFIDENCE, 'anomalous',
        'statistical_outlier_detection', {'method': 'iqr', 'threshold': IQR_MULTIPLIER},
    )


def detect_outliers(dataset: Dataset, fields: Sequence[str]) -> List[Pattern]:
    return _iqr_patterns(
        dataset, fields, 'outlier', OUTLIER_CONFIDENCE, 'outlier',
        'iqr_method', {'method': 'interquartile_range', 'multiplier': IQR_MULTIPLIER},
    )


# ──────────────────────────────────────────────────────────
# CLUSTERING
# ──────────────────────────────────────────────────────────

def silhouette(points: np.ndarray, labels: np.ndarray) -> float:
    """Mean silhouette coefficient; 0 when fewer than two clusters are populated"""
    n_labels = len(np.unique(labels))
    if n_labels < 2 or n_labels >= len(points):
        return 0.0
    return float(silhouette_score(points, labels, metric='euclidean'))


class KMeans:
    """
    Lloyd's k-means with seeding from an injectable random source.

    Seeds are k distinct rows. Iteration stops once cluster membership
    repeats or after max_iterations rounds.
    """

    def __init__(self, k: int = DEFAULT_K, max_iterations: int = MAX_ITERATIONS,
                 rng: Optional[RandomSource] = None):
        if k < 1:
            raise ValueError(f"k must be positive, got {k}")
        self.k = k
        self.max_iterations = max_iterations
        self.rng = rng if rng is not None else np.random.default_rng()

    def _initial_centroids(self, points: np.ndarray) -> np.ndarray:
        # Draw without replacement so k draws always give k distinct rows
        candidates = list(range(len(points)))
        chosen: List[int] = []
        while len(chosen) < self.k:
            position = min(int(self.rng.random() * len(candidates)), len(candidates) - 1)
            chosen.append(candidates.pop(position))
        return points[chosen].astype(float)

    @staticmethod
    def _assign(points: np.ndarray, centroids: np.ndarray) -> np.ndarray:
        distances = np.linalg.norm(points[:, np.newaxis, :] - centroids[np.newaxis, :, :], axis=2)
        return np.argmin(distances, axis=1)

    @staticmethod
    def _update(points: np.ndarray, labels: np.ndarray, centroids: np.ndarray) -> np.ndarray:
        updated = centroids.copy()
        for cluster in range(len(centroids)):
            members = points[labels == cluster]
            if len(members):
                updated[cluster] = members.mean(axis=0)
        return updated

    def fit(self, points: Sequence[Sequence[float]]) -> ClusteringResult:
        data = np.asarray(points, dtype=float)
        if data.ndim != 2 or len(data) < self.k:
            raise ValueError(f"k-means needs a 2-D array with at least {self.k} rows")

        centroids = self._initial_centroids(data)
        labels: Optional[np.ndarray] = None
        iterations = 0

        while True:
            previous = labels
            labels = self._assign(data, centroids)
            centroids = self._update(data, labels, centroids)
            iterations += 1
            if (previous is not None and np.array_equal(labels, previous)) \
                    or iterations >= self.max_iterations:
                break

        return ClusteringResult(
            labels=labels,
            centroids=centroids,
            iterations=iterations,
            silhouette_score=silhouette(data, labels),
        )


def detect_clusters(dataset: Dataset, fields: Sequence[str],
                    rng: Optional[RandomSource] = None,
                    k: int = DEFAULT_K,
                    max_iterations: int = MAX_ITERATIONS) -> List[Pattern]:
    """k-means over the first two numeric fields, taken in column order"""
    if len(fields) < 2:
        return []

    field_x, field_y = fields[0], fields[1]
    xs, ys = aligned_pairs(dataset, field_x, field_y)
    if len(xs) < max(MIN_CLUSTER_POINTS, k):
        logger.debug(f"Skipping clustering: {len(xs)} aligned points")
        return []

    result = KMeans(k=k, max_iterations=max_iterations, rng=rng).fit(np.column_stack([xs, ys]))
    if result.non_empty_clusters <= 1:
        return []

    score = result.silhouette_score
    confidence = min(max(score, 0.0), 1.0)
    return [Pattern(
        type='cluster',
        field=f"{field_x} × {field_y}",
        fields=(field_x, field_y),
        confidence=confidence,
        strength=_strength_bucket(score),
        description=f"Data forms {result.non_empty_clusters} distinct clusters",
        metadata=PatternMetadata(
            algorithm='k_means',
            parameters={
                'k': k,
                'silhouetteScore': score,
                'clusterSizes': result.cluster_sizes,
                'iterations': result.iterations,
            },
        ),
    )]


# ──────────────────────────────────────────────────────────
# ENTRY POINT
# ──────────────────────────────────────────────────────────

@log_execution_time
def detect_patterns(dataset: Dataset,
                    rng: Optional[RandomSource] = None,
                    k: int = DEFAULT_K,
                    max_iterations: int = MAX_ITERATIONS,
                    confidence_threshold: float = CONFIDENCE_THRESHOLD,
                    max_lag: int = MAX_SEASONAL_LAG,
                    include_anomalies: bool = True,
                    include_outliers: bool = True) -> List[Pattern]:
    """
    Run every detector and keep the confident findings.

    Trends and seasonality must clear `confidence_threshold`; anomalies,
    outliers and clusters are already gated by their detectors and pass
    through unchanged.
    """
    ensure_dataset(dataset)
    if not dataset:
        return []

    fields = numeric_fields(dataset)

    patterns: List[Pattern] = []
    patterns.extend(detect_trends(dataset, fields))
    patterns.extend(detect_seasonality(dataset, fields, max_lag))
    if include_anomalies:
        patterns.extend(detect_anomalies(dataset, fields))
    patterns.extend(detect_clusters(dataset, fields, rng, k, max_iterations))
    if include_outliers:
        patterns.extend(detect_outliers(dataset, fields))

    return [
        pattern for pattern in patterns
        if pattern.type in SELF_GATED_TYPES or pattern.confidence > confidence_threshold
    ]


class PatternAgent:
    """Pipeline node detecting trends, cycles, anomalies and clusters"""

    def __init__(self, random_state: Optional[int] = None, k: int = DEFAULT_K,
                 max_iterations: int = MAX_ITERATIONS,
                 confidence_threshold: float = CONFIDENCE_THRESHOLD,
                 max_lag: int = MAX_SEASONAL_LAG,
                 include_anomalies: bool = True, include_outliers: bool = True):
        self.random_state = random_state
        self.k = k
        self.max_iterations = max_iterations
        self.confidence_threshold = confidence_threshold
        self.max_lag = max_lag
        self.include_anomalies = include_anomalies
        self.include_outliers = include_outliers

    async def process(self, state: dict) -> dict:
        logger.info("Starting pattern detection")

        try:
            data = state.get('cleaned_data', state.get('records', []))
            seed = state.get('random_state')
            if seed is None:
                seed = self.random_state
            patterns = detect_patterns(
                data,
                rng=seeded_source(seed),
                k=self.k,
                max_iterations=self.max_iterations,
                confidence_threshold=self.confidence_threshold,
                max_lag=self.max_lag,
                include_anomalies=self.include_anomalies,
                include_outliers=self.include_outliers,
            )

            state.update({
                'patterns': [pattern.to_dict() for pattern in patterns],
                'current_step': 'patterns',
                'next_action': 'report'
            })

            state['execution_log'].append(f"Pattern detection completed: {len(patterns)} patterns")
            return state

        except Exception as e:
            logger.error(f"Pattern detection failed: {str(e)}")
            state['errors'].append(f"Pattern detection error: {str(e)}")
            state['next_action'] = 'error'
            return state
