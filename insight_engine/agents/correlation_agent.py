# insight_engine/agents/correlation_agent.py
import math
import numpy as np
from typing import Any, Dict, List, Optional, Sequence
from dataclasses import dataclass
import logging
from scipy import stats

from insight_engine.agents.field_agent import (
    Dataset, ensure_dataset, numeric_fields, aligned_pairs
)
from insight_engine.utils.logging_config import log_execution_time

logger = logging.getLogger(__name__)

REPORT_THRESHOLD = 0.3


@dataclass(frozen=True)
class CorrelationResult:
    """Pearson correlation between two distinct numeric fields."""
    field1: str
    field2: str
    correlation: float
    strength: str             # strong | moderate | weak
    direction: str            # positive | negative
    sample_size: int
    p_value: Optional[float] = None
    significance: Optional[str] = None
    interpretation: str = ''

    @property
    def coefficient(self) -> float:
        return self.correlation

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'field1': self.field1,
            'field2': self.field2,
            'correlation': self.correlation,
            'coefficient': self.correlation,
            'strength': self.strength,
            'direction': self.direction,
            'interpretation': self.interpretation,
            'sampleSize': self.sample_size,
        }
        if self.p_value is not None:
            result['pValue'] = self.p_value
            result['significance'] = self.significance
        return result


def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """
    Pearson product-moment correlation from raw sums.

    Returns 0 for mismatched or empty input and when either series is constant.
    """
    if len(x) != len(y) or len(x) == 0:
        return 0.0

    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    n = len(xs)

    sum_x, sum_y = xs.sum(), ys.sum()
    numerator = n * np.dot(xs, ys) - sum_x * sum_y
    var_x = n * np.dot(xs, xs) - sum_x * sum_x
    var_y = n * np.dot(ys, ys) - sum_y * sum_y

    if var_x <= 0 or var_y <= 0:
        return 0.0

    r = float(numerator / math.sqrt(var_x * var_y))
    return max(-1.0, min(1.0, r))


def correlation_p_value(r: float, n: int) -> Optional[float]:
    """
    Two-tailed p-value for H0: rho = 0.

    Uses t = r*sqrt((n-2)/(1-r^2)) against Student's t with n-2 degrees of
    freedom. This treats the data as bivariate normal, so it is an
    approximation for skewed marketing metrics.
    """
    if n <= 2:
        return None
    if abs(r) >= 1.0:
        return 0.0

    t_statistic = r * math.sqrt((n - 2) / (1 - r * r))
    return float(2 * stats.t.sf(abs(t_statistic), n - 2))


def classify_strength(r: float) -> str:
    magnitude = abs(r)
    if magnitude >= 0.7:
        return 'strong'
    if magnitude >= 0.5:
        return 'moderate'
    return 'weak'


def classify_direction(r: float) -> str:
    return 'positive' if r > 0 else 'negative'


def classify_significance(p_value: Optional[float]) -> Optional[str]:
    if p_value is None:
        return None
    if p_value < 0.01:
        return 'high'
    if p_value < 0.05:
        return 'medium'
    return 'low'


def interpret_correlation(r: float) -> str:
    magnitude = abs(r)
    if magnitude >= 0.9:
        return 'very strong'
    if magnitude >= 0.7:
        return 'strong'
    if magnitude >= 0.5:
        return 'moderate'
    if magnitude >= 0.3:
        return 'weak'
    return 'very weak'


@log_execution_time
def find_correlations(dataset: Dataset,
                      threshold: float = REPORT_THRESHOLD,
                      include_p_values: bool = True) -> List[CorrelationResult]:
    """
    Pairwise correlations of numeric fields, strongest first.

    Each unordered pair is visited once with values aligned by row. Only
    pairs with |r| > threshold are returned.
    """
    ensure_dataset(dataset)
    if not dataset:
        return []

    fields = numeric_fields(dataset)
    correlations = []

    for i in range(len(fields)):
        for j in range(i + 1, len(fields)):
            field1, field2 = fields[i], fields[j]
            xs, ys = aligned_pairs(dataset, field1, field2)
            if not xs:
                logger.debug(f"Skipping pair '{field1}'/'{field2}': no shared rows")
                continue

            r = pearson_correlation(xs, ys)
            if abs(r) <= threshold:
                continue

            p_value = correlation_p_value(r, len(xs)) if include_p_values else None
            correlations.append(CorrelationResult(
                field1=field1,
                field2=field2,
                correlation=r,
                strength=classify_strength(r),
                direction=classify_direction(r),
                sample_size=len(xs),
                p_value=p_value,
                significance=classify_significance(p_value),
                interpretation=interpret_correlation(r),
            ))

    return sorted(correlations, key=lambda c: abs(c.correlation), reverse=True)


def correlation_matrix(dataset: Dataset) -> Dict[str, Dict[str, float]]:
    """Full symmetric correlation matrix of numeric fields, for heatmaps"""
    ensure_dataset(dataset)
    fields = numeric_fields(dataset)
    matrix: Dict[str, Dict[str, float]] = {name: {} for name in fields}

    for i, field1 in enumerate(fields):
        matrix[field1][field1] = 1.0
        for field2 in fields[i + 1:]:
            xs, ys = aligned_pairs(dataset, field1, field2)
            r = pearson_correlation(xs, ys)
            matrix[field1][field2] = r
            matrix[field2][field1] = r

    return matrix


class CorrelationAgent:
    """Pipeline node computing significant pairwise correlations"""

    def __init__(self, threshold: float = REPORT_THRESHOLD, include_p_values: bool = True):
        self.threshold = threshold
        self.include_p_values = include_p_values

    async def process(self, state: dict) -> dict:
        logger.info("Starting correlation analysis")

        try:
            data = state.get('cleaned_data', state.get('records', []))
            results = find_correlations(data, self.threshold, self.include_p_values)

            state.update({
                'correlations': [result.to_dict() for result in results],
                'current_step': 'correlations',
                'next_action': 'patterns'
            })

            state['execution_log'].append(
                f"Correlation analysis completed: {len(results)} pairs above |r| > {self.threshold}"
            )
            return state

        except Exception as e:
            logger.error(f"Correlation analysis failed: {str(e)}")
            state['errors'].append(f"Correlation analysis error: {str(e)}")
            state['next_action'] = 'error'
            return state
