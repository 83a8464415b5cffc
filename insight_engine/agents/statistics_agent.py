# insight_engine/agents/statistics_agent.py
import math
import numpy as np
from typing import Any, Dict, List, Optional, Sequence, Tuple
from dataclasses import dataclass, replace
import logging
from scipy import stats

from insight_engine.agents.field_agent import (
    Dataset, ensure_dataset, numeric_fields, numeric_values, missing_count
)
from insight_engine.utils.logging_config import log_execution_time

logger = logging.getLogger(__name__)

IQR_MULTIPLIER = 1.5


@dataclass(frozen=True)
class Quartiles:
    q1: float
    q2: float
    q3: float

    def to_dict(self) -> Dict[str, float]:
        return {'q1': self.q1, 'q2': self.q2, 'q3': self.q3}


@dataclass(frozen=True)
class FieldStatistics:
    """Descriptive statistics of one numeric field."""
    count: int
    mean: float
    median: float
    mode: List[float]
    variance: float
    standard_deviation: float
    min: float
    max: float
    range: float
    quartiles: Quartiles
    skewness: float
    kurtosis: float
    outliers: List[float]
    null_count: int
    unique_count: int

    @property
    def iqr(self) -> float:
        return self.quartiles.q3 - self.quartiles.q1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'count': self.count,
            'mean': self.mean,
            'median': self.median,
            'mode': list(self.mode),
            'standardDeviation': self.standard_deviation,
            'variance': self.variance,
            'min': self.min,
            'max': self.max,
            'range': self.range,
            'quartiles': self.quartiles.to_dict(),
            'skewness': self.skewness,
            'kurtosis': self.kurtosis,
            'outliers': list(self.outliers),
            'nullCount': self.null_count,
            'uniqueCount': self.unique_count,
        }


@dataclass(frozen=True)
class TTestResult:
    t_statistic: float
    p_value: float
    degrees_of_freedom: int
    significant: bool
    interpretation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tStatistic': self.t_statistic,
            'pValue': self.p_value,
            'degreesOfFreedom': self.degrees_of_freedom,
            'significant': self.significant,
            'interpretation': self.interpretation,
        }


def nearest_rank_quartiles(sorted_values: Sequence[float]) -> Quartiles:
    """
    Quartiles by direct index into the sorted values.

    Indexes are floor(n*0.25), floor(n*0.5), floor(n*0.75); no interpolation,
    so [1..9, 100] gives q1=3, q3=8.
    """
    n = len(sorted_values)
    return Quartiles(
        q1=float(sorted_values[math.floor(n * 0.25)]),
        q2=float(sorted_values[math.floor(n * 0.5)]),
        q3=float(sorted_values[math.floor(n * 0.75)]),
    )


def iqr_fences(sorted_values: Sequence[float], multiplier: float = IQR_MULTIPLIER) -> Tuple[float, float]:
    """Lower and upper Tukey fences around the nearest-rank quartiles"""
    quartiles = nearest_rank_quartiles(sorted_values)
    iqr = quartiles.q3 - quartiles.q1
    return quartiles.q1 - multiplier * iqr, quartiles.q3 + multiplier * iqr


def iqr_outliers(values: Sequence[float], multiplier: float = IQR_MULTIPLIER) -> List[float]:
    """Values strictly outside the IQR fences, in their original order"""
    if len(values) == 0:
        return []
    lower, upper = iqr_fences(sorted(values), multiplier)
    return [float(v) for v in values if v < lower or v > upper]


def _median(sorted_values: np.ndarray) -> float:
    n = len(sorted_values)
    if n % 2 == 0:
        return float((sorted_values[n // 2 - 1] + sorted_values[n // 2]) / 2)
    return float(sorted_values[n // 2])


def _modes(values: np.ndarray) -> List[float]:
    uniques, counts = np.unique(values, return_counts=True)
    return [float(v) for v in uniques[counts == counts.max()]]


def _standardized_moment(values: np.ndarray, mean: float, std: float, order: int) -> float:
    if std == 0:
        return 0.0
    return float(np.mean(((values - mean) / std) ** order))


def compute_field_statistics(values: Sequence[float],
                             multiplier: float = IQR_MULTIPLIER) -> Optional[FieldStatistics]:
    """
    Descriptive statistics of a numeric vector.

    Returns None for an empty vector instead of raising. Variance is the
    population variance and kurtosis is excess kurtosis; both higher moments
    are 0 for a constant vector.
    """
    if len(values) == 0:
        return None

    array = np.asarray(values, dtype=float)
    sorted_values = np.sort(array)
    count = len(array)

    mean = float(np.sum(array) / count)
    variance = float(np.sum((array - mean) ** 2) / count)
    standard_deviation = math.sqrt(variance)
    quartiles = nearest_rank_quartiles(sorted_values)

    lower, upper = iqr_fences(sorted_values, multiplier)
    outliers = [float(v) for v in sorted_values if v < lower or v > upper]

    min_value = float(sorted_values[0])
    max_value = float(sorted_values[-1])

    return FieldStatistics(
        count=count,
        mean=mean,
        median=_median(sorted_values),
        mode=_modes(array),
        variance=variance,
        standard_deviation=standard_deviation,
        min=min_value,
        max=max_value,
        range=max_value - min_value,
        quartiles=quartiles,
        skewness=_standardized_moment(array, mean, standard_deviation, 3),
        kurtosis=_standardized_moment(array, mean, standard_deviation, 4) - 3 if standard_deviation else 0.0,
        outliers=outliers,
        null_count=0,
        unique_count=len(set(array.tolist())),
    )


@log_execution_time
def perform_statistical_analysis(dataset: Dataset,
                                 multiplier: float = IQR_MULTIPLIER) -> Dict[str, FieldStatistics]:
    """Statistics for every numeric field that has at least one value"""
    ensure_dataset(dataset)
    if not dataset:
        return {}

    results = {}
    for field_name in numeric_fields(dataset):
        values = numeric_values(dataset, field_name)
        field_stats = compute_field_statistics(values, multiplier)
        if field_stats is None:
            logger.debug(f"Skipping '{field_name}': no numeric values")
            continue
        results[field_name] = replace(field_stats, null_count=missing_count(dataset, field_name))

    return results


def two_sample_t_test(sample1: Sequence[float], sample2: Sequence[float],
                      alpha: float = 0.05) -> TTestResult:
    """Pooled-variance Student t-test with a two-tailed p-value"""
    n1, n2 = len(sample1), len(sample2)
    degrees_of_freedom = n1 + n2 - 2

    if n1 == 0 or n2 == 0 or degrees_of_freedom <= 0:
        return TTestResult(0.0, 1.0, max(degrees_of_freedom, 0), False,
                           'Insufficient data for a t-test')

    a = np.asarray(sample1, dtype=float)
    b = np.asarray(sample2, dtype=float)
    var1 = float(np.var(a, ddof=1)) if n1 > 1 else 0.0
    var2 = float(np.var(b, ddof=1)) if n2 > 1 else 0.0

    pooled_variance = ((n1 - 1) * var1 + (n2 - 1) * var2) / degrees_of_freedom
    standard_error = math.sqrt(pooled_variance * (1 / n1 + 1 / n2))

    if standard_error == 0:
        t_statistic, p_value = 0.0, 1.0
    else:
        t_statistic = float((a.mean() - b.mean()) / standard_error)
        p_value = float(2 * stats.t.sf(abs(t_statistic), degrees_of_freedom))

    if p_value < 0.01:
        interpretation = 'Highly significant difference between groups'
    elif p_value < alpha:
        interpretation = 'Significant difference between groups'
    else:
        interpretation = 'No significant difference between groups'

    return TTestResult(
        t_statistic=t_statistic,
        p_value=p_value,
        degrees_of_freedom=degrees_of_freedom,
        significant=p_value < alpha,
        interpretation=interpretation,
    )


class StatisticsAgent:
    """Pipeline node computing per-field descriptive statistics"""

    def __init__(self, multiplier: float = IQR_MULTIPLIER):
        self.multiplier = multiplier

    async def process(self, state: dict) -> dict:
        logger.info("Starting statistical analysis")

        try:
            data = state.get('cleaned_data', state.get('records', []))
            results = perform_statistical_analysis(data, self.multiplier)

            state.update({
                'statistics': {name: result.to_dict() for name, result in results.items()},
                'current_step': 'statistics',
                'next_action': 'correlations'
            })

            state['execution_log'].append(
                f"Statistical analysis completed for {len(results)} numeric fields"
            )
            return state

        except Exception as e:
            logger.error(f"Statistical analysis failed: {str(e)}")
            state['errors'].append(f"Statistical analysis error: {str(e)}")
            state['next_action'] = 'error'
            return state
