# insight_engine/agents/field_agent.py
import math
import pandas as pd
import numpy as np
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Dataset = List[Row]


def ensure_dataset(dataset: Any) -> Dataset:
    """Reject anything that is not a list of rows; the only argument error the core raises."""
    if not isinstance(dataset, list):
        raise TypeError(f"Dataset must be a list of records, got {type(dataset).__name__}")
    return dataset


def is_missing(value: Any) -> bool:
    """None, empty or blank strings and float NaN count as missing"""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ''
    if isinstance(value, float):
        return math.isnan(value)
    return False


def to_number(value: Any) -> Optional[float]:
    """Convert a scalar to a finite float, or None when it does not parse"""
    if isinstance(value, (bool, np.bool_)):
        return float(value)
    try:
        if isinstance(value, (int, float, np.integer, np.floating)):
            number = float(value)
        elif isinstance(value, str):
            number = float(value.strip())
        else:
            return None
    except (OverflowError, ValueError):
        # Integers beyond float range and unparseable text
        return None

    return number if math.isfinite(number) else None


def dataset_fields(dataset: Dataset) -> List[str]:
    """Fields are discovered from the first row"""
    if not dataset or not isinstance(dataset[0], dict):
        return []
    return list(dataset[0].keys())


def _row_value(row: Any, field_name: str) -> Any:
    if not isinstance(row, dict):
        return None
    return row.get(field_name)


def numeric_fields(dataset: Dataset) -> List[str]:
    """
    Fields whose every non-missing value converts to a finite number.

    Order follows the first row's keys, which clustering relies on.
    """
    ensure_dataset(dataset)

    numeric = []
    for field_name in dataset_fields(dataset):
        qualifies = True
        for row in dataset:
            value = _row_value(row, field_name)
            if is_missing(value):
                continue
            if to_number(value) is None:
                qualifies = False
                break
        if qualifies:
            numeric.append(field_name)

    return numeric


def numeric_values(dataset: Dataset, field_name: str) -> List[float]:
    """Non-missing values of a field, in row order, converted to float"""
    ensure_dataset(dataset)

    values = []
    for row in dataset:
        value = _row_value(row, field_name)
        if is_missing(value):
            continue
        number = to_number(value)
        if number is not None:
            values.append(number)
    return values


def missing_count(dataset: Dataset, field_name: str) -> int:
    return sum(1 for row in dataset if is_missing(_row_value(row, field_name)))


def aligned_pairs(dataset: Dataset, field_a: str, field_b: str) -> Tuple[List[float], List[float]]:
    """Values of two fields taken from the same rows, skipping rows where either is missing"""
    ensure_dataset(dataset)

    xs, ys = [], []
    for row in dataset:
        x = _row_value(row, field_a)
        y = _row_value(row, field_b)
        if is_missing(x) or is_missing(y):
            continue
        x_num, y_num = to_number(x), to_number(y)
        if x_num is None or y_num is None:
            continue
        xs.append(x_num)
        ys.append(y_num)
    return xs, ys


@dataclass(frozen=True)
class ColumnProfile:
    """Type and cardinality summary of a single column."""
    name: str
    type: str                 # number | date | boolean | string
    unique_values: int
    null_count: int
    statistics: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': self.type,
            'uniqueValues': self.unique_values,
            'nullCount': self.null_count,
            'statistics': dict(self.statistics),
        }


def _infer_column_type(series: pd.Series) -> str:
    present = series.dropna()
    present = present[~present.map(is_missing)]
    if present.empty:
        return 'string'

    if present.map(lambda v: isinstance(v, (bool, np.bool_))).any():
        return 'boolean'

    if present.map(lambda v: to_number(v) is not None).all():
        return 'number'

    # Majority-date columns, as long as they are not plain words
    parsed = pd.to_datetime(present.astype(str), errors='coerce', format='mixed')
    if parsed.notna().sum() > len(present) * 0.8:
        return 'date'

    return 'string'


def profile_columns(dataset: Dataset) -> List[ColumnProfile]:
    """Infer a display type for every column and summarise numeric ones"""
    ensure_dataset(dataset)
    if not dataset:
        return []

    rows = [row for row in dataset if isinstance(row, dict)]
    frame = pd.DataFrame.from_records(rows, columns=dataset_fields(dataset))
    profiles = []

    for column in frame.columns:
        series = frame[column]
        missing_mask = series.map(is_missing)
        present = series[~missing_mask]
        column_type = _infer_column_type(series)

        stats: Dict[str, float] = {}
        if column_type == 'number' and not present.empty:
            numbers = present.map(to_number).astype(float)
            counts = numbers.value_counts(sort=False)
            stats = {
                'min': float(numbers.min()),
                'max': float(numbers.max()),
                'mean': float(numbers.mean()),
                'median': float(numbers.median()),
                'mode': float(counts.idxmax()),
                'standardDeviation': float(numbers.std(ddof=0)),
                'variance': float(numbers.var(ddof=0)),
            }

        profiles.append(ColumnProfile(
            name=str(column),
            type=column_type,
            unique_values=int(present.astype(str).nunique()),
            null_count=int(missing_mask.sum()),
            statistics=stats,
        ))

    return profiles


class FieldTypingAgent:
    """Pipeline node that classifies columns before any numeric analysis"""

    async def process(self, state: dict) -> dict:
        logger.info("Starting field typing")

        try:
            data = state.get('cleaned_data', state.get('records', []))

            fields = numeric_fields(data)
            profiles = profile_columns(data)

            state.update({
                'numeric_fields': fields,
                'column_profiles': [profile.to_dict() for profile in profiles],
                'current_step': 'field_typing',
                'next_action': 'statistics'
            })

            state['execution_log'].append(
                f"Field typing completed: {len(fields)} numeric of {len(profiles)} columns"
            )
            return state

        except Exception as e:
            logger.error(f"Field typing failed: {str(e)}")
            state['errors'].append(f"Field typing error: {str(e)}")
            state['next_action'] = 'error'
            return state
