# insight_engine/agents/cleaning_agent.py
import pandas as pd
import numpy as np
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
import logging

from insight_engine.agents.field_agent import (
    Dataset, dataset_fields, is_missing, to_number, numeric_fields, numeric_values
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationReport:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    record_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_valid': self.is_valid,
            'errors': list(self.errors),
            'record_count': self.record_count,
        }


def validate_records(dataset: Any) -> ValidationReport:
    """Structural checks on an uploaded record list; reports problems instead of raising"""
    if not isinstance(dataset, list):
        return ValidationReport(False, ['Data must be an array'])

    if len(dataset) == 0:
        return ValidationReport(False, ['Data array is empty'])

    errors = []
    first_keys = dataset_fields(dataset)

    for index, record in enumerate(dataset):
        if not isinstance(record, dict):
            errors.append(f"Record at index {index} is not an object")
            continue

        if len(record) != len(first_keys):
            errors.append(f"Record at index {index} has inconsistent number of fields")

        for key in first_keys:
            if key not in record:
                errors.append(f"Record at index {index} is missing field: {key}")

    return ValidationReport(len(errors) == 0, errors, len(dataset))


def infer_value_type(values: List[Any]) -> str:
    """number, boolean, date or string for a column's present values"""
    if not values:
        return 'string'
    if all(isinstance(v, (bool, np.bool_))
           or (isinstance(v, str) and v.strip().lower() in ('true', 'false')) for v in values):
        return 'boolean'
    if all(to_number(v) is not None for v in values):
        return 'number'
    parsed = pd.to_datetime(pd.Series([str(v) for v in values]), errors='coerce', format='mixed')
    if parsed.notna().all():
        return 'date'
    return 'string'


class DataPreprocessor:
    """Record-level cleaning operations; every method returns new rows"""

    @staticmethod
    def remove_duplicates(data: Dataset) -> Dataset:
        """Drop exact duplicate rows, keeping the first occurrence"""
        if not data:
            return []

        frame = pd.DataFrame.from_records(data)
        duplicated = frame.astype(str).duplicated(keep='first')
        return [dict(row) for row, is_dup in zip(data, duplicated) if not is_dup]

    @staticmethod
    def fill_missing_values(data: Dataset) -> Dataset:
        """Numeric columns get their mean, everything else its most frequent value"""
        if not data:
            return []

        fill_values = {}
        for column in dataset_fields(data):
            present = [row.get(column) for row in data if not is_missing(row.get(column))]
            if present and all(to_number(v) is not None for v in present):
                fill_values[column] = float(np.mean([to_number(v) for v in present]))
            elif present:
                counts = pd.Series([str(v) for v in present]).value_counts()
                fill_values[column] = counts.index[0]
            else:
                fill_values[column] = 'Unknown'

        filled = []
        for row in data:
            new_row = dict(row)
            for column, fill_value in fill_values.items():
                if is_missing(new_row.get(column)):
                    new_row[column] = fill_value
            filled.append(new_row)
        return filled

    @staticmethod
    def normalize(data: Dataset) -> Dataset:
        """Min-max scale numeric columns into [0, 1]; constant columns are left alone"""
        if not data:
            return []

        ranges = {}
        for column in numeric_fields(data):
            values = numeric_values(data, column)
            if values and max(values) > min(values):
                ranges[column] = (min(values), max(values))

        normalized = []
        for row in data:
            new_row = dict(row)
            for column, (low, high) in ranges.items():
                value = new_row.get(column)
                if not is_missing(value):
                    new_row[column] = (to_number(value) - low) / (high - low)
            normalized.append(new_row)
        return normalized

    @staticmethod
    def convert_data_types(data: Dataset) -> Dataset:
        """Coerce numeric and true/false text to real numbers and booleans"""
        if not data:
            return []

        column_types = {}
        for column in dataset_fields(data):
            present = [row.get(column) for row in data if not is_missing(row.get(column))]
            column_types[column] = infer_value_type(present)

        converted = []
        for row in data:
            new_row = dict(row)
            for column, column_type in column_types.items():
                value = new_row.get(column)
                if is_missing(value):
                    continue
                if column_type == 'number':
                    new_row[column] = to_number(value)
                elif column_type == 'boolean':
                    new_row[column] = value if isinstance(value, bool) else str(value).strip().lower() == 'true'
                elif column_type == 'string':
                    new_row[column] = str(value)
            converted.append(new_row)
        return converted

    @classmethod
    def process(cls, data: Dataset, options: Optional[Dict[str, bool]] = None) -> Dataset:
        """Apply the enabled cleaning steps in a fixed order"""
        options = options or {}
        processed = [dict(row) for row in data]

        if options.get('remove_duplicates'):
            processed = cls.remove_duplicates(processed)

        if options.get('fill_missing_values'):
            processed = cls.fill_missing_values(processed)

        if options.get('normalize_data'):
            processed = cls.normalize(processed)

        if options.get('convert_data_types'):
            processed = cls.convert_data_types(processed)

        return processed


class CleaningAgent:
    """Agent responsible for record validation and auto-cleaning"""

    def __init__(self, options: Optional[Dict[str, bool]] = None, max_records: int = 500_000):
        self.options = options or {}
        self.max_records = max_records

    async def validate(self, state: dict) -> dict:
        """Structural validation of the uploaded records"""
        logger.info("Starting record validation")

        try:
            records = state.get('records')
            report = validate_records(records)

            errors = list(report.errors)
            if report.record_count > self.max_records:
                errors.append(f"Too many records: {report.record_count} > {self.max_records}")

            validation_report = {
                **report.to_dict(),
                'is_valid': report.is_valid and len(errors) == len(report.errors),
                'errors': errors,
            }

            state.update({
                'validation_report': validation_report,
                'current_step': 'validation',
                'next_action': 'proceed' if validation_report['is_valid'] else 'error'
            })

            state['execution_log'].append(
                f"Record validation completed: {len(errors)} problems in {report.record_count} records"
            )
            return state

        except Exception as e:
            logger.error(f"Record validation failed: {str(e)}")
            state['errors'].append(f"Record validation error: {str(e)}")
            state['next_action'] = 'error'
            return state

    async def clean(self, state: dict) -> dict:
        """Apply the configured cleaning steps to validated records"""
        logger.info("Starting data cleaning")

        try:
            records = state['records']
            options = state.get('cleaning_options') or self.options

            cleaned = DataPreprocessor.process(records, options)
            steps = [name for name, enabled in options.items() if enabled]

            state.update({
                'cleaned_data': cleaned,
                'cleaning_report': {
                    'original_rows': len(records),
                    'cleaned_rows': len(cleaned),
                    'rows_removed': len(records) - len(cleaned),
                    'steps_performed': steps
                },
                'current_step': 'cleaning',
                'next_action': 'field_typing'
            })

            state['execution_log'].append(
                f"Data cleaning completed: {len(cleaned)} of {len(records)} rows kept"
            )
            return state

        except Exception as e:
            logger.error(f"Data cleaning failed: {str(e)}")
            state['errors'].append(f"Data cleaning error: {str(e)}")
            state['next_action'] = 'error'
            return state
