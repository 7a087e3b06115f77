"""Utility functions for tradegravity."""
from .payload import extract_rows, get_bool, get_float, get_string, get_value, parse_bool
from .periods import (
    build_year_range,
    compare_observations,
    normalize_period,
    period_key,
    period_priority,
    pick_latest,
)
from .retry import KeyRotatingFetcher, candidate_keys, parse_retry_after

__all__ = [
    # Payload field extraction
    'extract_rows',
    'get_bool',
    'get_float',
    'get_string',
    'get_value',
    'parse_bool',
    # Periods and selection
    'build_year_range',
    'compare_observations',
    'normalize_period',
    'period_key',
    'period_priority',
    'pick_latest',
    # Retry / key rotation
    'KeyRotatingFetcher',
    'candidate_keys',
    'parse_retry_after',
]
