"""Field extraction from loosely-typed JSON rows.

Statistical APIs rename fields between versions (``TradeValue``,
``tradeValue``, ``primaryValue``...). These helpers take a decoded row and an
ordered list of candidate keys, try exact matches first and then a
case-insensitive scan, and coerce the value. Missing or malformed fields
come back as None; nothing here raises on bad data except ``extract_rows``,
which reports an unexpected envelope.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..exceptions import ProviderResponseError

_MISSING = object()

TRUE_TOKENS = frozenset({"1", "true", "yes", "y"})

ROW_ENVELOPE_KEYS: Tuple[str, ...] = (
    "dataset", "Dataset", "data", "Data", "results", "Results",
    "value", "Value", "items", "Items",
)


def get_value(row: Mapping[str, Any], keys: Sequence[str]) -> Tuple[bool, Any]:
    """Return ``(found, value)`` for the first candidate key present in ``row``."""
    for key in keys:
        if key in row:
            return True, row[key]
    lowered = [key.lower() for key in keys]
    for row_key, value in row.items():
        if isinstance(row_key, str) and row_key.lower() in lowered:
            return True, value
    return False, None


def _format_number(value: Any) -> str:
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    return str(value)


def get_string(row: Mapping[str, Any], *keys: str) -> Optional[str]:
    """String field: trimmed text, or a canonical decimal string for numbers."""
    found, value = get_value(row, keys)
    if not found or value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed or None
    if isinstance(value, (int, float, Decimal)):
        return _format_number(value)
    return None


def get_float(row: Mapping[str, Any], *keys: str) -> Optional[float]:
    """Numeric field as float; numeric strings are accepted."""
    found, value = get_value(row, keys)
    if not found or value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def parse_bool(value: Any) -> bool:
    """Loose boolean: literals, nonzero numbers, or ``1/true/yes/y``."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in TRUE_TOKENS
    return False


def get_bool(row: Mapping[str, Any], *keys: str) -> Optional[bool]:
    """Boolean field, or None when the field is absent."""
    found, value = get_value(row, keys)
    if not found:
        return None
    return parse_bool(value)


def extract_rows(payload: Any, provider: Optional[str] = None) -> List[Dict[str, Any]]:
    """Unwrap a list of row dicts from a bare list or a known envelope key.

    Non-dict items in the list are dropped.
    """
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        for key in ROW_ENVELOPE_KEYS:
            if key in payload:
                return extract_rows(payload[key], provider)
        raise ProviderResponseError("unexpected response shape", provider=provider)
    raise ProviderResponseError("unexpected response type", provider=provider)
