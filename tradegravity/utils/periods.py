"""Period parsing, canonicalisation and "latest observation" selection.

Providers report periods in several shapes (``202301``, ``2023-01``,
``2023Q1``, ``2023-q1``, ``2023``). Everything is normalised to one of the
canonical strings:

    Month    YYYY-MM
    Quarter  YYYY-Qn
    Year     YYYY

``period_key`` orders periods within one granularity and ``period_priority``
ranks granularities against each other. Selection compares priority first,
so a monthly observation always beats a yearly one, whatever the years.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from ..models import Observation, PeriodType

_MONTH_RE = re.compile(r"^\d{4}-\d{2}$")
_QUARTER_RE = re.compile(r"^\d{4}-Q[1-4]$")
_YEAR_RE = re.compile(r"^\d{4}$")

PERIOD_PRIORITY = {
    PeriodType.MONTH: 3,
    PeriodType.QUARTER: 2,
    PeriodType.YEAR: 1,
}


def parse_year(value: str) -> Optional[int]:
    """Parse a bare 4-digit year."""
    value = (value or "").strip()
    if len(value) != 4 or not value.isdigit():
        return None
    return int(value)


def _to_int(value: str) -> Optional[int]:
    value = value.strip()
    if not value.isdigit():
        return None
    return int(value)


def parse_year_month(value: str) -> Optional[Tuple[int, int]]:
    """Parse ``YYYYMM`` or ``YYYY-MM``; the month must be in 1..12."""
    value = (value or "").strip()
    if len(value) == 6 and value.isdigit():
        year, month = int(value[:4]), int(value[4:])
        if 1 <= month <= 12:
            return year, month

    parts = value.split("-")
    if len(parts) == 2:
        year = parse_year(parts[0])
        month = _to_int(parts[1])
        if year is not None and month is not None and 1 <= month <= 12:
            return year, month
    return None


def parse_year_quarter(value: str) -> Optional[Tuple[int, int]]:
    """Parse ``YYYY-Qn`` or ``YYYYQn`` (case-insensitive); n must be in 1..4."""
    value = (value or "").strip().upper()
    for separator in ("-Q", "Q"):
        if separator not in value:
            continue
        parts = value.split(separator)
        if len(parts) != 2:
            continue
        year = parse_year(parts[0])
        quarter = _to_int(parts[1])
        if year is not None and quarter is not None and 1 <= quarter <= 4:
            return year, quarter
    return None


def normalize_period(raw: str) -> Optional[Tuple[PeriodType, str]]:
    """Convert a raw period token to ``(period_type, canonical_period)``.

    Tries year+month, then year+quarter, then a bare year. Returns None when
    nothing matches.
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        return None

    year_month = parse_year_month(trimmed)
    if year_month:
        year, month = year_month
        return PeriodType.MONTH, f"{year:04d}-{month:02d}"

    year_quarter = parse_year_quarter(trimmed)
    if year_quarter:
        year, quarter = year_quarter
        return PeriodType.QUARTER, f"{year:04d}-Q{quarter}"

    year = parse_year(trimmed)
    if year is not None:
        return PeriodType.YEAR, f"{year:04d}"
    return None


def is_canonical_period(period_type: PeriodType, period: str) -> bool:
    """Check that ``period`` is exactly the canonical string for its type."""
    if period_type == PeriodType.MONTH:
        return bool(_MONTH_RE.match(period or "")) and parse_year_month(period) is not None
    if period_type == PeriodType.QUARTER:
        return bool(_QUARTER_RE.match(period or ""))
    if period_type == PeriodType.YEAR:
        return bool(_YEAR_RE.match(period or ""))
    return False


def period_priority(period_type: Optional[PeriodType]) -> int:
    return PERIOD_PRIORITY.get(period_type, 0)


def period_key(period_type: PeriodType, period: str) -> int:
    """Integer ordering key within one granularity (0 when unparseable)."""
    if period_type == PeriodType.MONTH:
        parsed = parse_year_month(period)
        return parsed[0] * 100 + parsed[1] if parsed else 0
    if period_type == PeriodType.QUARTER:
        parsed = parse_year_quarter(period)
        return parsed[0] * 10 + parsed[1] if parsed else 0
    if period_type == PeriodType.YEAR:
        year = parse_year(period)
        return year if year is not None else 0
    return 0


def year_from_period(period_type: PeriodType, period: str) -> Optional[int]:
    if period_type == PeriodType.MONTH:
        parsed = parse_year_month(period)
        return parsed[0] if parsed else None
    if period_type == PeriodType.QUARTER:
        parsed = parse_year_quarter(period)
        return parsed[0] if parsed else None
    if period_type == PeriodType.YEAR:
        return parse_year(period)
    return None


def compare_observations(a: Observation, b: Observation) -> int:
    """Three-way compare by granularity priority, then period key."""
    priority_a = period_priority(a.period_type)
    priority_b = period_priority(b.period_type)
    if priority_a != priority_b:
        return 1 if priority_a > priority_b else -1

    key_a = period_key(a.period_type, a.period)
    key_b = period_key(b.period_type, b.period)
    if key_a > key_b:
        return 1
    if key_a < key_b:
        return -1
    return 0


def pick_latest(observations: Iterable[Observation]) -> Observation:
    """Return the most recent observation.

    Ties keep the first one seen. Raises ValueError on empty input; callers
    that need a provider-level signal raise NoRecordsError themselves.
    """
    selected: Optional[Observation] = None
    for observation in observations:
        if selected is None or compare_observations(observation, selected) > 0:
            selected = observation
    if selected is None:
        raise ValueError("cannot select latest observation from an empty list")
    return selected


def build_year_range(from_year: str, to_year: str, lookback_years: int, current_year: Optional[int] = None) -> List[int]:
    """Expand ``from``/``to`` bounds into an inclusive list of years.

    Both empty: the last ``lookback_years`` years up to the current one.
    One bound given: it is used for both ends. Reversed bounds are swapped.
    """
    from_year = (from_year or "").strip()
    to_year = (to_year or "").strip()
    if current_year is None:
        current_year = datetime.now(timezone.utc).year

    if not from_year and not to_year:
        start = max(current_year - lookback_years, 0)
        return list(range(start, current_year + 1))

    from_year = from_year or to_year
    to_year = to_year or from_year

    start = parse_year(from_year)
    if start is None:
        raise ValueError(f"invalid from year {from_year!r}")
    end = parse_year(to_year)
    if end is None:
        raise ValueError(f"invalid to year {to_year!r}")
    if start > end:
        start, end = end, start
    return list(range(start, end + 1))
