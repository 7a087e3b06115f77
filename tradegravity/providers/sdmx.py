"""SDMX-JSON decoding for the WITS trade statistics API.

Layout of the payload (SDMX-JSON 1.0, optionally wrapped in ``data``)::

    dataSets[0].series["0:1:2"].observations["3"] = [value, ...]
    structure.dimensions.series[i].values[j].id   # category ids per dimension
    structure.dimensions.observation[0].values[k].id   # time periods

A series key is a colon-delimited list of indexes, one per series dimension.
A malformed key or observation index skips that series or observation only.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from ..exceptions import ProviderResponseError
from ..models import Flow, Observation
from ..utils.periods import normalize_period

logger = logging.getLogger(__name__)

REPORTER_DIMENSION = "REPORTER"
PARTNER_DIMENSION = "PARTNER"
INDICATOR_DIMENSION = "INDICATOR"


def flow_from_indicator(indicator: str) -> Optional[Flow]:
    """``XPRT...`` indicators are exports, ``MPRT...`` imports."""
    upper = (indicator or "").strip().upper()
    if upper.startswith("XPRT"):
        return Flow.EXPORT
    if upper.startswith("MPRT"):
        return Flow.IMPORT
    return None


def is_sdmx_payload(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    if "dataSets" in payload:
        return True
    inner = payload.get("data")
    return isinstance(inner, dict) and "dataSets" in inner


def _dimension_ids(dimension: Mapping[str, Any]) -> List[str]:
    ids = []
    for value in dimension.get("values") or []:
        ids.append(str(value.get("id", "")) if isinstance(value, dict) else "")
    return ids


def parse_series_key(key: str, expected: int) -> Optional[List[int]]:
    """Split ``"0:1:2"`` into indexes; None if malformed or the wrong length."""
    parts = str(key).split(":")
    if expected > 0 and len(parts) != expected:
        return None
    indices = []
    for part in parts:
        try:
            indices.append(int(part))
        except ValueError:
            return None
    return indices


def parse_sdmx_value(values: Any) -> Optional[float]:
    """First element of an observation array as a float."""
    if not isinstance(values, list) or not values:
        return None
    first = values[0]
    if isinstance(first, bool) or first is None:
        return None
    if isinstance(first, (int, float)):
        return float(first)
    if isinstance(first, str):
        try:
            return float(first.strip())
        except ValueError:
            return None
    return None


def decode_sdmx_observations(
    payload: Mapping[str, Any],
    provider: str,
    flow: Flow,
    reporter_iso3: str,
    partner_iso3: str,
    multiplier: float = 1.0,
) -> List[Observation]:
    """
    Convert an SDMX-JSON payload into observations.

    Args:
        payload: Decoded JSON body
        provider: Provider id stored on each observation
        flow: Flow used when the INDICATOR dimension does not map to one
        reporter_iso3: Reporter used when the REPORTER dimension is absent
        partner_iso3: Partner used when the PARTNER dimension is absent
        multiplier: Factor applied to every raw value

    Returns:
        Observations in payload order; empty when the dataset has no series

    Raises:
        ProviderResponseError: No dataset or no observation (time) dimension
    """
    if isinstance(payload.get("data"), dict) and "dataSets" not in payload:
        payload = payload["data"]

    datasets = payload.get("dataSets") or []
    if not datasets or not isinstance(datasets[0], dict):
        raise ProviderResponseError("missing dataset", provider=provider)

    dimensions = (payload.get("structure") or {}).get("dimensions") or {}
    observation_dims = dimensions.get("observation") or []
    if not observation_dims:
        raise ProviderResponseError("missing observation dimension", provider=provider)

    series_dims = dimensions.get("series") or []
    series_ids = [str(dim.get("id", "")) for dim in series_dims]
    series_values = [_dimension_ids(dim) for dim in series_dims]
    time_values = _dimension_ids(observation_dims[0])

    series_data: Dict[str, Any] = datasets[0].get("series") or {}
    observations: List[Observation] = []
    skipped = 0

    for series_key, series in series_data.items():
        indices = parse_series_key(series_key, len(series_dims))
        if indices is None or not isinstance(series, dict):
            skipped += 1
            continue

        dimension_values: Dict[str, str] = {}
        for position, index in enumerate(indices):
            if 0 <= index < len(series_values[position]):
                dimension_values[series_ids[position]] = series_values[position][index]

        reporter = dimension_values.get(REPORTER_DIMENSION) or reporter_iso3
        partner = dimension_values.get(PARTNER_DIMENSION) or partner_iso3
        series_flow = flow_from_indicator(dimension_values.get(INDICATOR_DIMENSION, "")) or flow

        for obs_key, obs_value in (series.get("observations") or {}).items():
            try:
                index = int(obs_key)
            except (TypeError, ValueError):
                skipped += 1
                continue
            if index < 0 or index >= len(time_values):
                skipped += 1
                continue

            normalized = normalize_period(time_values[index])
            value = parse_sdmx_value(obs_value)
            if normalized is None or value is None:
                skipped += 1
                continue

            period_type, period = normalized
            try:
                observation = Observation(
                    provider=provider,
                    reporter_iso3=reporter.strip().upper(),
                    partner_iso3=partner.strip().upper(),
                    flow=series_flow,
                    period_type=period_type,
                    period=period,
                    value_usd=value * multiplier,
                )
            except ValidationError:
                skipped += 1
                continue
            observations.append(observation)

    if skipped:
        logger.debug(f"{provider}: skipped {skipped} malformed SDMX series/observations")
    return observations
