from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ..config import ComtradeConfig, ComtradeSettings
from ..exceptions import (
    ConfigurationError,
    DataProviderError,
    NoRecordsError,
    ProviderResponseError,
    is_fatal_error,
)
from ..models import Flow, Observation, PeriodType, Reporter
from ..services.http_pool import create_http_client
from ..services.rate_limiter import TokenBucketLimiter
from ..utils.payload import extract_rows, get_float, get_string
from ..utils.periods import build_year_range, normalize_period, parse_year, pick_latest
from ..utils.retry import KeyRotatingFetcher, candidate_keys
from .references import ReferenceCache, ReferenceData, build_code_map, entry_from_row

logger = logging.getLogger(__name__)

PROVIDER_NAME = "comtrade"

VALUE_KEYS = ("TradeValue", "tradeValue", "TradeValueUSD", "TradeValueUS$", "Value", "value", "primaryValue")
PERIOD_KEYS = ("Period", "period", "Time", "time")
YEAR_KEYS = ("yr", "year", "Year")
REPORTER_KEYS = ("rt3ISO", "ReporterISO3", "reporterISO3", "Reporter", "reporter")
PARTNER_KEYS = ("pt3ISO", "PartnerISO3", "partnerISO3", "Partner", "partner")


def period_from_row(row: Mapping[str, Any]) -> Optional[Tuple[PeriodType, str]]:
    """Period of a Comtrade row: ``period``/``time`` first, else a bare year field."""
    raw = get_string(row, *PERIOD_KEYS)
    if raw:
        normalized = normalize_period(raw)
        if normalized:
            return normalized
    year = parse_year(get_string(row, *YEAR_KEYS) or "")
    if year is not None:
        return PeriodType.YEAR, f"{year:04d}"
    return None


def row_to_observation(
    row: Mapping[str, Any],
    reporter_iso3: str,
    partner_iso3: str,
    flow: Flow,
    multiplier: float = 1.0,
) -> Optional[Observation]:
    """Convert one data row; None when the value or period is missing or invalid."""
    value = get_float(row, *VALUE_KEYS)
    if value is None:
        return None
    period = period_from_row(row)
    if period is None:
        return None

    reporter = get_string(row, *REPORTER_KEYS) or reporter_iso3
    partner = get_string(row, *PARTNER_KEYS) or partner_iso3
    period_type, canonical = period
    try:
        return Observation(
            provider=PROVIDER_NAME,
            reporter_iso3=reporter.strip().upper(),
            partner_iso3=partner.strip().upper(),
            flow=flow,
            period_type=period_type,
            period=canonical,
            value_usd=value * multiplier,
        )
    except ValidationError as exc:
        logger.debug(f"{PROVIDER_NAME}: dropping row with invalid fields: {exc.error_count()} errors")
        return None


def parse_observations(
    payload: Any,
    reporter_iso3: str,
    partner_iso3: str,
    flow: Flow,
    multiplier: float = 1.0,
) -> List[Observation]:
    """Decode a data response, skipping rows that cannot be converted.

    Rows sharing a uniqueness key (breakdowns by customs procedure or mode of
    transport) are collapsed, keeping the largest value.
    """
    dedup_map: Dict[tuple, Observation] = {}
    skipped = 0
    for row in extract_rows(payload, PROVIDER_NAME):
        observation = row_to_observation(row, reporter_iso3, partner_iso3, flow, multiplier)
        if observation is None:
            skipped += 1
            continue
        existing = dedup_map.get(observation.key)
        if existing is None or observation.value_usd > existing.value_usd:
            dedup_map[observation.key] = observation

    if skipped:
        logger.debug(f"Comtrade: skipped {skipped} rows without a usable value or period")
    return list(dedup_map.values())


class ComtradeProvider:
    """UN Comtrade provider (annual HS totals by default).

    Requires at least one subscription key; the primary key is tried first
    and the secondary one on auth or hard failures.
    """

    def __init__(
        self,
        config: Optional[ComtradeConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config if config is not None else ComtradeSettings()
        self._client = create_http_client(self.config.timeout_seconds, self.config.user_agent, transport)
        self._limiter = TokenBucketLimiter(
            self.config.rate_limit_per_sec,
            self.config.rate_limit_burst,
            name=PROVIDER_NAME,
        )
        self._fetcher = KeyRotatingFetcher(
            self._client,
            self._limiter,
            PROVIDER_NAME,
            candidate_keys(self.config.primary_key, self.config.secondary_key),
            key_param=self.config.api_key_param,
            key_header=self.config.api_key_header,
            require_key=True,
            max_retries=self.config.max_retries,
            user_agent=self.config.user_agent,
            sleep=sleep,
        )
        self._references = ReferenceCache(
            PROVIDER_NAME,
            self._load_references,
            allow_iso3_fallback=self.config.allow_iso3_fallback,
        )

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    async def __aenter__(self) -> "ComtradeProvider":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_reporters(self) -> List[Reporter]:
        return await self._references.reporters()

    async def fetch_latest(self, reporter_iso3: str, partner_iso3: str, flow: Flow) -> Observation:
        series = await self.fetch_series(reporter_iso3, partner_iso3, flow)
        if not series:
            raise NoRecordsError("no records found", provider=PROVIDER_NAME)
        return pick_latest(series)

    async def fetch_series(
        self,
        reporter_iso3: str,
        partner_iso3: str,
        flow: Flow,
        from_year: str = "",
        to_year: str = "",
    ) -> List[Observation]:
        """Fetch one request per year in the range.

        Years with no records or a bad response are skipped. If nothing at all
        comes back, the last per-year failure is raised, or NoRecordsError
        when every year was simply empty.
        """
        reporter_iso3 = (reporter_iso3 or "").strip().upper()
        partner_iso3 = (partner_iso3 or "").strip().upper()
        reporter_code, partner_code = await self._references.resolve_pair(reporter_iso3, partner_iso3)

        try:
            years = build_year_range(from_year, to_year, self.config.lookback_years)
        except ValueError as exc:
            raise ConfigurationError(f"{PROVIDER_NAME}: {exc}") from exc

        flow_code = self.flow_code(flow)
        observations: List[Observation] = []
        last_error: Optional[DataProviderError] = None

        for year in years:
            try:
                rows = await self._fetch_year(
                    reporter_iso3, partner_iso3, reporter_code, partner_code, flow, flow_code, year
                )
            except NoRecordsError:
                logger.debug(f"Comtrade: no records for {reporter_iso3}->{partner_iso3} {flow.value} {year}")
                continue
            except DataProviderError as exc:
                if is_fatal_error(exc):
                    raise
                logger.warning(f"Comtrade: skipping {reporter_iso3}->{partner_iso3} {flow.value} {year}: {exc}")
                last_error = exc
                continue
            observations.extend(rows)

        if not observations:
            if last_error is not None:
                raise last_error
            raise NoRecordsError("no records found", provider=PROVIDER_NAME)
        return observations

    def data_url(self) -> str:
        path = self.config.data_path.lstrip("/")
        path = path.replace("{type}", quote(self.config.type_code, safe=""))
        path = path.replace("{freq}", quote(self.config.frequency, safe=""))
        path = path.replace("{cl}", quote(self.config.classification, safe=""))
        endpoint = self.config.base_url.rstrip("/") + "/" + path
        dataset = self.config.dataset.strip()
        if dataset:
            endpoint = endpoint.rstrip("/") + "/" + quote(dataset, safe="")
        return endpoint

    def flow_code(self, flow: Flow) -> str:
        if flow == Flow.EXPORT:
            return self.config.flow_export
        if flow == Flow.IMPORT:
            return self.config.flow_import
        return str(flow)

    async def _fetch_year(
        self,
        reporter_iso3: str,
        partner_iso3: str,
        reporter_code: str,
        partner_code: str,
        flow: Flow,
        flow_code: str,
        year: int,
    ) -> List[Observation]:
        params: Dict[str, Any] = {
            "reportercode": reporter_code,
            "flowCode": flow_code,
            "period": str(year),
            "cmdCode": self.config.commodity,
            "partnerCode": partner_code,
            "format": self.config.format,
        }
        if self.config.max_records > 0:
            params["maxRecords"] = str(self.config.max_records)

        response = await self._fetcher.get(self.data_url(), params)
        payload = self._decode(response)
        observations = parse_observations(
            payload, reporter_iso3, partner_iso3, flow, self.config.value_multiplier
        )
        if not observations:
            raise NoRecordsError("no records found", provider=PROVIDER_NAME)
        return observations

    def _decode(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderResponseError(f"invalid JSON: {exc}", provider=PROVIDER_NAME) from exc

    async def _load_references(self) -> ReferenceData:
        reporters, reporter_codes = await self._fetch_references(self.config.reporters_url, filter_reporter=True)
        if not reporters:
            raise ProviderResponseError("no reporters parsed", provider=PROVIDER_NAME)
        _, partner_codes = await self._fetch_references(self.config.partners_url, filter_reporter=False)
        return ReferenceData(reporters=reporters, reporter_codes=reporter_codes, partner_codes=partner_codes)

    async def _fetch_references(self, url: str, filter_reporter: bool) -> Tuple[List[Reporter], Dict[str, str]]:
        if not (url or "").strip():
            raise ConfigurationError(f"{PROVIDER_NAME}: reference url is required")
        response = await self._fetcher.get(url)
        entries = [entry_from_row(row) for row in extract_rows(self._decode(response), PROVIDER_NAME)]
        return build_code_map(entries, filter_reporter=filter_reporter)
