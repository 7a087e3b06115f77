from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, Tuple
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ..config import WitsConfig, WitsSettings
from ..exceptions import DataProviderError, NoRecordsError, ProviderResponseError, is_fatal_error
from ..models import Flow, Observation, PeriodType, ReferenceEntry, Reporter
from ..services.http_pool import create_http_client
from ..services.rate_limiter import TokenBucketLimiter
from ..utils.payload import extract_rows, get_float, get_string
from ..utils.periods import normalize_period, parse_year, pick_latest
from ..utils.retry import KeyRotatingFetcher, candidate_keys
from .references import ReferenceCache, ReferenceData, build_code_map
from .sdmx import decode_sdmx_observations, is_sdmx_payload

logger = logging.getLogger(__name__)

PROVIDER_NAME = "wits"
NO_RECORDS_MARKER = "NoRecordsFound"

VALUE_KEYS = (
    "TradeValue", "tradeValue", "TradeValueUSD", "TradeValueUS$", "TradeValueUS",
    "TradeValue1000USD", "Value", "value",
)
PERIOD_KEYS = ("Period", "period", "Time", "time")
FLOW_KEYS = ("TradeFlow", "tradeFlow", "Flow", "flow")
REPORTER_KEYS = ("ReporterISO3", "Reporter", "reporter", "ReporterCode")
PARTNER_KEYS = ("PartnerISO3", "Partner", "partner", "PartnerCode")


def _local(tag: str) -> str:
    """Tag name without its ``{namespace}`` prefix."""
    return tag.rsplit("}", 1)[-1] if isinstance(tag, str) else ""


def _iter_local(root: ET.Element, name: str) -> Iterator[ET.Element]:
    for element in root.iter():
        if _local(element.tag) == name:
            yield element


def _child_text(element: ET.Element, name: str) -> str:
    for child in element:
        if _local(child.tag) == name:
            return (child.text or "").strip()
    return ""


def _attribute(element: ET.Element, name: str) -> str:
    for key, value in element.attrib.items():
        if _local(key).lower() == name:
            return (value or "").strip()
    return ""


def _parse_xml(body: bytes) -> ET.Element:
    try:
        return ET.fromstring(body)
    except ET.ParseError as exc:
        raise ProviderResponseError(f"invalid XML: {exc}", provider=PROVIDER_NAME) from exc


def parse_country_entries(body: bytes) -> List[ReferenceEntry]:
    """Decode the country list XML (``countries > country``).

    ISO3 codes are used directly as WITS codes.
    """
    root = _parse_xml(body)
    entries = []
    for country in _iter_local(root, "country"):
        iso3 = _child_text(country, "iso3Code")
        if not iso3:
            continue
        is_reporter = _attribute(country, "isreporter")
        entries.append(
            ReferenceEntry(
                code=iso3.upper(),
                iso3=iso3,
                name=_child_text(country, "name"),
                is_reporter=is_reporter.lower() == "1",
                has_reporter=True,
                is_group=_attribute(country, "isgroup").lower() == "yes",
            )
        )
    return entries


def parse_latest_available_year(body: bytes) -> Optional[int]:
    """Largest year listed under ``dataavailability > reporter > year``."""
    root = _parse_xml(body)
    latest: Optional[int] = None
    for reporter in _iter_local(root, "reporter"):
        for child in reporter:
            if _local(child.tag) != "year":
                continue
            try:
                year = int((child.text or "").strip())
            except ValueError:
                continue
            if latest is None or year > latest:
                latest = year
    return latest


def period_from_row(row: Mapping[str, Any]) -> Optional[Tuple[PeriodType, str]]:
    """Period of a flat WITS row.

    ``Period``/``Time`` are normalized directly; otherwise ``Year`` combined
    with an optional ``Month`` or ``Quarter`` field.
    """
    raw = get_string(row, *PERIOD_KEYS)
    if raw:
        normalized = normalize_period(raw)
        if normalized:
            return normalized

    year = parse_year(get_string(row, "Year", "year") or "")
    if year is None:
        return None

    month = get_string(row, "Month", "month")
    if month and month.isdigit() and 1 <= int(month) <= 12:
        return PeriodType.MONTH, f"{year:04d}-{int(month):02d}"
    quarter = get_string(row, "Quarter", "quarter")
    if quarter and quarter.isdigit() and 1 <= int(quarter) <= 4:
        return PeriodType.QUARTER, f"{year:04d}-Q{int(quarter)}"
    return PeriodType.YEAR, f"{year:04d}"


def row_to_observation(
    row: Mapping[str, Any],
    reporter_iso3: str,
    partner_iso3: str,
    flow: Flow,
    multiplier: float = 1.0,
) -> Optional[Observation]:
    value = get_float(row, *VALUE_KEYS)
    if value is None:
        return None
    period = period_from_row(row)
    if period is None:
        return None

    row_flow = Flow.parse(get_string(row, *FLOW_KEYS) or "")
    reporter = get_string(row, *REPORTER_KEYS) or reporter_iso3
    partner = get_string(row, *PARTNER_KEYS) or partner_iso3
    period_type, canonical = period
    try:
        return Observation(
            provider=PROVIDER_NAME,
            reporter_iso3=reporter.strip().upper(),
            partner_iso3=partner.strip().upper(),
            flow=row_flow or flow,
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
    """Decode either an SDMX-JSON payload or a flat list of rows."""
    if is_sdmx_payload(payload):
        return decode_sdmx_observations(payload, PROVIDER_NAME, flow, reporter_iso3, partner_iso3, multiplier)

    observations = []
    for row in extract_rows(payload, PROVIDER_NAME):
        observation = row_to_observation(row, reporter_iso3, partner_iso3, flow, multiplier)
        if observation is not None:
            observations.append(observation)
    return observations


class WitsProvider:
    """World Bank WITS trade statistics provider.

    Values are reported in thousands of USD and scaled by
    ``value_multiplier``. Keys are optional.
    """

    def __init__(
        self,
        config: Optional[WitsConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config if config is not None else WitsSettings()
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
            candidate_keys(self.config.api_key, self.config.secondary_key),
            key_param=self.config.api_key_param,
            require_key=False,
            max_retries=self.config.max_retries,
            user_agent=self.config.user_agent,
            no_records_marker=NO_RECORDS_MARKER,
            sleep=sleep,
        )
        self._references = ReferenceCache(
            PROVIDER_NAME,
            self._load_references,
            allow_iso3_fallback=self.config.allow_iso3_fallback,
        )
        self._year_lock = asyncio.Lock()
        self._latest_years: Dict[str, str] = {}

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    async def __aenter__(self) -> "WitsProvider":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_reporters(self) -> List[Reporter]:
        reporters = await self._references.reporters()
        if not reporters:
            raise ProviderResponseError("no reporters parsed", provider=PROVIDER_NAME)
        return reporters

    async def fetch_latest(self, reporter_iso3: str, partner_iso3: str, flow: Flow) -> Observation:
        series = await self.fetch_series(reporter_iso3, partner_iso3, flow)
        return pick_latest(series)

    async def fetch_series(
        self,
        reporter_iso3: str,
        partner_iso3: str,
        flow: Flow,
        from_year: str = "",
        to_year: str = "",
    ) -> List[Observation]:
        """One request covering the whole year range (``from;to`` or ``all``)."""
        reporter_iso3 = (reporter_iso3 or "").strip().upper()
        partner_iso3 = (partner_iso3 or "").strip().upper()
        reporter_code, partner_code = await self._references.resolve_pair(reporter_iso3, partner_iso3)

        indicator = self.indicator_for_flow(flow)
        year_value = await self.resolve_year(reporter_code, indicator, from_year, to_year)
        path, params = self.trade_path(reporter_code, partner_code, indicator, year_value)

        response = await self._fetcher.get(self._url(path), self._with_format(params))
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderResponseError(f"invalid JSON: {exc}", provider=PROVIDER_NAME) from exc

        observations = parse_observations(
            payload, reporter_iso3, partner_iso3, flow, self.config.value_multiplier
        )
        if not observations:
            raise NoRecordsError("no records found", provider=PROVIDER_NAME)
        return observations

    def indicator_for_flow(self, flow: Flow) -> str:
        if flow == Flow.EXPORT:
            return self.config.indicator_export
        if flow == Flow.IMPORT:
            return self.config.indicator_import
        return str(flow)

    async def resolve_year(self, reporter: str, indicator: str, from_year: str = "", to_year: str = "") -> str:
        """Year path value: a single year, ``from;to``, the latest year, or the all-value."""
        from_year = (from_year or "").strip()
        to_year = (to_year or "").strip()
        if not from_year and not to_year:
            if self.config.auto_latest_year:
                try:
                    latest = await self.latest_year(reporter, indicator)
                except DataProviderError as exc:
                    if is_fatal_error(exc):
                        raise
                    logger.warning(f"WITS: latest year lookup failed for {reporter}/{indicator}: {exc}")
                    latest = None
                if latest:
                    return latest
            return self.config.year_all
        if from_year and to_year and from_year != to_year:
            return f"{from_year};{to_year}"
        return from_year or to_year

    async def latest_year(self, reporter: str, indicator: str) -> Optional[str]:
        """Most recent year with data, cached per reporter and indicator."""
        cache_key = f"{reporter.strip().upper()}|{indicator.strip().upper()}"
        async with self._year_lock:
            cached = self._latest_years.get(cache_key)
        if cached:
            logger.debug(f"WITS: latest year cache hit for {cache_key}: {cached}")
            return cached

        path = self._substitute(self.config.dataavail_path, {"reporter": reporter, "indicator": indicator})
        response = await self._fetcher.get(self._url(path), accept="application/xml")
        year = parse_latest_available_year(response.content)
        if year is None:
            raise ProviderResponseError("no data availability years", provider=PROVIDER_NAME)

        async with self._year_lock:
            self._latest_years[cache_key] = str(year)
        return str(year)

    def trade_path(
        self,
        reporter: str,
        partner: str,
        indicator: str,
        year_value: str,
    ) -> Tuple[str, Dict[str, str]]:
        """Fill the trade path template.

        Values whose placeholder is missing from the template are returned as
        query parameters instead.
        """
        values = {
            "reporter": reporter,
            "partner": partner,
            "indicator": indicator,
            "product": self.config.product_code,
            "year": year_value,
        }
        path = self.config.trade_path
        params: Dict[str, str] = {}
        for name, value in values.items():
            placeholder = "{" + name + "}"
            if placeholder in path:
                path = path.replace(placeholder, quote(value, safe=";"))
            elif value:
                params[name] = value
        return path, params

    def _substitute(self, template: str, values: Mapping[str, str]) -> str:
        for name, value in values.items():
            template = template.replace("{" + name + "}", quote(value, safe=""))
        return template

    def _url(self, path: str) -> str:
        return self.config.base_url.rstrip("/") + "/" + path.lstrip("/")

    def _with_format(self, params: Dict[str, str]) -> Dict[str, str]:
        query = dict(params)
        if self.config.format_param and self.config.format_value:
            query[self.config.format_param] = self.config.format_value
        return query

    async def _load_references(self) -> ReferenceData:
        response = await self._fetcher.get(self._url(self.config.reporters_path), accept="application/xml")
        entries = parse_country_entries(response.content)
        reporters, reporter_codes = build_code_map(entries, filter_reporter=True)
        _, partner_codes = build_code_map(entries, filter_reporter=False)
        return ReferenceData(reporters=reporters, reporter_codes=reporter_codes, partner_codes=partner_codes)
