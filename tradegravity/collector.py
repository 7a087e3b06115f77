"""
Trade observation collector.

For every reporter x partner x flow it fetches the latest observation, then
back-fills up to ``history_years`` earlier years that are not stored yet, and
upserts everything at the end of the run.

Usage:
    tradegravity-collector run --provider wits --partners USA,CHN
    tradegravity-collector run --provider comtrade --limit 10 --history-years 2 --verbose
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Set

import httpx

from .config import get_settings
from .exceptions import (
    ConfigurationError,
    DataProviderError,
    NoRecordsError,
    TradeGravityError,
    is_fatal_error,
    is_retryable_error,
)
from .models import CollectorSummary, Flow, Observation, Reporter
from .providers.base import TradeProvider
from .providers.comtrade import ComtradeProvider
from .providers.wits import WitsProvider
from .services.sqlite_store import SQLiteStore
from .services.store import NopStore, ObservationStore
from .utils.logging_security import configure_logging
from .utils.periods import year_from_period

logger = logging.getLogger(__name__)

PROVIDERS = ("wits", "comtrade")


def split_tokens(line: str) -> List[str]:
    """Split an allowlist line on commas, semicolons or tabs."""
    normalized = line.replace(";", ",").replace("\t", ",")
    return [part.strip() for part in normalized.split(",") if part.strip()]


def load_allowlist(path: str) -> Set[str]:
    """Read ISO3 codes from an allowlist file.

    ``#`` starts a comment; an ``ISO3`` header cell is ignored.

    Raises:
        ConfigurationError: File missing or no codes in it
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"cannot read allowlist {path}: {exc}") from exc

    allowed: Set[str] = set()
    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue
        for token in split_tokens(line):
            iso3 = token.upper()
            if iso3 and iso3 != "ISO3":
                allowed.add(iso3)

    if not allowed:
        raise ConfigurationError(f"allowlist is empty: {path}")
    return allowed


def parse_list(value: str) -> List[str]:
    return [item.strip().upper() for item in (value or "").split(",") if item.strip()]


def parse_flows(value: str) -> List[Flow]:
    items = parse_list(value)
    if not items:
        raise ConfigurationError("no flows provided")
    flows = []
    for item in items:
        flow = Flow.parse(item)
        if flow is None:
            raise ConfigurationError(f"unknown flow: {item}")
        flows.append(flow)
    return flows


def build_provider(provider_id: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> TradeProvider:
    """Construct a provider from its env-backed settings."""
    key = (provider_id or "").strip().lower()
    if key == "wits":
        return WitsProvider(transport=transport)
    if key == "comtrade":
        return ComtradeProvider(transport=transport)
    raise ConfigurationError(f"unknown provider: {provider_id}")


def open_store(db_path: str) -> ObservationStore:
    """SQLite store, or a no-op store when ``db_path`` is empty."""
    if not (db_path or "").strip():
        return NopStore()
    return SQLiteStore(db_path)


def reporters_from_allowlist(allowed: Set[str]) -> List[Reporter]:
    return [Reporter(iso3=iso3, name_en=iso3) for iso3 in sorted(allowed)]


async def resolve_reporters(
    provider: TradeProvider,
    store: ObservationStore,
    allowed: Optional[Set[str]] = None,
    limit: int = 0,
) -> List[Reporter]:
    """Active reporters from the provider, narrowed by the allowlist.

    When the provider's reporter list cannot be loaded, the allowlist alone
    is used if there is one.
    """
    try:
        reporters = [reporter for reporter in await provider.list_reporters() if reporter.is_active]
    except DataProviderError as exc:
        if is_fatal_error(exc) or not allowed:
            raise
        logger.warning(f"{provider.name}: reporter list unavailable ({exc}), using allowlist only")
        reporters = reporters_from_allowlist(allowed)
    else:
        await store.upsert_reporters(provider.name, reporters)
        if allowed:
            reporters = [reporter for reporter in reporters if reporter.iso3.upper() in allowed]

    if limit > 0:
        reporters = reporters[:limit]
    if not reporters:
        raise ConfigurationError("no reporters after filtering")
    return reporters


async def existing_years(
    store: ObservationStore,
    provider_id: str,
    reporter_iso3: str,
    partner_iso3: str,
    flow: Flow,
) -> Set[int]:
    years = set()
    for key in await store.list_observation_keys(provider_id, reporter_iso3, partner_iso3, flow):
        year = year_from_period(key.period_type, key.period)
        if year is not None:
            years.add(year)
    return years


async def collect_observations(
    provider: TradeProvider,
    store: ObservationStore,
    reporter_iso3: str,
    partner_iso3: str,
    flow: Flow,
    history_years: int = 1,
) -> List[Observation]:
    """Latest observation plus missing history for one reporter/partner/flow.

    Years already in the store are not fetched again. An empty result means
    everything is already stored.

    Raises:
        NoRecordsError: The provider has no data for this slice
    """
    stored = await existing_years(store, provider.name, reporter_iso3, partner_iso3, flow)
    latest = await provider.fetch_latest(reporter_iso3, partner_iso3, flow)
    latest_year = year_from_period(latest.period_type, latest.period)

    if latest_year is None:
        return [latest]
    if history_years <= 0:
        return [] if latest_year in stored else [latest]

    series: List[Observation] = []
    for year in range(max(latest_year - history_years, 0), latest_year + 1):
        if year in stored:
            continue
        try:
            series.extend(
                await provider.fetch_series(reporter_iso3, partner_iso3, flow, f"{year:04d}", f"{year:04d}")
            )
        except NoRecordsError:
            logger.debug(f"{provider.name}: no records for {reporter_iso3}->{partner_iso3} {flow.value} {year}")
            continue

    if not series:
        return [] if latest_year in stored else [latest]
    return series


async def run_collector(
    provider: TradeProvider,
    store: ObservationStore,
    partners: Sequence[str],
    flows: Sequence[Flow],
    *,
    allowed: Optional[Set[str]] = None,
    limit: int = 0,
    history_years: int = 1,
) -> CollectorSummary:
    """Run one collection pass and persist the results.

    Raises:
        QuotaExceededError: Provider quota exhausted; nothing is stored
        ConfigurationError: Bad inputs or provider configuration
    """
    partners = [partner.strip().upper() for partner in partners if partner.strip()]
    if not partners:
        raise ConfigurationError("no partners provided")
    if not flows:
        raise ConfigurationError("no flows provided")

    reporters = await resolve_reporters(provider, store, allowed, limit)
    summary = CollectorSummary(provider=provider.name, reporters=len(reporters))

    for reporter in reporters:
        for partner in partners:
            for flow in flows:
                if reporter.iso3.upper() == partner:
                    summary.skipped += 1
                    logger.debug(f"skip same-country reporter={reporter.iso3} partner={partner} flow={flow.value}")
                    continue

                summary.requests += 1
                try:
                    series = await collect_observations(
                        provider, store, reporter.iso3, partner, flow, history_years
                    )
                except NoRecordsError:
                    summary.skipped += 1
                    logger.debug(f"skip no-records reporter={reporter.iso3} partner={partner} flow={flow.value}")
                    continue
                except DataProviderError as exc:
                    if is_fatal_error(exc):
                        raise
                    summary.failed += 1
                    summary.errors.append({
                        **exc.to_dict(),
                        "reporter": reporter.iso3,
                        "partner": partner,
                        "flow": flow.value,
                        "retryable": is_retryable_error(exc),
                    })
                    logger.warning(f"fetch failed reporter={reporter.iso3} partner={partner} flow={flow.value}: {exc}")
                    continue

                if not series:
                    summary.skipped += 1
                    logger.debug(f"skip stored reporter={reporter.iso3} partner={partner} flow={flow.value}")
                    continue

                summary.success += 1
                summary.observations.extend(series)

    await store.upsert_observations(summary.observations)
    summary.stored = len(summary.observations)
    logger.info(
        f"collector run complete (provider={summary.provider} reporters={summary.reporters} "
        f"requests={summary.requests} success={summary.success} failed={summary.failed} "
        f"skipped={summary.skipped})"
    )
    return summary


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(prog="tradegravity-collector", description="Collect bilateral trade observations")
    subparsers = parser.add_subparsers(dest="command")

    run = subparsers.add_parser("run", help="Run one collection pass")
    run.add_argument("--provider", default=settings.default_provider, choices=PROVIDERS, help="Provider id")
    run.add_argument("--partners", default="USA,CHN", help="Comma-separated partner ISO3 list")
    run.add_argument("--flows", default="export,import", help="Comma-separated flows")
    run.add_argument("--limit", type=int, default=0, help="Limit number of reporters (0 = all)")
    run.add_argument(
        "--allowlist",
        default=settings.allowlist_path,
        help="Path to allowlist file (empty = no filter)",
    )
    run.add_argument("--db", default=settings.db_path, help="SQLite database path (empty disables persistence)")
    run.add_argument(
        "--history-years",
        type=int,
        default=1,
        help="Number of previous years to fetch (0 = latest only)",
    )
    run.add_argument("--verbose", "-v", action="store_true", help="Print each observation")
    return parser


async def _run(args: argparse.Namespace) -> CollectorSummary:
    allowed = load_allowlist(args.allowlist) if (args.allowlist or "").strip() else None
    partners = parse_list(args.partners)
    flows = parse_flows(args.flows)

    provider = build_provider(args.provider)
    store = open_store(args.db)
    try:
        return await run_collector(
            provider,
            store,
            partners,
            flows,
            allowed=allowed,
            limit=args.limit,
            history_years=args.history_years,
        )
    finally:
        await store.close()
        await provider.aclose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command != "run":
        parser.print_help(sys.stderr)
        return 2

    configure_logging(get_settings().log_level, verbose=args.verbose)
    try:
        summary = asyncio.run(_run(args))
    except TradeGravityError as exc:
        print(f"collector run failed: {exc}", file=sys.stderr)
        return 1

    if args.verbose:
        for observation in summary.observations:
            print(
                f"{observation.reporter_iso3} {observation.partner_iso3} {observation.flow.value} "
                f"{observation.period_type.value} {observation.period} {observation.value_usd:.2f}"
            )
    if summary.stored:
        print(f"collector stored observations={summary.stored}")
    print(
        f"collector run complete (provider={summary.provider} reporters={summary.reporters} "
        f"requests={summary.requests} success={summary.success} failed={summary.failed})"
    )
    if summary.skipped:
        print(f"collector run skipped={summary.skipped}")
    if summary.errors:
        retryable = sum(1 for error in summary.errors if error["retryable"])
        print(f"collector run errors={len(summary.errors)} retryable={retryable}")
        if args.verbose:
            for error in summary.errors:
                print(
                    f"  {error['reporter']} {error['partner']} {error['flow']}: "
                    f"{error['error']} {error['message']}"
                )
    return 0


if __name__ == "__main__":
    sys.exit(main())
