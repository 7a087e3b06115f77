"""
SQLite observation store.

One connection per store, shared across threads; statements are serialized with a
lock and every public method runs in a worker thread so the event loop never
blocks on disk I/O.

Schema:
- trade_observations: one row per (provider, reporter_iso3, partner_iso3,
  flow, period_type, period); re-ingesting a row updates its value and
  timestamps.
- reporters: provider reference lists, one row per (provider, iso3).
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ..exceptions import ConfigurationError
from ..models import Flow, Observation, ObservationKey, PeriodType, Reporter

logger = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS trade_observations (
        provider TEXT NOT NULL,
        reporter_iso3 TEXT NOT NULL,
        partner_iso3 TEXT NOT NULL,
        flow TEXT NOT NULL,
        period_type TEXT NOT NULL,
        period TEXT NOT NULL,
        value_usd REAL NOT NULL,
        ingested_at TEXT NOT NULL,
        source_updated_at TEXT,
        PRIMARY KEY (provider, reporter_iso3, partner_iso3, flow, period_type, period)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reporters (
        provider TEXT NOT NULL,
        iso3 TEXT NOT NULL,
        name_en TEXT NOT NULL DEFAULT '',
        name_ko TEXT NOT NULL DEFAULT '',
        region TEXT NOT NULL DEFAULT '',
        is_active INTEGER NOT NULL DEFAULT 1,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (provider, iso3)
    )
    """,
)

UPSERT_OBSERVATION = """
    INSERT INTO trade_observations (
        provider, reporter_iso3, partner_iso3, flow, period_type, period,
        value_usd, ingested_at, source_updated_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(provider, reporter_iso3, partner_iso3, flow, period_type, period)
    DO UPDATE SET
        value_usd = excluded.value_usd,
        ingested_at = excluded.ingested_at,
        source_updated_at = excluded.source_updated_at
"""

UPSERT_REPORTER = """
    INSERT INTO reporters (provider, iso3, name_en, name_ko, region, is_active, updated_at)
    VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(provider, iso3)
    DO UPDATE SET
        name_en = excluded.name_en,
        name_ko = excluded.name_ko,
        region = excluded.region,
        is_active = excluded.is_active,
        updated_at = excluded.updated_at
"""


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class SQLiteStore:
    """ObservationStore backed by a local SQLite file."""

    def __init__(self, db_path: Union[str, Path]):
        if not str(db_path or "").strip():
            raise ConfigurationError("sqlite: path is required")
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._migrate()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("store is closed")
        return self._conn

    def _migrate(self) -> None:
        conn = self._connection()
        with self._lock, conn:
            for statement in SCHEMA:
                conn.execute(statement)

    # Observations

    def _upsert_observations(self, observations: Sequence[Observation]) -> None:
        if not observations:
            return
        now = datetime.now(timezone.utc)
        rows = [
            (
                observation.provider,
                observation.reporter_iso3,
                observation.partner_iso3,
                observation.flow.value,
                observation.period_type.value,
                observation.period,
                observation.value_usd,
                _iso(observation.ingested_at or now),
                _iso(observation.source_updated_at),
            )
            for observation in observations
        ]
        conn = self._connection()
        with self._lock, conn:
            conn.executemany(UPSERT_OBSERVATION, rows)
        logger.debug(f"Upserted {len(rows)} observations into {self.db_path}")

    async def upsert_observations(self, observations: Sequence[Observation]) -> None:
        await asyncio.to_thread(self._upsert_observations, list(observations))

    def _list_observation_keys(
        self,
        provider: str,
        reporter_iso3: str,
        partner_iso3: str,
        flow: Flow,
    ) -> List[ObservationKey]:
        with self._lock:
            rows = self._connection().execute(
                """
                SELECT period_type, period FROM trade_observations
                WHERE provider = ? AND reporter_iso3 = ? AND partner_iso3 = ? AND flow = ?
                ORDER BY period_type, period
                """,
                (provider, reporter_iso3.upper(), partner_iso3.upper(), Flow(flow).value),
            ).fetchall()
        return [
            ObservationKey(period_type=PeriodType(row["period_type"]), period=row["period"])
            for row in rows
        ]

    async def list_observation_keys(
        self,
        provider: str,
        reporter_iso3: str,
        partner_iso3: str,
        flow: Flow,
    ) -> List[ObservationKey]:
        return await asyncio.to_thread(
            self._list_observation_keys, provider, reporter_iso3, partner_iso3, flow
        )

    def _list_observations(self, provider: Optional[str] = None) -> List[Observation]:
        query = "SELECT * FROM trade_observations"
        params: tuple = ()
        if provider:
            query += " WHERE provider = ?"
            params = (provider,)
        query += " ORDER BY provider, reporter_iso3, partner_iso3, flow, period_type, period"
        with self._lock:
            rows = self._connection().execute(query, params).fetchall()
        return [
            Observation(
                provider=row["provider"],
                reporter_iso3=row["reporter_iso3"],
                partner_iso3=row["partner_iso3"],
                flow=Flow(row["flow"]),
                period_type=PeriodType(row["period_type"]),
                period=row["period"],
                value_usd=row["value_usd"],
                ingested_at=datetime.fromisoformat(row["ingested_at"]),
                source_updated_at=(
                    datetime.fromisoformat(row["source_updated_at"]) if row["source_updated_at"] else None
                ),
            )
            for row in rows
        ]

    async def list_observations(self, provider: Optional[str] = None) -> List[Observation]:
        return await asyncio.to_thread(self._list_observations, provider)

    # Reporters

    def _upsert_reporters(self, provider: str, reporters: Sequence[Reporter]) -> None:
        if not reporters:
            return
        now = _iso(datetime.now(timezone.utc))
        rows = [
            (
                provider,
                reporter.iso3.upper(),
                reporter.name_en,
                reporter.name_ko,
                reporter.region,
                int(reporter.is_active),
                now,
            )
            for reporter in reporters
        ]
        conn = self._connection()
        with self._lock, conn:
            conn.executemany(UPSERT_REPORTER, rows)

    async def upsert_reporters(self, provider: str, reporters: Sequence[Reporter]) -> None:
        await asyncio.to_thread(self._upsert_reporters, provider, list(reporters))

    def _list_reporters(self, provider: str, only_active: bool = True) -> List[Reporter]:
        query = "SELECT * FROM reporters WHERE provider = ?"
        if only_active:
            query += " AND is_active = 1"
        query += " ORDER BY iso3"
        with self._lock:
            rows = self._connection().execute(query, (provider,)).fetchall()
        return [
            Reporter(
                iso3=row["iso3"],
                name_en=row["name_en"],
                name_ko=row["name_ko"],
                region=row["region"],
                is_active=bool(row["is_active"]),
            )
            for row in rows
        ]

    async def list_reporters(self, provider: str, only_active: bool = True) -> List[Reporter]:
        return await asyncio.to_thread(self._list_reporters, provider, only_active)

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug(f"Closed SQLite store {self.db_path}")
