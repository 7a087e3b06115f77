"""Country reference lists and ISO3 -> provider code resolution.

Each provider instance owns one ``ReferenceCache``. The first call that needs
codes triggers exactly one load, even when many tasks race on first use; a
failed load leaves the cache unloaded so a later call can try again. Once
loaded, the maps are never mutated.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Tuple

from ..exceptions import DataProviderError, MissingCodeError, is_fatal_error
from ..models import ReferenceEntry, Reporter
from ..utils.payload import get_string, get_value, parse_bool

logger = logging.getLogger(__name__)

REPORTER = "reporter"
PARTNER = "partner"

CODE_KEYS = ("id", "code", "reporterCode", "partnerCode", "PartnerCode", "areaCode")
ISO3_KEYS = (
    "iso3", "ISO3", "iso3Code", "iso3code", "iso3ISO", "rt3ISO", "pt3ISO",
    "reporterCodeIsoAlpha3", "ReporterCodeIsoAlpha3",
    "PartnerCodeIsoAlpha3", "partnerCodeIsoAlpha3",
)
NAME_KEYS = ("text", "name", "label", "description")
REPORTER_FLAG_KEYS = ("isReporter", "isreporter", "reporter")
PARTNER_FLAG_KEYS = ("isPartner", "ispartner", "partner")
GROUP_FLAG_KEYS = ("isGroup", "isgroup", "group")


@dataclass(frozen=True)
class ReferenceData:
    """Result of one reference load."""
    reporters: List[Reporter] = field(default_factory=list)
    reporter_codes: Dict[str, str] = field(default_factory=dict)
    partner_codes: Dict[str, str] = field(default_factory=dict)


def entry_from_row(row: Mapping[str, Any]) -> ReferenceEntry:
    """Decode one JSON reference row, recording which flags were present."""
    found_reporter, reporter_flag = get_value(row, REPORTER_FLAG_KEYS)
    found_partner, partner_flag = get_value(row, PARTNER_FLAG_KEYS)
    found_group, group_flag = get_value(row, GROUP_FLAG_KEYS)
    return ReferenceEntry(
        code=get_string(row, *CODE_KEYS) or "",
        iso3=get_string(row, *ISO3_KEYS) or "",
        name=get_string(row, *NAME_KEYS) or "",
        is_reporter=parse_bool(reporter_flag) if found_reporter else False,
        has_reporter=found_reporter,
        is_partner=parse_bool(partner_flag) if found_partner else False,
        has_partner=found_partner,
        is_group=parse_bool(group_flag) if found_group else False,
    )


def build_code_map(
    entries: Iterable[ReferenceEntry],
    filter_reporter: bool = False,
) -> Tuple[List[Reporter], Dict[str, str]]:
    """Build the ISO3 -> code map and, for reporter listings, the Reporter list.

    Group rows are always dropped. With ``filter_reporter`` rows explicitly
    flagged as non-reporters are dropped too; rows without the flag are kept.
    An empty code falls back to the ISO3 itself.
    """
    reporters: List[Reporter] = []
    codes: Dict[str, str] = {}
    for entry in entries:
        iso3 = entry.iso3.strip().upper()
        if not iso3 or entry.is_group:
            continue
        if filter_reporter and entry.has_reporter and not entry.is_reporter:
            continue

        codes[iso3] = entry.code.strip() or iso3
        if filter_reporter:
            reporters.append(Reporter(iso3=iso3, name_en=entry.name.strip()))
    return reporters, codes


class ReferenceCache:
    """Lazily loaded reference maps for one provider instance."""

    def __init__(
        self,
        provider: str,
        loader: Callable[[], Awaitable[ReferenceData]],
        allow_iso3_fallback: bool = True,
    ):
        self.provider = provider
        self.allow_iso3_fallback = allow_iso3_fallback
        self._loader = loader
        self._lock = asyncio.Lock()
        self._loaded = False
        self._data = ReferenceData()

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def ensure(self) -> None:
        """Load references once. Raises whatever the loader raises."""
        if self._loaded:
            return
        async with self._lock:
            if self._loaded:
                logger.debug(f"{self.provider} references already loaded by another task")
                return
            data = await self._loader()
            self._data = data
            self._loaded = True
            logger.info(
                f"{self.provider} references loaded: {len(data.reporters)} reporters, "
                f"{len(data.reporter_codes)} reporter codes, {len(data.partner_codes)} partner codes"
            )

    async def reporters(self) -> List[Reporter]:
        await self.ensure()
        return list(self._data.reporters)

    def resolve_code(self, kind: str, iso3: str) -> str:
        """Provider code for ``iso3``.

        Falls back to the ISO3 itself when allowed, otherwise raises
        MissingCodeError naming the kind and the ISO3.
        """
        iso3 = (iso3 or "").strip().upper()
        if not iso3:
            raise DataProviderError(f"{kind} iso3 is required", provider=self.provider)

        codes = self._data.reporter_codes if kind == REPORTER else self._data.partner_codes
        code = codes.get(iso3)
        if code:
            return code
        if self.allow_iso3_fallback:
            return iso3
        raise MissingCodeError(kind, iso3, provider=self.provider)

    async def resolve_pair(self, reporter_iso3: str, partner_iso3: str) -> Tuple[str, str]:
        """Reporter and partner codes for a series request.

        When the reference load fails and ISO3 fallback is allowed, the raw
        ISO3 values are used instead. Fatal errors always propagate.
        """
        reporter_iso3 = (reporter_iso3 or "").strip().upper()
        partner_iso3 = (partner_iso3 or "").strip().upper()
        try:
            await self.ensure()
        except DataProviderError as exc:
            if is_fatal_error(exc) or not self.allow_iso3_fallback:
                raise
            logger.warning(f"{self.provider} reference load failed, using ISO3 codes: {exc}")
            return reporter_iso3, partner_iso3
        return self.resolve_code(REPORTER, reporter_iso3), self.resolve_code(PARTNER, partner_iso3)

