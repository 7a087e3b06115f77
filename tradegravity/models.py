"""Canonical trade data models shared by all providers and stores."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Flow(str, Enum):
    """Trade direction from the reporter's perspective."""
    EXPORT = "export"
    IMPORT = "import"

    @classmethod
    def parse(cls, value: str) -> Optional["Flow"]:
        """Map loose flow spellings (``exports``, ``Imp``...) to a Flow."""
        token = (value or "").strip().lower()
        if token in ("export", "exports", "exp", "x"):
            return cls.EXPORT
        if token in ("import", "imports", "imp", "m"):
            return cls.IMPORT
        return None


class PeriodType(str, Enum):
    """Period granularity. Values are the stored codes."""
    MONTH = "M"
    QUARTER = "Q"
    YEAR = "Y"


class Reporter(BaseModel):
    """A reporting country as listed by a provider's reference data."""
    model_config = ConfigDict(frozen=True)

    iso3: str
    name_en: str = ""
    name_ko: str = ""
    region: str = ""
    is_active: bool = True


class ObservationKey(BaseModel):
    """Period part of an observation's uniqueness key, as returned by stores."""
    model_config = ConfigDict(frozen=True)

    period_type: PeriodType
    period: str


class Observation(BaseModel):
    """One bilateral trade value for one period.

    Uniqueness key: (provider, reporter_iso3, partner_iso3, flow,
    period_type, period). ``period`` must be in the canonical form for its
    ``period_type``: ``YYYY-MM``, ``YYYY-Qn`` or ``YYYY``.
    """
    model_config = ConfigDict(frozen=True)

    provider: str = ""
    reporter_iso3: str
    partner_iso3: str
    flow: Flow
    period_type: PeriodType
    period: str
    value_usd: float
    ingested_at: Optional[datetime] = None
    source_updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_period_format(self) -> "Observation":
        from .utils.periods import is_canonical_period

        if not is_canonical_period(self.period_type, self.period):
            raise ValueError(
                f"period {self.period!r} is not a canonical {self.period_type.name.lower()} period"
            )
        return self

    @property
    def key(self) -> tuple:
        return (
            self.provider,
            self.reporter_iso3,
            self.partner_iso3,
            self.flow,
            self.period_type,
            self.period,
        )


class ReferenceEntry(BaseModel):
    """Raw decoded row of a provider's country/area reference list.

    ``has_reporter``/``has_partner`` record whether the flag was present at
    all, since an absent flag must not filter a row out.
    """

    code: str = ""
    iso3: str = ""
    name: str = ""
    is_reporter: bool = False
    has_reporter: bool = False
    is_partner: bool = False
    has_partner: bool = False
    is_group: bool = False


class CollectorSummary(BaseModel):
    """Counters reported at the end of a collector run."""

    provider: str
    reporters: int = 0
    requests: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    stored: int = 0
    observations: list[Observation] = Field(default_factory=list)
    # failed slices: error to_dict() plus reporter/partner/flow
    errors: list[dict[str, Any]] = Field(default_factory=list)
