"""Provider contract shared by the Comtrade and WITS providers."""
from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from ..models import Flow, Observation, Reporter


@runtime_checkable
class TradeProvider(Protocol):
    """Capabilities the collector needs from a trade data source.

    Implementations own their HTTP client, rate limiter and reference cache;
    nothing is inherited. All methods are coroutines and may be cancelled at
    any await point.
    """

    @property
    def name(self) -> str:
        """Canonical provider id stored on every observation (e.g. 'wits')."""
        ...

    async def list_reporters(self) -> List[Reporter]:
        ...

    async def fetch_latest(self, reporter_iso3: str, partner_iso3: str, flow: Flow) -> Observation:
        """Most recent observation for one reporter/partner/flow.

        Raises:
            NoRecordsError: The provider reports no data
        """
        ...

    async def fetch_series(
        self,
        reporter_iso3: str,
        partner_iso3: str,
        flow: Flow,
        from_year: str = "",
        to_year: str = "",
    ) -> List[Observation]:
        """Observations for a year range.

        Empty bounds apply the provider's default lookback; a single bound
        is used for both ends. Years without data are skipped.

        Raises:
            NoRecordsError: The whole range yields nothing
        """
        ...

    async def aclose(self) -> None:
        ...
