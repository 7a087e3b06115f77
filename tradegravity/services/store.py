"""Persistence contract consumed by the collector."""
from __future__ import annotations

from typing import List, Protocol, Sequence, runtime_checkable

from ..models import Flow, Observation, ObservationKey, Reporter


@runtime_checkable
class ObservationStore(Protocol):
    """Storage for observations, idempotent by the observation uniqueness key."""

    async def upsert_observations(self, observations: Sequence[Observation]) -> None:
        ...

    async def list_observation_keys(
        self,
        provider: str,
        reporter_iso3: str,
        partner_iso3: str,
        flow: Flow,
    ) -> List[ObservationKey]:
        """Period keys already stored for one reporter/partner/flow."""
        ...

    async def upsert_reporters(self, provider: str, reporters: Sequence[Reporter]) -> None:
        ...

    async def list_reporters(self, provider: str, only_active: bool = True) -> List[Reporter]:
        ...

    async def close(self) -> None:
        ...


class NopStore:
    """Store that keeps nothing. Used when persistence is disabled."""

    async def upsert_observations(self, observations: Sequence[Observation]) -> None:
        return None

    async def list_observation_keys(
        self,
        provider: str,
        reporter_iso3: str,
        partner_iso3: str,
        flow: Flow,
    ) -> List[ObservationKey]:
        return []

    async def upsert_reporters(self, provider: str, reporters: Sequence[Reporter]) -> None:
        return None

    async def list_reporters(self, provider: str, only_active: bool = True) -> List[Reporter]:
        return []

    async def close(self) -> None:
        return None
