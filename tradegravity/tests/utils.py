from __future__ import annotations

import asyncio
from typing import Callable, Dict, Iterable, List, Optional, Union

import httpx

from tradegravity.models import Flow, Observation, PeriodType

Scripted = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


# Sample provider payloads

COUNTRIES_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<wits:datasource xmlns:wits="http://wits.worldbank.org">
  <wits:countries>
    <wits:country countrycode="410" isreporter="1" ispartner="1" isgroup="No">
      <wits:iso3Code>KOR</wits:iso3Code>
      <wits:name>Korea, Rep.</wits:name>
    </wits:country>
    <wits:country countrycode="010" isreporter="0" ispartner="1" isgroup="No">
      <wits:iso3Code>ATA</wits:iso3Code>
      <wits:name>Antarctica</wits:name>
    </wits:country>
    <wits:country countrycode="918" isreporter="1" ispartner="1" isgroup="Yes">
      <wits:iso3Code>EUN</wits:iso3Code>
      <wits:name>European Union</wits:name>
    </wits:country>
  </wits:countries>
</wits:datasource>
"""

DATAAVAILABILITY_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<wits:datasource xmlns:wits="http://wits.worldbank.org">
  <wits:dataavailability>
    <wits:reporter iso3Code="KOR">
      <wits:year>2020</wits:year>
      <wits:year>2022</wits:year>
      <wits:year>2021</wits:year>
    </wits:reporter>
  </wits:dataavailability>
</wits:datasource>
"""

SDMX_PAYLOAD = {
    "header": {"id": "tradestats"},
    "dataSets": [
        {
            "series": {
                "0:0:0": {"observations": {"0": [1500.5], "1": [1600]}},
                "0:0:1": {"observations": {"1": ["900"]}},
                "0:9": {"observations": {"0": [1]}},
                "x:0:0": {"observations": {"0": [1]}},
                "0:0:2": {"observations": {"7": [1], "0": [None]}},
            }
        }
    ],
    "structure": {
        "dimensions": {
            "series": [
                {"id": "REPORTER", "values": [{"id": "KOR"}]},
                {"id": "PARTNER", "values": [{"id": "USA"}]},
                {
                    "id": "INDICATOR",
                    "values": [{"id": "XPRT-TRD-VL"}, {"id": "MPRT-TRD-VL"}, {"id": "OTHER"}],
                },
            ],
            "observation": [
                {"id": "TIME_PERIOD", "values": [{"id": "2021"}, {"id": "2022"}]},
            ],
        }
    },
}


class ScriptedHandler:
    """Replays scripted responses for ``httpx.MockTransport``.

    Responses are consumed in order, either from a single queue or from
    per-route queues keyed by a substring of the request path. A callable
    entry is not consumed and answers every matching request. Exceptions are
    raised as if the transport failed.
    """

    def __init__(
        self,
        responses: Iterable[Scripted] = (),
        routes: Optional[Dict[str, Union[Scripted, List[Scripted]]]] = None,
    ) -> None:
        self._queue: List[Scripted] = list(responses)
        self._routes: Dict[str, Union[Scripted, List[Scripted]]] = dict(routes or {})
        self.requests: List[httpx.Request] = []

    def _next(self, request: httpx.Request) -> Scripted:
        path = request.url.path
        for fragment, scripted in self._routes.items():
            if fragment not in path:
                continue
            if isinstance(scripted, list):
                if not scripted:
                    raise AssertionError(f"No more mock responses for route {fragment!r}")
                return scripted.pop(0)
            return scripted
        if not self._queue:
            raise AssertionError(f"No more mock responses available for {request.url}")
        return self._queue.pop(0)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        scripted = self._next(request)
        if isinstance(scripted, Exception):
            raise scripted
        if callable(scripted) and not isinstance(scripted, httpx.Response):
            return scripted(request)
        return scripted

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def paths(self) -> List[str]:
        return [request.url.path for request in self.requests]

    def params(self, index: int) -> Dict[str, str]:
        return dict(self.requests[index].url.params)


def json_response(payload, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
    return httpx.Response(status_code, json=payload, headers=headers)


def text_response(body: str, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
    return httpx.Response(status_code, text=body, headers=headers)


def make_observation(
    period_type: PeriodType,
    period: str,
    value: float = 1.0,
    provider: str = "test",
    reporter: str = "KOR",
    partner: str = "USA",
    flow: Flow = Flow.EXPORT,
) -> Observation:
    return Observation(
        provider=provider,
        reporter_iso3=reporter,
        partner_iso3=partner,
        flow=flow,
        period_type=period_type,
        period=period,
        value_usd=value,
    )


def run(coro):
    """Helper to run async functions in synchronous tests."""
    return asyncio.run(coro)
