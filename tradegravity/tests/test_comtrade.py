"""Request-level tests for the Comtrade provider using httpx.MockTransport."""
import pytest

from tradegravity.config import ComtradeConfig
from tradegravity.exceptions import (
    ConfigurationError,
    NoRecordsError,
    ProviderRequestError,
    QuotaExceededError,
)
from tradegravity.models import Flow, PeriodType
from tradegravity.providers.comtrade import ComtradeProvider
from tradegravity.tests.utils import ScriptedHandler, json_response, text_response

REPORTERS = {
    "results": [
        {"reporterCode": 410, "reporterCodeIsoAlpha3": "KOR", "text": "Rep. of Korea", "isGroup": False},
        {"reporterCode": 97, "reporterCodeIsoAlpha3": "EUR", "text": "EU", "isGroup": True},
    ]
}
PARTNERS = {
    "results": [
        {"PartnerCode": 842, "PartnerCodeIsoAlpha3": "USA", "text": "USA", "isGroup": False},
        {"PartnerCode": 0, "PartnerCodeIsoAlpha3": "W00", "text": "World", "isGroup": True},
    ]
}


def reference_routes(data):
    return {
        "Reporters.json": lambda request: json_response(REPORTERS),
        "partnerAreas.json": lambda request: json_response(PARTNERS),
        "data/v1/get": data,
    }


def year_echo(value=10.0):
    """Answers every data request with one row for the requested year."""
    def respond(request):
        return json_response({"data": [{"period": request.url.params["period"], "primaryValue": value}]})
    return respond


def data_requests(handler):
    return [request for request in handler.requests if "data/v1/get" in request.url.path]


class TestFetchSeries:

    @pytest.mark.asyncio
    async def test_resolves_codes_and_queries_each_year(self, comtrade_config, sleep_calls):
        handler = ScriptedHandler(routes=reference_routes([
            json_response({"data": [
                {"period": "2021", "primaryValue": 100.0},
                {"period": "2021", "primaryValue": 150.0},
            ]}),
            json_response({"data": []}),
        ]))
        async with ComtradeProvider(comtrade_config, transport=handler.transport, sleep=sleep_calls) as provider:
            observations = await provider.fetch_series("kor", "usa", Flow.EXPORT, "2021", "2022")

        assert len(observations) == 1
        obs = observations[0]
        assert (obs.reporter_iso3, obs.partner_iso3, obs.flow) == ("KOR", "USA", Flow.EXPORT)
        assert (obs.period_type, obs.period, obs.value_usd) == (PeriodType.YEAR, "2021", 150.0)

        requests = data_requests(handler)
        assert [request.url.params["period"] for request in requests] == ["2021", "2022"]
        params = requests[0].url.params
        assert requests[0].url.path == "/data/v1/get/C/A/HS"
        assert params["reportercode"] == "410"
        assert params["partnerCode"] == "842"
        assert params["flowCode"] == "X"
        assert params["cmdCode"] == "TOTAL"
        assert params["maxRecords"] == "50000"
        assert params["subscription-key"] == "primary-key"
        assert requests[0].headers["Ocp-Apim-Subscription-Key"] == "primary-key"

    @pytest.mark.asyncio
    async def test_import_flow_code(self, comtrade_config):
        handler = ScriptedHandler(routes=reference_routes(year_echo()))
        async with ComtradeProvider(comtrade_config, transport=handler.transport) as provider:
            await provider.fetch_series("KOR", "USA", Flow.IMPORT, "2022")
        assert data_requests(handler)[0].url.params["flowCode"] == "M"

    @pytest.mark.asyncio
    async def test_every_year_empty(self, comtrade_config):
        handler = ScriptedHandler(routes=reference_routes(lambda request: json_response({"data": []})))
        async with ComtradeProvider(comtrade_config, transport=handler.transport) as provider:
            with pytest.raises(NoRecordsError):
                await provider.fetch_series("KOR", "USA", Flow.EXPORT, "2020", "2022")
        assert len(data_requests(handler)) == 3

    @pytest.mark.asyncio
    async def test_failed_year_skipped(self, comtrade_config, sleep_calls):
        handler = ScriptedHandler(routes=reference_routes([
            text_response("boom", 500),
            text_response("boom", 500),
            json_response({"data": [{"period": "2022", "primaryValue": 1}]}),
        ]))
        async with ComtradeProvider(comtrade_config, transport=handler.transport, sleep=sleep_calls) as provider:
            observations = await provider.fetch_series("KOR", "USA", Flow.EXPORT, "2021", "2022")
        assert [obs.period for obs in observations] == ["2022"]

    @pytest.mark.asyncio
    async def test_only_failures_raise_last_error(self, comtrade_config):
        handler = ScriptedHandler(routes=reference_routes(lambda request: text_response("boom", 500)))
        async with ComtradeProvider(comtrade_config, transport=handler.transport) as provider:
            with pytest.raises(ProviderRequestError):
                await provider.fetch_series("KOR", "USA", Flow.EXPORT, "2022")

    @pytest.mark.asyncio
    async def test_quota_aborts(self, comtrade_config):
        handler = ScriptedHandler(routes=reference_routes([
            json_response({"statusCode": 403, "message": "Out of call volume quota."}, 403),
        ]))
        async with ComtradeProvider(comtrade_config, transport=handler.transport) as provider:
            with pytest.raises(QuotaExceededError):
                await provider.fetch_series("KOR", "USA", Flow.EXPORT, "2021", "2022")
        assert len(data_requests(handler)) == 1

    @pytest.mark.asyncio
    async def test_invalid_year(self, comtrade_config):
        handler = ScriptedHandler(routes=reference_routes(year_echo()))
        async with ComtradeProvider(comtrade_config, transport=handler.transport) as provider:
            with pytest.raises(ConfigurationError):
                await provider.fetch_series("KOR", "USA", Flow.EXPORT, "20x1")

    @pytest.mark.asyncio
    async def test_reference_failure_uses_iso3(self, comtrade_config, sleep_calls):
        handler = ScriptedHandler(routes={
            "Reporters.json": lambda request: text_response("unavailable", 503),
            "data/v1/get": year_echo(),
        })
        async with ComtradeProvider(comtrade_config, transport=handler.transport, sleep=sleep_calls) as provider:
            await provider.fetch_series("KOR", "USA", Flow.EXPORT, "2022")

        params = data_requests(handler)[0].url.params
        assert (params["reportercode"], params["partnerCode"]) == ("KOR", "USA")


class TestProviderSurface:

    @pytest.mark.asyncio
    async def test_missing_key(self):
        config = ComtradeConfig(rate_limit_per_sec=0)
        handler = ScriptedHandler()
        async with ComtradeProvider(config, transport=handler.transport) as provider:
            with pytest.raises(ConfigurationError):
                await provider.fetch_series("KOR", "USA", Flow.EXPORT, "2022")
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_list_reporters_drops_groups(self, comtrade_config):
        handler = ScriptedHandler(routes=reference_routes(year_echo()))
        async with ComtradeProvider(comtrade_config, transport=handler.transport) as provider:
            reporters = await provider.list_reporters()
            await provider.list_reporters()

        assert [(reporter.iso3, reporter.name_en) for reporter in reporters] == [("KOR", "Rep. of Korea")]
        reference_paths = [path for path in handler.paths() if path.endswith(".json")]
        assert len(reference_paths) == 2

    @pytest.mark.asyncio
    async def test_fetch_latest_uses_lookback(self, comtrade_config):
        handler = ScriptedHandler(routes=reference_routes(year_echo()))
        async with ComtradeProvider(comtrade_config, transport=handler.transport) as provider:
            latest = await provider.fetch_latest("KOR", "USA", Flow.EXPORT)

        years = [request.url.params["period"] for request in data_requests(handler)]
        assert len(years) == comtrade_config.lookback_years + 1
        assert latest.period == max(years)
