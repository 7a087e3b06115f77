"""Tests for SDMX-JSON decoding."""
import copy
from unittest.mock import patch

import pytest

from tradegravity.exceptions import ProviderResponseError
from tradegravity.models import Flow, PeriodType
from tradegravity.providers.sdmx import (
    decode_sdmx_observations,
    flow_from_indicator,
    is_sdmx_payload,
    parse_series_key,
    parse_sdmx_value,
)
from tradegravity.tests.utils import SDMX_PAYLOAD


def decode(payload, flow=Flow.EXPORT, multiplier=1.0):
    return decode_sdmx_observations(payload, "wits", flow, "JPN", "CHN", multiplier)


class TestDecode:

    def test_series_and_indicators(self):
        observations = decode(SDMX_PAYLOAD, multiplier=1000)
        by_period = {(obs.flow, obs.period): obs for obs in observations}

        assert len(observations) == 3
        assert by_period[(Flow.EXPORT, "2021")].value_usd == 1500500.0
        assert by_period[(Flow.EXPORT, "2022")].value_usd == 1600000.0
        assert by_period[(Flow.IMPORT, "2022")].value_usd == 900000.0
        for obs in observations:
            assert obs.provider == "wits"
            assert obs.reporter_iso3 == "KOR"
            assert obs.partner_iso3 == "USA"
            assert obs.period_type == PeriodType.YEAR

    def test_dimension_fallbacks(self):
        payload = {
            "dataSets": [{"series": {"0": {"observations": {"0": [5]}}}}],
            "structure": {
                "dimensions": {
                    "series": [{"id": "PRODUCT", "values": [{"id": "Total"}]}],
                    "observation": [{"id": "TIME_PERIOD", "values": [{"id": "2023-Q2"}]}],
                }
            },
        }
        observations = decode(payload, flow=Flow.IMPORT)
        assert len(observations) == 1
        obs = observations[0]
        assert (obs.reporter_iso3, obs.partner_iso3, obs.flow) == ("JPN", "CHN", Flow.IMPORT)
        assert (obs.period_type, obs.period) == (PeriodType.QUARTER, "2023-Q2")

    def test_data_wrapper(self):
        assert len(decode({"data": SDMX_PAYLOAD})) == 3

    def test_empty_series(self):
        payload = copy.deepcopy(SDMX_PAYLOAD)
        payload["dataSets"][0]["series"] = {}
        assert decode(payload) == []

    def test_malformed_time_value_skips_only_that_observation(self):
        payload = copy.deepcopy(SDMX_PAYLOAD)
        payload["structure"]["dimensions"]["observation"][0]["values"].extend(
            [{"id": "12345Q1"}, {"id": "-2023Q1"}]
        )
        payload["dataSets"][0]["series"]["0:0:0"]["observations"].update({"2": [7], "3": [8]})

        observations = decode(payload)
        assert len(observations) == 3
        assert sorted(obs.period for obs in observations) == ["2021", "2022", "2022"]

    def test_invalid_observation_fields_are_skipped(self):
        with patch(
            "tradegravity.providers.sdmx.normalize_period",
            return_value=(PeriodType.QUARTER, "12345-Q1"),
        ):
            assert decode(SDMX_PAYLOAD) == []

    def test_missing_dataset(self):
        with pytest.raises(ProviderResponseError, match="missing dataset"):
            decode({"dataSets": [], "structure": SDMX_PAYLOAD["structure"]})

    def test_missing_time_dimension(self):
        payload = copy.deepcopy(SDMX_PAYLOAD)
        payload["structure"]["dimensions"]["observation"] = []
        with pytest.raises(ProviderResponseError, match="missing observation dimension"):
            decode(payload)


def test_flow_from_indicator():
    assert flow_from_indicator("XPRT-TRD-VL") == Flow.EXPORT
    assert flow_from_indicator("mprt-trd-vl") == Flow.IMPORT
    assert flow_from_indicator("TRD") is None


def test_is_sdmx_payload():
    assert is_sdmx_payload(SDMX_PAYLOAD)
    assert is_sdmx_payload({"data": {"dataSets": []}})
    assert not is_sdmx_payload([{"TradeValue": 1}])
    assert not is_sdmx_payload({"data": []})


def test_parse_series_key():
    assert parse_series_key("0:1:2", 3) == [0, 1, 2]
    assert parse_series_key("0:1", 3) is None
    assert parse_series_key("0:a:2", 3) is None


def test_parse_sdmx_value():
    assert parse_sdmx_value([12.5, 0]) == 12.5
    assert parse_sdmx_value(["3"]) == 3.0
    assert parse_sdmx_value([]) is None
    assert parse_sdmx_value([None]) is None
    assert parse_sdmx_value(["n/a"]) is None
    assert parse_sdmx_value(5) is None
