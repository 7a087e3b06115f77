"""
Shared pytest fixtures for tradegravity tests.

This module provides common fixtures used across all test modules.
Import fixtures from here instead of defining them in individual test files.
"""
from __future__ import annotations

import logging
import os
from typing import List

import pytest

from tradegravity.config import ComtradeConfig, WitsConfig, get_settings
from tradegravity.models import Observation, PeriodType
from tradegravity.tests.utils import make_observation


# ============================================================================
# Environment Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def test_environment():
    """Strip provider variables so tests never pick up real keys."""
    old_env = os.environ.copy()
    for key in list(os.environ):
        if key.startswith(("COMTRADE_", "WITS_", "TRADEGRAVITY_")):
            del os.environ[key]
    get_settings.cache_clear()
    yield
    os.environ.clear()
    os.environ.update(old_env)
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def restore_logging_levels():
    """Restore logger levels so configure_logging() in one test cannot leak into others."""
    names = ("", "httpx", "httpcore", "hpack")
    saved = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)


@pytest.fixture
def sleep_calls():
    """Async sleep stand-in that records requested delays without waiting."""
    calls: List[float] = []

    async def fake_sleep(delay: float) -> None:
        calls.append(delay)

    fake_sleep.calls = calls
    return fake_sleep


# ============================================================================
# Config Fixtures
# ============================================================================

@pytest.fixture
def comtrade_config() -> ComtradeConfig:
    return ComtradeConfig(
        base_url="https://comtrade.test/",
        reporters_url="https://comtrade.test/reference/Reporters.json",
        partners_url="https://comtrade.test/reference/partnerAreas.json",
        primary_key="primary-key",
        secondary_key="secondary-key",
        rate_limit_per_sec=0,
        lookback_years=1,
        max_retries=1,
    )


@pytest.fixture
def wits_config() -> WitsConfig:
    return WitsConfig(
        base_url="https://wits.test/API/V1",
        rate_limit_per_sec=0,
        max_retries=1,
    )


# ============================================================================
# Data Fixtures
# ============================================================================

@pytest.fixture
def sample_observations() -> List[Observation]:
    """Mixed-granularity observations for one reporter/partner/flow."""
    return [
        make_observation(PeriodType.YEAR, "2024", 500.0),
        make_observation(PeriodType.QUARTER, "2022-Q4", 120.0),
        make_observation(PeriodType.MONTH, "2020-01", 40.0),
        make_observation(PeriodType.MONTH, "2019-12", 35.0),
    ]
