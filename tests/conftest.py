"""Shared test fixtures for CZ Spot Prices tests."""

from __future__ import annotations

from datetime import datetime

import pytest

from helpers import DAY_PRICES, TZ, FakeClock, make_nordpool_day, make_price_set

from custom_components.cz_spot_prices.price_calculator import HourlyPrice


@pytest.fixture
def now() -> datetime:
    """Return a fixed 'now' for deterministic testing."""
    return datetime(2026, 2, 6, 14, 30, 0, tzinfo=TZ)


@pytest.fixture
def clock() -> FakeClock:
    """Return a manually advanced monotonic clock."""
    return FakeClock()


@pytest.fixture
def today_prices() -> list[dict]:
    """Return 96 quarter-hour slots of today's price data."""
    return make_nordpool_day(DAY_PRICES)


@pytest.fixture
def price_set() -> list[HourlyPrice]:
    """Return one unclassified day of hourly prices."""
    return make_price_set(DAY_PRICES)
