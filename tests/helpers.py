"""Shared test helpers for CZ Spot Prices tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from custom_components.cz_spot_prices.price_calculator import HourlyPrice

# Timezone for testing (CET)
TZ = timezone(timedelta(hours=1), name="CET")

# A winter day in CZK/MWh: cheap night, morning and evening peaks
DAY_PRICES = [
    2100.0, 1900.0, 1700.0, 1500.0, 1600.0, 1800.0,  # 00-05
    2500.0, 3500.0, 4200.0, 4000.0, 3200.0, 2800.0,  # 06-11
    2600.0, 2400.0, 2300.0, 2200.0, 2700.0, 3900.0,  # 12-17
    4800.0, 5000.0, 4500.0, 3600.0, 2900.0, 2000.0,  # 18-23
]


def make_nordpool_slot(
    hour: int,
    price: float,
    day_offset: int = 0,
    quarter: int = 0,
    base: datetime | None = None,
) -> dict:
    """Create a Nordpool-style 15-minute price slot for testing.

    Args:
        hour: Hour of the day (0-23).
        price: Price value.
        day_offset: 0 for today, 1 for tomorrow.
        quarter: Quarter of the hour (0-3, representing :00, :15, :30, :45).
        base: Local midnight of "today"; defaults to 2026-02-06 in CET.

    Returns:
        Dict matching Nordpool raw_today/raw_tomorrow format.
    """
    if base is None:
        base = datetime(2026, 2, 6, tzinfo=TZ)
    start = base + timedelta(days=day_offset, hours=hour, minutes=quarter * 15)
    end = start + timedelta(minutes=15)
    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "value": price,
    }


def make_nordpool_hour(
    hour: int, price: float, day_offset: int = 0, base: datetime | None = None
) -> list[dict]:
    """Create 4 Nordpool-style 15-minute slots sharing one price."""
    return [make_nordpool_slot(hour, price, day_offset, q, base) for q in range(4)]


def make_nordpool_day(
    prices: list[float] = DAY_PRICES, base: datetime | None = None
) -> list[dict]:
    """Create 96 quarter-hour slots, one price per hour."""
    return [
        slot
        for hour, price in enumerate(prices)
        for slot in make_nordpool_hour(hour, price, base=base)
    ]


def make_price_set(
    prices: list[float] = DAY_PRICES, tiers: list[str | None] | None = None
) -> list[HourlyPrice]:
    """Create a price set with adjusted price equal to the raw price."""
    if tiers is None:
        tiers = [None] * len(prices)
    return [
        HourlyPrice(hour=hour, raw_price=price, adjusted_price=price, tier=tier)
        for hour, (price, tier) in enumerate(zip(prices, tiers))
    ]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, delta: timedelta | float) -> None:
        if isinstance(delta, timedelta):
            delta = delta.total_seconds()
        self.now += delta


def make_config_entry(entry_id="test_entry_id", options=None):
    """Create a mock ConfigEntry for testing."""
    entry = MagicMock()
    entry.entry_id = entry_id
    entry.data = {"name": "Test"}
    entry.options = options or {}
    return entry
