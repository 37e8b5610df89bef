"""Tests for the CZ Spot Prices coordinator."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from homeassistant.core import HomeAssistant
from homeassistant.util import dt as dt_util
from pytest_homeassistant_custom_component.common import (
    MockConfigEntry,
    async_capture_events,
)

from helpers import DAY_PRICES, make_nordpool_day

from custom_components.cz_spot_prices.const import (
    CONDITION_HIGHEST,
    CONDITION_LOWEST,
    CONF_AVERAGE_WINDOW_HOURS,
    CONF_HIGH_INDEX_HOURS,
    CONF_HIGH_TARIFF_PRICE,
    CONF_LOW_INDEX_HOURS,
    CONF_LOW_TARIFF_HOURS,
    CONF_LOW_TARIFF_PRICE,
    CONF_NAME,
    CONF_NORDPOOL_SENSOR,
    CONF_NORDPOOL_TYPE,
    CONF_PRICE_IN_KWH,
    DOMAIN,
    EVENT_AVERAGE_WINDOW_STARTED,
    EVENT_CURRENT_PRICE_CHANGED,
    EVENT_TARIFF_CHANGED,
    EVENT_UPDATE_FAILED,
    NORDPOOL_TYPE_HACS,
    TIER_HIGH,
    TIER_LOW,
    TIER_MEDIUM,
    TIMER_AVERAGE,
    TIMER_CACHE_CLEANUP,
    TIMER_HOURLY,
    TIMER_IDLE,
    TIMER_TARIFF,
)
from custom_components.cz_spot_prices.coordinator import SpotPricesCoordinator

NORDPOOL_ENTITY = "sensor.nordpool_mwh_cz_czk"
TODAY = date(2026, 2, 6)


@pytest.fixture(autouse=True)
def auto_enable_custom_integrations(enable_custom_integrations):
    """Enable loading of custom integrations for all tests in this module."""
    yield


@pytest.fixture
def midnight(hass: HomeAssistant, freezer) -> datetime:
    """Freeze time at 14:30 local time and return local midnight of that day."""
    tz = dt_util.get_default_time_zone()
    freezer.move_to(datetime(2026, 2, 6, 14, 30, tzinfo=tz))
    return datetime(2026, 2, 6, tzinfo=tz)


def set_nordpool_prices(
    hass: HomeAssistant, midnight: datetime, prices: list[float] = DAY_PRICES
) -> None:
    """Publish a HACS Nordpool sensor with one price per hour in CZK/MWh."""
    hass.states.async_set(
        NORDPOOL_ENTITY,
        str(prices[0]),
        {"unit": "MWh", "raw_today": make_nordpool_day(prices, base=midnight)},
    )


def make_coordinator(
    hass: HomeAssistant, options: dict | None = None
) -> SpotPricesCoordinator:
    """Create a coordinator for a config entry with the given options."""
    entry = MockConfigEntry(
        domain=DOMAIN,
        title="Home",
        data={
            CONF_NORDPOOL_SENSOR: NORDPOOL_ENTITY,
            CONF_NORDPOOL_TYPE: NORDPOOL_TYPE_HACS,
            CONF_NAME: "Home",
        },
        options={
            CONF_LOW_INDEX_HOURS: 8,
            CONF_HIGH_INDEX_HOURS: 8,
            CONF_AVERAGE_WINDOW_HOURS: 3,
            **(options or {}),
        },
    )
    entry.add_to_hass(hass)
    coordinator = SpotPricesCoordinator(hass, entry)
    coordinator.retry_backoff = timedelta(0)
    return coordinator


class TestRecompute:
    """Tests for fetching and publishing a day of prices."""

    async def test_refresh_publishes_prices(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)

        await coordinator.async_refresh()

        assert coordinator.last_update_success
        data = coordinator.data
        assert data.price_date == TODAY
        assert data.current_hour == 14
        assert data.current_price == pytest.approx(2300.0)
        assert data.current_tier == TIER_MEDIUM
        assert data.daily_average == pytest.approx(2904.167)
        assert data.min_price == pytest.approx(1500.0)
        assert data.max_price == pytest.approx(5000.0)
        assert len(data.hours) == 24
        assert data.hours[3].tier == TIER_LOW
        assert data.hours[19].tier == TIER_HIGH

    async def test_distribution_tariff_is_added(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass, {
            CONF_LOW_TARIFF_HOURS: ["14", "15"],
            CONF_LOW_TARIFF_PRICE: 100.0,
            CONF_HIGH_TARIFF_PRICE: 500.0,
        })

        await coordinator.async_refresh()

        data = coordinator.data
        assert data.current_price == pytest.approx(2400.0)
        assert data.low_tariff_active is True
        assert data.hours[0].raw_price == pytest.approx(2100.0)
        assert data.hours[0].adjusted_price == pytest.approx(2600.0)
        assert data.low_tariff_hours == frozenset({14, 15})

    async def test_price_in_kwh(self, hass: HomeAssistant, midnight):
        """Display values are per kWh, the hourly set stays per MWh."""
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass, {CONF_PRICE_IN_KWH: True})

        await coordinator.async_refresh()

        data = coordinator.data
        assert data.current_price == pytest.approx(2.3)
        assert data.daily_average == pytest.approx(2.904)
        assert data.hours[14].adjusted_price == pytest.approx(2300.0)
        assert data.hourly_table()[14]["price"] == pytest.approx(2.3)

    async def test_lock_released_after_refresh(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)

        await coordinator.async_refresh()

        assert coordinator.lock_manager.get_lock_info(coordinator.resource_id) is None

    async def test_options_update_recomputes(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        await coordinator.async_refresh()

        hass.config_entries.async_update_entry(
            coordinator.config_entry,
            options={**coordinator.config_entry.options, CONF_LOW_INDEX_HOURS: 2},
        )
        await coordinator.async_handle_options_update()

        lows = [entry.hour for entry in coordinator.data.hours if entry.tier == TIER_LOW]
        assert lows == [3, 4]

    async def test_refresh_prices_reports_result(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        assert await coordinator.async_refresh_prices() is True

        hass.states.async_remove(NORDPOOL_ENTITY)
        assert await coordinator.async_refresh_prices() is False


class TestFetchFailures:
    """Tests for retry and last-good-data behavior."""

    async def test_incomplete_day_keeps_last_good_data(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        await coordinator.async_refresh()
        good = coordinator.data

        events = async_capture_events(hass, EVENT_UPDATE_FAILED)
        set_nordpool_prices(hass, midnight, DAY_PRICES[:20])
        await coordinator.async_refresh()
        await hass.async_block_till_done()

        assert not coordinator.last_update_success
        assert coordinator.data is good
        assert len(events) == 1
        assert events[0].data["entry_id"] == coordinator.resource_id
        assert events[0].data["retry_count"] == 3
        assert events[0].data["max_retries_reached"] is True
        assert "Expected 24" in events[0].data["error_message"]
        assert coordinator.lock_manager.get_lock_info(coordinator.resource_id) is None

    async def test_fetch_is_retried(self, hass: HomeAssistant, midnight):
        coordinator = make_coordinator(hass)
        hass.states.async_set(NORDPOOL_ENTITY, "0", {"unit": "MWh"})
        good_day = make_nordpool_day(DAY_PRICES, base=midnight)

        with patch(
            "custom_components.cz_spot_prices.coordinator.async_get_prices",
            AsyncMock(side_effect=[[], [], good_day]),
        ) as mock_fetch:
            await coordinator.async_refresh()

        assert mock_fetch.await_count == 3
        assert coordinator.last_update_success
        assert coordinator.data.current_price == pytest.approx(2300.0)

    async def test_missing_sensor_without_data(self, hass: HomeAssistant, midnight):
        coordinator = make_coordinator(hass)
        events = async_capture_events(hass, EVENT_UPDATE_FAILED)

        await coordinator.async_refresh()
        await hass.async_block_till_done()

        assert not coordinator.last_update_success
        assert coordinator.data is None
        assert len(events) == 1
        assert NORDPOOL_ENTITY in events[0].data["error_message"]

    async def test_spring_forward_day_warns_once(
        self, hass: HomeAssistant, freezer, caplog
    ):
        """A 23-hour day is not retried and does not fire update_failed."""
        await hass.config.async_set_time_zone("Europe/Prague")
        tz = dt_util.get_default_time_zone()
        freezer.move_to(datetime(2026, 3, 29, 14, 30, tzinfo=tz))
        day_start = dt_util.as_utc(datetime(2026, 3, 29, tzinfo=tz))
        slots = [
            {
                "start": (day_start + timedelta(hours=hour)).isoformat(),
                "end": (day_start + timedelta(hours=hour + 1)).isoformat(),
                "value": 2000.0 + hour,
            }
            for hour in range(23)
        ]
        hass.states.async_set(
            NORDPOOL_ENTITY, "2000", {"unit": "MWh", "raw_today": slots}
        )
        coordinator = make_coordinator(hass)
        events = async_capture_events(hass, EVENT_UPDATE_FAILED)

        await coordinator.async_refresh()
        await coordinator.async_refresh()
        await hass.async_block_till_done()

        assert not coordinator.last_update_success
        assert events == []
        assert "Price fetch attempt" not in caplog.text
        assert caplog.text.count("cannot be published") == 1


class TestLockContention:
    """Tests for a refresh that finds the recompute lock taken."""

    async def test_contention_keeps_published_data(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        await coordinator.async_refresh()
        published = coordinator.data

        coordinator.lock_manager.acquire(coordinator.resource_id, "manual-1")
        set_nordpool_prices(hass, midnight, [price + 1000 for price in DAY_PRICES])
        await coordinator.async_refresh()

        assert coordinator.last_update_success
        assert coordinator.data is published
        # The holder keeps its lock
        assert (
            coordinator.lock_manager.get_lock_info(coordinator.resource_id)["operation_id"]
            == "manual-1"
        )

    async def test_contention_without_data_fails(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        coordinator.lock_manager.acquire(coordinator.resource_id, "manual-1")

        await coordinator.async_refresh()

        assert not coordinator.last_update_success
        assert coordinator.data is None


class TestPriceChangedEvent:
    """Tests for the current price changed event."""

    async def test_no_event_on_first_publish(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        events = async_capture_events(hass, EVENT_CURRENT_PRICE_CHANGED)

        await coordinator.async_refresh()
        await hass.async_block_till_done()

        assert events == []

    async def test_event_when_price_changes(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        await coordinator.async_refresh()
        events = async_capture_events(hass, EVENT_CURRENT_PRICE_CHANGED)

        prices = list(DAY_PRICES)
        prices[14] = 9999.0
        set_nordpool_prices(hass, midnight, prices)
        await coordinator.async_refresh()
        await hass.async_block_till_done()

        assert len(events) == 1
        assert events[0].data == {
            "entry_id": coordinator.resource_id,
            "price": pytest.approx(9999.0),
            "tier": TIER_HIGH,
            "hour": 14,
        }

    async def test_no_event_when_price_unchanged(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        await coordinator.async_refresh()
        events = async_capture_events(hass, EVENT_CURRENT_PRICE_CHANGED)

        await coordinator.async_refresh()
        await hass.async_block_till_done()

        assert events == []


class TestBestWindow:
    """Tests for best window queries."""

    async def test_lowest_and_highest(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        await coordinator.async_refresh()

        lowest = coordinator.best_window(3, CONDITION_LOWEST)
        highest = coordinator.best_window(3, CONDITION_HIGHEST)

        assert lowest.start_hour == 2
        assert lowest.average == pytest.approx(1600.0)
        assert highest.start_hour == 18

    async def test_no_data(self, hass: HomeAssistant, midnight):
        coordinator = make_coordinator(hass)
        assert coordinator.best_window(3) is None
        assert coordinator.is_in_best_window(3) is False

    async def test_is_in_best_window(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        await coordinator.async_refresh()

        assert coordinator.is_in_best_window(3) is False
        assert coordinator.is_in_best_window(3, now=midnight + timedelta(hours=2)) is True
        assert coordinator.is_in_best_window(3, now=midnight + timedelta(hours=4)) is True
        assert coordinator.is_in_best_window(3, now=midnight + timedelta(hours=5)) is False

    async def test_new_prices_move_the_window(self, hass: HomeAssistant, midnight):
        """Cached averages do not survive a new price set."""
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        await coordinator.async_refresh()
        assert coordinator.best_window(3).start_hour == 2

        prices = list(DAY_PRICES)
        prices[10:13] = [100.0, 100.0, 100.0]
        set_nordpool_prices(hass, midnight, prices)
        await coordinator.async_refresh()

        assert coordinator.best_window(3).start_hour == 10


class TestTriggers:
    """Tests for the hourly average window and tariff checks."""

    async def test_average_window_started(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        await coordinator.async_refresh()
        events = async_capture_events(hass, EVENT_AVERAGE_WINDOW_STARTED)

        coordinator.check_average_window(midnight + timedelta(hours=2))
        coordinator.check_average_window(midnight + timedelta(hours=5))
        coordinator.check_average_window(midnight + timedelta(hours=18))
        await hass.async_block_till_done()

        assert [(e.data["condition"], e.data["start_hour"]) for e in events] == [
            (CONDITION_LOWEST, 2),
            (CONDITION_HIGHEST, 18),
        ]
        assert events[0].data["hours"] == 3
        assert events[0].data["average"] == pytest.approx(1600.0)

    async def test_average_window_skipped_for_stale_day(
        self, hass: HomeAssistant, midnight
    ):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        await coordinator.async_refresh()
        events = async_capture_events(hass, EVENT_AVERAGE_WINDOW_STARTED)

        coordinator.check_average_window(midnight + timedelta(days=1, hours=2))
        await hass.async_block_till_done()

        assert events == []

    async def test_tariff_changed(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass, {CONF_LOW_TARIFF_HOURS: ["15"]})
        await coordinator.async_refresh()
        events = async_capture_events(hass, EVENT_TARIFF_CHANGED)
        listener = MagicMock()
        remove_listener = coordinator.async_add_listener(listener)

        coordinator.check_tariff_change(midnight + timedelta(hours=14))
        listener.assert_not_called()

        coordinator.check_tariff_change(midnight + timedelta(hours=15))
        assert listener.call_count == 1
        assert coordinator.is_low_tariff_now(midnight + timedelta(hours=15)) is True

        coordinator.check_tariff_change(midnight + timedelta(hours=16))
        await hass.async_block_till_done()

        assert [(e.data["tariff"], e.data["hour"]) for e in events] == [
            ("low", 15),
            ("high", 16),
        ]
        assert listener.call_count == 2
        assert coordinator.is_low_tariff_now(midnight + timedelta(hours=16)) is False
        remove_listener()

    async def test_tariff_change_keeps_failed_state(self, hass: HomeAssistant, midnight):
        """A tariff change does not mark a failed coordinator as updated."""
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass, {CONF_LOW_TARIFF_HOURS: ["15"]})
        await coordinator.async_refresh()

        hass.states.async_remove(NORDPOOL_ENTITY)
        await coordinator.async_refresh()
        assert not coordinator.last_update_success

        events = async_capture_events(hass, EVENT_TARIFF_CHANGED)
        coordinator.check_tariff_change(midnight + timedelta(hours=14))
        coordinator.check_tariff_change(midnight + timedelta(hours=15))
        await hass.async_block_till_done()

        assert len(events) == 1
        assert coordinator.last_update_success is False

    async def test_early_tick_uses_the_new_hour(
        self, hass: HomeAssistant, midnight, freezer
    ):
        """A timer firing just before the boundary still acts for the new hour."""
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass, {CONF_LOW_TARIFF_HOURS: ["15"]})
        await coordinator.async_refresh()
        coordinator.check_tariff_change(midnight + timedelta(hours=14))
        events = async_capture_events(hass, EVENT_TARIFF_CHANGED)

        freezer.move_to(midnight + timedelta(hours=15) - timedelta(milliseconds=500))
        coordinator._async_tariff_tick(dt_util.utcnow())
        await hass.async_block_till_done()

        assert [(e.data["tariff"], e.data["hour"]) for e in events] == [("low", 15)]

    async def test_average_window_at_midnight(
        self, hass: HomeAssistant, midnight, freezer
    ):
        """A window starting at 00:00 is announced once the new day is published."""
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        await coordinator.async_refresh()
        events = async_capture_events(hass, EVENT_AVERAGE_WINDOW_STARTED)

        next_midnight = midnight + timedelta(days=1)
        freezer.move_to(next_midnight)
        prices = list(DAY_PRICES)
        prices[0:3] = [100.0, 100.0, 100.0]
        set_nordpool_prices(hass, next_midnight, prices)

        # The average timer fires while the hourly refresh is still running
        coordinator._async_average_tick(dt_util.utcnow())
        await hass.async_block_till_done()
        assert events == []

        await coordinator._async_hourly_tick(dt_util.utcnow())
        await hass.async_block_till_done()

        assert coordinator.data.price_date == next_midnight.date()
        assert [(e.data["condition"], e.data["start_hour"]) for e in events] == [
            (CONDITION_LOWEST, 0),
        ]
        assert events[0].data["average"] == pytest.approx(100.0)

    async def test_hourly_tick_without_deferred_check(
        self, hass: HomeAssistant, midnight
    ):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        events = async_capture_events(hass, EVENT_AVERAGE_WINDOW_STARTED)

        await coordinator._async_hourly_tick(dt_util.utcnow())
        await hass.async_block_till_done()

        assert coordinator.data.price_date == TODAY
        assert events == []


class TestLifecycle:
    """Tests for timers and listeners."""

    async def test_setup_starts_timers_and_shutdown_stops_them(
        self, hass: HomeAssistant, midnight
    ):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)

        await coordinator._async_setup()
        assert coordinator.interval_manager.keys == sorted(
            [TIMER_AVERAGE, TIMER_CACHE_CLEANUP, TIMER_HOURLY, TIMER_TARIFF]
        )

        await coordinator.async_shutdown()
        assert coordinator.interval_manager.keys == []
        assert coordinator.interval_manager.state(TIMER_HOURLY) == TIMER_IDLE

    async def test_nordpool_update_requests_refresh(self, hass: HomeAssistant, midnight):
        set_nordpool_prices(hass, midnight)
        coordinator = make_coordinator(hass)
        await coordinator._async_setup()

        with patch.object(coordinator, "async_request_refresh", AsyncMock()) as mock_refresh:
            set_nordpool_prices(hass, midnight, [price + 1 for price in DAY_PRICES])
            await hass.async_block_till_done()

        mock_refresh.assert_called_once()
        await coordinator.async_shutdown()
