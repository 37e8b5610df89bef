"""DataUpdateCoordinator for the CZ Spot Prices integration."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
import itertools
import logging
from typing import Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import CALLBACK_TYPE, Event, HomeAssistant, callback
from homeassistant.helpers.event import async_track_state_change_event
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed
from homeassistant.util import dt as dt_util

from .const import (
    CONDITION_HIGHEST,
    CONDITION_LOWEST,
    CONF_AVERAGE_WINDOW_HOURS,
    CONF_HIGH_INDEX_HOURS,
    CONF_LOW_INDEX_HOURS,
    CONF_NORDPOOL_SENSOR,
    CONF_NORDPOOL_TYPE,
    CONF_PRICE_IN_KWH,
    DEFAULT_AVERAGE_WINDOW_HOURS,
    DEFAULT_HIGH_INDEX_HOURS,
    DEFAULT_LOW_INDEX_HOURS,
    DEFAULT_PRICE_IN_KWH,
    DOMAIN,
    EVENT_AVERAGE_WINDOW_STARTED,
    EVENT_CURRENT_PRICE_CHANGED,
    EVENT_TARIFF_CHANGED,
    EVENT_UPDATE_FAILED,
    FETCH_MAX_ATTEMPTS,
    FETCH_RETRY_BACKOFF,
    HOURS_PER_DAY,
    NORDPOOL_TYPE_HACS,
    PRICE_CACHE_TTL,
    TARIFF_LOW,
    TICK_TOLERANCE,
    TIER_UNKNOWN,
    TIMER_AVERAGE,
    TIMER_CACHE_CLEANUP,
    TIMER_HOURLY,
    TIMER_TARIFF,
)
from .exceptions import InvalidPriceData, LockContention, UnsupportedDayLength
from .interval_manager import IntervalManager, calculate_delay_to_next_hour
from .lock_manager import LockManager
from .nordpool_adapter import async_get_prices, to_hourly_prices
from .price_calculator import (
    HourlyPrice,
    PriceCalculator,
    WindowCombination,
    find_target_combination,
    validate_price_data,
)
from .tariff import TariffSchedule, adjust_price, convert_price, tariff_class

_LOGGER = logging.getLogger(__name__)


def _local_now() -> datetime:
    """Return local time, nudged forward by the timer tolerance."""
    return dt_util.now() + TICK_TOLERANCE


def _local_day_hours(day: date) -> int:
    """Return the number of wall-clock hours in the local ``day``."""
    start = dt_util.start_of_local_day(day)
    end = dt_util.start_of_local_day(day + timedelta(days=1))
    return round((dt_util.as_utc(end) - dt_util.as_utc(start)) / timedelta(hours=1))


@dataclass(frozen=True)
class SpotPriceData:
    """Published prices of one day.

    ``hours`` keeps prices in currency/MWh; every other price field is already
    converted for display.
    """

    hours: tuple[HourlyPrice, ...] = ()
    price_date: date | None = None
    current_hour: int | None = None
    current_price: float | None = None
    current_tier: str = TIER_UNKNOWN
    daily_average: float | None = None
    min_price: float | None = None
    max_price: float | None = None
    low_tariff_active: bool = False
    low_tariff_hours: frozenset[int] = field(default_factory=frozenset)
    price_in_kwh: bool = False

    def display_price(self, price: float) -> float:
        """Convert an internal price to the configured display unit."""
        return round(convert_price(price, self.price_in_kwh), 3)

    def hourly_table(self) -> list[dict[str, Any]]:
        """Return one row per hour for entity attributes."""
        return [
            {
                "hour": entry.hour,
                "price": self.display_price(entry.adjusted_price),
                "tier": entry.tier or TIER_UNKNOWN,
                "low_tariff": entry.hour in self.low_tariff_hours,
            }
            for entry in self.hours
        ]


class SpotPricesCoordinator(DataUpdateCoordinator[SpotPriceData]):
    """Coordinator that recomputes and publishes the daily price set."""

    config_entry: ConfigEntry

    def __init__(self, hass: HomeAssistant, entry: ConfigEntry) -> None:
        """Initialize the coordinator."""
        super().__init__(
            hass,
            _LOGGER,
            name=f"{DOMAIN}_{entry.entry_id}",
            config_entry=entry,
            update_interval=None,
        )
        self._nordpool_entity = entry.data[CONF_NORDPOOL_SENSOR]
        self._nordpool_type = entry.data.get(CONF_NORDPOOL_TYPE, NORDPOOL_TYPE_HACS)
        self.price_calculator = PriceCalculator()
        self.lock_manager = LockManager()
        self.interval_manager = IntervalManager(hass)
        self._unsub_nordpool: CALLBACK_TYPE | None = None
        self._previous_tariff: str | None = None
        self._operation_ids = itertools.count(1)
        self.retry_backoff = FETCH_RETRY_BACKOFF
        self._pending_average_check: datetime | None = None
        self._short_day_warned: date | None = None

    @property
    def resource_id(self) -> str:
        """Return the key of this device in the lock table."""
        return self.config_entry.entry_id

    @property
    def nordpool_entity(self) -> str:
        """Return the Nord Pool sensor this coordinator reads."""
        return self._nordpool_entity

    @property
    def tariff_schedule(self) -> TariffSchedule:
        """Return the distribution tariff from the current options."""
        return TariffSchedule.from_options(self.config_entry.options)

    @property
    def average_window_hours(self) -> int:
        """Return the configured length of the best-window search."""
        return int(
            self.config_entry.options.get(
                CONF_AVERAGE_WINDOW_HOURS, DEFAULT_AVERAGE_WINDOW_HOURS
            )
        )

    async def _async_setup(self) -> None:
        """Set up the coordinator (called once on first refresh)."""
        # Register Nord Pool state change listener for immediate recalculation
        self._unsub_nordpool = async_track_state_change_event(
            self.hass, [self._nordpool_entity], self._on_nordpool_update
        )
        self._previous_tariff = tariff_class(_local_now().hour, self.tariff_schedule)
        self._start_timers()

    def _start_timers(self) -> None:
        """Start the hour-aligned timers and the cache sweep."""
        delay = calculate_delay_to_next_hour(dt_util.now())
        hour = timedelta(hours=1)
        self.interval_manager.schedule_interval(
            TIMER_HOURLY, self._async_hourly_tick, hour, delay
        )
        self.interval_manager.schedule_interval(
            TIMER_AVERAGE, self._async_average_tick, hour, delay
        )
        self.interval_manager.schedule_interval(
            TIMER_TARIFF, self._async_tariff_tick, hour, delay
        )
        self.interval_manager.schedule_interval(
            TIMER_CACHE_CLEANUP, self._async_cleanup_tick, PRICE_CACHE_TTL
        )

    @callback
    def _on_nordpool_update(self, event: Event) -> None:
        """Handle Nord Pool sensor state change."""
        _LOGGER.debug("Nord Pool sensor updated, requesting refresh")
        self.hass.async_create_task(self.async_request_refresh())

    # -----------------------------------------------------------------------
    # Recompute
    # -----------------------------------------------------------------------

    async def _async_update_data(self) -> SpotPriceData:
        """Recompute the price set while holding the recompute lock."""
        operation_id = f"refresh-{next(self._operation_ids)}"
        try:
            with self.lock_manager.hold(self.resource_id, operation_id):
                return await self._async_recompute()
        except LockContention as err:
            if self.data is not None:
                _LOGGER.debug("%s, keeping published prices", err)
                return self.data
            raise UpdateFailed(str(err)) from err

    async def _async_recompute(self) -> SpotPriceData:
        """Fetch, adjust, classify and build a complete new price set."""
        now = _local_now()
        raw_set = await self._async_fetch_with_retry(now)

        options = self.config_entry.options
        schedule = self.tariff_schedule
        adjusted = [
            replace(
                entry,
                adjusted_price=adjust_price(entry.raw_price, entry.hour, schedule),
            )
            for entry in raw_set
        ]
        classified = self.price_calculator.set_price_indexes(
            adjusted,
            int(options.get(CONF_LOW_INDEX_HOURS, DEFAULT_LOW_INDEX_HOURS)),
            int(options.get(CONF_HIGH_INDEX_HOURS, DEFAULT_HIGH_INDEX_HOURS)),
        )

        data = self._build_data(classified, schedule, now)
        previous = self.data
        if previous is None or previous.hours != data.hours:
            self.price_calculator.invalidate_averages()
        if (
            previous is not None
            and data.current_price is not None
            and previous.current_price != data.current_price
        ):
            self.hass.bus.async_fire(
                EVENT_CURRENT_PRICE_CHANGED,
                {
                    "entry_id": self.resource_id,
                    "price": data.current_price,
                    "tier": data.current_tier,
                    "hour": data.current_hour,
                },
            )

        _LOGGER.debug(
            "Published prices for %s: current=%s (%s), average=%s",
            data.price_date, data.current_price, data.current_tier, data.daily_average,
        )
        return data

    async def _async_fetch_with_retry(self, now: datetime) -> list[HourlyPrice]:
        """Fetch today's raw prices, retrying with a growing backoff."""
        last_error: InvalidPriceData | None = None
        for attempt in range(1, FETCH_MAX_ATTEMPTS + 1):
            try:
                return await self._async_fetch_raw_prices(now)
            except UnsupportedDayLength as err:
                # Retrying cannot add the missing hour
                if self._short_day_warned != now.date():
                    self._short_day_warned = now.date()
                    _LOGGER.warning("Prices for %s cannot be published: %s", now.date(), err)
                raise UpdateFailed(str(err)) from err
            except InvalidPriceData as err:
                last_error = err
                _LOGGER.warning(
                    "Price fetch attempt %d/%d failed: %s",
                    attempt, FETCH_MAX_ATTEMPTS, err,
                )
                if attempt < FETCH_MAX_ATTEMPTS:
                    await asyncio.sleep(
                        (self.retry_backoff * attempt).total_seconds()
                    )

        self.hass.bus.async_fire(
            EVENT_UPDATE_FAILED,
            {
                "entry_id": self.resource_id,
                "error_message": str(last_error),
                "retry_count": FETCH_MAX_ATTEMPTS,
                "max_retries_reached": True,
            },
        )
        raise UpdateFailed(
            f"Failed to fetch spot prices after {FETCH_MAX_ATTEMPTS} attempts: {last_error}"
        ) from last_error

    async def _async_fetch_raw_prices(self, now: datetime) -> list[HourlyPrice]:
        """Read today's prices from the Nord Pool sensor as 24 hourly prices.

        Raises:
            InvalidPriceData: If the sensor is missing or the day is incomplete.
        """
        if self.hass.states.get(self._nordpool_entity) is None:
            raise InvalidPriceData(
                f"Nord Pool sensor {self._nordpool_entity} not available"
            )

        raw_slots = await async_get_prices(
            self.hass, self._nordpool_entity, self._nordpool_type
        )
        hourly = to_hourly_prices(raw_slots, now.date(), now.tzinfo)
        raw_set = [HourlyPrice.from_raw(row["hour"], row["price"]) for row in hourly]
        day_hours = _local_day_hours(now.date())
        if day_hours != HOURS_PER_DAY and len(raw_set) == day_hours:
            raise UnsupportedDayLength(f"{now.date()} has {day_hours} local hours")
        validate_price_data(raw_set)
        return raw_set

    def _build_data(
        self,
        classified: tuple[HourlyPrice, ...],
        schedule: TariffSchedule,
        now: datetime,
    ) -> SpotPriceData:
        """Derive the current-hour and daily values from a classified set."""
        price_in_kwh = bool(
            self.config_entry.options.get(CONF_PRICE_IN_KWH, DEFAULT_PRICE_IN_KWH)
        )
        data = SpotPriceData(
            hours=classified,
            price_date=now.date(),
            current_hour=now.hour,
            low_tariff_active=now.hour in schedule.low_tariff_hours,
            low_tariff_hours=schedule.low_tariff_hours,
            price_in_kwh=price_in_kwh,
        )
        if not classified:
            return data

        prices = [entry.adjusted_price for entry in classified]
        current = next((entry for entry in classified if entry.hour == now.hour), None)
        return replace(
            data,
            current_price=(
                data.display_price(current.adjusted_price) if current else None
            ),
            current_tier=(current.tier or TIER_UNKNOWN) if current else TIER_UNKNOWN,
            daily_average=data.display_price(sum(prices) / len(prices)),
            min_price=data.display_price(min(prices)),
            max_price=data.display_price(max(prices)),
        )

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def best_window(
        self,
        hours: int,
        condition: str = CONDITION_LOWEST,
        *,
        now: datetime | None = None,
    ) -> WindowCombination | None:
        """Return the lowest or highest average ``hours``-long window of the day."""
        if self.data is None or not self.data.hours:
            return None
        now = now or _local_now()
        combinations = self.price_calculator.calculate_average_prices(
            self.data.hours, hours, 0, current_hour=now.hour
        )
        return find_target_combination(combinations, condition)

    def is_in_best_window(
        self,
        hours: int,
        condition: str = CONDITION_LOWEST,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Return True if the current hour lies inside the best window."""
        now = now or _local_now()
        target = self.best_window(hours, condition, now=now)
        if target is None:
            return False
        return target.start_hour <= now.hour < target.end_hour

    def is_low_tariff_now(self, now: datetime | None = None) -> bool:
        """Return True if the low distribution tariff is in effect."""
        now = now or _local_now()
        return tariff_class(now.hour, self.tariff_schedule) == TARIFF_LOW

    # -----------------------------------------------------------------------
    # Timers and triggers
    # -----------------------------------------------------------------------

    async def _async_hourly_tick(self, _now: datetime) -> None:
        """Recompute at every full hour.

        An average window check that found only the previous day's prices is
        repeated once the new day has been published.
        """
        await self.async_refresh()
        pending = self._pending_average_check
        self._pending_average_check = None
        if pending is not None and self.last_update_success:
            self.check_average_window(pending)
            self._pending_average_check = None

    @callback
    def _async_average_tick(self, _now: datetime) -> None:
        """Fire an event when the current hour starts the best window."""
        self.check_average_window(_local_now())

    @callback
    def _async_tariff_tick(self, _now: datetime) -> None:
        """Fire an event when the distribution tariff changes."""
        self.check_tariff_change(_local_now())

    @callback
    def _async_cleanup_tick(self, _now: datetime) -> None:
        """Evict expired cache entries."""
        self.price_calculator.cleanup_cache()

    @callback
    def check_average_window(self, now: datetime) -> None:
        """Fire ``average_window_started`` for windows starting this hour."""
        data = self.data
        if data is None or data.price_date != now.date():
            _LOGGER.debug("No prices for %s yet, deferring average window check", now.date())
            self._pending_average_check = now
            return

        hours = self.average_window_hours
        for condition in (CONDITION_LOWEST, CONDITION_HIGHEST):
            target = self.best_window(hours, condition, now=now)
            if target is None or target.start_hour != now.hour:
                continue
            _LOGGER.info(
                "%s %d-hour window starts now (%02d:00, average %.3f)",
                condition.capitalize(), hours, target.start_hour, target.average,
            )
            self.hass.bus.async_fire(
                EVENT_AVERAGE_WINDOW_STARTED,
                {
                    "entry_id": self.resource_id,
                    "hours": hours,
                    "condition": condition,
                    "start_hour": target.start_hour,
                    "average": data.display_price(target.average),
                },
            )

    @callback
    def check_tariff_change(self, now: datetime) -> None:
        """Fire ``tariff_changed`` if the tariff differs from the last check."""
        current = tariff_class(now.hour, self.tariff_schedule)
        if self._previous_tariff is not None and current != self._previous_tariff:
            _LOGGER.info(
                "Distribution tariff changed from %s to %s", self._previous_tariff, current
            )
            self.hass.bus.async_fire(
                EVENT_TARIFF_CHANGED,
                {"entry_id": self.resource_id, "tariff": current, "hour": now.hour},
            )
            # Entities read the tariff live; availability stays with the last refresh
            self.async_update_listeners()
        self._previous_tariff = current

    async def async_refresh_prices(self) -> bool:
        """Recompute on request and report whether it succeeded."""
        _LOGGER.debug("Manual price refresh requested")
        await self.async_refresh()
        return self.last_update_success

    async def async_handle_options_update(self) -> None:
        """Recompute after the options changed."""
        _LOGGER.debug("Options updated, recalculating prices")
        await self.async_refresh()

    async def async_shutdown(self) -> None:
        """Cancel timers and listeners."""
        self.interval_manager.clear_all()
        if self._unsub_nordpool:
            self._unsub_nordpool()
            self._unsub_nordpool = None
        self.lock_manager.clear_all_locks()
        self.price_calculator.clear_cache()
        await super().async_shutdown()
