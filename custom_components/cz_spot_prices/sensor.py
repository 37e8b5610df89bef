"""Sensor platform for the CZ Spot Prices integration."""

from __future__ import annotations

from typing import Any

from homeassistant.components.sensor import SensorDeviceClass, SensorEntity
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.helpers.device_registry import DeviceEntryType, DeviceInfo
from homeassistant.helpers.entity import EntityCategory
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import CONDITION_LOWEST, CONF_NAME, DOMAIN, TIERS, TIER_UNKNOWN
from .coordinator import SpotPriceData, SpotPricesCoordinator

PRICE_UNIT_MWH = "CZK/MWh"
PRICE_UNIT_KWH = "CZK/kWh"


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up CZ Spot Prices sensors from a config entry."""
    coordinator: SpotPricesCoordinator = hass.data[DOMAIN][entry.entry_id]
    async_add_entities([
        CurrentSpotPriceSensor(coordinator, entry),
        CurrentPriceTierSensor(coordinator, entry),
        DailyAveragePriceSensor(coordinator, entry),
        HourlyPricesSensor(coordinator, entry),
        BestWindowStartSensor(coordinator, entry),
    ])


def device_info(entry: ConfigEntry) -> DeviceInfo:
    """Return the device all entities of ``entry`` belong to."""
    return DeviceInfo(
        identifiers={(DOMAIN, entry.entry_id)},
        name=entry.data[CONF_NAME],
        manufacturer="CZ Spot Prices",
        model="Spot Price Calculator",
        entry_type=DeviceEntryType.SERVICE,
    )


class _SpotPriceSensorBase(CoordinatorEntity[SpotPricesCoordinator], SensorEntity):
    """Base class for CZ Spot Prices sensors."""

    _attr_has_entity_name = True

    def __init__(
        self, coordinator: SpotPricesCoordinator, entry: ConfigEntry
    ) -> None:
        """Initialize the sensor."""
        super().__init__(coordinator)
        self._attr_unique_id = f"{entry.entry_id}_{self._attr_translation_key}"
        self._attr_device_info = device_info(entry)

    @property
    def _data(self) -> SpotPriceData | None:
        return self.coordinator.data


class _PriceSensorBase(_SpotPriceSensorBase):
    """Sensor whose state is a price in the configured unit."""

    _attr_suggested_display_precision = 2

    @property
    def native_unit_of_measurement(self) -> str:
        """Return the configured price unit."""
        if self._data is not None and self._data.price_in_kwh:
            return PRICE_UNIT_KWH
        return PRICE_UNIT_MWH


class CurrentSpotPriceSensor(_PriceSensorBase):
    """Adjusted spot price of the current hour."""

    _attr_translation_key = "current_spot_price"
    _attr_icon = "mdi:cash"

    @property
    def native_value(self) -> float | None:
        """Return the current price."""
        if self._data is None:
            return None
        return self._data.current_price

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        """Return the tier and tariff of the current hour."""
        if self._data is None:
            return {}
        return {
            "hour": self._data.current_hour,
            "tier": self._data.current_tier,
            "low_tariff_active": self._data.low_tariff_active,
        }


class CurrentPriceTierSensor(_SpotPriceSensorBase):
    """Price tier of the current hour."""

    _attr_translation_key = "current_price_tier"
    _attr_device_class = SensorDeviceClass.ENUM
    _attr_options = list(TIERS)

    @property
    def native_value(self) -> str:
        """Return low, medium, high or unknown."""
        if self._data is None:
            return TIER_UNKNOWN
        return self._data.current_tier

    @property
    def icon(self) -> str:
        """Return icon based on tier."""
        tier = self.native_value
        if tier == "low":
            return "mdi:arrow-down-bold"
        if tier == "high":
            return "mdi:arrow-up-bold"
        return "mdi:minus"


class DailyAveragePriceSensor(_PriceSensorBase):
    """Average adjusted price of the day."""

    _attr_translation_key = "daily_average_price"
    _attr_icon = "mdi:chart-line"

    @property
    def native_value(self) -> float | None:
        """Return the daily average."""
        if self._data is None:
            return None
        return self._data.daily_average

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        """Return the daily minimum and maximum."""
        if self._data is None:
            return {}
        return {
            "min_price": self._data.min_price,
            "max_price": self._data.max_price,
            "price_date": (
                self._data.price_date.isoformat() if self._data.price_date else None
            ),
        }


class HourlyPricesSensor(_SpotPriceSensorBase):
    """Number of priced hours, with the full table as an attribute."""

    _attr_translation_key = "hourly_prices"
    _attr_icon = "mdi:table-clock"

    @property
    def native_value(self) -> int | None:
        """Return the number of hours with a price."""
        if self._data is None:
            return None
        return len(self._data.hours)

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        """Return hour, price, tier and tariff of every hour."""
        if self._data is None:
            return {}
        return {"prices": self._data.hourly_table()}


class BestWindowStartSensor(_SpotPriceSensorBase):
    """Diagnostic sensor showing where today's cheapest window starts."""

    _attr_translation_key = "best_window_start"
    _attr_entity_category = EntityCategory.DIAGNOSTIC
    _attr_icon = "mdi:clock-start"

    @property
    def native_value(self) -> int | None:
        """Return the start hour of the cheapest window."""
        window = self.coordinator.best_window(
            self.coordinator.average_window_hours, CONDITION_LOWEST
        )
        if window is None:
            return None
        return window.start_hour

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        """Return length, end and average of the cheapest window."""
        window = self.coordinator.best_window(
            self.coordinator.average_window_hours, CONDITION_LOWEST
        )
        if window is None or self._data is None:
            return {}
        return {
            "hours": window.length,
            "end_hour": window.end_hour,
            "average": self._data.display_price(window.average),
        }
