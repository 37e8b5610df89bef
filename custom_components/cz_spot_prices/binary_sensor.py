"""Binary sensor platform for the CZ Spot Prices integration."""

from __future__ import annotations

from homeassistant.components.binary_sensor import BinarySensorEntity
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import CONDITION_LOWEST, DOMAIN
from .coordinator import SpotPricesCoordinator
from .sensor import device_info


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up CZ Spot Prices binary sensors from a config entry."""
    coordinator: SpotPricesCoordinator = hass.data[DOMAIN][entry.entry_id]
    async_add_entities([
        LowTariffBinarySensor(coordinator, entry),
        CheapestWindowBinarySensor(coordinator, entry),
    ])


class LowTariffBinarySensor(
    CoordinatorEntity[SpotPricesCoordinator], BinarySensorEntity
):
    """Binary sensor that is on while the low distribution tariff applies."""

    _attr_has_entity_name = True
    _attr_translation_key = "low_tariff"
    _attr_icon = "mdi:transmission-tower"

    def __init__(
        self, coordinator: SpotPricesCoordinator, entry: ConfigEntry
    ) -> None:
        """Initialize the binary sensor."""
        super().__init__(coordinator)
        self._attr_unique_id = f"{entry.entry_id}_low_tariff"
        self._attr_device_info = device_info(entry)

    @property
    def is_on(self) -> bool:
        """Return True if the low tariff is active."""
        return self.coordinator.is_low_tariff_now()


class CheapestWindowBinarySensor(
    CoordinatorEntity[SpotPricesCoordinator], BinarySensorEntity
):
    """Binary sensor that is on during today's cheapest window."""

    _attr_has_entity_name = True
    _attr_translation_key = "in_cheapest_window"
    _attr_icon = "mdi:piggy-bank"

    def __init__(
        self, coordinator: SpotPricesCoordinator, entry: ConfigEntry
    ) -> None:
        """Initialize the binary sensor."""
        super().__init__(coordinator)
        self._attr_unique_id = f"{entry.entry_id}_in_cheapest_window"
        self._attr_device_info = device_info(entry)

    @property
    def is_on(self) -> bool:
        """Return True if the current hour lies in the cheapest window."""
        return self.coordinator.is_in_best_window(
            self.coordinator.average_window_hours, CONDITION_LOWEST
        )
