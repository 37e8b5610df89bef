"""The CZ Spot Prices integration."""

from __future__ import annotations

import logging

import voluptuous as vol

from homeassistant.config_entries import ConfigEntry
from homeassistant.const import Platform
from homeassistant.core import HomeAssistant, ServiceCall
from homeassistant.exceptions import ConfigEntryNotReady, HomeAssistantError

from .const import ATTR_ENTRY_ID, CONF_NORDPOOL_SENSOR, DOMAIN, SERVICE_REFRESH_PRICES
from .coordinator import SpotPricesCoordinator

_LOGGER = logging.getLogger(__name__)

PLATFORMS: list[Platform] = [Platform.SENSOR, Platform.BINARY_SENSOR]

REFRESH_PRICES_SCHEMA = vol.Schema({vol.Optional(ATTR_ENTRY_ID): str})


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up CZ Spot Prices from a config entry."""
    coordinator = SpotPricesCoordinator(hass, entry)
    try:
        await coordinator.async_config_entry_first_refresh()
    except ConfigEntryNotReady:
        # Timers and listeners were already started by the first refresh
        await coordinator.async_shutdown()
        raise

    hass.data.setdefault(DOMAIN, {})
    hass.data[DOMAIN][entry.entry_id] = coordinator

    _register_services_once(hass)

    entry.async_on_unload(entry.add_update_listener(_async_update_listener))
    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)
    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry."""
    if unload_ok := await hass.config_entries.async_unload_platforms(entry, PLATFORMS):
        coordinator: SpotPricesCoordinator = hass.data[DOMAIN].pop(entry.entry_id)
        await coordinator.async_shutdown()

    return unload_ok


async def _async_update_listener(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Recompute on option changes, reload when the price source changed."""
    coordinator: SpotPricesCoordinator | None = _coordinators(hass).get(entry.entry_id)
    if coordinator is None:
        # Entry is being reloaded
        return
    if coordinator.nordpool_entity != entry.data[CONF_NORDPOOL_SENSOR]:
        _LOGGER.debug("Nord Pool sensor changed, reloading %s", entry.title)
        await hass.config_entries.async_reload(entry.entry_id)
        return
    await coordinator.async_handle_options_update()


def _coordinators(hass: HomeAssistant) -> dict[str, SpotPricesCoordinator]:
    """Return mapping of entry_id to coordinator, ignoring auxiliary keys."""
    return {
        entry_id: coordinator
        for entry_id, coordinator in hass.data.get(DOMAIN, {}).items()
        if isinstance(coordinator, SpotPricesCoordinator)
    }


def _register_services_once(hass: HomeAssistant) -> None:
    """Register domain services if not already registered."""
    if hass.services.has_service(DOMAIN, SERVICE_REFRESH_PRICES):
        return

    async def _async_handle_refresh(call: ServiceCall) -> None:
        coordinators = _coordinators(hass)
        entry_id = call.data.get(ATTR_ENTRY_ID)

        if entry_id:
            if entry_id not in coordinators:
                raise HomeAssistantError(
                    f"No CZ Spot Prices config entry with id {entry_id}"
                )
            targets = {entry_id: coordinators[entry_id]}
        else:
            if not coordinators:
                raise HomeAssistantError("No CZ Spot Prices config entries loaded.")
            targets = coordinators

        failed = [
            target_id
            for target_id, coordinator in targets.items()
            if not await coordinator.async_refresh_prices()
        ]
        if failed:
            raise HomeAssistantError(
                f"Price refresh failed for {', '.join(failed)}"
            )

    hass.services.async_register(
        DOMAIN,
        SERVICE_REFRESH_PRICES,
        _async_handle_refresh,
        schema=REFRESH_PRICES_SCHEMA,
    )
