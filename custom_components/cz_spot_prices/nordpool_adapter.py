"""Adapter for reading daily spot prices from HACS Nordpool or native HA Nordpool."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta, tzinfo
import logging

from homeassistant.core import HomeAssistant, State
from homeassistant.helpers import entity_registry as er
from homeassistant.util import dt as dt_util

from .const import NORDPOOL_TYPE_HACS, NORDPOOL_TYPE_NATIVE

_LOGGER = logging.getLogger(__name__)


def detect_nordpool_type(hass: HomeAssistant, entity_id: str) -> str:
    """Detect whether an entity is a HACS Nordpool or native HA Nordpool sensor.

    Returns:
        "hacs", "native", or "unknown".
    """
    state = hass.states.get(entity_id)
    if state is not None and state.attributes.get("raw_today") is not None:
        return NORDPOOL_TYPE_HACS

    registry = er.async_get(hass)
    entity_entry = registry.async_get(entity_id)
    if entity_entry is not None and entity_entry.platform == "nordpool":
        return NORDPOOL_TYPE_NATIVE

    return "unknown"


def find_all_nordpool_sensors(hass: HomeAssistant) -> list[tuple[str, str, str]]:
    """List every Nordpool price sensor that can feed this integration.

    Returns:
        List of (entity_id, nordpool_type, label) tuples, HACS sensors first.
    """
    found: list[tuple[str, str, str]] = []
    seen: set[str] = set()

    for state in hass.states.async_all("sensor"):
        if state.attributes.get("raw_today") is not None:
            found.append((state.entity_id, NORDPOOL_TYPE_HACS, _label(state, "HACS")))
            seen.add(state.entity_id)

    registry = er.async_get(hass)
    for config_entry in hass.config_entries.async_entries("nordpool"):
        for entity_entry in er.async_entries_for_config_entry(
            registry, config_entry.entry_id
        ):
            # One current_price sensor per delivery area
            if (
                entity_entry.domain != "sensor"
                or not entity_entry.unique_id.endswith("current_price")
                or entity_entry.entity_id in seen
            ):
                continue
            state = hass.states.get(entity_entry.entity_id)
            found.append((
                entity_entry.entity_id,
                NORDPOOL_TYPE_NATIVE,
                _label(state, "Nord Pool") if state else entity_entry.entity_id,
            ))
            seen.add(entity_entry.entity_id)

    _LOGGER.debug("Found %d Nordpool sensors", len(found))
    return found


def _label(state: State, source: str) -> str:
    name = state.attributes.get("friendly_name") or state.entity_id
    return f"{name} ({source})"


async def async_get_prices(
    hass: HomeAssistant,
    entity_id: str,
    nordpool_type: str,
) -> list[dict]:
    """Fetch today's price slots, normalized to [{start, end, value}] in currency/MWh.

    Args:
        hass: Home Assistant instance.
        entity_id: The Nordpool sensor entity ID.
        nordpool_type: "hacs" or "native".

    Returns:
        Today's slots, or an empty list when nothing is available.
    """
    if nordpool_type == NORDPOOL_TYPE_HACS:
        return _get_hacs_prices(hass, entity_id)
    if nordpool_type == NORDPOOL_TYPE_NATIVE:
        return await _async_get_native_prices(hass, entity_id)

    _LOGGER.error("Unknown nordpool_type: %s", nordpool_type)
    return []


def _get_hacs_prices(hass: HomeAssistant, entity_id: str) -> list[dict]:
    """Read today's prices from HACS Nordpool sensor attributes.

    HACS Nordpool reports in currency/kWh unless configured for MWh.
    """
    state = hass.states.get(entity_id)
    if state is None:
        return []

    unit = str(
        state.attributes.get("unit") or state.attributes.get("unit_of_measurement") or ""
    )
    factor = 1.0 if "mwh" in unit.lower() else 1000.0

    converted: list[dict] = []
    for slot in state.attributes.get("raw_today") or []:
        value = slot.get("value")
        if value is None:
            continue
        try:
            converted.append({
                "start": slot.get("start"),
                "end": slot.get("end"),
                "value": float(value) * factor,
            })
        except (ValueError, TypeError) as exc:
            _LOGGER.warning("Error converting HACS Nordpool slot: %s", exc)
    return converted


async def _async_get_native_prices(hass: HomeAssistant, entity_id: str) -> list[dict]:
    """Fetch today's prices from native HA Nordpool via service call."""
    registry = er.async_get(hass)
    entity_entry = registry.async_get(entity_id)
    if entity_entry is None or entity_entry.config_entry_id is None:
        _LOGGER.error(
            "Cannot find config entry for native Nordpool entity %s", entity_id
        )
        return []

    return await _async_fetch_native_date(
        hass, entity_entry.config_entry_id, dt_util.now().date()
    )


async def _async_fetch_native_date(
    hass: HomeAssistant, config_entry_id: str, target_date: date
) -> list[dict]:
    """Call nordpool.get_prices_for_date and convert to standard format."""
    try:
        response = await hass.services.async_call(
            "nordpool",
            "get_prices_for_date",
            {
                "config_entry": config_entry_id,
                "date": str(target_date),
            },
            blocking=True,
            return_response=True,
        )
    except Exception:
        _LOGGER.warning(
            "Failed to fetch native Nordpool prices for %s", target_date, exc_info=True
        )
        return []

    if not response:
        return []

    return _convert_native_response(response)


def _first_area(response: dict | list | None) -> list:
    """Return the slot list of the first delivery area in a service response."""
    if isinstance(response, list):
        return response
    if isinstance(response, dict):
        return next(
            (slots for slots in response.values() if isinstance(slots, list)), []
        )
    return []


def _native_slot(entry: dict) -> dict | None:
    start = entry.get("start")
    price = entry.get("price")
    if start is None or price is None:
        return None

    end = entry.get("end")
    if end is None:
        # Hourly resolution when the area omits slot ends
        start_dt = _to_datetime(start)
        end_dt = start_dt + timedelta(hours=1)
        end = end_dt if isinstance(start, datetime) else end_dt.isoformat()

    return {"start": start, "end": end, "value": float(price)}


def _convert_native_response(response: dict | list | None) -> list[dict]:
    """Convert a ``get_prices_for_date`` response to ``{start, end, value}`` slots.

    The response maps delivery areas to slot lists; only the first area is
    used. Native prices are already in currency/MWh.
    """
    slots: list[dict] = []
    for entry in _first_area(response):
        try:
            slot = _native_slot(entry)
        except (AttributeError, ValueError, TypeError) as exc:
            _LOGGER.warning("Skipping native Nordpool entry %s: %s", entry, exc)
            continue
        if slot is not None:
            slots.append(slot)
    return slots


def _to_datetime(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def to_hourly_prices(
    raw_slots: list[dict], day: date, tz: tzinfo
) -> list[dict]:
    """Aggregate price slots of ``day`` into one average price per local hour.

    Nordpool publishes 15-minute or hourly slots; each hour gets the mean of
    its slots. Slots of other days are ignored.

    Returns:
        List of {"hour": int, "price": float} ordered by hour. Hours without
        any slot are missing from the list.
    """
    by_hour: dict[int, list[float]] = defaultdict(list)
    for slot in raw_slots:
        try:
            start = _to_datetime(slot["start"]).astimezone(tz)
            value = float(slot["value"])
        except (KeyError, ValueError, TypeError) as exc:
            _LOGGER.warning("Error processing slot: %s", exc)
            continue
        if start.date() != day:
            continue
        by_hour[start.hour].append(value)

    return [
        {"hour": hour, "price": sum(values) / len(values)}
        for hour, values in sorted(by_hour.items())
    ]
