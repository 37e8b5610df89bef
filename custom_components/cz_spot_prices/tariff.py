"""Distribution tariff policy for the CZ Spot Prices integration.

Day/night distribution tariffs add a fixed surcharge to every spot price.
Hours flagged as low tariff get the low surcharge, all other hours the high
one. Prices are handled in currency/MWh throughout; conversion to kWh is only
applied for presentation.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
import logging
import math
from typing import Any

from .const import (
    CONF_HIGH_TARIFF_PRICE,
    CONF_LOW_TARIFF_HOURS,
    CONF_LOW_TARIFF_PRICE,
    DEFAULT_HIGH_TARIFF_PRICE,
    DEFAULT_LOW_TARIFF_PRICE,
    HOURS_PER_DAY,
    TARIFF_HIGH,
    TARIFF_LOW,
)
from .exceptions import InvalidHour, InvalidPrice

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TariffSchedule:
    """Low tariff hours and the surcharge of each tariff class."""

    low_tariff_hours: frozenset[int] = field(default_factory=frozenset)
    low_surcharge: float = 0.0
    high_surcharge: float = 0.0

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> TariffSchedule:
        """Build a schedule from config entry options.

        Hours come from a multi-select and arrive as strings; anything that is
        not an hour of the day is dropped with a warning.
        """
        return cls(
            low_tariff_hours=_parse_hours(options.get(CONF_LOW_TARIFF_HOURS) or []),
            low_surcharge=_as_float(
                options.get(CONF_LOW_TARIFF_PRICE), DEFAULT_LOW_TARIFF_PRICE
            ),
            high_surcharge=_as_float(
                options.get(CONF_HIGH_TARIFF_PRICE), DEFAULT_HIGH_TARIFF_PRICE
            ),
        )


def _parse_hours(values: Iterable[Any]) -> frozenset[int]:
    hours: set[int] = set()
    for value in values:
        try:
            hour = int(value)
        except (TypeError, ValueError):
            _LOGGER.warning("Ignoring invalid low tariff hour: %s", value)
            continue
        if 0 <= hour < HOURS_PER_DAY:
            hours.add(hour)
        else:
            _LOGGER.warning("Ignoring out of range low tariff hour: %s", hour)
    return frozenset(hours)


def _as_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        _LOGGER.warning("Invalid tariff price %s, using %s", value, default)
        return default


def _is_finite_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def is_low_tariff(hour: int, schedule: TariffSchedule) -> bool:
    """Return True if ``hour`` falls into the low distribution tariff.

    Raises:
        InvalidHour: If ``hour`` is not within 0-23.
    """
    if not isinstance(hour, int) or isinstance(hour, bool) or not 0 <= hour < HOURS_PER_DAY:
        raise InvalidHour(f"Invalid hour: {hour!r}")
    return hour in schedule.low_tariff_hours


def tariff_class(hour: int, schedule: TariffSchedule) -> str:
    """Return "low" or "high" for the tariff in effect at ``hour``."""
    return TARIFF_LOW if is_low_tariff(hour, schedule) else TARIFF_HIGH


def adjust_price(raw_price: float, hour: int, schedule: TariffSchedule) -> float:
    """Add the distribution surcharge for ``hour`` to a raw spot price.

    A bad price or hour never propagates: the raw price is returned unchanged
    so one broken hour cannot blank out the rest of the day.
    """
    try:
        if not _is_finite_number(raw_price):
            raise InvalidPrice(f"Invalid base price: {raw_price!r}")
        low = is_low_tariff(hour, schedule)
        surcharge = schedule.low_surcharge if low else schedule.high_surcharge
        adjusted = raw_price + surcharge
    except (InvalidPrice, InvalidHour) as err:
        _LOGGER.error("Failed to add distribution tariff for hour %s: %s", hour, err)
        return raw_price

    _LOGGER.debug(
        "Distribution price for hour %s: base=%.3f, low_tariff=%s, surcharge=%.3f, final=%.3f",
        hour, raw_price, low, surcharge, adjusted,
    )
    return adjusted


def convert_price(price: float, to_per_kwh: bool) -> float:
    """Convert a currency/MWh price to currency/kWh when ``to_per_kwh`` is set."""
    if not _is_finite_number(price):
        _LOGGER.error("Invalid price for conversion: %r", price)
        return price
    return price / 1000 if to_per_kwh else price
