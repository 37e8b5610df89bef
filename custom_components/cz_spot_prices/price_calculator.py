"""Price tier classification and sliding-window averages.

This module contains no Home Assistant dependencies. It provides:
- Price tiers: rank the 24 hours of a day and tag them low/medium/high
- Window averages: every contiguous N-hour block of the day and its mean price
- PriceCalculator: both of the above behind time-to-live caches
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
import logging
import math

from .cache import TTLCache
from .const import (
    AVERAGE_CACHE_TTL,
    CONDITION_HIGHEST,
    CONDITION_LOWEST,
    HOURS_PER_DAY,
    PRICE_CACHE_TTL,
    TIER_HIGH,
    TIER_LOW,
    TIER_MEDIUM,
    TIER_UNKNOWN,
    TIERS,
)
from .exceptions import InvalidHour, InvalidPriceData

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class HourlyPrice:
    """Price of one hour of the day.

    ``tier`` is None until the hour is classified, unless the upstream source
    already supplied one.
    """

    hour: int
    raw_price: float
    adjusted_price: float
    tier: str | None = None

    @classmethod
    def from_raw(cls, hour: int, raw_price: float) -> HourlyPrice:
        """Create an unadjusted, unclassified hour."""
        return cls(hour=hour, raw_price=raw_price, adjusted_price=raw_price)


@dataclass(frozen=True)
class WindowCombination:
    """A contiguous block of hours and its average adjusted price."""

    start_hour: int
    length: int
    average: float
    members: tuple[HourlyPrice, ...]

    @property
    def end_hour(self) -> int:
        """Return the first hour after the window."""
        return self.start_hour + self.length


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _is_price(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _is_hour(value: object) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 <= value < HOURS_PER_DAY
    )


def validate_price_data(price_set: Sequence[HourlyPrice]) -> None:
    """Check that ``price_set`` is a complete day of numeric hourly prices.

    Raises:
        InvalidPriceData: If the set does not hold exactly one entry with a
            finite price for each hour 0-23.
    """
    if isinstance(price_set, (str, bytes)) or not isinstance(price_set, Sequence):
        raise InvalidPriceData("Price data is not a sequence")
    if len(price_set) != HOURS_PER_DAY:
        raise InvalidPriceData(
            f"Expected {HOURS_PER_DAY} hourly prices, got {len(price_set)}"
        )

    seen: set[int] = set()
    for entry in price_set:
        if not isinstance(entry, HourlyPrice):
            raise InvalidPriceData(f"Not an hourly price: {entry!r}")
        if not _is_hour(entry.hour):
            raise InvalidPriceData(f"Invalid hour: {entry.hour!r}")
        if not _is_price(entry.adjusted_price):
            raise InvalidPriceData(
                f"Invalid price for hour {entry.hour}: {entry.adjusted_price!r}"
            )
        if entry.hour in seen:
            raise InvalidPriceData(f"Duplicate hour: {entry.hour}")
        seen.add(entry.hour)


# ---------------------------------------------------------------------------
# Price tiers
# ---------------------------------------------------------------------------

def classify_prices(
    price_set: Sequence[HourlyPrice],
    low_count: int,
    high_count: int,
) -> tuple[HourlyPrice, ...]:
    """Tag every hour of the day as low, medium or high.

    The ``low_count`` cheapest hours become low and the ``high_count`` most
    expensive ones high. Equal prices are ranked by hour, so the result does
    not depend on input order. If the counts overlap, high wins.

    When every hour already carries an upstream tier, the tiers are kept
    as they are and the counts are ignored.

    Returns:
        A new price set ordered by hour.

    Raises:
        InvalidPriceData: If the input is not a complete day or a count is
            negative.
    """
    validate_price_data(price_set)
    if low_count < 0 or high_count < 0:
        raise InvalidPriceData(
            f"Tier counts must not be negative: low={low_count}, high={high_count}"
        )

    if all(entry.tier in TIERS for entry in price_set):
        _LOGGER.debug("All hours carry upstream tiers, keeping them")
        return tuple(sorted(price_set, key=lambda x: x.hour))

    ranked = sorted(price_set, key=lambda x: (x.adjusted_price, x.hour))
    total = len(ranked)
    tiers: dict[int, str] = {}
    for index, entry in enumerate(ranked):
        tier = TIER_MEDIUM
        if index < low_count:
            tier = TIER_LOW
        if index >= total - high_count:
            tier = TIER_HIGH
        tiers[entry.hour] = tier

    return tuple(
        replace(entry, tier=tiers[entry.hour])
        for entry in sorted(price_set, key=lambda x: x.hour)
    )


def mark_unknown(price_set: Sequence[HourlyPrice]) -> tuple[HourlyPrice, ...]:
    """Return the hourly prices of ``price_set`` with every tier set to unknown."""
    if not isinstance(price_set, Sequence):
        return ()
    return tuple(
        replace(entry, tier=TIER_UNKNOWN)
        for entry in price_set
        if isinstance(entry, HourlyPrice)
    )


# ---------------------------------------------------------------------------
# Window averages
# ---------------------------------------------------------------------------

def window_combinations(
    price_set: Sequence[HourlyPrice],
    hours: int,
    start_from_hour: int = 0,
) -> list[WindowCombination]:
    """List every ``hours``-long block of the day and its average price.

    Windows start between ``start_from_hour`` and ``24 - hours`` and never wrap
    past midnight. A window with any hour missing a price is skipped.

    Raises:
        InvalidHour: If ``start_from_hour`` is not within 0-23.
        ValueError: If ``hours`` is not within 1-24.
    """
    if not isinstance(hours, int) or not 1 <= hours <= HOURS_PER_DAY:
        raise ValueError(f"Window length must be 1-{HOURS_PER_DAY} hours, got {hours!r}")
    if not _is_hour(start_from_hour):
        raise InvalidHour(f"Invalid start hour: {start_from_hour!r}")

    by_hour = {
        entry.hour: entry
        for entry in price_set
        if isinstance(entry, HourlyPrice) and _is_price(entry.adjusted_price)
    }

    combinations: list[WindowCombination] = []
    for start in range(start_from_hour, HOURS_PER_DAY - hours + 1):
        members = [by_hour.get(hour) for hour in range(start, start + hours)]
        if any(member is None for member in members):
            _LOGGER.debug("Skipping window %d-%d: missing prices", start, start + hours)
            continue
        total = sum(member.adjusted_price for member in members)
        combinations.append(
            WindowCombination(
                start_hour=start,
                length=hours,
                average=total / hours,
                members=tuple(members),
            )
        )
    return combinations


def find_target_combination(
    combinations: Sequence[WindowCombination],
    condition: str = CONDITION_LOWEST,
) -> WindowCombination | None:
    """Pick the window with the lowest or highest average.

    Ties go to the earliest start hour in both modes.
    """
    if not combinations:
        return None
    if condition == CONDITION_HIGHEST:
        ranked = sorted(combinations, key=lambda x: (-x.average, x.start_hour))
    else:
        ranked = sorted(combinations, key=lambda x: (x.average, x.start_hour))
    return ranked[0]


# ---------------------------------------------------------------------------
# Cached calculator
# ---------------------------------------------------------------------------

def _price_cache_key(
    price_set: Sequence[HourlyPrice], low_count: int, high_count: int
) -> str:
    prices = "-".join(
        f"{entry.hour}:{entry.adjusted_price!r}:{entry.tier}" for entry in price_set
    )
    return f"{prices}|{low_count}|{high_count}"


class PriceCalculator:
    """Classify prices and compute window averages with caching.

    One instance belongs to one config entry. ``classification_runs`` and
    ``average_runs`` count the calculations that were not served from cache.
    """

    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        """Initialize the calculator and its caches."""
        cache_kwargs = {"clock": clock} if clock is not None else {}
        self._price_cache: TTLCache[tuple[HourlyPrice, ...]] = TTLCache(
            PRICE_CACHE_TTL, name="price cache", **cache_kwargs
        )
        self._average_cache: TTLCache[list[WindowCombination]] = TTLCache(
            AVERAGE_CACHE_TTL, name="average cache", **cache_kwargs
        )
        self.classification_runs = 0
        self.average_runs = 0

    def set_price_indexes(
        self,
        price_set: Sequence[HourlyPrice],
        low_count: int,
        high_count: int,
    ) -> tuple[HourlyPrice, ...]:
        """Return ``price_set`` with tiers assigned.

        Never raises: on invalid input every hour is returned with the
        unknown tier.
        """
        try:
            key = _price_cache_key(price_set, low_count, high_count)
            cached = self._price_cache.get(key)
            if cached is not None:
                _LOGGER.debug("Price tiers served from cache")
                return cached

            result = classify_prices(price_set, low_count, high_count)
            self.classification_runs += 1
            self._price_cache.put(key, result)
            return result
        except (InvalidPriceData, AttributeError, TypeError) as err:
            _LOGGER.error("Failed to classify prices: %s", err)
            return mark_unknown(price_set)

    def calculate_average_prices(
        self,
        price_set: Sequence[HourlyPrice],
        hours: int,
        start_from_hour: int = 0,
        *,
        current_hour: int,
    ) -> list[WindowCombination]:
        """Return all valid ``hours``-long windows from ``start_from_hour``.

        Results are cached per wall-clock hour, so a new hour always
        recalculates. Never raises: on invalid input an empty list is
        returned.
        """
        key = f"{hours}|{start_from_hour}|{current_hour}"
        cached = self._average_cache.get(key)
        if cached is not None:
            return list(cached)

        try:
            combinations = window_combinations(price_set, hours, start_from_hour)
        except (InvalidHour, ValueError, TypeError) as err:
            _LOGGER.error("Failed to calculate average prices: %s", err)
            return []

        self.average_runs += 1
        self._average_cache.put(key, combinations)
        return list(combinations)

    def invalidate_averages(self) -> None:
        """Forget cached window averages, e.g. after new prices are published."""
        self._average_cache.clear()

    def cleanup_cache(self) -> None:
        """Evict expired entries from both caches."""
        removed = self._price_cache.sweep() + self._average_cache.sweep()
        _LOGGER.debug(
            "Cache cleanup removed %d entries (price cache: %d, average cache: %d)",
            removed, len(self._price_cache), len(self._average_cache),
        )

    def clear_cache(self) -> None:
        """Drop every cached result."""
        self._price_cache.clear()
        self._average_cache.clear()
        _LOGGER.debug("Price caches cleared")
