"""Named recurring timers for the CZ Spot Prices integration.

Each timer key is idle, waiting for its initial delay, or running on a fixed
interval. The initial delay is normally the time left until the next full
hour, so periodic work lines up with hour boundaries regardless of when Home
Assistant started.
"""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from datetime import datetime, timedelta
import logging
from typing import Any

from homeassistant.core import CALLBACK_TYPE, HassJob, HomeAssistant, callback
from homeassistant.helpers.event import async_call_later, async_track_time_interval

from .const import TIMER_IDLE, TIMER_RUNNING, TIMER_WAITING_INITIAL_DELAY

_LOGGER = logging.getLogger(__name__)

TimerAction = Callable[[datetime], Coroutine[Any, Any, None] | None]


def calculate_delay_to_next_hour(now: datetime) -> timedelta:
    """Return the time left until the next full hour after ``now``."""
    next_hour = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    return next_hour - now


def format_delay(delay: timedelta) -> str:
    """Format a delay as "H h M m S s" for logging."""
    total = int(delay.total_seconds())
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours} h {minutes} m {seconds} s"


class IntervalManager:
    """Schedule, track and cancel named recurring timers."""

    def __init__(self, hass: HomeAssistant) -> None:
        """Initialize with no timers."""
        self._hass = hass
        self._intervals: dict[str, CALLBACK_TYPE] = {}
        self._timeouts: dict[str, CALLBACK_TYPE] = {}

    def state(self, key: str) -> str:
        """Return the state of the timer ``key``."""
        if key in self._timeouts:
            return TIMER_WAITING_INITIAL_DELAY
        if key in self._intervals:
            return TIMER_RUNNING
        return TIMER_IDLE

    @property
    def keys(self) -> list[str]:
        """Return the keys of all timers that are not idle."""
        return sorted(set(self._intervals) | set(self._timeouts))

    def schedule_interval(
        self,
        key: str,
        action: TimerAction,
        interval: timedelta,
        initial_delay: timedelta = timedelta(0),
    ) -> None:
        """Run ``action`` every ``interval``, first after ``initial_delay``.

        With a positive initial delay the action also runs once when the
        delay expires, then on every interval after that. Any timer already
        registered under ``key`` is cancelled first.
        """
        self.clear_scheduled_interval(key)
        job = HassJob(action, f"cz_spot_prices {key}")

        _LOGGER.debug(
            "Scheduling timer %s every %s, initial delay %s",
            key, interval, format_delay(initial_delay),
        )

        if initial_delay <= timedelta(0):
            self._intervals[key] = async_track_time_interval(
                self._hass, action, interval
            )
            return

        @callback
        def _initial_delay_expired(now: datetime) -> None:
            self._timeouts.pop(key, None)
            _LOGGER.debug("Initial delay of timer %s expired, running it", key)
            self._hass.async_run_hass_job(job, now)
            self._intervals[key] = async_track_time_interval(
                self._hass, action, interval
            )

        self._timeouts[key] = async_call_later(
            self._hass, initial_delay, _initial_delay_expired
        )

    def clear_scheduled_interval(self, key: str) -> None:
        """Cancel both the pending initial delay and the interval of ``key``."""
        if (unsub := self._intervals.pop(key, None)) is not None:
            unsub()
            _LOGGER.debug("Interval %s cleared", key)
        if (unsub := self._timeouts.pop(key, None)) is not None:
            unsub()
            _LOGGER.debug("Initial delay of %s cleared", key)

    def clear_all(self) -> None:
        """Cancel every timer."""
        for key in self.keys:
            self.clear_scheduled_interval(key)
        _LOGGER.debug("All timers cleared")
