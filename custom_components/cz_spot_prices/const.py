"""Constants for the CZ Spot Prices integration."""

from datetime import timedelta

DOMAIN = "cz_spot_prices"

# Config entry data keys (immutable after creation)
CONF_NORDPOOL_SENSOR = "nordpool_sensor"
CONF_NORDPOOL_TYPE = "nordpool_type"
CONF_NAME = "name"

# Nordpool sensor types
NORDPOOL_TYPE_HACS = "hacs"
NORDPOOL_TYPE_NATIVE = "native"

# Options keys (changeable via options flow)
CONF_LOW_INDEX_HOURS = "low_index_hours"
CONF_HIGH_INDEX_HOURS = "high_index_hours"
CONF_PRICE_IN_KWH = "price_in_kwh"
CONF_LOW_TARIFF_PRICE = "low_tariff_price"
CONF_HIGH_TARIFF_PRICE = "high_tariff_price"
CONF_LOW_TARIFF_HOURS = "low_tariff_hours"
CONF_AVERAGE_WINDOW_HOURS = "average_window_hours"

# Defaults
DEFAULT_LOW_INDEX_HOURS = 8
DEFAULT_HIGH_INDEX_HOURS = 8
DEFAULT_PRICE_IN_KWH = False
DEFAULT_LOW_TARIFF_PRICE = 0.0
DEFAULT_HIGH_TARIFF_PRICE = 0.0
DEFAULT_LOW_TARIFF_HOURS: list[str] = []
DEFAULT_AVERAGE_WINDOW_HOURS = 3

HOURS_PER_DAY = 24

# Price tiers
TIER_LOW = "low"
TIER_MEDIUM = "medium"
TIER_HIGH = "high"
TIER_UNKNOWN = "unknown"
TIERS = (TIER_LOW, TIER_MEDIUM, TIER_HIGH, TIER_UNKNOWN)

# Distribution tariff classes
TARIFF_LOW = "low"
TARIFF_HIGH = "high"

# Best window selection
CONDITION_LOWEST = "lowest"
CONDITION_HIGHEST = "highest"

# Cache lifetimes
PRICE_CACHE_TTL = timedelta(hours=1)
AVERAGE_CACHE_TTL = timedelta(minutes=15)

# Recompute lock
DEFAULT_LOCK_TIMEOUT = timedelta(seconds=30)

# Upstream fetch retry policy
FETCH_MAX_ATTEMPTS = 3
FETCH_RETRY_BACKOFF = timedelta(seconds=5)

# Timer callbacks may fire slightly before the hour boundary
TICK_TOLERANCE = timedelta(seconds=1)

# Named timers
TIMER_HOURLY = "hourly"
TIMER_AVERAGE = "average"
TIMER_TARIFF = "tariff"
TIMER_CACHE_CLEANUP = "cache_cleanup"

# Timer states
TIMER_IDLE = "idle"
TIMER_WAITING_INITIAL_DELAY = "waiting_initial_delay"
TIMER_RUNNING = "running"

# Bus events
EVENT_CURRENT_PRICE_CHANGED = f"{DOMAIN}_current_price_changed"
EVENT_AVERAGE_WINDOW_STARTED = f"{DOMAIN}_average_window_started"
EVENT_TARIFF_CHANGED = f"{DOMAIN}_tariff_changed"
EVENT_UPDATE_FAILED = f"{DOMAIN}_update_failed"

# Services
SERVICE_REFRESH_PRICES = "refresh_prices"
ATTR_ENTRY_ID = "entry_id"
