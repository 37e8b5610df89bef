"""Config flow for the CZ Spot Prices integration."""

from __future__ import annotations

import logging
from typing import Any

import voluptuous as vol

from homeassistant.config_entries import (
    ConfigEntry,
    ConfigFlow,
    ConfigFlowResult,
    OptionsFlow,
)
from homeassistant.core import callback
from homeassistant.helpers.selector import (
    BooleanSelector,
    NumberSelector,
    NumberSelectorConfig,
    NumberSelectorMode,
    SelectOptionDict,
    SelectSelector,
    SelectSelectorConfig,
    TextSelector,
)
from homeassistant.util import slugify

from .const import (
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
    DEFAULT_AVERAGE_WINDOW_HOURS,
    DEFAULT_HIGH_INDEX_HOURS,
    DEFAULT_HIGH_TARIFF_PRICE,
    DEFAULT_LOW_INDEX_HOURS,
    DEFAULT_LOW_TARIFF_HOURS,
    DEFAULT_LOW_TARIFF_PRICE,
    DEFAULT_PRICE_IN_KWH,
    DOMAIN,
    HOURS_PER_DAY,
)
from .nordpool_adapter import detect_nordpool_type, find_all_nordpool_sensors

_LOGGER = logging.getLogger(__name__)

OPTION_KEYS = (
    CONF_LOW_INDEX_HOURS,
    CONF_HIGH_INDEX_HOURS,
    CONF_PRICE_IN_KWH,
    CONF_LOW_TARIFF_PRICE,
    CONF_HIGH_TARIFF_PRICE,
    CONF_LOW_TARIFF_HOURS,
    CONF_AVERAGE_WINDOW_HOURS,
)


def _hour_count_selector(minimum: int) -> NumberSelector:
    return NumberSelector(
        NumberSelectorConfig(
            min=minimum, max=HOURS_PER_DAY, step=1, mode=NumberSelectorMode.BOX
        )
    )


def _surcharge_selector() -> NumberSelector:
    return NumberSelector(
        NumberSelectorConfig(
            min=0, max=100000, step=0.01, mode=NumberSelectorMode.BOX,
            unit_of_measurement="CZK/MWh",
        )
    )


def _options_schema(defaults: dict[str, Any] | None = None) -> vol.Schema:
    """Build the schema for tunable options."""
    if defaults is None:
        defaults = {}
    return vol.Schema(
        {
            # Price tiers
            vol.Required(
                CONF_LOW_INDEX_HOURS,
                default=defaults.get(CONF_LOW_INDEX_HOURS, DEFAULT_LOW_INDEX_HOURS),
            ): _hour_count_selector(0),
            vol.Required(
                CONF_HIGH_INDEX_HOURS,
                default=defaults.get(CONF_HIGH_INDEX_HOURS, DEFAULT_HIGH_INDEX_HOURS),
            ): _hour_count_selector(0),
            # Display unit
            vol.Required(
                CONF_PRICE_IN_KWH,
                default=defaults.get(CONF_PRICE_IN_KWH, DEFAULT_PRICE_IN_KWH),
            ): BooleanSelector(),
            # Distribution tariff
            vol.Required(
                CONF_LOW_TARIFF_PRICE,
                default=defaults.get(CONF_LOW_TARIFF_PRICE, DEFAULT_LOW_TARIFF_PRICE),
            ): _surcharge_selector(),
            vol.Required(
                CONF_HIGH_TARIFF_PRICE,
                default=defaults.get(CONF_HIGH_TARIFF_PRICE, DEFAULT_HIGH_TARIFF_PRICE),
            ): _surcharge_selector(),
            vol.Optional(
                CONF_LOW_TARIFF_HOURS,
                default=defaults.get(CONF_LOW_TARIFF_HOURS, DEFAULT_LOW_TARIFF_HOURS),
            ): SelectSelector(
                SelectSelectorConfig(
                    options=[
                        SelectOptionDict(value=str(hour), label=f"{hour:02d}:00")
                        for hour in range(HOURS_PER_DAY)
                    ],
                    multiple=True,
                    mode="dropdown",
                )
            ),
            # Best window search
            vol.Required(
                CONF_AVERAGE_WINDOW_HOURS,
                default=defaults.get(
                    CONF_AVERAGE_WINDOW_HOURS, DEFAULT_AVERAGE_WINDOW_HOURS
                ),
            ): _hour_count_selector(1),
        }
    )


def _validate_options(user_input: dict[str, Any]) -> dict[str, str]:
    """Return form errors for inconsistent option values."""
    errors: dict[str, str] = {}
    low = int(user_input.get(CONF_LOW_INDEX_HOURS, DEFAULT_LOW_INDEX_HOURS))
    high = int(user_input.get(CONF_HIGH_INDEX_HOURS, DEFAULT_HIGH_INDEX_HOURS))
    if low + high > HOURS_PER_DAY:
        errors["base"] = "index_hours_exceed_day"
    return errors


def _extract_options(user_input: dict[str, Any]) -> dict[str, Any]:
    """Pick the option values out of a submitted form."""
    options = {key: user_input[key] for key in OPTION_KEYS if key in user_input}
    # Number selectors return floats
    for key in (CONF_LOW_INDEX_HOURS, CONF_HIGH_INDEX_HOURS, CONF_AVERAGE_WINDOW_HOURS):
        if key in options:
            options[key] = int(options[key])
    return options


def _sensor_selector(
    sensors: list[tuple[str, str, str]], current: str | None = None
) -> SelectSelector:
    """Build the Nord Pool sensor dropdown, keeping ``current`` selectable."""
    options = [
        SelectOptionDict(value=entity_id, label=label)
        for entity_id, _, label in sensors
    ]
    if current and current not in {entity_id for entity_id, _, _ in sensors}:
        options.append(SelectOptionDict(value=current, label=current))
    return SelectSelector(SelectSelectorConfig(options=options, mode="dropdown"))


class CzSpotPricesConfigFlow(ConfigFlow, domain=DOMAIN):
    """Handle a config flow for CZ Spot Prices."""

    VERSION = 1

    @staticmethod
    @callback
    def async_get_options_flow(config_entry: ConfigEntry) -> CzSpotPricesOptionsFlow:
        """Get the options flow for this handler."""
        return CzSpotPricesOptionsFlow()

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Handle the initial step."""
        errors: dict[str, str] = {}

        # Detect all available Nord Pool sensors
        all_sensors = find_all_nordpool_sensors(self.hass)

        if user_input is not None:
            nordpool_entity = user_input.get(CONF_NORDPOOL_SENSOR)
            nordpool_type = "unknown"
            if nordpool_entity:
                nordpool_type = detect_nordpool_type(self.hass, nordpool_entity)
            if nordpool_type == "unknown":
                errors["base"] = "nordpool_not_found"
            else:
                errors = _validate_options(user_input)

            if not errors:
                # Set unique ID to prevent duplicates
                name = user_input[CONF_NAME]
                await self.async_set_unique_id(f"{nordpool_entity}_{slugify(name)}")
                self._abort_if_unique_id_configured()

                # Split data (immutable) and options (mutable)
                return self.async_create_entry(
                    title=name,
                    data={
                        CONF_NORDPOOL_SENSOR: nordpool_entity,
                        CONF_NORDPOOL_TYPE: nordpool_type,
                        CONF_NAME: name,
                    },
                    options=_extract_options(user_input),
                )

        if not all_sensors:
            errors["base"] = "nordpool_not_found"

        # Pre-select if only one sensor exists
        sensor_default: str | vol.Undefined = vol.UNDEFINED
        if len(all_sensors) == 1:
            sensor_default = all_sensors[0][0]

        schema = vol.Schema(
            {
                vol.Required(
                    CONF_NORDPOOL_SENSOR, default=sensor_default
                ): _sensor_selector(all_sensors),
                vol.Required(CONF_NAME): TextSelector(),
            }
        ).extend(_options_schema(user_input).schema)

        return self.async_show_form(
            step_id="user",
            data_schema=schema,
            errors=errors,
        )


class CzSpotPricesOptionsFlow(OptionsFlow):
    """Handle options flow for CZ Spot Prices."""

    async def async_step_init(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Manage the options."""
        errors: dict[str, str] = {}

        if user_input is not None:
            errors = _validate_options(user_input)

            # Nord Pool sensor is stored in data, not options
            new_sensor = user_input.get(CONF_NORDPOOL_SENSOR)
            current_sensor = self.config_entry.data.get(CONF_NORDPOOL_SENSOR)
            new_data: dict[str, Any] | None = None
            if not errors and new_sensor and new_sensor != current_sensor:
                new_type = detect_nordpool_type(self.hass, new_sensor)
                if new_type == "unknown":
                    _LOGGER.warning(
                        "Selected Nord Pool sensor %s could not be validated",
                        new_sensor,
                    )
                    errors[CONF_NORDPOOL_SENSOR] = "nordpool_not_found"
                else:
                    new_data = {
                        **self.config_entry.data,
                        CONF_NORDPOOL_SENSOR: new_sensor,
                        CONF_NORDPOOL_TYPE: new_type,
                    }

            if not errors:
                if new_data is not None:
                    self.hass.config_entries.async_update_entry(
                        self.config_entry, data=new_data
                    )
                return self.async_create_entry(data=_extract_options(user_input))

        all_sensors = find_all_nordpool_sensors(self.hass)
        current_sensor = self.config_entry.data.get(CONF_NORDPOOL_SENSOR, "")

        schema = vol.Schema(
            {
                vol.Required(
                    CONF_NORDPOOL_SENSOR, default=current_sensor
                ): _sensor_selector(all_sensors, current_sensor),
            }
        ).extend(_options_schema(user_input or self.config_entry.options).schema)

        return self.async_show_form(
            step_id="init",
            data_schema=schema,
            errors=errors,
        )
