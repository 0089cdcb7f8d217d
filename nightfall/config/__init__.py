"""Configuration for nightfall."""

from nightfall.config.flow import (
    DEFAULT_CONFIG_FILENAME,
    DEFAULT_CONFIG_ID,
    DEFAULT_CONFIG_PATHS,
    DEFAULT_NIGHT_STEPS,
    FLOW_CONFIG_ENV,
    FlowConfig,
    FlowConfigRegistry,
    PhaseDurations,
    get_config_template,
    load_flow_registry,
    parse_flow_config,
    save_default_config,
)
from nightfall.config.settings import Settings

__all__ = [
    "DEFAULT_CONFIG_FILENAME",
    "DEFAULT_CONFIG_ID",
    "DEFAULT_CONFIG_PATHS",
    "DEFAULT_NIGHT_STEPS",
    "FLOW_CONFIG_ENV",
    "FlowConfig",
    "FlowConfigRegistry",
    "PhaseDurations",
    "Settings",
    "get_config_template",
    "load_flow_registry",
    "parse_flow_config",
    "save_default_config",
]
