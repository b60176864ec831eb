"""Versioned contract identifiers for bus actions, failures and config."""

ACTION_SCHEMA_V1 = "action.v1"
ERROR_SCHEMA_V1 = "error.v1"
CONFIG_SCHEMA_V1 = "config.v1"

SUPPORTED_CONFIG_SCHEMAS = {
    CONFIG_SCHEMA_V1,
}
