"""Desired-state models and loading."""

from node_reconciler.config.loader import (
    CONFIG_ENV_VAR,
    build_desired_state,
    deep_merge,
    load_desired_state,
    parse_node_selector,
    read_override_file,
)
from node_reconciler.config.models import (
    ALLOWED_DEPLOYMENT_TYPES,
    ALLOWED_MUX_CLIENT_MODES,
    SERVICE_ACCOUNT,
    DesiredState,
)

__all__ = [
    "ALLOWED_DEPLOYMENT_TYPES",
    "ALLOWED_MUX_CLIENT_MODES",
    "CONFIG_ENV_VAR",
    "DesiredState",
    "SERVICE_ACCOUNT",
    "build_desired_state",
    "deep_merge",
    "load_desired_state",
    "parse_node_selector",
    "read_override_file",
]
