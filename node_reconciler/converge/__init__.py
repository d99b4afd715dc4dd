"""Per-node convergence: plan, apply, restart, credentials."""

from node_reconciler.converge.engine import (
    REGISTRIES_CONF,
    SYSCONFIG_DOCKER,
    SYSCONFIG_DOCKER_NETWORK,
    SYSTEMD_DROPIN,
    ApplyResult,
    ConvergenceEngine,
    ConvergencePlan,
    FileWrite,
    InstalledState,
    NodeContext,
    NodeConvergence,
    service_status_changed,
)
from node_reconciler.converge.lines import apply_edits, normalize, set_line

__all__ = [
    "REGISTRIES_CONF",
    "SYSCONFIG_DOCKER",
    "SYSCONFIG_DOCKER_NETWORK",
    "SYSTEMD_DROPIN",
    "ApplyResult",
    "ConvergenceEngine",
    "ConvergencePlan",
    "FileWrite",
    "InstalledState",
    "NodeContext",
    "NodeConvergence",
    "apply_edits",
    "normalize",
    "service_status_changed",
    "set_line",
]
