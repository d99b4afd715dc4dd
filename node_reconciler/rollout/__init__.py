"""Sequential node rollout."""

from node_reconciler.rollout.fleet import (
    ALL_NODES,
    FleetRollout,
    NodePhase,
    NodeTarget,
    RolloutCancelled,
    resolve_targets,
)

__all__ = [
    "ALL_NODES",
    "FleetRollout",
    "NodePhase",
    "NodeTarget",
    "RolloutCancelled",
    "resolve_targets",
]
