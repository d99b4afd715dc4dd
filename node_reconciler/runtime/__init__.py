"""Container runtime version policy."""

from node_reconciler.runtime.version import (
    GateDecision,
    GateResult,
    RuntimeVersion,
    check_version,
    enforce_version_gate,
    evaluate_version_gate,
    to_version,
)

__all__ = [
    "GateDecision",
    "GateResult",
    "RuntimeVersion",
    "check_version",
    "enforce_version_gate",
    "evaluate_version_gate",
    "to_version",
]
