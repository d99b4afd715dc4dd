"""Orchestration workflows (reconcile, version check, render, reports)."""

from node_reconciler.workflow.reconcile import (
    EXIT_CLUSTER_FAILURE,
    EXIT_NODE_FAILURE,
    EXIT_PRECONDITION,
    EXIT_SUCCESS,
    RunOptions,
    check_preconditions,
    render_lines,
    run_check_version,
    run_reconcile,
    show_report,
    version_gate_pass,
)

__all__ = [
    "EXIT_CLUSTER_FAILURE",
    "EXIT_NODE_FAILURE",
    "EXIT_PRECONDITION",
    "EXIT_SUCCESS",
    "RunOptions",
    "check_preconditions",
    "render_lines",
    "run_check_version",
    "run_reconcile",
    "show_report",
    "version_gate_pass",
]
