"""Run results: models, aggregation and on-disk reports."""

from node_reconciler.state.models import Outcome, RolloutResult, RunReport
from node_reconciler.state.reporter import overall_status, summarize, summary_lines
from node_reconciler.state.store import (
    config_dir,
    list_run_reports,
    load_run_report,
    write_run_report,
)

__all__ = [
    "Outcome",
    "RolloutResult",
    "RunReport",
    "overall_status",
    "summarize",
    "summary_lines",
    "config_dir",
    "list_run_reports",
    "load_run_report",
    "write_run_report",
]
