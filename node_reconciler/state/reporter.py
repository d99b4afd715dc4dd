"""Aggregate per-node results into a :class:`RunReport`."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from node_reconciler.state.models import Outcome, RolloutResult, RunReport

logger = logging.getLogger(__name__)


def overall_status(results: Iterable[RolloutResult]) -> Outcome:
    """Failed if any node failed, otherwise Succeeded."""
    return Outcome.FAILED if any(r.failed for r in results) else Outcome.SUCCEEDED


def summarize(
    results: Iterable[RolloutResult],
    *,
    run_id: Optional[str] = None,
    dry_run: bool = False,
    runtime_version: Optional[str] = None,
    warnings: Iterable[str] = (),
) -> RunReport:
    """Build the run report: counts by outcome, failures, overall status."""
    results = list(results)
    counts = {o.value: 0 for o in Outcome}
    for r in results:
        counts[r.outcome.value] += 1

    kwargs = {"run_id": run_id} if run_id else {}
    report = RunReport(
        status=overall_status(results),
        dry_run=dry_run,
        runtime_version=runtime_version,
        counts=counts,
        results=results,
        warnings=list(warnings),
        **kwargs,
    )
    for failed in report.failing_nodes:
        logger.error("Node %s failed: %s", failed.node_name, failed.detail)
    logger.info(
        "Run %s: %s (%s)",
        report.run_id, report.status.value,
        ", ".join(f"{k}={v}" for k, v in counts.items()),
    )
    return report


def summary_lines(report: RunReport) -> List[str]:
    """Plain-text summary, one line per fact."""
    lines = [f"Overall: {report.status.value}"]
    lines.extend(f"{name}: {count}" for name, count in report.counts.items())
    for failed in report.failing_nodes:
        lines.append(f"FAILED {failed.node_name}: {failed.detail}")
    return lines
