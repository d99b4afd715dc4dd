"""Orchestrator for a reconcile run.

Execution model::

    1. Preconditions    logging inputs + certificates (no cluster calls yet)
    2. Render           Docker sysconfig lines (validates version strings)
    3. Targets          expand ``all`` against the cluster node list
    4. Version gate     read-only pass over every target, before any mutation
    5. Logging agent    service account, roles, configmap, secret, daemonset
    6. Rollout          per node: converge runtime -> label -> wait ready
    7. Report           summary table + ``report_<run_id>.json``

Steps 1-4 are run-fatal and leave every node untouched.  From step 6 on,
failures are scoped to the node they happen on.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from node_reconciler import ui
from node_reconciler.cluster.client import ClusterAPI
from node_reconciler.cluster.fluentd import (
    FLUENTD_POD_SELECTOR,
    LoggingAgentDeployer,
    check_cert_files,
    validate_preconditions,
)
from node_reconciler.config.models import DesiredState
from node_reconciler.converge.engine import ConvergenceEngine, NodeContext
from node_reconciler.errors import (
    ClusterCommandError,
    InvalidVersionFormat,
    NodeError,
    PreconditionError,
    ReconcileError,
    VersionGateError,
)
from node_reconciler.host.packages import PackageQueryError
from node_reconciler.host.shell import Host, host_for
from node_reconciler.render.docker import render_docker_config
from node_reconciler.retry import RetryPolicy
from node_reconciler.rollout.fleet import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_TIMEOUT,
    FleetRollout,
    NodeTarget,
    resolve_targets,
)
from node_reconciler.runtime.version import (
    GateResult,
    enforce_version_gate,
    evaluate_version_gate,
)
from node_reconciler.state.models import Outcome, RolloutResult, RunReport
from node_reconciler.state.reporter import summarize, summary_lines
from node_reconciler.state.store import list_run_reports, load_run_report, write_run_report

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_PRECONDITION = 1
EXIT_NODE_FAILURE = 2
EXIT_CLUSTER_FAILURE = 3

HostFactory = Callable[[str], Host]


@dataclass
class RunOptions:
    """Knobs for one run that are not part of the desired state."""

    dry_run: bool = False
    poll_interval: float = DEFAULT_POLL_INTERVAL
    timeout: float = DEFAULT_TIMEOUT
    restart_policy: Optional[RetryPolicy] = None
    cancel: threading.Event = field(default_factory=threading.Event)
    write_report: bool = True
    sleep_fn: Optional[Callable[[float], object]] = None


# ---------------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------------


def check_preconditions(desired: DesiredState, *, dry_run: bool = False) -> List[str]:
    """Run every run-fatal input check; return warnings.

    Certificates are only needed when the logging agent is actually
    deployed, so a dry run does not require them.
    """
    warnings = validate_preconditions(desired)
    if not dry_run:
        check_cert_files(desired)
    return warnings


def version_gate_pass(
    desired: DesiredState,
    engine: ConvergenceEngine,
    contexts: Sequence[NodeContext],
) -> Dict[str, Optional[str]]:
    """Check the runtime version policy on every node.

    Read-only.  Raises :class:`VersionGateError` on the first violation,
    so no node is touched when any of them would be refused, and
    :class:`InvalidVersionFormat` (naming the node) when a node reports a
    version that cannot be compared.  Nodes that cannot be reached or
    queried are left for the rollout to fail.
    """
    runtime = desired.runtime
    installed: Dict[str, Optional[str]] = {}
    for ctx in contexts:
        try:
            atomic = engine.is_atomic(ctx)
            version = None if atomic else ctx.packages.query_installed_version(runtime.package)
        except (PackageQueryError, NodeError) as exc:
            logger.warning("%s: version query failed, deferring: %s", ctx.name, exc)
            continue
        installed[ctx.name] = version
        if atomic:
            logger.info("%s: atomic host, package version not managed", ctx.name)
            continue
        try:
            enforce_version_gate(
                version,
                runtime.requested_version,
                runtime.minimum_version,
                runtime.upgrade_boundary,
                package=runtime.package,
            )
        except VersionGateError as exc:
            raise VersionGateError(f"{ctx.name}: {exc}", result=exc.result) from exc
        except InvalidVersionFormat as exc:
            raise InvalidVersionFormat(f"{ctx.name}: {exc}") from exc
        logger.info(
            "%s: %s %s passes the version gate",
            ctx.name, runtime.package, version or "(not installed)",
        )
    return installed


def make_converge_hook(
    engine: ConvergenceEngine,
    contexts: Dict[str, NodeContext],
) -> Callable[[NodeTarget], Optional[str]]:
    def _hook(target: NodeTarget) -> Optional[str]:
        ui.step(f"Converging {target.name}")
        return engine.reconcile_node(contexts[target.name]).describe()

    return _hook


def plan_only(
    engine: ConvergenceEngine,
    targets: Sequence[NodeTarget],
    contexts: Dict[str, NodeContext],
) -> List[RolloutResult]:
    """Dry run: compute each node's plan without labeling or writing."""
    results: List[RolloutResult] = []
    for target in targets:
        try:
            outcome = engine.reconcile_node(contexts[target.name])
        except ReconcileError as exc:
            results.append(
                RolloutResult(node_name=target.name, outcome=Outcome.FAILED, detail=str(exc))
            )
            continue
        planned = ", ".join(outcome.planned) or "nothing to change"
        results.append(
            RolloutResult(
                node_name=target.name,
                outcome=Outcome.SUCCEEDED,
                detail=f"would write: {planned}",
            )
        )
    return results


def close_hosts(contexts: Iterable[NodeContext]) -> None:
    for ctx in contexts:
        ctx.host.close()


def report_results(report: RunReport, *, write: bool = True) -> None:
    ui.phase("SUMMARY")
    ui.node_table((r.node_name, r.outcome.value, r.detail) for r in report.results)
    if write:
        path = write_run_report(report)
        ui.detail("Report", str(path))


# ---------------------------------------------------------------------------
# Full run
# ---------------------------------------------------------------------------


def run_reconcile(
    desired: DesiredState,
    nodes: Sequence[str],
    *,
    cluster: Optional[ClusterAPI] = None,
    host_factory: HostFactory = host_for,
    options: Optional[RunOptions] = None,
) -> int:
    """End-to-end reconcile; returns one of the ``EXIT_*`` constants."""
    options = options or RunOptions()
    cluster = cluster or ClusterAPI(desired.namespace)

    # -- 1. Preconditions -----------------------------------------------------
    ui.phase("PRECONDITIONS")
    try:
        warnings = check_preconditions(desired, dry_run=options.dry_run)
        rendered = render_docker_config(desired)
    except PreconditionError as exc:
        ui.fail(str(exc))
        logger.error("Precondition failed: %s", exc)
        return EXIT_PRECONDITION
    for message in warnings:
        ui.warn(message)
    ui.ok("Inputs valid")

    # -- 2. Render ------------------------------------------------------------
    ui.phase("RENDER")
    ui.lines(rendered.as_lines())

    # -- 3. Targets -----------------------------------------------------------
    ui.phase("TARGETS")
    try:
        targets = resolve_targets(nodes, cluster)
    except ClusterCommandError as exc:
        ui.fail(str(exc))
        return EXIT_CLUSTER_FAILURE
    if not targets:
        ui.fail("No target nodes")
        return EXIT_PRECONDITION
    for target in targets:
        ui.step(target.name)

    engine = ConvergenceEngine(
        desired,
        restart_policy=options.restart_policy,
        cancel=options.cancel,
        dry_run=options.dry_run,
    )
    contexts = {t.name: NodeContext.for_host(host_factory(t.name)) for t in targets}

    try:
        # -- 4. Version gate --------------------------------------------------
        ui.phase("VERSION GATE")
        try:
            installed = version_gate_pass(desired, engine, list(contexts.values()))
        except VersionGateError as exc:
            result = exc.result.value if isinstance(exc.result, GateResult) else "refused"
            ui.fail(f"{exc} ({result})")
            logger.error("Version gate refused the run: %s", exc)
            return EXIT_PRECONDITION
        except PreconditionError as exc:
            ui.fail(str(exc))
            logger.error("Version gate could not be evaluated: %s", exc)
            return EXIT_PRECONDITION
        ui.ok(f"{len(installed)} node(s) pass the version gate")

        # -- 5. Logging agent -------------------------------------------------
        ui.phase("LOGGING AGENT")
        if options.dry_run:
            ui.skipped("Dry run: logging agent not deployed")
        else:
            try:
                deployed = LoggingAgentDeployer(cluster, desired).deploy()
            except ClusterCommandError as exc:
                ui.fail(str(exc))
                logger.error("Logging agent deployment failed: %s", exc)
                return EXIT_CLUSTER_FAILURE
            for applied in deployed.applied:
                ui.ok(applied)

        # -- 6. Rollout -------------------------------------------------------
        ui.phase("ROLLOUT")
        if options.dry_run:
            results = plan_only(engine, targets, contexts)
        else:
            rollout = FleetRollout(
                cluster,
                desired.node_selector_pair,
                converge=make_converge_hook(engine, contexts),
                pod_selector=FLUENTD_POD_SELECTOR,
                poll_interval=options.poll_interval,
                timeout=options.timeout,
                cancel=options.cancel,
                _sleep_fn=options.sleep_fn,
            )
            results = rollout.run(targets)
    finally:
        close_hosts(contexts.values())

    for r in results:
        if r.outcome == Outcome.SUCCEEDED:
            ui.ok(f"{r.node_name}: {r.detail}")
        elif r.outcome == Outcome.FAILED:
            ui.fail(f"{r.node_name}: {r.detail}")
        else:
            ui.skipped(f"{r.node_name}: {r.detail}")

    # -- 7. Report ------------------------------------------------------------
    report = summarize(
        results,
        dry_run=options.dry_run,
        runtime_version=desired.runtime.requested_version,
        warnings=warnings,
    )
    report_results(report, write=options.write_report)
    ui.result_panel(
        "Reconcile finished", "\n".join(summary_lines(report)), success=report.succeeded,
    )
    return EXIT_SUCCESS if report.succeeded else EXIT_NODE_FAILURE


# ---------------------------------------------------------------------------
# Single-purpose commands
# ---------------------------------------------------------------------------


def run_check_version(desired: DesiredState, installed: Optional[str]) -> int:
    """Evaluate the version gate for one installed version."""
    runtime = desired.runtime
    try:
        decision = evaluate_version_gate(
            installed,
            runtime.requested_version,
            runtime.minimum_version,
            runtime.upgrade_boundary,
            package=runtime.package,
        )
    except PreconditionError as exc:
        ui.error_msg(str(exc))
        return EXIT_PRECONDITION
    ui.detail("Result", decision.result.value)
    if decision.ok:
        ui.ok("Version gate passed")
        return EXIT_SUCCESS
    ui.fail(decision.message)
    return EXIT_PRECONDITION


def render_lines(desired: DesiredState, *, selinux_active: bool = True) -> List[str]:
    """Rendered sysconfig lines for *desired* (may raise ``InvalidVersionFormat``)."""
    return render_docker_config(desired, selinux_active=selinux_active).as_lines()


def show_report(path: Optional[str] = None) -> int:
    """Print a stored run report (the latest one when *path* is omitted).

    Returns the exit code the reported run ended with.
    """
    if path is None:
        reports = list_run_reports()
        if not reports:
            ui.error_msg("No run reports found")
            return EXIT_PRECONDITION
        path = str(reports[-1])
    try:
        report = load_run_report(Path(path))
    except FileNotFoundError:
        ui.error_msg(f"Report not found: {path}")
        return EXIT_PRECONDITION
    except ValidationError as exc:
        ui.error_msg(f"Invalid report {path}: {exc}")
        return EXIT_PRECONDITION

    ui.detail("Run", report.run_id)
    if report.dry_run:
        ui.detail("Mode", "dry run")
    if report.runtime_version:
        ui.detail("Runtime version", report.runtime_version)
    for message in report.warnings:
        ui.warn(message)
    ui.node_table((r.node_name, r.outcome.value, r.detail) for r in report.results)
    ui.result_panel(
        f"Run {report.run_id}", "\n".join(summary_lines(report)), success=report.succeeded,
    )
    return EXIT_SUCCESS if report.succeeded else EXIT_NODE_FAILURE
