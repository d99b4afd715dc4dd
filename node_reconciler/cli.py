"""CLI entry point for node-reconciler.

Provides ``reconcile``, ``check-version``, ``render`` and ``report`` commands.

Usage::

    node-reconciler --help
    node-reconciler reconcile --app-host es.logging.svc --ops-host es-ops.logging.svc \\
        --node all --config desired.yaml
    node-reconciler check-version --installed 1.9.0 --docker-version 1.12.6
    node-reconciler render --config desired.yaml
    node-reconciler report
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, Dict, List, Optional

import typer
from cli_core_yo import output
from cli_core_yo.app import create_app
from cli_core_yo.runtime import _reset, initialize
from cli_core_yo.spec import CliSpec, XdgSpec

from node_reconciler import ui
from node_reconciler.config.loader import (
    load_desired_state,
    parse_node_selector,
    read_override_file,
)
from node_reconciler.config.models import DesiredState
from node_reconciler.errors import PreconditionError

# ── App specification ────────────────────────────────────────────────────────

spec = CliSpec(
    prog_name="node-reconciler",
    app_display_name="Node Reconciler",
    dist_name="node-reconciler",
    root_help=(
        "Converge container runtime configuration and the Fluentd logging "
        "agent across cluster nodes."
    ),
    xdg=XdgSpec(app_dir_name="node-reconciler"),
)

app = create_app(spec)


# ── Root callback (global options) ───────────────────────────────────────────


@app.callback()
def _root_callback() -> None:
    """Node reconciler control plane."""
    _reset()
    debug = os.environ.get("CLI_CORE_YO_DEBUG") == "1"
    xdg_paths = app._cli_core_yo_xdg_paths  # type: ignore[attr-defined]
    initialize(spec, xdg_paths, json_mode=False, debug=debug)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _configure_logging(debug: bool) -> None:
    if debug:
        logging.basicConfig(level=logging.DEBUG)
        logging.getLogger("node_reconciler").setLevel(logging.DEBUG)


def _load(config: Optional[str], overrides: Dict[str, Any]) -> DesiredState:
    from node_reconciler.workflow.reconcile import EXIT_PRECONDITION

    try:
        return load_desired_state(config, overrides)
    except PreconditionError as exc:
        output.error(str(exc))
        raise typer.Exit(EXIT_PRECONDITION) from exc


# ── reconcile command ────────────────────────────────────────────────────────


@app.command()
def reconcile(
    app_host: Optional[str] = typer.Option(
        None, "--app-host", help="Elasticsearch host for application logs.",
    ),
    app_port: Optional[int] = typer.Option(
        None, "--app-port", help="Elasticsearch port for application logs (default 9200).",
    ),
    ops_host: Optional[str] = typer.Option(
        None, "--ops-host", help="Elasticsearch host for operations logs.",
    ),
    ops_port: Optional[int] = typer.Option(
        None, "--ops-port", help="Elasticsearch port for operations logs (default 9200).",
    ),
    nodeselector: Optional[List[str]] = typer.Option(
        None,
        "--nodeselector",
        help="Node label key=value the agent is scheduled on. Exactly one pair.",
    ),
    deployment_type: Optional[str] = typer.Option(
        None,
        "--deployment-type",
        help="hosted, secure-aggregator or secure-host.",
    ),
    node: Optional[List[str]] = typer.Option(
        None,
        "--node",
        help="Node to roll out to. Repeatable; 'all' means every cluster node.",
    ),
    fluent_conf: Optional[str] = typer.Option(
        None, "--fluent-conf", help="File replacing the default fluent.conf.",
    ),
    throttle_conf: Optional[str] = typer.Option(
        None, "--throttle-conf", help="File replacing the default throttle-config.yaml.",
    ),
    secure_forward_conf: Optional[str] = typer.Option(
        None, "--secure-forward-conf", help="File replacing the default secure-forward.conf.",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        help="Desired-state YAML. Defaults to $NODE_RECONCILER_CONFIG.",
    ),
    docker_version: Optional[str] = typer.Option(
        None, "--docker-version", help="Requested Docker version.",
    ),
    namespace: Optional[str] = typer.Option(
        None, "--namespace", help="Namespace of the logging stack (default logging).",
    ),
    timeout: float = typer.Option(
        600.0, "--timeout", help="Seconds to wait for each node to become ready.",
    ),
    poll_interval: float = typer.Option(
        10.0, "--poll-interval", help="Seconds between readiness polls.",
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Plan only: no node or cluster is modified.",
    ),
    debug: bool = typer.Option(
        False, "--debug", help="Enable debug logging (print commands as executed).",
    ),
) -> None:
    """Reconcile nodes and the logging agent to the desired state.

    Exit codes: 0 = success, 1 = precondition or version gate,
    2 = at least one node failed, 3 = cluster API failure.

    Environment variables:
      NODE_RECONCILER_CONFIG   Desired-state YAML used when --config is omitted.
      XDG_CONFIG_HOME          Base directory for run reports.
    """
    from node_reconciler.workflow.reconcile import (
        EXIT_PRECONDITION,
        RunOptions,
        run_reconcile,
    )

    _configure_logging(debug)

    try:
        overrides: Dict[str, Any] = {
            "logging": {
                "app_host": app_host,
                "app_port": app_port,
                "ops_host": ops_host,
                "ops_port": ops_port,
            },
            "node_selector": parse_node_selector(nodeselector),
            "deployment_type": deployment_type,
            "namespace": namespace,
            "runtime": {"requested_version": docker_version},
            "overrides": {
                "fluent_conf": read_override_file(fluent_conf),
                "throttle_conf": read_override_file(throttle_conf),
                "secure_forward_conf": read_override_file(secure_forward_conf),
            },
        }
    except PreconditionError as exc:
        output.error(str(exc))
        raise typer.Exit(EXIT_PRECONDITION) from exc

    desired = _load(config, overrides)
    if not node:
        output.error("At least one --node is required (use --node all for every node)")
        raise typer.Exit(EXIT_PRECONDITION)

    output.action(f"Reconciling {', '.join(node)} ...")

    rc = run_reconcile(
        desired,
        node,
        options=RunOptions(dry_run=dry_run, poll_interval=poll_interval, timeout=timeout),
    )
    raise typer.Exit(rc)


# ── check-version command ────────────────────────────────────────────────────


@app.command("check-version")
def check_version_cmd(
    installed: Optional[str] = typer.Option(
        None, "--installed", help="Installed Docker version (omit if not installed).",
    ),
    docker_version: Optional[str] = typer.Option(
        None, "--docker-version", help="Requested Docker version.",
    ),
    minimum: Optional[str] = typer.Option(
        None, "--minimum", help="Minimum supported version (default 1.9.1).",
    ),
    boundary: Optional[str] = typer.Option(
        None, "--boundary", help="Upgrade boundary that may not be crossed (default 1.10).",
    ),
    config: Optional[str] = typer.Option(None, "--config", help="Desired-state YAML."),
) -> None:
    """Run the runtime version gate only.

    Exits 0 when the gate passes, 1 otherwise.
    """
    from node_reconciler.workflow.reconcile import run_check_version

    desired = _load(
        config,
        {
            "runtime": {
                "requested_version": docker_version,
                "minimum_version": minimum,
                "upgrade_boundary": boundary,
            }
        },
    )
    raise typer.Exit(run_check_version(desired, installed))


# ── render command ───────────────────────────────────────────────────────────


@app.command()
def render(
    config: Optional[str] = typer.Option(None, "--config", help="Desired-state YAML."),
    docker_version: Optional[str] = typer.Option(
        None, "--docker-version", help="Requested Docker version.",
    ),
    selinux: bool = typer.Option(
        True, "--selinux/--no-selinux", help="Render as if SELinux is enabled on the host.",
    ),
) -> None:
    """Print the rendered Docker sysconfig lines."""
    from node_reconciler.workflow.reconcile import EXIT_PRECONDITION, render_lines

    desired = _load(config, {"runtime": {"requested_version": docker_version}})
    try:
        rendered = render_lines(desired, selinux_active=selinux)
    except PreconditionError as exc:
        output.error(str(exc))
        raise typer.Exit(EXIT_PRECONDITION) from exc
    ui.lines(rendered)


# ── report command ───────────────────────────────────────────────────────────


@app.command()
def report(
    report_file: Optional[str] = typer.Option(
        None,
        "--file",
        help="Report JSON to show. Defaults to the most recent run.",
    ),
) -> None:
    """Show a stored run report.

    Exits with the code the reported run ended with (0 or 2), or 1 when
    no report is found.
    """
    from node_reconciler.workflow.reconcile import show_report

    raise typer.Exit(show_report(report_file))


# ── Entry point ──────────────────────────────────────────────────────────────


def main() -> int:
    """Run the CLI and return an exit code."""
    try:
        app()
        return 0
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else 0


if __name__ == "__main__":
    sys.exit(main())
