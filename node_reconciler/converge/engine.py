"""Per-node convergence of the container runtime configuration.

Sequence for one node (mirrors the order the runtime needs)::

    1. read installed state      (version, sysconfig checksum, ActiveState)
    2. ensure package present    (skipped on atomic hosts)
    3. plan file writes          (line edits + whole-file artifacts)
    4. apply plan                (idempotent; only differing files written)
    5. start service             (bounded retries)
    6. registry login            (only when credentials are declared)
    7. restart if config changed (bounded retries, skipped if step 5 just
                                  brought the service up from inactive)

Only the engine that owns a node's run writes that node's files.  Every
failure in here is a :class:`~node_reconciler.errors.NodeError` subclass
and is fatal for this node only.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from node_reconciler.config.models import DesiredState
from node_reconciler.converge.lines import apply_edits, changed_lines, normalize
from node_reconciler.errors import ApplyError, CredentialError, RestartError
from node_reconciler.host.packages import PackageManager, PackageQueryError
from node_reconciler.host.services import (
    ACTIVE,
    ServiceManager,
    ServiceResult,
    credentials_present,
    docker_login,
    is_atomic_host,
    selinux_active,
)
from node_reconciler.host.shell import Host
from node_reconciler.render.docker import (
    RenderedConfig,
    effective_registries,
    render_custom_conf,
    render_docker_config,
    render_registries_conf,
)
from node_reconciler.retry import RetryCancelled, RetryExhausted, RetryPolicy

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Managed paths
# ---------------------------------------------------------------------------

SYSCONFIG_DOCKER = "/etc/sysconfig/docker"
SYSCONFIG_DOCKER_NETWORK = "/etc/sysconfig/docker-network"
REGISTRIES_CONF = "/etc/containers/registries.conf"
SYSTEMD_DROPIN = "/etc/systemd/system/docker.service.d/custom.conf"

# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InstalledState:
    """What a node has right now.  Read fresh for every run.

    ``config_checksum`` (sha256 of the normalized sysconfig, empty when the
    file is absent) is diagnostic only: it is logged next to a non-empty
    plan and never used to decide what gets written.
    """

    runtime_version: Optional[str]
    config_checksum: str
    service_active_state: str


@dataclass(frozen=True)
class FileWrite:
    path: str
    content: str


@dataclass
class NodeContext:
    """Explicit per-node handles passed through a convergence run."""

    name: str
    host: Host
    packages: PackageManager
    services: ServiceManager

    @classmethod
    def for_host(cls, host: Host) -> "NodeContext":
        return cls(
            name=host.name,
            host=host,
            packages=PackageManager(host),
            services=ServiceManager(host),
        )


@dataclass
class ConvergencePlan:
    """Ordered file writes for one node plus whether a restart follows."""

    context: NodeContext = field(repr=False)
    writes: List[FileWrite] = field(default_factory=list)
    restart_required: bool = False

    @property
    def node(self) -> str:
        return self.context.name


@dataclass(frozen=True)
class ApplyResult:
    changed: bool
    restart_required: bool
    written: tuple = ()


@dataclass
class NodeConvergence:
    """Summary of a completed per-node run."""

    node: str
    installed_version: Optional[str] = None
    package_changed: bool = False
    changed: bool = False
    restart_required: bool = False
    service_status_changed: bool = False
    restarted: bool = False
    credentials_created: bool = False
    planned: List[str] = field(default_factory=list)

    def describe(self) -> str:
        parts = [f"config {'changed' if self.changed else 'unchanged'}"]
        if self.package_changed:
            parts.append("package installed")
        if self.service_status_changed:
            parts.append("service started")
        if self.restarted:
            parts.append("service restarted")
        if self.credentials_created:
            parts.append("registry login")
        return ", ".join(parts)


def service_status_changed(start_changed: bool, baseline_state: str) -> bool:
    """Did the start step really bring the service up?

    systemd can report a change for an already-running service, so a
    change only counts when the baseline read beforehand was not active.
    """
    return start_changed and baseline_state != ACTIVE


def read_node_file(ctx: NodeContext, path: str) -> Optional[str]:
    """Read *path* on *ctx*; unreadable or undecodable files fail the node."""
    try:
        return ctx.host.read_file(path)
    except (OSError, UnicodeDecodeError) as exc:
        raise ApplyError(f"{ctx.name}: failed to read {path}: {exc}", node=ctx.name) from exc


def _checksum(text: Optional[str]) -> str:
    if text is None:
        return ""
    return hashlib.sha256(normalize(text).encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ConvergenceEngine:
    """Converges nodes to one :class:`DesiredState`.

    Parameters
    ----------
    desired:
        The frozen desired state for this run.
    restart_policy:
        Retry policy for service start/restart (default 3 x 30s).
    cancel:
        Event checked between retries; set it to abort the current node.
    dry_run:
        Plan only: nothing is written, installed or restarted.
    """

    def __init__(
        self,
        desired: DesiredState,
        *,
        restart_policy: Optional[RetryPolicy] = None,
        cancel: Optional[threading.Event] = None,
        dry_run: bool = False,
    ) -> None:
        self.desired = desired
        self.cancel = cancel
        self.restart_policy = restart_policy or RetryPolicy(cancel=cancel)
        if self.restart_policy.cancel is None:
            self.restart_policy.cancel = cancel
        self.dry_run = dry_run

    @property
    def service(self) -> str:
        return self.desired.runtime.service

    # -- state ----------------------------------------------------------------

    def is_atomic(self, ctx: NodeContext) -> bool:
        return self.desired.atomic_host or is_atomic_host(ctx.host)

    def read_installed_state(self, ctx: NodeContext) -> InstalledState:
        """Query version, sysconfig checksum and ``ActiveState`` of *ctx*."""
        version: Optional[str] = None
        if not self.is_atomic(ctx):
            try:
                version = ctx.packages.query_installed_version(self.desired.runtime.package)
            except PackageQueryError as exc:
                raise ApplyError(str(exc), node=ctx.name) from exc
        return InstalledState(
            runtime_version=version,
            config_checksum=_checksum(read_node_file(ctx, SYSCONFIG_DOCKER)),
            service_active_state=ctx.services.get_active_state(self.service),
        )

    def render_for(self, ctx: NodeContext) -> RenderedConfig:
        return render_docker_config(self.desired, selinux_active=selinux_active(ctx.host))

    # -- plan / apply ---------------------------------------------------------

    def converge(
        self,
        ctx: NodeContext,
        installed: Optional[InstalledState] = None,
        rendered: Optional[RenderedConfig] = None,
    ) -> ConvergencePlan:
        """Diff the desired configuration against *ctx*'s files.

        Only files whose content would change appear in the plan.  Line
        edits are made only to files that already exist as regular files;
        whole-file artifacts are always managed.
        """
        rendered = rendered or self.render_for(ctx)
        candidates: List[FileWrite] = []

        if not self.desired.use_firewalld:
            candidates.append(FileWrite(SYSTEMD_DROPIN, render_custom_conf()))

        current_sysconfig = read_node_file(ctx, SYSCONFIG_DOCKER)
        if current_sysconfig is not None:
            candidates.append(
                FileWrite(
                    SYSCONFIG_DOCKER,
                    apply_edits(current_sysconfig, rendered.sysconfig_edits()),
                )
            )
        else:
            logger.info("%s: %s not present, skipping line edits", ctx.name, SYSCONFIG_DOCKER)

        candidates.append(
            FileWrite(
                REGISTRIES_CONF,
                render_registries_conf(effective_registries(self.desired)),
            )
        )

        current_network = read_node_file(ctx, SYSCONFIG_DOCKER_NETWORK)
        if current_network is not None:
            candidates.append(
                FileWrite(
                    SYSCONFIG_DOCKER_NETWORK,
                    apply_edits(
                        current_network,
                        [("DOCKER_NETWORK_OPTIONS", rendered.network_line)],
                    ),
                )
            )

        writes: List[FileWrite] = []
        for write in candidates:
            if write.path == SYSCONFIG_DOCKER:
                before = current_sysconfig
            else:
                before = read_node_file(ctx, write.path)
            if normalize(before) != normalize(write.content):
                for line in changed_lines(before, write.content):
                    logger.debug("%s: %s +%s", ctx.name, write.path, line)
                writes.append(write)

        if installed is not None and writes:
            logger.debug(
                "%s: sysconfig checksum before apply %s",
                ctx.name, installed.config_checksum or "(none)",
            )
        return ConvergencePlan(context=ctx, writes=writes, restart_required=bool(writes))

    def apply(self, plan: ConvergencePlan) -> ApplyResult:
        """Write every planned file whose content still differs.

        Idempotent: a second call with the same plan writes nothing and
        reports ``changed=False``.
        """
        host = plan.context.host
        written: List[str] = []
        for write in plan.writes:
            if normalize(read_node_file(plan.context, write.path)) == normalize(write.content):
                continue
            try:
                host.write_file(write.path, write.content)
            except OSError as exc:
                raise ApplyError(
                    f"{plan.node}: failed to write {write.path}: {exc}", node=plan.node,
                ) from exc
            logger.info("%s: wrote %s", plan.node, write.path)
            written.append(write.path)
        changed = bool(written)
        return ApplyResult(
            changed=changed,
            restart_required=changed and plan.restart_required,
            written=tuple(written),
        )

    # -- service --------------------------------------------------------------

    def _service_call(
        self,
        ctx: NodeContext,
        action: Callable[[str], ServiceResult],
        verb: str,
    ) -> ServiceResult:
        def _attempt() -> ServiceResult:
            result = action(self.service)
            if not result.success:
                raise RuntimeError(result.error or f"{verb} failed")
            return result

        try:
            return self.restart_policy.call(
                _attempt, description=f"{ctx.name}: {verb} {self.service}",
            )
        except RetryCancelled as exc:
            raise RestartError(
                f"{ctx.name}: {verb} of {self.service} cancelled", node=ctx.name,
            ) from exc
        except RetryExhausted as exc:
            raise RestartError(
                f"{ctx.name}: {verb} of {self.service} failed after "
                f"{exc.attempts} attempt(s): {exc.__cause__}",
                node=ctx.name,
            ) from exc

    def start_service(self, ctx: NodeContext, baseline_state: str) -> bool:
        """Start/enable the service; return ``service_status_changed``."""
        result = self._service_call(ctx, ctx.services.start, "start")
        return service_status_changed(result.changed, baseline_state)

    def restart_service(self, ctx: NodeContext) -> None:
        self._service_call(ctx, ctx.services.restart, "restart")
        logger.info("%s: %s restarted", ctx.name, self.service)

    # -- credentials ----------------------------------------------------------

    def provision_credentials(self, ctx: NodeContext) -> bool:
        """Log in to the registry when credentials are declared.

        Skipped when a credential file already exists, unless ``replace``
        is set.  Returns whether a login was performed.
        """
        auth = self.desired.registry_auth
        if not auth.user:
            return False
        if credentials_present(ctx.host, auth.config_path) and not auth.replace:
            logger.info("%s: registry credentials already present", ctx.name)
            return False
        result = docker_login(
            ctx.host,
            config_path=auth.config_path,
            user=auth.user,
            password=auth.password,
            registry=auth.host,
        )
        if not result.success:
            raise CredentialError(
                f"{ctx.name}: registry login to {auth.host or 'default registry'} "
                f"failed: {result.error_text}",
                node=ctx.name,
            )
        return True

    # -- full run -------------------------------------------------------------

    def reconcile_node(self, ctx: NodeContext) -> NodeConvergence:
        """Run the whole per-node sequence (see module docstring)."""
        outcome = NodeConvergence(node=ctx.name)
        installed = self.read_installed_state(ctx)
        outcome.installed_version = installed.runtime_version
        baseline = installed.service_active_state

        if not self.is_atomic(ctx) and not self.dry_run:
            requested = self.desired.runtime.requested_version
            result = ctx.packages.install(self.desired.runtime.package, requested)
            if not result.success:
                raise ApplyError(
                    f"{ctx.name}: package install failed: {result.result.error_text}",
                    node=ctx.name,
                )
            outcome.package_changed = result.changed

        plan = self.converge(ctx, installed)
        outcome.planned = [w.path for w in plan.writes]
        if self.dry_run:
            outcome.restart_required = plan.restart_required
            return outcome

        applied = self.apply(plan)
        outcome.changed = applied.changed
        outcome.restart_required = applied.restart_required

        outcome.service_status_changed = self.start_service(ctx, baseline)
        outcome.credentials_created = self.provision_credentials(ctx)

        if applied.restart_required and not outcome.service_status_changed:
            self.restart_service(ctx)
            outcome.restarted = True

        logger.info("%s: %s", ctx.name, outcome.describe())
        return outcome
