"""Tests for node_reconciler.converge.engine."""

from __future__ import annotations

import threading

import pytest

from node_reconciler.config.models import DesiredState
from node_reconciler.converge.engine import (
    REGISTRIES_CONF,
    SYSCONFIG_DOCKER,
    SYSCONFIG_DOCKER_NETWORK,
    SYSTEMD_DROPIN,
    ConvergenceEngine,
    InstalledState,
    NodeContext,
    service_status_changed,
)
from node_reconciler.errors import ApplyError, CredentialError, RestartError
from node_reconciler.host.packages import PackageManager
from node_reconciler.host.services import ServiceManager
from node_reconciler.retry import RetryPolicy

SYSCONFIG_BEFORE = (
    "# /etc/sysconfig/docker\n"
    "OPTIONS='--selinux-enabled'\n"
    "HTTP_PROXY='http://old-proxy:3128'\n"
    "DOCKER_CERT_PATH=/etc/docker\n"
)


# ── helpers ──────────────────────────────────────────────────────────────


def _desired(**kwargs) -> DesiredState:
    data = {"logging": {"app_host": "es", "ops_host": "es-ops"}}
    data.update(kwargs)
    return DesiredState.model_validate(data)


def _engine(desired=None, *, sleeps=None, attempts=3, cancel=None, dry_run=False):
    sleeps = sleeps if sleeps is not None else []
    policy = RetryPolicy(max_attempts=attempts, delay=30.0, cancel=cancel, _sleep_fn=sleeps.append)
    return ConvergenceEngine(
        desired or _desired(), restart_policy=policy, cancel=cancel, dry_run=dry_run,
    )


def _ctx(host) -> NodeContext:
    no_sleep = RetryPolicy(max_attempts=4, delay=5.0, _sleep_fn=lambda _: None)
    return NodeContext(
        name=host.name,
        host=host,
        packages=PackageManager(host, query_policy=no_sleep),
        services=ServiceManager(host),
    )


def _running_node(make_host, name="node-a"):
    """A node with docker installed, enabled and active."""
    host = make_host(name)
    host.script(["repoquery"], (0, "1.12.6", ""))
    host.script(["systemctl", "show"], (0, "ActiveState=active", ""))
    host.script(["getenforce"], (0, "Enforcing", ""))
    host.script(["yum"], (0, "Nothing to do", ""))
    host.write_file(SYSCONFIG_DOCKER, SYSCONFIG_BEFORE)
    return host


# ── service_status_changed ───────────────────────────────────────────────


class TestServiceStatusChanged:
    @pytest.mark.parametrize(
        "start_changed, baseline, expected",
        [
            (True, "active", False),
            (True, "inactive", True),
            (True, "failed", True),
            (True, "", True),
            (False, "inactive", False),
            (False, "active", False),
        ],
    )
    def test_truth_table(self, start_changed, baseline, expected):
        assert service_status_changed(start_changed, baseline) is expected


# ── installed state ──────────────────────────────────────────────────────


class TestReadInstalledState:
    def test_reads_version_checksum_and_state(self, make_host):
        host = _running_node(make_host)
        state = _engine().read_installed_state(_ctx(host))
        assert state.runtime_version == "1.12.6"
        assert state.service_active_state == "active"
        assert len(state.config_checksum) == 64

    def test_missing_sysconfig_has_empty_checksum(self, make_host):
        host = make_host()
        assert _engine().read_installed_state(_ctx(host)).config_checksum == ""

    def test_query_failure_is_apply_error(self, make_host):
        host = make_host()
        host.script(["repoquery"], (1, "", "rpmdb locked"))
        with pytest.raises(ApplyError):
            _engine().read_installed_state(_ctx(host))

    def test_atomic_host_skips_package_query(self, make_host):
        host = make_host()
        host.write_file("/run/ostree-booted", "")
        state = _engine().read_installed_state(_ctx(host))
        assert state.runtime_version is None
        assert not host.commands("repoquery")

    def test_undecodable_sysconfig_is_apply_error(self, make_host):
        host = _running_node(make_host)
        (host.root / SYSCONFIG_DOCKER.lstrip("/")).write_bytes(b"OPTIONS=\xff\n")
        with pytest.raises(ApplyError, match="failed to read /etc/sysconfig/docker") as exc_info:
            _engine().read_installed_state(_ctx(host))
        assert exc_info.value.node == "node-a"


# ── plan ─────────────────────────────────────────────────────────────────


class TestConverge:
    def test_plans_line_edits_and_artifacts(self, make_host):
        host = _running_node(make_host)
        desired = _desired(daemon={"log_driver": "journald"}, registries={"added": ["a.io"]})
        plan = _engine(desired).converge(_ctx(host))
        paths = [w.path for w in plan.writes]
        assert paths == [SYSTEMD_DROPIN, SYSCONFIG_DOCKER, REGISTRIES_CONF]
        assert plan.restart_required

        sysconfig = next(w.content for w in plan.writes if w.path == SYSCONFIG_DOCKER)
        assert "HTTP_PROXY" not in sysconfig
        assert "DOCKER_CERT_PATH=/etc/docker" in sysconfig
        assert (
            "OPTIONS='--selinux-enabled --log-driver journald --signature-verification=False'"
            in sysconfig
        )
        assert "ADD_REGISTRY='--add-registry a.io'" in sysconfig

    def test_missing_sysconfig_not_created(self, make_host):
        host = make_host()
        plan = _engine().converge(_ctx(host))
        assert SYSCONFIG_DOCKER not in [w.path for w in plan.writes]

    def test_firewalld_skips_dropin(self, make_host):
        host = make_host()
        plan = _engine(_desired(use_firewalld=True)).converge(_ctx(host))
        assert SYSTEMD_DROPIN not in [w.path for w in plan.writes]

    def test_network_file_only_when_present(self, make_host):
        host = make_host()
        desired = _desired(network_mtu=8951)
        assert SYSCONFIG_DOCKER_NETWORK not in [
            w.path for w in _engine(desired).converge(_ctx(host)).writes
        ]
        host.write_file(SYSCONFIG_DOCKER_NETWORK, "DOCKER_NETWORK_OPTIONS=''\n")
        plan = _engine(desired).converge(_ctx(host))
        network = next(w for w in plan.writes if w.path == SYSCONFIG_DOCKER_NETWORK)
        assert network.content == "DOCKER_NETWORK_OPTIONS='--mtu=8951'\n"

    def test_converged_node_has_empty_plan(self, make_host):
        host = _running_node(make_host)
        engine = _engine()
        ctx = _ctx(host)
        engine.apply(engine.converge(ctx))
        plan = engine.converge(ctx)
        assert plan.writes == []
        assert not plan.restart_required

    def test_checksum_does_not_change_the_plan(self, make_host):
        host = _running_node(make_host)
        engine = _engine()
        ctx = _ctx(host)
        installed = engine.read_installed_state(ctx)
        stale = InstalledState(installed.runtime_version, "0" * 64, installed.service_active_state)
        assert engine.converge(ctx, installed).writes == engine.converge(ctx, stale).writes
        assert engine.converge(ctx, None).writes == engine.converge(ctx, installed).writes

    def test_unreadable_file_is_apply_error(self, make_host):
        host = _running_node(make_host)

        def _fail(path):
            raise PermissionError(f"denied: {path}")

        host.read_file = _fail
        with pytest.raises(ApplyError, match="failed to read"):
            _engine().converge(_ctx(host))


# ── apply ────────────────────────────────────────────────────────────────


class TestApply:
    def test_apply_is_idempotent(self, make_host):
        host = _running_node(make_host)
        engine = _engine()
        plan = engine.converge(_ctx(host))

        first = engine.apply(plan)
        assert first.changed and first.restart_required
        assert set(first.written) == {w.path for w in plan.writes}

        second = engine.apply(plan)
        assert not second.changed
        assert not second.restart_required
        assert second.written == ()

    def test_write_failure_is_apply_error(self, make_host):
        host = _running_node(make_host)
        engine = _engine()
        plan = engine.converge(_ctx(host))

        def _fail(path, content):
            raise PermissionError(f"read-only: {path}")

        host.write_file = _fail
        with pytest.raises(ApplyError) as exc_info:
            engine.apply(plan)
        assert exc_info.value.node == "node-a"

    def test_read_failure_during_apply_is_apply_error(self, make_host):
        host = _running_node(make_host)
        engine = _engine()
        plan = engine.converge(_ctx(host))
        (host.root / SYSCONFIG_DOCKER.lstrip("/")).write_bytes(b"\xfe\xff")
        with pytest.raises(ApplyError, match="failed to read"):
            engine.apply(plan)


# ── service restart ──────────────────────────────────────────────────────


class TestRestart:
    def test_restart_retried_until_success(self, make_host):
        host = _running_node(make_host)
        host.script(
            ["systemctl", "restart"],
            (1, "", "Job for docker.service failed"),
            (1, "", "Job for docker.service failed"),
            (0, "", ""),
        )
        sleeps = []
        _engine(sleeps=sleeps).restart_service(_ctx(host))
        assert len(host.commands("systemctl", "restart")) == 3
        assert sleeps == [30.0, 30.0]

    def test_restart_exhausted(self, make_host):
        host = _running_node(make_host)
        host.script(["systemctl", "restart"], (1, "", "Job for docker.service failed"))
        with pytest.raises(RestartError, match="3 attempt"):
            _engine().restart_service(_ctx(host))
        assert len(host.commands("systemctl", "restart")) == 3

    def test_cancel_during_wait_aborts(self, make_host):
        host = _running_node(make_host)
        host.script(["systemctl", "restart"], (1, "", "failed"))
        cancel = threading.Event()
        policy = RetryPolicy(max_attempts=3, delay=30.0, _sleep_fn=lambda _: cancel.set())
        engine = ConvergenceEngine(_desired(), restart_policy=policy, cancel=cancel)
        with pytest.raises(RestartError, match="cancelled"):
            engine.restart_service(_ctx(host))
        assert len(host.commands("systemctl", "restart")) == 1


# ── credentials ──────────────────────────────────────────────────────────


class TestCredentials:
    def _auth(self, **kwargs):
        auth = {"user": "svc", "password": "hunter2", "host": "registry.example.com"}
        auth.update(kwargs)
        return _desired(registry_auth=auth)

    def test_no_user_no_login(self, make_host):
        host = make_host()
        assert not _engine().provision_credentials(_ctx(host))
        assert not host.commands("docker")

    def test_login_when_no_credentials(self, make_host):
        host = make_host()
        assert _engine(self._auth()).provision_credentials(_ctx(host))
        assert host.commands("docker")
        assert host.inputs == ["hunter2"]

    def test_existing_credentials_kept(self, make_host):
        host = make_host()
        host.write_file("/var/lib/origin/.docker/config.json", "{}")
        assert not _engine(self._auth()).provision_credentials(_ctx(host))
        assert not host.commands("docker")

    def test_replace_forces_login(self, make_host):
        host = make_host()
        host.write_file("/var/lib/origin/.docker/config.json", "{}")
        assert _engine(self._auth(replace=True)).provision_credentials(_ctx(host))

    def test_failed_login(self, make_host):
        host = make_host()
        host.script(["docker"], (1, "", "unauthorized"))
        with pytest.raises(CredentialError, match="unauthorized"):
            _engine(self._auth()).provision_credentials(_ctx(host))


# ── full node run ────────────────────────────────────────────────────────


class TestReconcileNode:
    def test_config_change_restarts_running_service(self, make_host):
        host = _running_node(make_host)
        outcome = _engine().reconcile_node(_ctx(host))
        assert outcome.changed
        assert not outcome.service_status_changed
        assert outcome.restarted
        assert host.commands("systemctl", "restart") == [["systemctl", "restart", "docker"]]

    def test_second_run_changes_nothing(self, make_host):
        host = _running_node(make_host)
        engine = _engine()
        engine.reconcile_node(_ctx(host))
        restarts = len(host.commands("systemctl", "restart"))

        outcome = engine.reconcile_node(_ctx(host))
        assert not outcome.changed
        assert not outcome.restarted
        assert len(host.commands("systemctl", "restart")) == restarts

    def test_freshly_started_service_not_restarted(self, make_host):
        host = _running_node(make_host)
        host.script(["systemctl", "show"], (0, "ActiveState=inactive", ""))
        host.script(["systemctl", "is-active"], (3, "inactive", ""))
        outcome = _engine().reconcile_node(_ctx(host))
        assert outcome.changed
        assert outcome.service_status_changed
        assert not outcome.restarted
        assert not host.commands("systemctl", "restart")

    def test_requested_version_installed(self, make_host):
        host = _running_node(make_host)
        host.script(["yum"], (0, "Installed: docker-1.12.6", ""))
        desired = _desired(runtime={"requested_version": "1.12.6"})
        outcome = _engine(desired).reconcile_node(_ctx(host))
        assert host.commands("yum") == [["yum", "install", "-y", "docker-1.12.6"]]
        assert outcome.package_changed

    def test_install_failure(self, make_host):
        host = _running_node(make_host)
        host.script(["yum"], (1, "", "No package docker-9.9 available"))
        with pytest.raises(ApplyError, match="package install failed"):
            _engine().reconcile_node(_ctx(host))

    def test_atomic_host_skips_install(self, make_host):
        host = _running_node(make_host)
        host.write_file("/run/ostree-booted", "")
        _engine().reconcile_node(_ctx(host))
        assert not host.commands("yum")

    def test_dry_run_touches_nothing(self, make_host):
        host = _running_node(make_host)
        outcome = _engine(dry_run=True).reconcile_node(_ctx(host))
        assert SYSCONFIG_DOCKER in outcome.planned
        assert outcome.restart_required
        assert host.read_file(SYSCONFIG_DOCKER) == SYSCONFIG_BEFORE
        assert not host.commands("yum")
        assert not host.commands("systemctl", "restart")
        assert not host.commands("systemctl", "start")

    def test_describe(self, make_host):
        host = _running_node(make_host)
        outcome = _engine().reconcile_node(_ctx(host))
        assert outcome.describe() == "config changed, service restarted"
