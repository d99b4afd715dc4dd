"""systemd wrapper for the runtime service, plus host facts and registry login."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from node_reconciler.host.shell import CommandResult, Host

logger = logging.getLogger(__name__)

ACTIVE = "active"

#: Marker file present on OSTree (atomic) hosts.
OSTREE_MARKER = "/run/ostree-booted"


@dataclass
class ServiceResult:
    """Outcome of a start/restart.  ``changed`` mirrors systemd's report."""

    service: str
    success: bool
    changed: bool = False
    error: str = ""


class ServiceManager:
    """``systemctl`` operations on one :class:`Host`."""

    def __init__(self, host: Host) -> None:
        self.host = host

    def get_active_state(self, service: str) -> str:
        """Return ``ActiveState`` (``active``, ``inactive``, ``failed``...).

        Unknown/unqueryable services report ``""``.
        """
        result = self.host.run(["systemctl", "show", service, "-p", "ActiveState"])
        if not result.success:
            logger.warning(
                "%s: cannot read ActiveState of %s: %s",
                self.host.name, service, result.error_text,
            )
            return ""
        _, _, state = result.stdout.strip().partition("=")
        return state.strip()

    def _systemctl(self, *args: str) -> CommandResult:
        return self.host.run(["systemctl", *args])

    def start(self, service: str) -> ServiceResult:
        """Reload units, enable and start *service*.

        ``changed`` is true if enabling or starting did anything.  Note
        that this can be true even when the service was already running
        (enabling alone counts), which is why callers compare against a
        baseline ``ActiveState`` read beforehand.
        """
        reload_ = self._systemctl("daemon-reload")
        if not reload_.success:
            return ServiceResult(service, success=False, error=reload_.error_text)

        changed = False
        if not self._systemctl("is-enabled", "--quiet", service).success:
            enable = self._systemctl("enable", service)
            if not enable.success:
                return ServiceResult(service, success=False, error=enable.error_text)
            changed = True

        if not self._systemctl("is-active", "--quiet", service).success:
            start = self._systemctl("start", service)
            if not start.success:
                return ServiceResult(
                    service, success=False, changed=changed, error=start.error_text,
                )
            changed = True
        return ServiceResult(service, success=True, changed=changed)

    def restart(self, service: str) -> ServiceResult:
        result = self._systemctl("restart", service)
        if not result.success:
            return ServiceResult(service, success=False, error=result.error_text)
        return ServiceResult(service, success=True, changed=True)


# ---------------------------------------------------------------------------
# Host facts
# ---------------------------------------------------------------------------


def selinux_active(host: Host) -> bool:
    """True when ``getenforce`` reports Enforcing or Permissive."""
    result = host.run(["getenforce"])
    return result.success and result.stdout.strip().lower() in ("enforcing", "permissive")


def is_atomic_host(host: Host) -> bool:
    return host.path_exists(OSTREE_MARKER)


# ---------------------------------------------------------------------------
# Registry login
# ---------------------------------------------------------------------------


def docker_login(
    host: Host,
    *,
    config_path: str,
    user: str,
    password: str,
    registry: str,
    docker_bin: str = "docker",
) -> CommandResult:
    """Run ``docker --config=<path> login`` on *host*.

    The password is passed on stdin and masked in logs.
    """
    args = [
        docker_bin,
        f"--config={config_path}",
        "login",
        "-u", user,
        "--password-stdin",
    ]
    if registry:
        args.append(registry)
    return host.run(args, input_text=password, redact=(password,))


def credentials_present(host: Host, config_path: str) -> bool:
    return host.is_file(f"{config_path.rstrip('/')}/config.json")
