"""Package manager wrapper (``repoquery`` + ``yum``).

Only two questions are ever asked of the package manager: which version
of the runtime is installed, and "make sure this version is present".
Upgrades of an already-running runtime are not done here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from node_reconciler.host.shell import CommandResult, Host
from node_reconciler.retry import RetryExhausted, RetryPolicy

logger = logging.getLogger(__name__)

#: Attempts for the installed-version query.
QUERY_ATTEMPTS = 4
QUERY_DELAY = 5.0


class PackageQueryError(RuntimeError):
    """The installed-version query kept failing."""


@dataclass
class InstallResult:
    package: str
    changed: bool
    result: CommandResult

    @property
    def success(self) -> bool:
        return self.result.success


class PackageManager:
    """Package queries/installs on one :class:`Host`."""

    def __init__(
        self,
        host: Host,
        *,
        repoquery_cmd: Sequence[str] = ("repoquery", "--plugins"),
        install_cmd: Sequence[str] = ("yum", "install", "-y"),
        query_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.host = host
        self.repoquery_cmd = list(repoquery_cmd)
        self.install_cmd = list(install_cmd)
        self.query_policy = query_policy or RetryPolicy(
            max_attempts=QUERY_ATTEMPTS, delay=QUERY_DELAY,
        )

    def query_installed_version(self, package: str) -> Optional[str]:
        """Return the installed version of *package*, or ``None``.

        Empty output means the package is not installed.  A failing query
        is retried; exhaustion raises :class:`PackageQueryError`.
        """

        def _query() -> CommandResult:
            result = self.host.run(
                [*self.repoquery_cmd, "--installed", "--qf", "%{version}", package]
            )
            if not result.success:
                raise PackageQueryError(result.error_text)
            return result

        try:
            result = self.query_policy.call(
                _query, description=f"{self.host.name}: query {package} version",
            )
        except RetryExhausted as exc:
            raise PackageQueryError(
                f"{self.host.name}: could not query installed {package} version"
            ) from exc
        version = result.stdout.strip().splitlines()
        return version[0].strip() if version else None

    def install(self, package: str, version: Optional[str] = None) -> InstallResult:
        """Ensure *package* (optionally ``package-version``) is present."""
        name = f"{package}-{version}" if version else package
        result = self.host.run([*self.install_cmd, name])
        changed = result.success and "Nothing to do" not in result.stdout
        if result.success:
            logger.info("%s: %s present (changed=%s)", self.host.name, name, changed)
        else:
            logger.error("%s: install of %s failed: %s", self.host.name, name, result.error_text)
        return InstallResult(package=name, changed=changed, result=result)
