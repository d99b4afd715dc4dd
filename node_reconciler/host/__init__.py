"""Node-side collaborators: command execution, packages, services."""

from node_reconciler.host.packages import InstallResult, PackageManager, PackageQueryError
from node_reconciler.host.services import (
    ACTIVE,
    ServiceManager,
    ServiceResult,
    credentials_present,
    docker_login,
    is_atomic_host,
    selinux_active,
)
from node_reconciler.host.shell import (
    CommandResult,
    Host,
    LocalHost,
    SshHost,
    host_for,
    run_command,
)

__all__ = [
    "ACTIVE",
    "CommandResult",
    "Host",
    "InstallResult",
    "LocalHost",
    "PackageManager",
    "PackageQueryError",
    "ServiceManager",
    "ServiceResult",
    "SshHost",
    "credentials_present",
    "docker_login",
    "host_for",
    "is_atomic_host",
    "run_command",
    "selinux_active",
]
