"""Per-node command execution and file access.

A :class:`Host` is where a node's commands run and where its
configuration files live.  :class:`LocalHost` works on the machine we
run on (optionally under an alternate root, which is what the tests
use); :class:`SshHost` reaches a remote node over paramiko.

Commands come back as a :class:`CommandResult` rather than an exception
and the caller decides what is fatal.  Losing the SSH connection is the
exception: it raises :class:`~node_reconciler.errors.HostUnreachableError`
so an unreachable node is never mistaken for a missing file.
"""

from __future__ import annotations

import itertools
import logging
import os
import shlex
import stat
import subprocess
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Optional, Sequence

import paramiko

from node_reconciler.errors import HostUnreachableError

logger = logging.getLogger(__name__)

#: Return code reported when the executable is not on PATH.
RC_NOT_FOUND = 127

_tmp_counter = itertools.count()


@dataclass
class CommandResult:
    """Outcome of a single external command."""

    command: str
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def error_text(self) -> str:
        return self.stderr or self.stdout or f"exit code {self.returncode}"


def _mask(display: str, redact: Sequence[str]) -> str:
    for secret in redact:
        if secret:
            display = display.replace(secret, "********")
    return display


def run_command(
    args: Sequence[str],
    *,
    input_text: Optional[str] = None,
    extra_env: Optional[Dict[str, str]] = None,
    redact: Sequence[str] = (),
) -> CommandResult:
    """Run *args* and capture its output.

    Strings in *redact* (passwords) are masked in the logged command line.
    """
    display = _mask(" ".join(args), redact)
    env = None
    if extra_env:
        env = {**os.environ, **extra_env}

    logger.debug("Running: %s", display)
    try:
        proc = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            input=input_text,
            env=env,
        )
    except FileNotFoundError:
        return CommandResult(
            command=display,
            returncode=RC_NOT_FOUND,
            stderr=f"{args[0]} not found on PATH",
        )
    return CommandResult(
        command=display,
        returncode=proc.returncode,
        stdout=(proc.stdout or "").strip(),
        stderr=(proc.stderr or "").strip(),
    )


class Host:
    """Command + file access for one node."""

    name: str = ""

    def run(
        self,
        args: Sequence[str],
        *,
        input_text: Optional[str] = None,
        redact: Sequence[str] = (),
    ) -> CommandResult:
        raise NotImplementedError

    def is_file(self, path: str) -> bool:
        raise NotImplementedError

    def read_file(self, path: str) -> Optional[str]:
        """Return file contents, or ``None`` if it is not a regular file."""
        raise NotImplementedError

    def write_file(self, path: str, content: str) -> None:
        """Write *content* to *path*, creating parent directories.

        Raises :class:`OSError` on failure.
        """
        raise NotImplementedError

    def path_exists(self, path: str) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        """Release any connection held for this node."""


class LocalHost(Host):
    """The machine we run on; file paths are resolved under *root*."""

    def __init__(self, name: str = "localhost", root: Path | str = "/") -> None:
        self.name = name
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        return self.root / str(PurePosixPath(path)).lstrip("/")

    def run(self, args, *, input_text=None, redact=()):
        return run_command(args, input_text=input_text, redact=redact)

    def is_file(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def path_exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def read_file(self, path: str) -> Optional[str]:
        target = self._resolve(path)
        if not target.is_file():
            return None
        return target.read_text(encoding="utf-8")

    def write_file(self, path: str, content: str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")


class SshHost(Host):
    """A remote node reached over SSH with paramiko.

    Commands run through ``exec_command`` (under ``sudo -n`` unless
    *sudo* is off).  Files are read over SFTP byte for byte and written
    to a temporary path first, then moved into place with ``install``
    so root-owned targets keep working.  The connection is opened on
    first use and kept until :meth:`close`.
    """

    def __init__(
        self,
        name: str,
        *,
        user: Optional[str] = None,
        port: int = 22,
        key_path: Optional[str] = None,
        sudo: bool = True,
        connect_timeout: float = 15.0,
        cmd_timeout: float = 120.0,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ) -> None:
        self.name = name
        self.user = user
        self.port = port
        self.key_path = key_path
        self.sudo = sudo
        self.connect_timeout = connect_timeout
        self.cmd_timeout = cmd_timeout
        self._client_factory = client_factory
        self._client: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None

    # -- connection -----------------------------------------------------------

    def _unreachable(self, what: str, exc: Exception) -> HostUnreachableError:
        return HostUnreachableError(f"{self.name}: {what}: {exc}", node=self.name)

    def _connect(self) -> paramiko.SSHClient:
        if self._client is not None:
            return self._client
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.name,
                port=self.port,
                username=self.user,
                key_filename=self.key_path,
                timeout=self.connect_timeout,
            )
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise self._unreachable("ssh connection failed", exc) from exc
        logger.debug("Connected to %s", self.name)
        self._client = client
        return client

    def _sftp_client(self) -> paramiko.SFTPClient:
        if self._sftp is None:
            client = self._connect()
            try:
                self._sftp = client.open_sftp()
            except (paramiko.SSHException, OSError) as exc:
                raise self._unreachable("sftp session failed", exc) from exc
        return self._sftp

    def close(self) -> None:
        if self._sftp is not None:
            self._sftp.close()
            self._sftp = None
        if self._client is not None:
            self._client.close()
            self._client = None

    # -- commands -------------------------------------------------------------

    def remote_command(self, args: Sequence[str]) -> str:
        remote = shlex.join(list(args))
        if self.sudo:
            remote = f"sudo -n {remote}"
        return remote

    def run(self, args, *, input_text=None, redact=()):
        command = self.remote_command(args)
        display = _mask(command, redact)
        client = self._connect()
        logger.debug("Running on %s: %s", self.name, display)
        try:
            stdin, stdout, stderr = client.exec_command(command, timeout=self.cmd_timeout)
            if input_text is not None:
                stdin.write(input_text)
                stdin.flush()
            stdin.channel.shutdown_write()
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            rc = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as exc:
            raise self._unreachable(f"command failed in transit ({display})", exc) from exc
        return CommandResult(command=display, returncode=rc, stdout=out.strip(), stderr=err.strip())

    # -- files ----------------------------------------------------------------

    def _stat_mode(self, path: str) -> Optional[int]:
        try:
            return self._sftp_client().stat(path).st_mode
        except FileNotFoundError:
            return None

    def is_file(self, path: str) -> bool:
        mode = self._stat_mode(path)
        return mode is not None and stat.S_ISREG(mode)

    def path_exists(self, path: str) -> bool:
        return self._stat_mode(path) is not None

    def read_file(self, path: str) -> Optional[str]:
        if not self.is_file(path):
            return None
        with self._sftp_client().open(path, "rb") as fh:
            data = fh.read()
        return data.decode("utf-8")

    def write_file(self, path: str, content: str) -> None:
        tmp_remote = f"/tmp/.node-reconciler-{os.getpid()}-{next(_tmp_counter)}"
        with self._sftp_client().open(tmp_remote, "wb") as fh:
            fh.write(content.encode("utf-8"))
        result = self.run(["install", "-D", "-m", "0644", tmp_remote, path])
        cleanup = self.run(["rm", "-f", tmp_remote])
        if not cleanup.success:
            logger.warning("%s: could not remove %s: %s", self.name, tmp_remote, cleanup.error_text)
        if not result.success:
            raise OSError(f"{self.name}: cannot write {path}: {result.error_text}")


def host_for(name: str, *, local_names: Sequence[str] = ("localhost",)) -> Host:
    """Return a :class:`LocalHost` for local names, else an :class:`SshHost`."""
    if name in local_names:
        return LocalHost(name)
    return SshHost(name)
