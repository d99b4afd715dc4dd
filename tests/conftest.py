"""Shared fakes for node-reconciler tests."""

from __future__ import annotations

from typing import Dict, List, Sequence, Tuple

import pytest

from node_reconciler.host.shell import CommandResult, LocalHost

Reply = Tuple[int, str, str]


class ScriptedHost(LocalHost):
    """A :class:`LocalHost` rooted in a temp dir whose commands are scripted.

    ``replies`` maps a command prefix to a list of ``(rc, stdout, stderr)``
    replies, consumed in order; the last reply repeats.  Commands with no
    matching prefix succeed with empty output.
    """

    def __init__(self, name: str, root) -> None:
        super().__init__(name, root)
        self.replies: Dict[Tuple[str, ...], List[Reply]] = {}
        self.calls: List[List[str]] = []
        self.inputs: List[str] = []

    def script(self, prefix: Sequence[str], *replies: Reply) -> None:
        self.replies[tuple(prefix)] = list(replies)

    def commands(self, *prefix: str) -> List[List[str]]:
        return [c for c in self.calls if tuple(c[: len(prefix)]) == prefix]

    def run(self, args, *, input_text=None, redact=()):
        args = list(args)
        self.calls.append(args)
        if input_text is not None:
            self.inputs.append(input_text)
        best = None
        for prefix in self.replies:
            if tuple(args[: len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        display = " ".join(args)
        for secret in redact:
            if secret:
                display = display.replace(secret, "********")
        if best is None:
            return CommandResult(display, 0)
        queue = self.replies[best]
        rc, out, err = queue.pop(0) if len(queue) > 1 else queue[0]
        return CommandResult(display, rc, out, err)


@pytest.fixture
def make_host(tmp_path):
    """Factory: ``make_host("node-a")`` -> :class:`ScriptedHost` under tmp_path."""
    hosts: Dict[str, ScriptedHost] = {}

    def _make(name: str = "node-a") -> ScriptedHost:
        if name not in hosts:
            root = tmp_path / name
            root.mkdir(parents=True, exist_ok=True)
            hosts[name] = ScriptedHost(name, root)
        return hosts[name]

    return _make


@pytest.fixture
def certs_dir(tmp_path):
    """Directory holding the three Fluentd certificate files."""
    path = tmp_path / "certs"
    path.mkdir()
    for name in ("ca.crt", "system.logging.fluentd.key", "system.logging.fluentd.crt"):
        (path / name).write_text(f"{name}\n", encoding="utf-8")
    return path
