"""Docker daemon configuration rendering.

Turns a :class:`DesiredState` into the concrete lines that belong in
``/etc/sysconfig/docker`` and ``/etc/sysconfig/docker-network``, plus the
whole-file bodies for ``/etc/containers/registries.conf`` and the
``docker.service.d/custom.conf`` systemd drop-in.

Everything here is a pure function of its inputs: the same desired
state always renders byte-identical output, which is what lets the
convergence engine diff against the node's files line by line.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from node_reconciler.config.models import ENTERPRISE_PLATFORM, DesiredState, RegistryLists
from node_reconciler.render.renderer import load_asset, render_asset
from node_reconciler.runtime.version import to_version

#: sysconfig variable -> docker flag, in the order they are written.
REGISTRY_FLAGS: Tuple[Tuple[str, str, str], ...] = (
    ("ADD_REGISTRY", "added", "--add-registry"),
    ("BLOCK_REGISTRY", "blocked", "--block-registry"),
    ("INSECURE_REGISTRY", "insecure", "--insecure-registry"),
)

#: sysconfig proxy variable -> ProxySettings attribute.
PROXY_KEYS: Tuple[Tuple[str, str], ...] = (
    ("HTTP_PROXY", "http"),
    ("HTTPS_PROXY", "https"),
    ("NO_PROXY", "no_proxy"),
)


@dataclass(frozen=True)
class RenderedConfig:
    """Concrete Docker configuration artifacts for one desired state.

    ``proxy_lines`` maps each proxy key to its line, or to ``None`` when
    the key must be removed from the file.
    """

    options_line: str
    registry_lines: Dict[str, str] = field(default_factory=dict)
    proxy_lines: Dict[str, Optional[str]] = field(default_factory=dict)
    network_line: str = "DOCKER_NETWORK_OPTIONS=''"

    def sysconfig_edits(self) -> List[Tuple[str, Optional[str]]]:
        """Ordered ``(key, line-or-None)`` edits for ``/etc/sysconfig/docker``."""
        edits: List[Tuple[str, Optional[str]]] = list(self.registry_lines.items())
        edits.extend(self.proxy_lines.items())
        edits.append(("OPTIONS", self.options_line))
        return edits

    def as_lines(self) -> List[str]:
        """Lines that will be present after convergence (for display)."""
        return [line for _, line in self.sysconfig_edits() if line is not None] + [
            self.network_line
        ]


def _sysconfig_line(key: str, value: str) -> str:
    return f"{key}='{value}'"


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------


def effective_registries(desired: DesiredState) -> RegistryLists:
    """Return the registry lists with the enterprise registry folded in.

    On enterprise platforms a non-empty ``enterprise_registry`` is appended
    to ``added`` unless it is already listed.
    """
    regs = desired.registries
    ent = desired.enterprise_registry
    if desired.platform_type == ENTERPRISE_PLATFORM and ent and ent not in regs.added:
        return regs.model_copy(update={"added": regs.added + (ent,)})
    return regs


def render_registry_lines(registries: RegistryLists) -> Dict[str, str]:
    """``ADD/BLOCK/INSECURE_REGISTRY`` lines; empty lists emit nothing."""
    lines: Dict[str, str] = {}
    for key, attr, flag in REGISTRY_FLAGS:
        entries = getattr(registries, attr)
        if not entries:
            continue
        lines[key] = _sysconfig_line(key, " ".join(f"{flag} {e}" for e in entries))
    return lines


def render_registries_conf(registries: RegistryLists) -> str:
    """Body of ``/etc/containers/registries.conf``."""

    def _toml_list(items: Tuple[str, ...]) -> str:
        return ", ".join(f'"{i}"' for i in items)

    return render_asset(
        "registries.conf.template",
        {
            "SEARCH_REGISTRIES": _toml_list(registries.added),
            "INSECURE_REGISTRIES": _toml_list(registries.insecure),
            "BLOCKED_REGISTRIES": _toml_list(registries.blocked),
        },
    )


def render_custom_conf() -> str:
    """Body of the ``docker.service.d/custom.conf`` iptables drop-in."""
    return load_asset("docker-custom.conf")


# ---------------------------------------------------------------------------
# Proxy / network
# ---------------------------------------------------------------------------


def render_proxy_lines(desired: DesiredState) -> Dict[str, Optional[str]]:
    lines: Dict[str, Optional[str]] = {}
    for key, attr in PROXY_KEYS:
        value = getattr(desired.proxy, attr)
        lines[key] = _sysconfig_line(key, value) if value else None
    return lines


def render_network_line(desired: DesiredState) -> str:
    value = f"--mtu={desired.network_mtu}" if desired.network_mtu else ""
    return _sysconfig_line("DOCKER_NETWORK_OPTIONS", value)


# ---------------------------------------------------------------------------
# OPTIONS
# ---------------------------------------------------------------------------


def render_options_line(desired: DesiredState, *, selinux_active: bool = True) -> str:
    """Assemble the ``OPTIONS='...'`` line.

    Flag order is fixed: selinux, log driver, log opts, extra options,
    push confirmation, signature verification.
    """
    opts = desired.daemon
    parts: List[str] = []
    if selinux_active and opts.selinux_enabled:
        parts.append("--selinux-enabled")
    if opts.log_driver:
        parts.append(f"--log-driver {opts.log_driver}")
    parts.extend(f"--log-opt {o}" for o in opts.log_options)
    if opts.extra_options.strip():
        parts.append(opts.extra_options.strip())
    if opts.disable_push_dockerhub is not None:
        parts.append(f"--confirm-def-push={opts.disable_push_dockerhub}")
    parts.append(f"--signature-verification={opts.signature_verification}")
    return _sysconfig_line("OPTIONS", " ".join(parts))


def render_docker_config(
    desired: DesiredState,
    *,
    selinux_active: bool = True,
) -> RenderedConfig:
    """Render every sysconfig artifact for *desired*.

    Version strings are validated here too, so a malformed version fails
    with :class:`~node_reconciler.errors.InvalidVersionFormat` before any
    node is touched.
    """
    runtime = desired.runtime
    for value in (runtime.requested_version, runtime.minimum_version, runtime.upgrade_boundary):
        to_version(value)

    return RenderedConfig(
        options_line=render_options_line(desired, selinux_active=selinux_active),
        registry_lines=render_registry_lines(effective_registries(desired)),
        proxy_lines=render_proxy_lines(desired),
        network_line=render_network_line(desired),
    )
