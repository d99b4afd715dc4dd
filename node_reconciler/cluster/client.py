"""Cluster control-plane wrapper around the ``oc`` CLI.

Every call shells out through :func:`~node_reconciler.host.shell.run_command`
so the reconciler never reimplements API-server semantics.  Mutations are
expressed as ``oc create ... --dry-run=client -o yaml`` piped into
``oc apply -f -``, which makes them idempotent.

Failures raise :class:`~node_reconciler.errors.ClusterCommandError`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from node_reconciler.errors import ClusterCommandError
from node_reconciler.host.shell import CommandResult, run_command

logger = logging.getLogger(__name__)

#: Role scopes understood by :meth:`ClusterAPI.grant_role`.
SCOPE_SCC = "scc"
SCOPE_CLUSTER_ROLE = "cluster-role"


@dataclass(frozen=True)
class NodeInfo:
    name: str
    labels: Dict[str, str] = field(default_factory=dict)
    ready: bool = False


@dataclass(frozen=True)
class NodeReadiness:
    """Whether a node satisfies the rollout criteria, and why not."""

    ready: bool
    reason: str = ""


def _node_ready(item: Mapping[str, Any]) -> bool:
    for cond in item.get("status", {}).get("conditions", []) or []:
        if cond.get("type") == "Ready":
            return cond.get("status") == "True"
    return False


def _pod_ready(pod: Mapping[str, Any]) -> bool:
    status = pod.get("status", {})
    if status.get("phase") != "Running":
        return False
    for cond in status.get("conditions", []) or []:
        if cond.get("type") == "Ready":
            return cond.get("status") == "True"
    return False


class ClusterAPI:
    """Narrow cluster interface used by the reconciler.

    Parameters
    ----------
    namespace:
        Namespace for namespaced objects (service account, configmap...).
    binary:
        CLI to call (``oc`` by default).
    kubeconfig:
        Optional kubeconfig path passed with ``--config``.
    """

    def __init__(
        self,
        namespace: str,
        *,
        binary: str = "oc",
        kubeconfig: Optional[str] = None,
    ) -> None:
        self.namespace = namespace
        self.binary = binary
        self.kubeconfig = kubeconfig

    # -- plumbing -------------------------------------------------------------

    def _cmd(self, args: Sequence[str]) -> List[str]:
        cmd = [self.binary]
        if self.kubeconfig:
            cmd.append(f"--config={self.kubeconfig}")
        cmd.extend(args)
        return cmd

    def _run(
        self,
        args: Sequence[str],
        *,
        input_text: Optional[str] = None,
        check: bool = True,
    ) -> CommandResult:
        result = run_command(self._cmd(args), input_text=input_text)
        if check and not result.success:
            raise ClusterCommandError(
                f"{result.command} failed (rc={result.returncode}): {result.error_text}",
                command=result.command,
            )
        return result

    def _json(self, args: Sequence[str]) -> Dict[str, Any]:
        result = self._run([*args, "-o", "json"])
        try:
            return json.loads(result.stdout) if result.stdout else {}
        except json.JSONDecodeError as exc:
            raise ClusterCommandError(
                f"{result.command} returned invalid JSON: {exc}", command=result.command,
            ) from exc

    def _apply_generated(self, create_args: Sequence[str]) -> None:
        """Render an object with ``create --dry-run`` and ``apply`` it."""
        rendered = self._run(
            [*create_args, "-n", self.namespace, "--dry-run=client", "-o", "yaml"]
        )
        self.apply_manifest(rendered.stdout)

    # -- mutations ------------------------------------------------------------

    def apply_manifest(self, manifest: str) -> None:
        self._run(["apply", "-n", self.namespace, "-f", "-"], input_text=manifest)

    def create_service_account(
        self, name: str, image_pull_secrets: Sequence[str] = (),
    ) -> None:
        """Ensure service account *name* exists, linking pull secrets."""
        self._apply_generated(["create", "serviceaccount", name])
        for secret in image_pull_secrets:
            self._run(
                ["secrets", "link", name, secret, "--for=pull", "-n", self.namespace]
            )
        logger.info("Service account %s/%s present", self.namespace, name)

    def grant_role(self, user: str, role: str, scope: str) -> None:
        """Grant *role* to *user*; *scope* is ``scc`` or ``cluster-role``."""
        if scope == SCOPE_SCC:
            args = ["adm", "policy", "add-scc-to-user", role, user, "-n", self.namespace]
        elif scope == SCOPE_CLUSTER_ROLE:
            args = ["adm", "policy", "add-cluster-role-to-user", role, user]
        else:
            raise ValueError(f"Unknown role scope: {scope}")
        self._run(args)
        logger.info("Granted %s %s to %s", scope, role, user)

    def apply_config_map(self, name: str, files: Mapping[str, Path]) -> None:
        """Create/update configmap *name* from ``key -> file`` *files*."""
        args = ["create", "configmap", name]
        args.extend(f"--from-file={key}={path}" for key, path in files.items())
        self._apply_generated(args)
        logger.info("ConfigMap %s/%s applied (%d keys)", self.namespace, name, len(files))

    def apply_secret(self, name: str, files: Mapping[str, Path]) -> None:
        """Create/update generic secret *name* from ``key -> file`` *files*."""
        args = ["create", "secret", "generic", name]
        args.extend(f"--from-file={key}={path}" for key, path in files.items())
        self._apply_generated(args)
        logger.info("Secret %s/%s applied (%d keys)", self.namespace, name, len(files))

    def apply_daemon_set(self, manifest: str) -> None:
        self.apply_manifest(manifest)
        logger.info("DaemonSet applied in %s", self.namespace)

    def label_node(self, name: str, key: str, value: str) -> None:
        self._run(["label", "node", name, f"{key}={value}", "--overwrite"])
        logger.info("Labeled node %s with %s=%s", name, key, value)

    # -- queries --------------------------------------------------------------

    def list_nodes(self) -> List[NodeInfo]:
        data = self._json(["get", "nodes"])
        nodes: List[NodeInfo] = []
        for item in data.get("items", []) or []:
            meta = item.get("metadata", {})
            nodes.append(
                NodeInfo(
                    name=meta.get("name", ""),
                    labels=dict(meta.get("labels", {}) or {}),
                    ready=_node_ready(item),
                )
            )
        return [n for n in nodes if n.name]

    def get_node_readiness(
        self, name: str, *, pod_selector: Optional[str] = None,
    ) -> NodeReadiness:
        """Node ``Ready`` condition, plus (optionally) a ready pod on it.

        With *pod_selector* the node only counts as ready once a pod
        matching the label selector is Running and Ready on that node.
        """
        node = self._json(["get", "node", name])
        if not _node_ready(node):
            return NodeReadiness(False, "node not Ready")
        if not pod_selector:
            return NodeReadiness(True)

        pods = self._json(
            [
                "get", "pods",
                "-n", self.namespace,
                "-l", pod_selector,
                f"--field-selector=spec.nodeName={name}",
            ]
        )
        items = pods.get("items", []) or []
        if not items:
            return NodeReadiness(False, f"no pod matching {pod_selector}")
        if not any(_pod_ready(p) for p in items):
            return NodeReadiness(False, f"pod matching {pod_selector} not ready")
        return NodeReadiness(True)
