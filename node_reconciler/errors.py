"""Error taxonomy for reconciliation runs.

Two families:

* **Run-fatal** (:class:`PreconditionError`, :class:`VersionGateError`) --
  raised before any cluster or node mutation and abort the whole run.
* **Node-fatal** (:class:`NodeError` subclasses) -- caught at the node
  boundary by the fleet rollout, recorded, and never propagated to
  sibling nodes.
"""

from __future__ import annotations


class ReconcileError(RuntimeError):
    """Base class for all reconciliation failures."""


# ---------------------------------------------------------------------------
# Run-fatal
# ---------------------------------------------------------------------------


class PreconditionError(ReconcileError):
    """Bad input: missing destination, invalid deployment type, etc."""


class InvalidVersionFormat(PreconditionError):
    """A runtime version string could not be parsed."""


class VersionGateError(ReconcileError):
    """Installed/requested runtime version violates policy."""

    def __init__(self, message: str, result: object = None) -> None:
        super().__init__(message)
        self.result = result


# ---------------------------------------------------------------------------
# Node-fatal
# ---------------------------------------------------------------------------


class NodeError(ReconcileError):
    """Failure scoped to a single node."""

    def __init__(self, message: str, node: str = "") -> None:
        super().__init__(message)
        self.node = node


class ApplyError(NodeError):
    """Writing or applying configuration on a node failed."""


class RestartError(NodeError):
    """The runtime service could not be (re)started after all retries."""


class RolloutTimeoutError(NodeError):
    """A node did not become ready before the rollout timeout elapsed."""


class CredentialError(NodeError):
    """Registry login failed on a node."""


class HostUnreachableError(NodeError):
    """The node could not be reached over SSH."""


# ---------------------------------------------------------------------------
# Cluster control plane
# ---------------------------------------------------------------------------


class ClusterCommandError(ReconcileError):
    """A cluster API call (``oc``/``kubectl``) failed."""

    def __init__(self, message: str, command: str = "") -> None:
        super().__init__(message)
        self.command = command
