"""Node Reconciler - converge cluster nodes to a declared configuration.

Converges each node's container runtime (Docker) configuration and the
cluster's logging agent (Fluentd) deployment to a desired state, one node
at a time, with version gating, bounded restarts and readiness gating.
"""

try:
    from importlib.metadata import version

    __version__ = version("node-reconciler")
except Exception:
    __version__ = "0.0.0.dev0"

__all__ = ["__version__"]
