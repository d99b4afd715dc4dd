"""Cluster control plane: the ``oc`` wrapper and the logging agent deployer."""

from node_reconciler.cluster.client import (
    SCOPE_CLUSTER_ROLE,
    SCOPE_SCC,
    ClusterAPI,
    NodeInfo,
    NodeReadiness,
)
from node_reconciler.cluster.fluentd import (
    FLUENTD_OBJECT_NAME,
    FLUENTD_POD_SELECTOR,
    DeployResult,
    LoggingAgentDeployer,
    check_cert_files,
    render_daemonset,
    render_fluentd_configs,
    set_node_selector,
    temp_workspace,
    validate_preconditions,
)

__all__ = [
    "SCOPE_CLUSTER_ROLE",
    "SCOPE_SCC",
    "ClusterAPI",
    "NodeInfo",
    "NodeReadiness",
    "FLUENTD_OBJECT_NAME",
    "FLUENTD_POD_SELECTOR",
    "DeployResult",
    "LoggingAgentDeployer",
    "check_cert_files",
    "render_daemonset",
    "render_fluentd_configs",
    "set_node_selector",
    "temp_workspace",
    "validate_preconditions",
]
