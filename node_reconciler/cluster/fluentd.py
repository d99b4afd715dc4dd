"""Deploy the Fluentd logging agent into the cluster.

The deployment is a fixed sequence of idempotent cluster calls::

    service account -> SCC + cluster role -> configmap -> secret -> daemonset

Config bodies are written into a throwaway workspace directory first
because the configmap/secret are created from files.  The workspace is
always removed, whether the deploy succeeds or not.

Preconditions are checked by :func:`validate_preconditions` *before*
any cluster call is made.
"""

from __future__ import annotations

import io
import logging
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Mapping

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap
from ruamel.yaml.scalarstring import DoubleQuotedScalarString

from node_reconciler.cluster.client import SCOPE_CLUSTER_ROLE, SCOPE_SCC, ClusterAPI
from node_reconciler.config.models import (
    ALLOWED_DEPLOYMENT_TYPES,
    ALLOWED_MUX_CLIENT_MODES,
    SERVICE_ACCOUNT,
    DesiredState,
)
from node_reconciler.errors import PreconditionError
from node_reconciler.render.renderer import load_asset, render_asset

logger = logging.getLogger(__name__)

# ── names ────────────────────────────────────────────────────────────

#: ConfigMap, Secret and DaemonSet all share this name.
FLUENTD_OBJECT_NAME = "logging-fluentd"
FLUENTD_COMPONENT = "fluentd"
FLUENTD_CONTAINER = "fluentd-elasticsearch"

#: Label selector matching the agent pods (used for rollout readiness).
FLUENTD_POD_SELECTOR = f"component={FLUENTD_COMPONENT}"

PRIVILEGED_SCC = "privileged"
CLUSTER_READER_ROLE = "cluster-reader"

#: configmap key -> packaged default asset.
CONFIG_ASSETS: Dict[str, str] = {
    "fluent.conf": "fluent.conf.template",
    "throttle-config.yaml": "fluentd-throttle-config.yaml",
    "secure-forward.conf": "secure-forward.conf",
}

#: secret key -> file name under ``certs_dir``.
CERT_FILES: Dict[str, str] = {
    "ca": "ca.crt",
    "key": "system.logging.fluentd.key",
    "cert": "system.logging.fluentd.crt",
}


# ── preconditions ────────────────────────────────────────────────────


def validate_preconditions(desired: DesiredState) -> List[str]:
    """Reject unsupported logging inputs; return warnings to surface.

    Raises
    ------
    PreconditionError
        On the first violated precondition.
    """
    if desired.es_copy is not None:
        raise PreconditionError(
            "The ES_COPY feature is no longer supported. "
            "Remove the es_copy setting from the configuration."
        )

    if len(desired.node_selector) != 1:
        raise PreconditionError(
            "The node selector must have exactly one key=value pair, "
            f"got {len(desired.node_selector)}: {desired.node_selector}"
        )

    if not desired.logging.app_host:
        raise PreconditionError("The application log destination host (app_host) is required")
    if not desired.logging.ops_host:
        raise PreconditionError("The operations log destination host (ops_host) is required")

    if desired.deployment_type not in ALLOWED_DEPLOYMENT_TYPES:
        raise PreconditionError(
            f"Invalid deployment type {desired.deployment_type!r}; "
            f"must be one of {', '.join(ALLOWED_DEPLOYMENT_TYPES)}"
        )

    warnings: List[str] = []
    if desired.mux_client_mode is not None:
        if desired.mux_client_mode not in ALLOWED_MUX_CLIENT_MODES:
            raise PreconditionError(
                f"Invalid mux_client_mode {desired.mux_client_mode!r}; "
                f"must be one of {', '.join(ALLOWED_MUX_CLIENT_MODES)}"
            )
        if desired.mux_client_mode == "minimal":
            warnings.append(
                "mux_client_mode=minimal is not recommended; "
                "use maximal unless the mux pods are sized for it"
            )

    if desired.use_journal is not None:
        warnings.append(
            "use_journal is deprecated and ignored; "
            "Fluentd detects the Docker log driver automatically"
        )

    for message in warnings:
        logger.warning(message)
    return warnings


def check_cert_files(desired: DesiredState) -> Dict[str, Path]:
    """Return ``secret key -> path`` for the agent certificates.

    Certificates are not generated here; they must already exist.
    """
    certs_dir = Path(desired.certs_dir)
    files = {key: certs_dir / name for key, name in CERT_FILES.items()}
    missing = sorted(str(p) for p in files.values() if not p.is_file())
    if missing:
        raise PreconditionError(
            f"Fluentd certificate file(s) missing: {', '.join(missing)}"
        )
    return files


# ── rendering ────────────────────────────────────────────────────────


def render_fluentd_configs(desired: DesiredState) -> Dict[str, str]:
    """Return the three configmap bodies, honouring explicit overrides."""
    overrides = desired.overrides
    fluent_conf = overrides.fluent_conf
    if fluent_conf is None:
        fluent_conf = render_asset(
            CONFIG_ASSETS["fluent.conf"], {"DEPLOY_TYPE": desired.deployment_type},
        )
    throttle = overrides.throttle_conf
    if throttle is None:
        throttle = load_asset(CONFIG_ASSETS["throttle-config.yaml"])
    # secure-forward.conf carries Fluentd's own ${...} placeholders, so it is
    # loaded as-is rather than token-rendered.
    secure_forward = overrides.secure_forward_conf
    if secure_forward is None:
        secure_forward = load_asset(CONFIG_ASSETS["secure-forward.conf"])
    return {
        "fluent.conf": fluent_conf,
        "throttle-config.yaml": throttle,
        "secure-forward.conf": secure_forward,
    }


def _round_trip_yaml() -> YAML:
    yaml = YAML()
    yaml.preserve_quotes = True
    yaml.width = 4096
    return yaml


def set_node_selector(manifest: str, selector: Mapping[str, str]) -> str:
    """Replace the pod template ``nodeSelector`` in a daemonset manifest.

    Values are emitted double-quoted so labels such as ``"true"`` stay
    strings.  Everything else in the manifest is kept as written.
    """
    yaml = _round_trip_yaml()
    doc = yaml.load(manifest)
    node_selector = CommentedMap()
    for key, value in selector.items():
        node_selector[key] = DoubleQuotedScalarString(str(value))
    doc["spec"]["template"]["spec"]["nodeSelector"] = node_selector

    buf = io.StringIO()
    yaml.dump(doc, buf)
    return buf.getvalue()


def render_daemonset(desired: DesiredState) -> str:
    """Render the agent daemonset manifest for *desired*."""
    audit = desired.audit
    manifest = render_asset(
        "fluentd-daemonset.yaml.template",
        {
            "DAEMONSET_NAME": FLUENTD_OBJECT_NAME,
            "DAEMONSET_COMPONENT": FLUENTD_COMPONENT,
            "DAEMONSET_CONTAINER_NAME": FLUENTD_CONTAINER,
            "DAEMONSET_SERVICE_ACCOUNT": SERVICE_ACCOUNT,
            "IMAGE": desired.fluentd_image,
            "APP_HOST": desired.logging.app_host,
            "APP_PORT": str(desired.logging.app_port),
            "OPS_HOST": desired.logging.ops_host,
            "OPS_PORT": str(desired.logging.ops_port),
            "AUDIT_CONTAINER_ENGINE": str(audit.container_engine).lower(),
            "AUDIT_LOG_FILE": audit.log_file,
            "AUDIT_POS_LOG_FILE": audit.pos_file,
            "MUX_CLIENT_MODE": desired.mux_client_mode or "",
        },
    )
    return set_node_selector(manifest, desired.node_selector)


# ── workspace ────────────────────────────────────────────────────────


@contextmanager
def temp_workspace(prefix: str = "node-reconciler-fluentd-") -> Iterator[Path]:
    """Yield a fresh temporary directory, removed on exit."""
    path = Path(tempfile.mkdtemp(prefix=prefix))
    logger.debug("Created workspace %s", path)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        logger.debug("Removed workspace %s", path)


def write_workspace_files(workspace: Path, bodies: Mapping[str, str]) -> Dict[str, Path]:
    files: Dict[str, Path] = {}
    for key, body in bodies.items():
        target = workspace / key
        target.write_text(body, encoding="utf-8")
        files[key] = target
    return files


# ── deployer ─────────────────────────────────────────────────────────


@dataclass
class DeployResult:
    """What a logging deployment did."""

    applied: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class LoggingAgentDeployer:
    """Apply the Fluentd service account, config and daemonset."""

    def __init__(self, cluster: ClusterAPI, desired: DesiredState) -> None:
        self.cluster = cluster
        self.desired = desired

    def validate(self) -> List[str]:
        return validate_preconditions(self.desired)

    def deploy(self) -> DeployResult:
        """Run preconditions, then every cluster step in order.

        Cluster failures propagate as
        :class:`~node_reconciler.errors.ClusterCommandError`.
        """
        desired = self.desired
        result = DeployResult(warnings=self.validate())
        cert_files = check_cert_files(desired)

        self.cluster.create_service_account(
            SERVICE_ACCOUNT,
            image_pull_secrets=[desired.image_pull_secret] if desired.image_pull_secret else [],
        )
        result.applied.append(f"serviceaccount/{SERVICE_ACCOUNT}")

        user = desired.service_account_user
        self.cluster.grant_role(user, PRIVILEGED_SCC, SCOPE_SCC)
        self.cluster.grant_role(user, CLUSTER_READER_ROLE, SCOPE_CLUSTER_ROLE)
        result.applied.append(f"scc/{PRIVILEGED_SCC}")
        result.applied.append(f"clusterrole/{CLUSTER_READER_ROLE}")

        with temp_workspace() as ws:
            config_files = write_workspace_files(ws, render_fluentd_configs(desired))
            self.cluster.apply_config_map(FLUENTD_OBJECT_NAME, config_files)
            result.applied.append(f"configmap/{FLUENTD_OBJECT_NAME}")

        self.cluster.apply_secret(FLUENTD_OBJECT_NAME, cert_files)
        result.applied.append(f"secret/{FLUENTD_OBJECT_NAME}")

        self.cluster.apply_daemon_set(render_daemonset(desired))
        result.applied.append(f"daemonset/{FLUENTD_OBJECT_NAME}")

        logger.info("Logging agent deployed in %s", desired.namespace)
        return result

