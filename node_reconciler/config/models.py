"""Pydantic models for the desired node configuration.

A :class:`DesiredState` is computed once per run (file + CLI overrides)
and is frozen afterwards; every downstream step receives it by value.

Structure of a desired-state YAML file::

    runtime:
      requested_version: "1.12.6"
      minimum_version: "1.9.1"
      upgrade_boundary: "1.10"
    registries:
      added: [registry.example.com]
      blocked: [docker.io]
      insecure: []
    proxy:
      http: http://proxy:3128
    daemon:
      log_driver: journald
      log_options: [max-size=50m]
    logging:
      app_host: es.logging.svc
      ops_host: es-ops.logging.svc
    node_selector:
      logging-infra-fluentd: "true"
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

#: Fluentd deployment flavours accepted by the logging stack.
ALLOWED_DEPLOYMENT_TYPES: Tuple[str, ...] = ("hosted", "secure-aggregator", "secure-host")

#: Accepted values for ``mux_client_mode``.
ALLOWED_MUX_CLIENT_MODES: Tuple[str, ...] = ("minimal", "maximal")

#: Platform type that pulls in the enterprise registry.
ENTERPRISE_PLATFORM = "openshift-enterprise"

DEFAULT_NODE_SELECTOR: Dict[str, str] = {"logging-infra-fluentd": "true"}

#: Service account the Fluentd daemonset runs as.
SERVICE_ACCOUNT = "aggregated-logging-fluentd"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class RuntimePolicy(_Frozen):
    """Container runtime package/service and version policy."""

    package: str = "docker"
    service: str = "docker"
    requested_version: Optional[str] = None
    minimum_version: str = "1.9.1"
    upgrade_boundary: str = "1.10"

    @field_validator("requested_version", mode="before")
    @classmethod
    def _empty_is_unset(cls, value: Any) -> Any:
        if value is None or str(value).strip() == "":
            return None
        return str(value).strip()


class RegistryLists(_Frozen):
    added: Tuple[str, ...] = ()
    blocked: Tuple[str, ...] = ()
    insecure: Tuple[str, ...] = ()


class ProxySettings(_Frozen):
    http: str = ""
    https: str = ""
    no_proxy: str = ""


class DaemonOptions(_Frozen):
    """Inputs for the ``OPTIONS=`` line of ``/etc/sysconfig/docker``."""

    selinux_enabled: bool = True
    log_driver: Optional[str] = None
    log_options: Tuple[str, ...] = ()
    extra_options: str = ""
    disable_push_dockerhub: Optional[bool] = None
    signature_verification: bool = False

    @field_validator("log_options", mode="before")
    @classmethod
    def _split_log_options(cls, value: Any) -> Any:
        # "max-size=50m,max-file=3" and "max-size=50m max-file=3" are both accepted.
        if isinstance(value, str):
            return tuple(v for v in value.replace(",", " ").split() if v)
        return value


class LoggingDestinations(_Frozen):
    app_host: str = ""
    app_port: int = 9200
    ops_host: str = ""
    ops_port: int = 9200


class RegistryAuth(_Frozen):
    """Docker CLI registry credentials (``docker login``)."""

    user: Optional[str] = None
    password: str = Field(default="", repr=False)
    host: str = ""
    replace: bool = False
    config_path: str = "/var/lib/origin/.docker"


class AuditSettings(_Frozen):
    container_engine: bool = False
    log_file: str = ""
    pos_file: str = ""


class ConfigOverrides(_Frozen):
    """Explicit bodies replacing the packaged Fluentd config defaults."""

    fluent_conf: Optional[str] = None
    throttle_conf: Optional[str] = None
    secure_forward_conf: Optional[str] = None


class DesiredState(_Frozen):
    """Everything a node and the logging stack should converge to."""

    runtime: RuntimePolicy = Field(default_factory=RuntimePolicy)
    registries: RegistryLists = Field(default_factory=RegistryLists)
    proxy: ProxySettings = Field(default_factory=ProxySettings)
    daemon: DaemonOptions = Field(default_factory=DaemonOptions)
    logging: LoggingDestinations = Field(default_factory=LoggingDestinations)
    node_selector: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_NODE_SELECTOR)
    )

    # -- platform ------------------------------------------------------------
    platform_type: str = "origin"
    enterprise_registry: str = ""
    atomic_host: bool = False
    use_firewalld: bool = False
    network_mtu: Optional[int] = None
    registry_auth: RegistryAuth = Field(default_factory=RegistryAuth)

    # -- logging stack -------------------------------------------------------
    deployment_type: str = "hosted"
    namespace: str = "logging"
    mux_client_mode: Optional[str] = None
    image_pull_secret: str = ""
    fluentd_image: str = "docker.io/openshift/origin-logging-fluentd:latest"
    certs_dir: str = "/etc/origin/logging"
    audit: AuditSettings = Field(default_factory=AuditSettings)
    overrides: ConfigOverrides = Field(default_factory=ConfigOverrides)

    # -- retired knobs, kept so we can fail/warn on them ---------------------
    es_copy: Optional[bool] = None
    use_journal: Optional[bool] = None

    @field_validator("node_selector", mode="before")
    @classmethod
    def _selector_values_as_str(cls, value: Any) -> Any:
        # YAML turns `key: true` into a bool; label values are strings.
        if isinstance(value, dict):
            return {
                str(k): str(v).lower() if isinstance(v, bool) else str(v)
                for k, v in value.items()
            }
        return value

    @property
    def node_selector_pair(self) -> Tuple[str, str]:
        """Return the single ``(key, value)`` node selector pair."""
        key = next(iter(self.node_selector))
        return key, str(self.node_selector[key])

    @property
    def service_account_user(self) -> str:
        return f"system:serviceaccount:{self.namespace}:{SERVICE_ACCOUNT}"
