"""Desired-state loading: YAML file + CLI overrides -> :class:`DesiredState`.

Resolution order for the config file path:

1. Explicit ``--config`` CLI flag
2. ``NODE_RECONCILER_CONFIG`` environment variable
3. No file (pure CLI/default values)

CLI overrides are deep-merged on top of the file contents, so a flag
only replaces the leaf it names.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError

from node_reconciler.config.models import DesiredState
from node_reconciler.errors import PreconditionError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "NODE_RECONCILER_CONFIG"


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------


def resolve_config_path(path: Optional[str] = None) -> Optional[Path]:
    """Return the config path to load, or ``None`` when there is none."""
    candidate = path or os.environ.get(CONFIG_ENV_VAR, "")
    if not candidate:
        return None
    return Path(candidate).expanduser()


def load_raw_config(path: Optional[str | Path]) -> Dict[str, Any]:
    """Parse the YAML file at *path* into a plain dict.

    A missing *path* argument yields ``{}``; a path that does not exist
    is a :class:`PreconditionError`.
    """
    if path is None:
        return {}
    path = Path(path)
    if not path.is_file():
        raise PreconditionError(f"Desired-state file not found: {path}")
    with open(path, encoding="utf-8") as fh:
        try:
            raw = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise PreconditionError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise PreconditionError(f"{path} must contain a mapping at the top level")
    return raw


def deep_merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    """Return *base* with *overrides* merged in; ``None`` overrides are ignored."""
    merged: Dict[str, Any] = dict(base)
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, Mapping):
            current = merged.get(key)
            merged[key] = deep_merge(current if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = value
    return merged


def build_desired_state(
    raw: Mapping[str, Any],
    overrides: Optional[Mapping[str, Any]] = None,
) -> DesiredState:
    """Validate *raw* (+ *overrides*) into a frozen :class:`DesiredState`.

    Pydantic validation failures are reported as :class:`PreconditionError`
    so the run aborts before touching any node.
    """
    overrides = overrides or {}
    data = deep_merge(raw, overrides)
    # A selector given on the command line replaces the file's, never merges.
    if overrides.get("node_selector"):
        data["node_selector"] = dict(overrides["node_selector"])
    try:
        return DesiredState.model_validate(data)
    except ValidationError as exc:
        raise PreconditionError(f"Invalid desired state: {exc}") from exc


def load_desired_state(
    path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> DesiredState:
    """Load the desired state from file (if any) and apply CLI *overrides*."""
    config_path = resolve_config_path(path)
    if config_path is not None:
        logger.info("Loading desired state from %s", config_path)
    return build_desired_state(load_raw_config(config_path), overrides)


# ---------------------------------------------------------------------------
# CLI value helpers
# ---------------------------------------------------------------------------


def parse_node_selector(values: Optional[list[str]]) -> Optional[Dict[str, str]]:
    """Turn repeated ``key=value`` flags into a selector mapping.

    More than one pair is accepted here on purpose; the single-pair rule
    is enforced with the other preconditions so the message is uniform.
    """
    if not values:
        return None
    selector: Dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise PreconditionError(
                f"Node selector must be given as key=value, got '{item}'"
            )
        selector[key.strip()] = value.strip()
    return selector


def read_override_file(path: Optional[str]) -> Optional[str]:
    """Return the text of an override body file, or ``None`` if not given."""
    if not path:
        return None
    p = Path(path).expanduser()
    if not p.is_file():
        raise PreconditionError(f"Override file not found: {path}")
    return p.read_text(encoding="utf-8")
