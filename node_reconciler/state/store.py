"""Persistent storage for run reports.

Writes JSON to ``~/.config/node-reconciler/`` (XDG_CONFIG_HOME /
node-reconciler), one file per run::

    report_<run_id>.json

All JSON is serialised with sorted keys.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List

from node_reconciler.state.models import RunReport

logger = logging.getLogger(__name__)

_APP_DIR = "node-reconciler"


def config_dir() -> Path:
    """Return (and create) the XDG config directory for node-reconciler."""
    base = os.environ.get("XDG_CONFIG_HOME", "")
    if not base:
        base = str(Path.home() / ".config")
    path = Path(base) / _APP_DIR
    path.mkdir(parents=True, exist_ok=True)
    return path


def write_run_report(report: RunReport) -> Path:
    """Persist *report* and return the written path."""
    dest = config_dir() / f"report_{report.run_id}.json"
    dest.write_text(report.to_sorted_json() + "\n", encoding="utf-8")
    logger.info("Run report written to %s", dest)
    return dest


def list_run_reports() -> List[Path]:
    """Return report files, oldest first."""
    return sorted(config_dir().glob("report_*.json"))


def load_run_report(path: Path) -> RunReport:
    return RunReport.model_validate_json(Path(path).read_text(encoding="utf-8"))
