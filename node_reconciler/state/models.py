"""Rollout result and run report models.

A :class:`RunReport` serialises to::

    {
      "run_id": "YYYYMMDDHHMMSS",
      "status": "Succeeded|Failed",
      "dry_run": false,
      "runtime_version": "1.12.6",
      "counts": {"Succeeded": 2, "Failed": 1, "Skipped": 0},
      "results": [
        {"node_name": "node-a", "outcome": "Succeeded", "detail": "..."}
      ],
      "warnings": ["..."]
    }
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Outcome enum
# ---------------------------------------------------------------------------


class Outcome(str, Enum):
    """Final state of one node in a run."""

    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SKIPPED = "Skipped"


# ---------------------------------------------------------------------------
# RolloutResult
# ---------------------------------------------------------------------------


class RolloutResult(BaseModel):
    """Immutable per-node outcome.

    Attributes:
        node_name: Cluster node name.
        outcome: Succeeded, Failed or Skipped.
        detail: Short human-readable explanation (error text on failure).
    """

    model_config = ConfigDict(frozen=True)

    node_name: str
    outcome: Outcome
    detail: str = ""

    @property
    def failed(self) -> bool:
        return self.outcome == Outcome.FAILED


# ---------------------------------------------------------------------------
# RunReport
# ---------------------------------------------------------------------------


def _new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")


class RunReport(BaseModel):
    """Aggregated result of one reconcile run, written to the config dir."""

    run_id: str = Field(default_factory=_new_run_id)
    status: Outcome = Outcome.SUCCEEDED
    dry_run: bool = False
    runtime_version: Optional[str] = None
    counts: Dict[str, int] = Field(default_factory=dict)
    results: List[RolloutResult] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == Outcome.SUCCEEDED

    @property
    def failing_nodes(self) -> List[RolloutResult]:
        return [r for r in self.results if r.failed]

    def to_sorted_json(self, indent: int = 2) -> str:
        """Serialise with sorted keys for deterministic output."""
        return json.dumps(
            self.model_dump(mode="json"),
            indent=indent,
            sort_keys=True,
        )
