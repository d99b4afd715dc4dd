"""Sequential fleet rollout: converge, label, wait until ready.

Each node moves through::

    Pending -> Labeled -> WaitingReady -> Ready | TimedOut

Nodes are processed strictly one after another in input order.  A
failure on one node is recorded and the next node proceeds.  On
cancellation (``KeyboardInterrupt`` or the cancel event) the node in
flight is recorded as Failed and every node after it as Skipped.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from node_reconciler.cluster.client import ClusterAPI, NodeReadiness
from node_reconciler.errors import ReconcileError, RolloutTimeoutError
from node_reconciler.state.models import Outcome, RolloutResult

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Node-list entries meaning "every node the cluster reports".
ALL_NODES: Tuple[str, ...] = ("all", "--all")

#: Default seconds between readiness polls.
DEFAULT_POLL_INTERVAL: float = 10.0

#: Default seconds to wait for a node to become ready.
DEFAULT_TIMEOUT: float = 600.0


class NodePhase(str, Enum):
    PENDING = "Pending"
    LABELED = "Labeled"
    WAITING_READY = "WaitingReady"
    READY = "Ready"
    TIMED_OUT = "TimedOut"


@dataclass
class NodeTarget:
    """A node being rolled out; ``phase`` only moves forward."""

    name: str
    labels: Dict[str, str] = field(default_factory=dict)
    readiness: Optional[NodeReadiness] = None
    phase: NodePhase = NodePhase.PENDING


class RolloutCancelled(Exception):
    """Raised inside a node's rollout when cancellation is requested."""


#: Called for each node before it is labeled; returns a detail string.
ConvergeHook = Callable[[NodeTarget], Optional[str]]


def resolve_targets(names: Sequence[str], cluster: ClusterAPI) -> List[NodeTarget]:
    """Expand ``all``/``--all`` in place with the cluster's node list.

    Order is preserved and duplicates are dropped (first occurrence wins).
    """
    targets: List[NodeTarget] = []
    seen = set()
    for name in names:
        if name in ALL_NODES:
            expanded = [NodeTarget(n.name, labels=dict(n.labels)) for n in cluster.list_nodes()]
            logger.info("Expanded %r to %d node(s)", name, len(expanded))
        else:
            expanded = [NodeTarget(name)]
        for target in expanded:
            if target.name in seen:
                continue
            seen.add(target.name)
            targets.append(target)
    return targets


class FleetRollout:
    """Roll a node selector label (and optional convergence) across nodes.

    Parameters
    ----------
    cluster:
        Cluster API used for labeling and readiness.
    selector:
        ``(key, value)`` label applied to each node.
    converge:
        Optional hook run on each node before labeling.  Any
        :class:`~node_reconciler.errors.ReconcileError` it raises (a
        ``NodeError``, a cluster call or a bad version string) fails that
        node only.
    pod_selector:
        When set, a node only counts as ready once a matching pod runs on it.
    poll_interval, timeout:
        Readiness polling cadence and per-node limit, in seconds.
    cancel:
        Event checked between nodes and during waits.
    """

    def __init__(
        self,
        cluster: ClusterAPI,
        selector: Tuple[str, str],
        *,
        converge: Optional[ConvergeHook] = None,
        pod_selector: Optional[str] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        cancel: Optional[threading.Event] = None,
        _sleep_fn: Any = None,
    ) -> None:
        self.cluster = cluster
        self.selector = selector
        self.converge = converge
        self.pod_selector = pod_selector
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.cancel = cancel
        self._sleep_fn = _sleep_fn

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    def _sleep(self) -> None:
        if self._sleep_fn is not None:
            self._sleep_fn(self.poll_interval)
        elif self.cancel is not None:
            self.cancel.wait(self.poll_interval)
        else:
            time.sleep(self.poll_interval)

    # -- per node -------------------------------------------------------------

    def wait_ready(self, target: NodeTarget) -> float:
        """Poll readiness until ready; return seconds waited.

        Waiting time is counted in poll intervals, so an injected sleep
        function gives deterministic timeouts.
        """
        target.phase = NodePhase.WAITING_READY
        waited = 0.0
        while True:
            if self.cancelled:
                raise RolloutCancelled(target.name)
            readiness = self.cluster.get_node_readiness(
                target.name, pod_selector=self.pod_selector,
            )
            target.readiness = readiness
            if readiness.ready:
                target.phase = NodePhase.READY
                return waited
            if waited >= self.timeout:
                target.phase = NodePhase.TIMED_OUT
                raise RolloutTimeoutError(
                    f"{target.name} not ready after {self.timeout:.0f}s: {readiness.reason}",
                    node=target.name,
                )
            logger.info(
                "Node %s not ready yet (%s, %.0fs elapsed)",
                target.name, readiness.reason, waited,
            )
            self._sleep()
            waited += self.poll_interval

    def roll_out_node(self, target: NodeTarget) -> str:
        """Converge, label and wait for one node; return a success detail."""
        details: List[str] = []
        if self.converge is not None:
            detail = self.converge(target)
            if detail:
                details.append(detail)
        if self.cancelled:
            raise RolloutCancelled(target.name)

        key, value = self.selector
        self.cluster.label_node(target.name, key, value)
        target.labels[key] = value
        target.phase = NodePhase.LABELED

        waited = self.wait_ready(target)
        details.append(f"ready after {waited:.0f}s")
        return "; ".join(details)

    # -- fleet ----------------------------------------------------------------

    def run(self, targets: Sequence[NodeTarget]) -> List[RolloutResult]:
        """Roll out *targets* in order and return one result per node."""
        results: List[RolloutResult] = []
        for index, target in enumerate(targets):
            if self.cancelled:
                results.extend(_skipped(targets[index:]))
                break
            logger.info("Rolling out node %s (%d/%d)", target.name, index + 1, len(targets))
            try:
                detail = self.roll_out_node(target)
            except (RolloutCancelled, KeyboardInterrupt):
                logger.warning("Rollout cancelled on node %s", target.name)
                results.append(RolloutResult(
                    node_name=target.name, outcome=Outcome.FAILED, detail="cancelled",
                ))
                results.extend(_skipped(targets[index + 1:]))
                break
            except ReconcileError as exc:
                logger.error("Node %s failed: %s", target.name, exc)
                results.append(RolloutResult(
                    node_name=target.name, outcome=Outcome.FAILED, detail=str(exc),
                ))
                continue
            results.append(RolloutResult(
                node_name=target.name, outcome=Outcome.SUCCEEDED, detail=detail,
            ))
        return results


def _skipped(targets: Sequence[NodeTarget]) -> List[RolloutResult]:
    return [
        RolloutResult(node_name=t.name, outcome=Outcome.SKIPPED, detail="cancelled before start")
        for t in targets
    ]
