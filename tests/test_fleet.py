"""Tests for node_reconciler.rollout.fleet."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

from node_reconciler.cluster.client import ClusterAPI, NodeInfo, NodeReadiness
from node_reconciler.errors import ApplyError, ClusterCommandError, InvalidVersionFormat
from node_reconciler.rollout.fleet import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_TIMEOUT,
    FleetRollout,
    NodePhase,
    NodeTarget,
    resolve_targets,
)
from node_reconciler.state.models import Outcome

SELECTOR = ("logging-infra-fluentd", "true")


# ── helpers ──────────────────────────────────────────────────────────────


def _noop_sleep(_: float) -> None:
    """Replacement for time.sleep in tests."""


def _cluster(ready=None, nodes=()) -> MagicMock:
    """Cluster mock; *ready* maps node -> list of readiness flags (last repeats)."""
    cluster = MagicMock(spec=ClusterAPI)
    cluster.list_nodes.return_value = [NodeInfo(n) for n in nodes]
    ready = {k: list(v) for k, v in (ready or {}).items()}

    def _readiness(name, pod_selector=None):
        flags = ready.get(name, [True])
        flag = flags.pop(0) if len(flags) > 1 else flags[0]
        return NodeReadiness(flag, "" if flag else "pod not ready")

    cluster.get_node_readiness.side_effect = _readiness
    return cluster


def _targets(*names):
    return [NodeTarget(n) for n in names]


# ── resolve_targets ──────────────────────────────────────────────────────


class TestResolveTargets:
    def test_explicit_names_keep_order(self):
        cluster = _cluster()
        assert [t.name for t in resolve_targets(["c", "a", "b"], cluster)] == ["c", "a", "b"]
        cluster.list_nodes.assert_not_called()

    def test_all_expands_to_cluster_nodes(self):
        cluster = _cluster(nodes=("n1", "n2", "n3"))
        assert [t.name for t in resolve_targets(["all"], cluster)] == ["n1", "n2", "n3"]

    def test_dash_dash_all(self):
        cluster = _cluster(nodes=("n1",))
        assert [t.name for t in resolve_targets(["--all"], cluster)] == ["n1"]

    def test_all_expanded_in_place_without_duplicates(self):
        cluster = _cluster(nodes=("n1", "n2"))
        names = [t.name for t in resolve_targets(["n2", "all", "extra"], cluster)]
        assert names == ["n2", "n1", "extra"]

    def test_labels_carried(self):
        cluster = MagicMock(spec=ClusterAPI)
        cluster.list_nodes.return_value = [NodeInfo("n1", labels={"role": "infra"})]
        assert resolve_targets(["all"], cluster)[0].labels == {"role": "infra"}


# ── rollout ──────────────────────────────────────────────────────────────


class TestFleetRollout:
    def test_defaults(self):
        assert DEFAULT_POLL_INTERVAL == 10.0
        assert DEFAULT_TIMEOUT == 600.0

    def test_sequential_in_input_order(self):
        cluster = _cluster()
        order = []
        cluster.label_node.side_effect = lambda name, k, v: order.append(("label", name))

        def _converge(target):
            order.append(("converge", target.name))
            return "config unchanged"

        results = FleetRollout(cluster, SELECTOR, converge=_converge, _sleep_fn=_noop_sleep).run(
            _targets("a", "b", "c")
        )
        assert [r.node_name for r in results] == ["a", "b", "c"]
        assert all(r.outcome == Outcome.SUCCEEDED for r in results)
        assert order == [
            ("converge", "a"), ("label", "a"),
            ("converge", "b"), ("label", "b"),
            ("converge", "c"), ("label", "c"),
        ]
        assert results[0].detail == "config unchanged; ready after 0s"

    def test_label_uses_selector(self):
        cluster = _cluster()
        target = NodeTarget("a")
        FleetRollout(cluster, SELECTOR, _sleep_fn=_noop_sleep).run([target])
        cluster.label_node.assert_called_once_with("a", "logging-infra-fluentd", "true")
        assert target.phase == NodePhase.READY
        assert target.labels == {"logging-infra-fluentd": "true"}

    def test_waits_until_ready(self):
        sleeps = []
        cluster = _cluster(ready={"a": [False, False, True]})
        results = FleetRollout(cluster, SELECTOR, poll_interval=5.0, _sleep_fn=sleeps.append).run(
            _targets("a")
        )
        assert results[0].outcome == Outcome.SUCCEEDED
        assert sleeps == [5.0, 5.0]
        assert results[0].detail == "ready after 10s"

    def test_timeout_fails_node_and_continues(self):
        cluster = _cluster(ready={"a": [False], "b": [True]})
        target_a, target_b = _targets("a", "b")
        results = FleetRollout(
            cluster, SELECTOR, poll_interval=10.0, timeout=30.0, _sleep_fn=_noop_sleep,
        ).run([target_a, target_b])
        assert [r.outcome for r in results] == [Outcome.FAILED, Outcome.SUCCEEDED]
        assert "not ready after 30s" in results[0].detail
        assert target_a.phase == NodePhase.TIMED_OUT
        # Polled at 0, 10, 20 and 30 seconds.
        assert [c.args[0] for c in cluster.get_node_readiness.call_args_list].count("a") == 4

    def test_node_error_does_not_block_later_nodes(self):
        cluster = _cluster()

        def _converge(target):
            if target.name == "b":
                raise ApplyError("b: failed to write /etc/sysconfig/docker", node="b")
            return None

        results = FleetRollout(cluster, SELECTOR, converge=_converge, _sleep_fn=_noop_sleep).run(
            _targets("a", "b", "c")
        )
        assert [r.outcome for r in results] == [Outcome.SUCCEEDED, Outcome.FAILED, Outcome.SUCCEEDED]
        assert "failed to write" in results[1].detail
        labeled = [c.args[0] for c in cluster.label_node.call_args_list]
        assert labeled == ["a", "c"]

    def test_cluster_error_scoped_to_node(self):
        cluster = _cluster()
        cluster.label_node.side_effect = [ClusterCommandError("forbidden"), None]
        results = FleetRollout(cluster, SELECTOR, _sleep_fn=_noop_sleep).run(_targets("a", "b"))
        assert [r.outcome for r in results] == [Outcome.FAILED, Outcome.SUCCEEDED]

    def test_bad_version_string_scoped_to_node(self):
        cluster = _cluster()

        def _converge(target):
            if target.name == "a":
                raise InvalidVersionFormat("a: Invalid version format: '17.03.2.ce'")
            return None

        results = FleetRollout(cluster, SELECTOR, converge=_converge, _sleep_fn=_noop_sleep).run(
            _targets("a", "b")
        )
        assert [r.outcome for r in results] == [Outcome.FAILED, Outcome.SUCCEEDED]
        assert "17.03.2.ce" in results[0].detail

    def test_all_with_three_nodes(self):
        cluster = _cluster(nodes=("n1", "n2", "n3"))
        targets = resolve_targets(["all"], cluster)
        results = FleetRollout(cluster, SELECTOR, _sleep_fn=_noop_sleep).run(targets)
        assert [r.node_name for r in results] == ["n1", "n2", "n3"]
        assert cluster.label_node.call_count == 3


class TestCancellation:
    def test_keyboard_interrupt_fails_current_skips_rest(self):
        cluster = _cluster()

        def _converge(target):
            if target.name == "b":
                raise KeyboardInterrupt
            return None

        results = FleetRollout(cluster, SELECTOR, converge=_converge, _sleep_fn=_noop_sleep).run(
            _targets("a", "b", "c", "d")
        )
        assert [r.outcome for r in results] == [
            Outcome.SUCCEEDED, Outcome.FAILED, Outcome.SKIPPED, Outcome.SKIPPED,
        ]
        assert results[1].detail == "cancelled"

    def test_cancel_event_during_wait(self):
        cancel = threading.Event()
        cluster = _cluster(ready={"a": [True], "b": [False]})
        rollout = FleetRollout(
            cluster, SELECTOR, cancel=cancel, _sleep_fn=lambda _: cancel.set(),
        )
        results = rollout.run(_targets("a", "b", "c"))
        assert [r.outcome for r in results] == [Outcome.SUCCEEDED, Outcome.FAILED, Outcome.SKIPPED]

    def test_cancelled_before_start(self):
        cancel = threading.Event()
        cancel.set()
        cluster = _cluster()
        results = FleetRollout(cluster, SELECTOR, cancel=cancel).run(_targets("a", "b"))
        assert [r.outcome for r in results] == [Outcome.SKIPPED, Outcome.SKIPPED]
        cluster.label_node.assert_not_called()
