"""Tests for node_reconciler.runtime.version."""

from __future__ import annotations

import pytest

from node_reconciler.errors import InvalidVersionFormat, PreconditionError, VersionGateError
from node_reconciler.runtime.version import (
    GateResult,
    RuntimeVersion,
    check_version,
    enforce_version_gate,
    evaluate_version_gate,
    to_version,
)


# ── RuntimeVersion ───────────────────────────────────────────────────────


class TestRuntimeVersion:
    def test_parse(self):
        assert RuntimeVersion.parse("1.9.1").parts == (1, 9, 1)

    def test_str_round_trip(self):
        assert str(RuntimeVersion.parse("1.12")) == "1.12"

    def test_numeric_not_lexical(self):
        assert RuntimeVersion.parse("1.10") > RuntimeVersion.parse("1.9.1")

    def test_missing_components_pad_with_zero(self):
        assert RuntimeVersion.parse("1.10") == RuntimeVersion.parse("1.10.0")
        assert hash(RuntimeVersion.parse("1.10")) == hash(RuntimeVersion.parse("1.10.0"))

    @pytest.mark.parametrize("bad", ["", "abc", "1.x", "1..2", "v1.9", "1.9-rc1"])
    def test_malformed(self, bad):
        with pytest.raises(InvalidVersionFormat):
            RuntimeVersion.parse(bad)

    def test_invalid_format_is_precondition(self):
        assert issubclass(InvalidVersionFormat, PreconditionError)

    def test_to_version_empty_is_absent(self):
        assert to_version("") is None
        assert to_version("  ") is None
        assert to_version(None) is None


# ── check_version ────────────────────────────────────────────────────────


class TestCheckVersion:
    def test_installed_too_old_nothing_requested(self):
        assert check_version("1.9.0", None, "1.9.1", "1.10") == GateResult.TOO_OLD

    def test_requested_too_old(self):
        assert check_version(None, "1.8", "1.9.1", "1.10") == GateResult.TOO_OLD

    def test_requested_below_minimum_beats_downgrade(self):
        # Rule 2 is evaluated before rule 3.
        assert check_version("1.12", "1.8", "1.9.1", "1.10") == GateResult.TOO_OLD

    def test_downgrade(self):
        assert check_version("1.12", "1.8", "1.0", "1.10") == GateResult.DOWNGRADE_REQUESTED

    def test_boundary_crossing(self):
        assert (
            check_version("1.9.5", "1.11", "1.9.1", "1.10")
            == GateResult.BOUNDARY_CROSSING_DISALLOWED
        )

    def test_boundary_reached_exactly_is_crossing(self):
        assert (
            check_version("1.9.5", "1.10", "1.9.1", "1.10")
            == GateResult.BOUNDARY_CROSSING_DISALLOWED
        )

    def test_upgrade_within_same_side_ok(self):
        assert check_version("1.10.3", "1.12", "1.9.1", "1.10") == GateResult.OK

    def test_nothing_installed_ok(self):
        assert check_version(None, "1.12", "1.9.1", "1.10") == GateResult.OK

    def test_installed_too_old_but_upgrade_requested(self):
        assert check_version("1.9.0", "1.9.1", "1.9.1", "1.10") == GateResult.OK

    def test_same_version_ok(self):
        assert check_version("1.12", "1.12.0", "1.9.1", "1.10") == GateResult.OK

    def test_nothing_at_all_ok(self):
        assert check_version(None, None, "1.9.1", "1.10") == GateResult.OK

    def test_empty_installed_treated_as_absent(self):
        assert check_version("", None, "1.9.1", "1.10") == GateResult.OK

    def test_malformed_input_raises(self):
        with pytest.raises(InvalidVersionFormat):
            check_version("one.two", None, "1.9.1", "1.10")


# ── messages / enforcement ───────────────────────────────────────────────


class TestEvaluateVersionGate:
    def test_ok_has_no_message(self):
        decision = evaluate_version_gate("1.12", None, "1.9.1", "1.10")
        assert decision.ok
        assert decision.message == ""

    def test_too_old_installed_message(self):
        decision = evaluate_version_gate("1.9.0", None, "1.9.1", "1.10")
        assert decision.result == GateResult.TOO_OLD
        assert "1.9.0 is installed" in decision.message
        assert ">= 1.9.1" in decision.message

    def test_too_old_requested_message(self):
        decision = evaluate_version_gate(None, "1.8", "1.9.1", "1.10")
        assert "1.8 requested" in decision.message

    def test_downgrade_message(self):
        decision = evaluate_version_gate("1.12", "1.8", "1.0", "1.10")
        assert "version 1.8 was requested" in decision.message

    def test_boundary_message_names_package(self):
        decision = evaluate_version_gate("1.9.5", "1.11", "1.9.1", "1.10", package="docker")
        assert decision.message.startswith("Cannot upgrade Docker to >= 1.10")


class TestEnforceVersionGate:
    def test_ok_does_not_raise(self):
        enforce_version_gate("1.12", "1.12", "1.9.1", "1.10")

    def test_refusal_raises_with_result(self):
        with pytest.raises(VersionGateError) as exc_info:
            enforce_version_gate("1.9.5", "1.11", "1.9.1", "1.10")
        assert exc_info.value.result == GateResult.BOUNDARY_CROSSING_DISALLOWED
