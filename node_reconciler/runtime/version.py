"""Container runtime version gate.

Decides whether an installed/requested runtime version is acceptable
before anything is installed.  Rules are evaluated in order and the
first match wins:

1. installed < minimum and nothing requested           -> ``TOO_OLD``
2. requested < minimum                                 -> ``TOO_OLD``
3. installed > requested                               -> ``DOWNGRADE_REQUESTED``
4. installed < boundary <= requested                   -> ``BOUNDARY_CROSSING_DISALLOWED``
5. otherwise                                           -> ``OK``

Crossing the upgrade boundary involves a slow storage migration and is
left to the dedicated out-of-band upgrade procedure.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from functools import total_ordering
from typing import Optional, Tuple, Union

from node_reconciler.errors import InvalidVersionFormat, VersionGateError

_VERSION_RE = re.compile(r"^\d+(\.\d+)*$")


@total_ordering
@dataclass(frozen=True)
class RuntimeVersion:
    """Dotted numeric version (``1.9.1``, ``1.12``).

    Missing trailing components compare as zero, so ``1.10 == 1.10.0``.
    """

    parts: Tuple[int, ...]

    @classmethod
    def parse(cls, text: str) -> "RuntimeVersion":
        """Parse *text*, raising :class:`InvalidVersionFormat` if malformed."""
        cleaned = str(text).strip()
        if not _VERSION_RE.match(cleaned):
            raise InvalidVersionFormat(f"Invalid version format: '{text}'")
        return cls(tuple(int(p) for p in cleaned.split(".")))

    def _padded(self, width: int) -> Tuple[int, ...]:
        return self.parts + (0,) * (width - len(self.parts))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RuntimeVersion):
            return NotImplemented
        width = max(len(self.parts), len(other.parts))
        return self._padded(width) == other._padded(width)

    def __lt__(self, other: "RuntimeVersion") -> bool:
        width = max(len(self.parts), len(other.parts))
        return self._padded(width) < other._padded(width)

    def __hash__(self) -> int:
        parts = list(self.parts)
        while parts and parts[-1] == 0:
            parts.pop()
        return hash(tuple(parts))

    def __str__(self) -> str:
        return ".".join(str(p) for p in self.parts)


VersionLike = Union[str, RuntimeVersion, None]


def to_version(value: VersionLike) -> Optional[RuntimeVersion]:
    """Coerce *value* to a :class:`RuntimeVersion`; empty/``None`` -> ``None``."""
    if value is None:
        return None
    if isinstance(value, RuntimeVersion):
        return value
    if not str(value).strip():
        return None
    return RuntimeVersion.parse(value)


class GateResult(str, Enum):
    """Outcome of :func:`check_version`."""

    OK = "Ok"
    TOO_OLD = "TooOld"
    DOWNGRADE_REQUESTED = "DowngradeRequested"
    BOUNDARY_CROSSING_DISALLOWED = "BoundaryCrossingDisallowed"


def check_version(
    installed: VersionLike,
    requested: VersionLike,
    minimum: VersionLike,
    boundary: VersionLike,
) -> GateResult:
    """Evaluate the version rules (see module docstring).  Pure."""
    inst = to_version(installed)
    req = to_version(requested)
    min_v = to_version(minimum)
    bound = to_version(boundary)

    if inst is not None and min_v is not None and inst < min_v and req is None:
        return GateResult.TOO_OLD
    if req is not None and min_v is not None and req < min_v:
        return GateResult.TOO_OLD
    if inst is not None and req is not None and inst > req:
        return GateResult.DOWNGRADE_REQUESTED
    if (
        inst is not None
        and req is not None
        and bound is not None
        and inst < bound
        and req >= bound
    ):
        return GateResult.BOUNDARY_CROSSING_DISALLOWED
    return GateResult.OK


@dataclass(frozen=True)
class GateDecision:
    result: GateResult
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.result == GateResult.OK


def evaluate_version_gate(
    installed: VersionLike,
    requested: VersionLike,
    minimum: VersionLike,
    boundary: VersionLike,
    *,
    package: str = "docker",
) -> GateDecision:
    """Run :func:`check_version` and attach the operator-facing message."""
    result = check_version(installed, requested, minimum, boundary)
    name = package.capitalize()
    if result == GateResult.TOO_OLD:
        if requested is not None and str(requested).strip():
            msg = f"{name} {requested} requested, but >= {minimum} is required."
        else:
            msg = f"{name} {installed} is installed, but >= {minimum} is required."
    elif result == GateResult.DOWNGRADE_REQUESTED:
        msg = f"{name} {installed} is installed, but version {requested} was requested."
    elif result == GateResult.BOUNDARY_CROSSING_DISALLOWED:
        msg = (
            f"Cannot upgrade {name} to >= {boundary}, please upgrade or remove "
            f"{name} manually, or use the {name} upgrade procedure."
        )
    else:
        msg = ""
    return GateDecision(result=result, message=msg)


def enforce_version_gate(
    installed: VersionLike,
    requested: VersionLike,
    minimum: VersionLike,
    boundary: VersionLike,
    *,
    package: str = "docker",
) -> None:
    """Raise :class:`VersionGateError` unless the gate returns ``OK``."""
    decision = evaluate_version_gate(
        installed, requested, minimum, boundary, package=package,
    )
    if not decision.ok:
        raise VersionGateError(decision.message, result=decision.result)
