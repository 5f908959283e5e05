"""
StudyBuddy Matching — Role vector model.

The fixed seven-dimensional role space every profile lives in, plus the
pure vector primitives used by the quiz, aggregate and matching services.

A *role vector* is a ``dict[RoleType, float]`` that always carries exactly
seven entries in enumeration order.  Missing or null entries read as 0.0.
"""

from __future__ import annotations

import enum
import math
from collections.abc import Iterable, Mapping


class RoleType(str, enum.Enum):
    """Seven collaboration-style roles (order is significant)."""

    LEADER = "LEADER"
    PLANNER = "PLANNER"
    EXPERT = "EXPERT"
    CREATIVE = "CREATIVE"
    COMMUNICATOR = "COMMUNICATOR"
    TEAM_PLAYER = "TEAM_PLAYER"
    CHALLENGER = "CHALLENGER"

    @property
    def display_name(self) -> str:
        return _ROLE_METADATA[self][0]

    @property
    def description(self) -> str:
        return _ROLE_METADATA[self][1]


_ROLE_METADATA: dict[RoleType, tuple[str, str]] = {
    RoleType.LEADER: ("Leader", "Takes charge and guides the team"),
    RoleType.PLANNER: ("Planner", "Organizes tasks and schedules"),
    RoleType.EXPERT: ("Expert", "Deep subject matter knowledge"),
    RoleType.CREATIVE: ("Creative", "Brings innovative ideas"),
    RoleType.COMMUNICATOR: ("Communicator", "Facilitates discussion and clarity"),
    RoleType.TEAM_PLAYER: ("Team Player", "Supportive and cooperative"),
    RoleType.CHALLENGER: ("Challenger", "Questions assumptions and pushes boundaries"),
}

ROLES: tuple[RoleType, ...] = tuple(RoleType)

# Returned by dominant_role() when no role has a positive score.
DEFAULT_ROLE: RoleType = RoleType.TEAM_PLAYER

RoleVector = dict[RoleType, float]


def clamp01(value: float | None) -> float:
    """Map any float (or None / NaN) into [0.0, 1.0]."""
    if value is None:
        return 0.0
    value = float(value)
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


def role_vector(scores: Mapping[RoleType | str, float | None] | None = None) -> RoleVector:
    """Build a full, clamped seven-entry vector from a partial mapping.

    Keys may be ``RoleType`` members or their string values (as stored in
    JSON columns).  Unknown keys are ignored.
    """
    vector: RoleVector = {role: 0.0 for role in ROLES}
    if not scores:
        return vector
    for key, value in scores.items():
        try:
            role = RoleType(key)
        except ValueError:
            continue
        vector[role] = clamp01(value)
    return vector


def to_json(vector: Mapping[RoleType, float]) -> dict[str, float]:
    """Serialise a role vector for a JSON column (string keys, all roles)."""
    full = role_vector(vector)
    return {role.value: full[role] for role in ROLES}


def complement(vector: Mapping[RoleType | str, float | None]) -> RoleVector:
    """``1.0 - score`` per role: what a group is missing."""
    full = role_vector(vector)
    return {role: 1.0 - full[role] for role in ROLES}


def magnitude(vector: Mapping[RoleType, float]) -> float:
    return math.sqrt(math.fsum(vector.get(role, 0.0) ** 2 for role in ROLES))


def cosine_similarity(
    a: Mapping[RoleType | str, float | None],
    b: Mapping[RoleType | str, float | None],
) -> float:
    """Cosine similarity over the seven dimensions; 0.0 if either vector is
    all zeros."""
    va = role_vector(a)
    vb = role_vector(b)
    mag_a = magnitude(va)
    mag_b = magnitude(vb)
    if mag_a == 0.0 or mag_b == 0.0:
        return 0.0
    dot = math.fsum(va[role] * vb[role] for role in ROLES)
    return dot / (mag_a * mag_b)


def dominant_role(vector: Mapping[RoleType | str, float | None] | None) -> RoleType:
    """Highest-scoring role; ties go to the earlier role in enumeration
    order.  An empty or all-zero vector yields ``DEFAULT_ROLE``."""
    if not vector:
        return DEFAULT_ROLE
    full = role_vector(vector)
    best_role = DEFAULT_ROLE
    best_score = 0.0
    for role in ROLES:
        if full[role] > best_score:
            best_role = role
            best_score = full[role]
    return best_role


def mean_vector(vectors: Iterable[Mapping[RoleType | str, float | None]]) -> RoleVector | None:
    """Per-role arithmetic mean; ``None`` when *vectors* is empty."""
    normalised = [role_vector(v) for v in vectors]
    if not normalised:
        return None
    count = len(normalised)
    return {
        role: clamp01(math.fsum(v[role] for v in normalised) / count)
        for role in ROLES
    }


def role_variance(vector: Mapping[RoleType | str, float | None]) -> float:
    """Population variance of the seven role values around their own mean.

    0.0 when every role has the same value; grows as the values spread.
    """
    full = role_vector(vector)
    values = [full[role] for role in ROLES]
    mean = math.fsum(values) / len(values)
    return math.fsum((v - mean) ** 2 for v in values) / len(values)


def fold_in(
    average: Mapping[RoleType | str, float | None],
    count: int,
    extra: Mapping[RoleType | str, float | None],
) -> RoleVector:
    """Mean vector after adding one more member to an average of *count*."""
    avg = role_vector(average)
    new = role_vector(extra)
    return {
        role: clamp01((avg[role] * count + new[role]) / (count + 1))
        for role in ROLES
    }
