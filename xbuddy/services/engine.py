"""
Constrained random assignment ("the draw").

Greedy randomized construction of a derangement with forbidden pairs:
shuffle the givers, let each one pick uniformly among the receivers still
in the pool (never themself, never someone they exclude), and restart from
scratch whenever a giver is left with no candidate. The loop is bounded, so
an unsatisfiable roster is reported instead of spinning forever.

The engine is pure: it reads no database and mutates nothing outside the
random source it is given.
"""
from __future__ import annotations

import random
from collections import Counter
from dataclasses import dataclass, field
from typing import Hashable, Iterable, Sequence

from ..logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 100


class DrawError(Exception):
    pass


class InvalidRosterError(DrawError, ValueError):
    pass


class InfeasibleDrawError(DrawError):
    def __init__(self, attempts: int, stalled: Counter | None = None):
        self.attempts = attempts
        self.stalled = stalled or Counter()
        super().__init__(
            f"Could not generate a valid assignment in {attempts} attempts. "
            "Please check the exclusion lists and try again."
        )


@dataclass(frozen=True)
class RosterEntry:
    id: Hashable
    exclusions: frozenset = field(default_factory=frozenset)


@dataclass(frozen=True)
class Pairing:
    giver_id: Hashable
    receiver_id: Hashable


def _validate(roster: Sequence[RosterEntry]) -> None:
    if not roster:
        raise InvalidRosterError("Roster is empty.")

    seen = set()
    duplicates = set()
    for entry in roster:
        if entry.id in seen:
            duplicates.add(entry.id)
        seen.add(entry.id)
    if duplicates:
        raise InvalidRosterError(f"Duplicate participant ids: {sorted(map(str, duplicates))}")


def _attempt(roster: Sequence[RosterEntry], rng: random.Random) -> tuple[dict, Hashable | None]:
    """One greedy pass. Returns (mapping, None) or ({}, giver that ran dry)."""
    givers = list(roster)
    pool = [entry.id for entry in roster]
    rng.shuffle(givers)

    mapping = {}
    for giver in givers:
        candidates = [r for r in pool if r != giver.id and r not in giver.exclusions]
        if not candidates:
            return {}, giver.id
        receiver = rng.choice(candidates)
        mapping[giver.id] = receiver
        pool.remove(receiver)
    return mapping, None


def verify_pairings(roster: Sequence[RosterEntry], pairings: Iterable[Pairing]) -> list[str]:
    """Return every problem found with ``pairings``; an empty list means valid."""
    by_id = {entry.id: entry for entry in roster}
    pairings = list(pairings)
    givers = [p.giver_id for p in pairings]
    receivers = [p.receiver_id for p in pairings]

    issues = []

    missing_givers = set(by_id) - set(givers)
    if missing_givers:
        issues.append(f"Missing givers: {sorted(map(str, missing_givers))}")

    missing_receivers = set(by_id) - set(receivers)
    if missing_receivers:
        issues.append(f"Missing receivers: {sorted(map(str, missing_receivers))}")

    if len(givers) != len(set(givers)):
        issues.append("Duplicate givers detected")
    if len(receivers) != len(set(receivers)):
        issues.append("Duplicate receivers detected")

    unknown = (set(givers) | set(receivers)) - set(by_id)
    if unknown:
        issues.append(f"Unknown participants: {sorted(map(str, unknown))}")

    for p in pairings:
        if p.giver_id == p.receiver_id:
            issues.append(f"{p.giver_id} is assigned to themself")
        elif p.giver_id in by_id and p.receiver_id in by_id[p.giver_id].exclusions:
            issues.append(f"{p.giver_id} excludes {p.receiver_id}")

    return issues


def draw(
    roster: Sequence[RosterEntry],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    rng: random.Random | None = None,
) -> list[Pairing]:
    """
    Compute a giver -> receiver assignment for ``roster``.

    Raises:
        InvalidRosterError: empty roster or duplicate ids.
        InfeasibleDrawError: ``max_attempts`` greedy passes all failed.
    """
    _validate(roster)
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    rng = rng or random.Random()
    stalled: Counter = Counter()

    for attempt in range(1, max_attempts + 1):
        mapping, stuck = _attempt(roster, rng)
        if stuck is not None:
            stalled[stuck] += 1
            continue

        pairings = [Pairing(giver_id=g, receiver_id=r) for g, r in mapping.items()]
        issues = verify_pairings(roster, pairings)
        if issues:
            logger.error("Draw attempt %d produced an invalid assignment: %s", attempt, "; ".join(issues))
            continue

        logger.debug("Draw succeeded on attempt %d for %d participants", attempt, len(roster))
        return pairings

    logger.warning(
        "Draw infeasible after %d attempts (roster=%d, most stalled=%s)",
        max_attempts, len(roster), stalled.most_common(3),
    )
    raise InfeasibleDrawError(max_attempts, stalled)
