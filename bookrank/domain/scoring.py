"""Scoring primitives shared by the ranking and recommendation engines.

Everything here is pure arithmetic on already-loaded values so it can be
unit tested without a database.
"""

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping, Sequence

if TYPE_CHECKING:
    from bookrank.domain.entities import RatingPreferenceVector

RATING_CRITERIA = ("enjoyment", "writing", "themes", "characters", "worldbuilding")

DECAY_MIDPOINT_DAYS = 14.0
DECAY_STEEPNESS_DAYS = 2.0

# Weight given to a rating criterion by its position in a reader's ordering
POSITION_WEIGHTS = (0.35, 0.25, 0.20, 0.12, 0.08)


def tag_importance(rank: int) -> float:
    """How defining a taxonomy tag is for a book: ``1 / (1 + ln(rank))``."""
    if rank < 1:
        raise ValueError(f"tag rank must be >= 1, got {rank}")
    return 1.0 / (1.0 + math.log(rank))


def view_term_weight(rank: int) -> float:
    """How strongly a reader favours a term at ``rank`` in their view."""
    return 1.0 / (rank + 0.1)


def sigmoid_decay(
    days: float,
    midpoint: float = DECAY_MIDPOINT_DAYS,
    steepness: float = DECAY_STEEPNESS_DAYS,
) -> float:
    """Logistic decay factor for a book first ranked ``days`` ago.

    Close to 1 for freshly surfaced books, exactly 0.5 at ``midpoint`` and
    tending to 0 after a few weeks.
    """
    exponent = (max(days, 0.0) - midpoint) / steepness
    if exponent > 700:
        return 0.0
    return 1.0 / (1.0 + math.exp(exponent))


@dataclass(frozen=True)
class CompatibilityTier:
    label: str
    score: int
    upper_bound: float


COMPATIBILITY_TIERS = (
    CompatibilityTier("Overwhelmingly Compatible", 3, 0.02),
    CompatibilityTier("Very Compatible", 2, 0.05),
    CompatibilityTier("Mostly Compatible", 1, 0.10),
    CompatibilityTier("Mixed", 0, 0.20),
    CompatibilityTier("Mostly Incompatible", -1, 0.35),
    CompatibilityTier("Not Compatible", -2, 0.40),
    CompatibilityTier("Overwhelmingly Not Compatible", -3, math.inf),
)


def classify_difference(diff: float) -> CompatibilityTier:
    for tier in COMPATIBILITY_TIERS:
        if diff <= tier.upper_bound:
            return tier
    return COMPATIBILITY_TIERS[-1]


def position_weights(order: Sequence[str]) -> dict[str, float]:
    """Map an ordering of the five rating criteria onto position weights."""
    if sorted(order) != sorted(RATING_CRITERIA):
        raise ValueError(
            f"order must be a permutation of {', '.join(RATING_CRITERIA)}"
        )
    return {criterion: POSITION_WEIGHTS[i] for i, criterion in enumerate(order)}


def personal_overall_rating(
    criterion_ratings: Mapping[str, float],
    vector: "RatingPreferenceVector",
) -> float:
    """Weighted average of the criteria a reader rated, using their own weights.

    Criteria missing from ``criterion_ratings`` are ignored. Returns 0.0 when
    nothing rated carries any weight.
    """
    weights = vector.weights()
    total = 0.0
    total_weight = 0.0
    for criterion, value in criterion_ratings.items():
        if criterion not in weights:
            raise ValueError(f"unknown rating criterion: {criterion}")
        total += value * weights[criterion]
        total_weight += weights[criterion]
    if total_weight == 0:
        return 0.0
    return total / total_weight
