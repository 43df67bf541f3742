"""Reading compatibility between two readers.

Each reader weighs five rating criteria (enjoyment, writing, themes,
characters, worldbuilding) in ``[0, 1]``. Per criterion the absolute
difference of the two weights is classified into one of seven tiers. The
overall distance is the average of those differences weighted by how much
the two readers care about each criterion on average, so criteria both
value highly dominate and criteria neither values barely count.

Swapping the two readers never changes the result.
"""

import logging
from typing import Mapping, Optional, Sequence
from uuid import UUID

from bookrank.domain.entities import RATING_CRITERIA, RatingPreferenceVector
from bookrank.domain.repositories import IRatingPreferenceRepository
from bookrank.domain.scoring import (
    classify_difference,
    personal_overall_rating,
    position_weights,
)
from bookrank.domain.services import (
    CompatibilityResult,
    CriterionCompatibility,
    ICompatibilityService,
)

logger = logging.getLogger(__name__)


def compare_vectors(
    a: RatingPreferenceVector, b: RatingPreferenceVector
) -> CompatibilityResult:
    """Compatibility of two preference vectors, independent of storage."""
    weights_a = a.weights()
    weights_b = b.weights()

    per_criterion: dict[str, CriterionCompatibility] = {}
    total_weighted_diff = 0.0
    total_weight = 0.0
    for criterion in RATING_CRITERIA:
        diff = abs(weights_a[criterion] - weights_b[criterion])
        per_criterion[criterion] = CriterionCompatibility(
            label=classify_difference(diff).label, diff=diff
        )
        criterion_weight = (weights_a[criterion] + weights_b[criterion]) / 2
        total_weighted_diff += diff * criterion_weight
        total_weight += criterion_weight

    overall = total_weighted_diff / total_weight if total_weight > 0 else 0.0
    tier = classify_difference(overall)
    return CompatibilityResult(
        overall_label=tier.label,
        overall_score=tier.score,
        normalized_difference=overall,
        per_criterion=per_criterion,
    )


class CompatibilityService(ICompatibilityService):

    def __init__(self, preference_repository: IRatingPreferenceRepository):
        self.preference_repository = preference_repository

    async def compatibility(self, reader_a: UUID, reader_b: UUID) -> CompatibilityResult:
        prefs_a = await self.preference_repository.get_or_create(reader_a)
        prefs_b = await self.preference_repository.get_or_create(reader_b)
        result = compare_vectors(prefs_a, prefs_b)
        logger.info(
            "Compatibility %s <-> %s: %s (%+d, diff=%.3f)",
            reader_a, reader_b, result.overall_label,
            result.overall_score, result.normalized_difference,
        )
        return result

    async def get_preferences(self, reader_id: UUID) -> RatingPreferenceVector:
        """Return (or lazily create) the reader's preference vector."""
        return await self.preference_repository.get_or_create(reader_id)

    async def update_preferences(
        self, reader_id: UUID, *, auto_adjust: Optional[bool] = None, **weights: float
    ) -> RatingPreferenceVector:
        """Merge-update criterion weights (only supplied criteria change)."""
        vector = await self.preference_repository.get_or_create(reader_id)
        for criterion, weight in weights.items():
            if criterion not in RATING_CRITERIA:
                raise ValueError(f"unknown rating criterion: {criterion}")
            if weight is None:
                continue
            if not 0.0 <= weight <= 1.0:
                raise ValueError(f"{criterion} weight must be between 0 and 1")
            setattr(vector, criterion, float(weight))
        if auto_adjust is not None:
            vector.auto_adjust = auto_adjust
        return await self.preference_repository.update(vector)

    async def update_from_order(
        self, reader_id: UUID, order: Sequence[str]
    ) -> RatingPreferenceVector:
        """Set weights from a most-to-least important ordering of the criteria."""
        return await self.update_preferences(reader_id, **position_weights(order))

    async def personal_rating(
        self, reader_id: UUID, criterion_ratings: Mapping[str, float]
    ) -> float:
        vector = await self.preference_repository.get_or_create(reader_id)
        return personal_overall_rating(criterion_ratings, vector)
