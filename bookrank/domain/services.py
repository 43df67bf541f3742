"""Domain-level application service interfaces (ports).

Concrete implementations live in ``bookrank/services/`` and are wired
together by the composition root in ``bookrank/core/dependencies.py``.
Route handlers and Celery tasks depend on these contracts only, so every
engine can be swapped for a test double via
``app.dependency_overrides``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from random import Random
from typing import Mapping, Optional, Sequence
from uuid import UUID

from bookrank.domain.entities import PopularityEntry, RatingPreferenceVector, Recommendation


@dataclass
class CriterionCompatibility:
    label: str
    diff: float


@dataclass
class CompatibilityResult:
    overall_label: str
    overall_score: int
    normalized_difference: float
    per_criterion: dict[str, CriterionCompatibility] = field(default_factory=dict)


class IPopularityRanker(ABC):

    @abstractmethod
    async def rank_popularity(
        self, limit: Optional[int] = None, now: Optional[datetime] = None
    ) -> list[PopularityEntry]:
        """Recompute and publish the trending list.

        Returns the published entries, or an empty list when no book
        qualified (in which case nothing is published).
        """
        pass

    @abstractmethod
    async def get_popular_books(
        self,
        limit: int = 10,
        sample: Optional[int] = None,
        rng: Optional[Random] = None,
    ) -> list[PopularityEntry]:
        pass


class IRecommendationService(ABC):

    @abstractmethod
    async def recommend(
        self, reader_id: UUID, limit: Optional[int] = None
    ) -> list[Recommendation]:
        """Personalised picks for a reader.

        The result is a random sample of the best-scoring candidates, so two
        calls with identical data may differ unless a seeded ``Random`` was
        injected.
        """
        pass

    @abstractmethod
    async def books_for_view(self, view_id: UUID, limit: int = 150) -> list[Recommendation]:
        pass


class ICompatibilityService(ABC):

    @abstractmethod
    async def compatibility(self, reader_a: UUID, reader_b: UUID) -> CompatibilityResult:
        pass

    @abstractmethod
    async def get_preferences(self, reader_id: UUID) -> RatingPreferenceVector:
        pass

    @abstractmethod
    async def update_preferences(
        self, reader_id: UUID, *, auto_adjust: Optional[bool] = None, **weights: float
    ) -> RatingPreferenceVector:
        pass

    @abstractmethod
    async def update_from_order(
        self, reader_id: UUID, order: Sequence[str]
    ) -> RatingPreferenceVector:
        pass

    @abstractmethod
    async def personal_rating(
        self, reader_id: UUID, criterion_ratings: Mapping[str, float]
    ) -> float:
        """Overall rating for a book, weighting criterion scores by the reader's preferences."""
        pass
