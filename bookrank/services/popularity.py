"""Popularity ranker: the time-decayed "trending" list.

Weighted engagement (detail expands, card clicks, referral clicks; never
plain views) is multiplied by a logistic decay on the number of days since
the book first entered the active ranking:

    decay = 1 / (1 + e^((days - 14) / 2))

A book keeps its ``first_ranked_at`` for as long as it stays in the active
list, so nightly re-evaluation does not reset its clock. Once it drops out
and later re-enters, the clock starts again.
"""

import logging
from datetime import datetime
from random import Random
from typing import Optional

import numpy as np

from bookrank.core.config import settings
from bookrank.domain.entities import PopularityEntry
from bookrank.domain.queries import BookQuery
from bookrank.domain.repositories import (
    IBookRepository,
    IInteractionRepository,
    IPopularityRepository,
)
from bookrank.domain.services import IPopularityRanker

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


class PopularityRanker(IPopularityRanker):
    """Scores candidate books and publishes the top N as the active ranking."""

    def __init__(
        self,
        book_repository: IBookRepository,
        interaction_repository: IInteractionRepository,
        popularity_repository: IPopularityRepository,
        limit: Optional[int] = None,
        decay_midpoint_days: Optional[float] = None,
        decay_steepness_days: Optional[float] = None,
        rng: Optional[Random] = None,
    ):
        self.book_repository = book_repository
        self.interaction_repository = interaction_repository
        self.popularity_repository = popularity_repository
        self.limit = limit or settings.popularity_limit
        self.decay_midpoint_days = (
            decay_midpoint_days
            if decay_midpoint_days is not None
            else settings.popularity_decay_midpoint_days
        )
        self.decay_steepness_days = (
            decay_steepness_days
            if decay_steepness_days is not None
            else settings.popularity_decay_steepness_days
        )
        self.rng = rng or Random()

    def decay(self, days: np.ndarray) -> np.ndarray:
        exponent = (np.maximum(days, 0.0) - self.decay_midpoint_days) / self.decay_steepness_days
        # exp overflows to inf for books ranked long ago; 1/inf is the 0 we want
        with np.errstate(over="ignore"):
            return 1.0 / (1.0 + np.exp(exponent))

    async def rank_popularity(
        self, limit: Optional[int] = None, now: Optional[datetime] = None
    ) -> list[PopularityEntry]:
        if limit is None:
            limit = self.limit
        if limit < 1:
            raise ValueError("limit must be >= 1")
        now = now or datetime.utcnow()

        candidates = await self.book_repository.find(
            BookQuery(min_impressions=1, min_click_throughs=1)
        )
        if not candidates:
            logger.info("No books with both impressions and click-throughs; ranking unchanged")
            return []

        book_ids = [b.id for b in candidates]
        engagement = await self.interaction_repository.weighted_engagement(book_ids)
        previous = {
            e.book_id: e.first_ranked_at for e in await self.popularity_repository.get_active()
        }

        first_ranked = [previous.get(bid, now) for bid in book_ids]
        engagement_arr = np.array([engagement.get(bid, 0.0) for bid in book_ids], dtype=float)
        days_arr = np.array(
            [(now - ts).total_seconds() / SECONDS_PER_DAY for ts in first_ranked], dtype=float
        )
        scores = engagement_arr * self.decay(days_arr)

        # Ties: more raw engagement first, then the book that has trended longest
        order = sorted(
            range(len(book_ids)),
            key=lambda i: (-scores[i], -engagement_arr[i], first_ranked[i], str(book_ids[i])),
        )[:limit]

        entries = [
            PopularityEntry(
                book_id=book_ids[i],
                score=float(scores[i]),
                rank=position,
                first_ranked_at=first_ranked[i],
                weighted_engagement=float(engagement_arr[i]),
                computed_at=now,
            )
            for position, i in enumerate(order, start=1)
        ]

        published = await self.popularity_repository.replace_active(entries)
        logger.info(
            "Popularity ranking published: %d of %d candidates (top score %.4f)",
            len(published),
            len(candidates),
            published[0].score if published else 0.0,
        )
        return published

    async def get_popular_books(
        self,
        limit: int = 10,
        sample: Optional[int] = None,
        rng: Optional[Random] = None,
    ) -> list[PopularityEntry]:
        """Active ranking in rank order, or a random ``sample`` drawn from its top ``limit``."""
        entries = await self.popularity_repository.get_active(limit=limit)
        if sample is None or not entries:
            return entries
        rng = rng or self.rng
        return rng.sample(entries, min(sample, len(entries)))
