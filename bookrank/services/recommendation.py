"""Taxonomy-driven recommendation scorer for bookrank.

A reader's default genre view ranks the taxonomy terms they care about. Every
unseen book tagged with one of those terms scores

    Σ tag.importance × view_term_weight

so a book whose *defining* tags (low tag rank) match the reader's *favourite*
terms (low view rank) wins. The best ``pool_size`` candidates go through the
content filter and a random ``sample_size`` of the survivors is returned.
Sampling trades determinism for freshness; inject a seeded ``Random`` to make
results reproducible.

Readers without a usable view, and any scoring failure, fall back to the
most-impressed books. Failures are logged, never raised to the caller.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from random import Random
from typing import Iterable, Optional
from uuid import UUID

from bookrank.core.config import settings
from bookrank.domain.entities import GenreView, Recommendation
from bookrank.domain.queries import BookQuery, TagQuery
from bookrank.domain.repositories import (
    IBookRepository,
    IContentFilter,
    IGenreViewRepository,
    IPopularityRepository,
    IReadingHistoryRepository,
    ITaxonomyRepository,
)
from bookrank.domain.services import IRecommendationService

logger = logging.getLogger(__name__)


class RecommendationService(IRecommendationService):

    def __init__(
        self,
        book_repository: IBookRepository,
        taxonomy_repository: ITaxonomyRepository,
        genre_view_repository: IGenreViewRepository,
        reading_history_repository: IReadingHistoryRepository,
        popularity_repository: IPopularityRepository,
        content_filter: IContentFilter,
        rng: Optional[Random] = None,
        pool_size: Optional[int] = None,
        sample_size: Optional[int] = None,
        fallback_pool_size: Optional[int] = None,
    ):
        self.book_repository = book_repository
        self.taxonomy_repository = taxonomy_repository
        self.genre_view_repository = genre_view_repository
        self.reading_history_repository = reading_history_repository
        self.popularity_repository = popularity_repository
        self.content_filter = content_filter
        self.rng = rng or Random(settings.recommendation_seed)
        self.pool_size = pool_size or settings.recommendation_pool_size
        self.sample_size = sample_size or settings.recommendation_sample_size
        self.fallback_pool_size = fallback_pool_size or settings.recommendation_fallback_pool_size

    async def recommend(
        self, reader_id: UUID, limit: Optional[int] = None
    ) -> list[Recommendation]:
        limit = limit or self.sample_size
        exclude: set[UUID] = set()
        try:
            view = await self.genre_view_repository.get_default(reader_id)
            exclude = await self.reading_history_repository.seen_book_ids(reader_id)

            if view is None or not view.terms:
                logger.info("User %s has no ranked default view; popular fallback", reader_id)
                return await self._popular_fallback(reader_id, limit, exclude)

            scores = await self.score_view(view, exclude)
            ranked = sorted(scores, key=lambda bid: (-scores[bid], str(bid)))
            pool = ranked[: self.pool_size]
            allowed = await self.content_filter.filter(reader_id, pool)
            if not allowed:
                logger.info(
                    "No scored candidates left for user %s (%d scored); popular fallback",
                    reader_id, len(scores),
                )
                return await self._popular_fallback(reader_id, limit, exclude)

            picks = self.rng.sample(allowed, min(limit, len(allowed)))
            picks.sort(key=lambda bid: -scores[bid])
            logger.info(
                "Recommended %d books for user %s (pool %d, scored %d, excluded %d)",
                len(picks), reader_id, len(allowed), len(scores), len(exclude),
            )
            return [
                Recommendation(book_id=bid, score=round(scores[bid], 4), reason="taxonomy")
                for bid in picks
            ]
        except Exception:
            logger.exception("Recommendation scoring failed for user %s; popular fallback", reader_id)
            return await self._popular_fallback(reader_id, limit, exclude, after_failure=True)

    async def score_view(self, view: GenreView, exclude: Iterable[UUID] = ()) -> dict[UUID, float]:
        """Relevance of every unseen book tagged with one of the view's terms."""
        excluded = frozenset(exclude)
        weights = view.term_weights()
        tags = await self.taxonomy_repository.find_tags(
            TagQuery.for_terms(weights.keys(), exclude_book_ids=excluded)
        )
        scores: dict[UUID, float] = defaultdict(float)
        for tag in tags:
            if tag.book_id in excluded:
                continue
            scores[tag.book_id] += tag.importance * weights[tag.term_id]
        return dict(scores)

    async def books_for_view(self, view_id: UUID, limit: int = 150) -> list[Recommendation]:
        """Books carrying any of a view's terms, most defining matches first.

        Falls back to the trending list when the view has no terms or matches
        no books. Unknown views yield nothing.
        """
        view = await self.genre_view_repository.get_by_id(view_id)
        if view is None:
            logger.info("Genre view %s not found", view_id)
            return []

        ranked = []
        if view.terms:
            ranked = await self.taxonomy_repository.rank_books_by_importance(
                TagQuery.for_terms((t.term_id for t in view.terms), limit=limit)
            )
        if not ranked:
            logger.info("No books for genre view %s; returning trending list", view_id)
            trending = await self.popularity_repository.get_active(limit=limit)
            return [
                Recommendation(book_id=e.book_id, score=e.score, reason="trending")
                for e in trending
            ]
        return [
            Recommendation(book_id=bid, score=round(importance, 4), reason="view")
            for bid, importance in ranked
        ]

    async def _popular_fallback(
        self, reader_id: UUID, limit: int, exclude: set[UUID], after_failure: bool = False
    ) -> list[Recommendation]:
        try:
            if after_failure:
                # A failed statement leaves the shared session unusable until rolled back
                await self.book_repository.rollback()
            books = await self.book_repository.find(
                BookQuery(
                    exclude_book_ids=frozenset(exclude),
                    order_by_impressions=True,
                    limit=self.fallback_pool_size,
                )
            )
            impressions = {b.id: b.impression_count for b in books}
            allowed = await self.content_filter.filter(reader_id, [b.id for b in books])
        except Exception:
            # Unfiltered books are never returned
            logger.exception("Popular fallback failed for user %s", reader_id)
            return []
        return [
            Recommendation(book_id=bid, score=float(impressions[bid]), reason="popular")
            for bid in allowed[:limit]
        ]
