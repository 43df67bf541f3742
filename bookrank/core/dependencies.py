"""Dependency injection container."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from bookrank.domain.repositories import (
    IBookRepository,
    IContentBlockRepository,
    IContentFilter,
    IGenreViewRepository,
    IInteractionRepository,
    IPopularityRepository,
    IRatingPreferenceRepository,
    IReadingHistoryRepository,
    ITaxonomyRepository,
)
from bookrank.domain.services import (
    ICompatibilityService,
    IPopularityRanker,
    IRecommendationService,
)
from bookrank.infrastructure.database.connection import get_db
from bookrank.infrastructure.database.repository import (
    BookRepository,
    ContentBlockRepository,
    GenreViewRepository,
    InteractionRepository,
    PopularityRepository,
    RatingPreferenceRepository,
    ReadingHistoryRepository,
    TaxonomyRepository,
)
from bookrank.services.compatibility import CompatibilityService
from bookrank.services.content_filter import BlockListContentFilter
from bookrank.services.popularity import PopularityRanker
from bookrank.services.recommendation import RecommendationService


# ---------------------------------------------------------------------------
# Repository providers
# ---------------------------------------------------------------------------
async def get_book_repository(session: AsyncSession = Depends(get_db)) -> IBookRepository:
    return BookRepository(session)


async def get_interaction_repository(
    session: AsyncSession = Depends(get_db),
) -> IInteractionRepository:
    return InteractionRepository(session)


async def get_taxonomy_repository(session: AsyncSession = Depends(get_db)) -> ITaxonomyRepository:
    return TaxonomyRepository(session)


async def get_genre_view_repository(
    session: AsyncSession = Depends(get_db),
) -> IGenreViewRepository:
    return GenreViewRepository(session)


async def get_reading_history_repository(
    session: AsyncSession = Depends(get_db),
) -> IReadingHistoryRepository:
    return ReadingHistoryRepository(session)


async def get_popularity_repository(
    session: AsyncSession = Depends(get_db),
) -> IPopularityRepository:
    return PopularityRepository(session)


async def get_rating_preference_repository(
    session: AsyncSession = Depends(get_db),
) -> IRatingPreferenceRepository:
    return RatingPreferenceRepository(session)


async def get_content_block_repository(
    session: AsyncSession = Depends(get_db),
) -> IContentBlockRepository:
    return ContentBlockRepository(session)


# ---------------------------------------------------------------------------
# Service providers
# ---------------------------------------------------------------------------
async def get_content_filter(
    block_repo: IContentBlockRepository = Depends(get_content_block_repository),
) -> IContentFilter:
    return BlockListContentFilter(block_repo)


async def get_popularity_ranker(
    book_repo: IBookRepository = Depends(get_book_repository),
    interaction_repo: IInteractionRepository = Depends(get_interaction_repository),
    popularity_repo: IPopularityRepository = Depends(get_popularity_repository),
) -> IPopularityRanker:
    return PopularityRanker(
        book_repository=book_repo,
        interaction_repository=interaction_repo,
        popularity_repository=popularity_repo,
    )


async def get_recommendation_service(
    book_repo: IBookRepository = Depends(get_book_repository),
    taxonomy_repo: ITaxonomyRepository = Depends(get_taxonomy_repository),
    view_repo: IGenreViewRepository = Depends(get_genre_view_repository),
    history_repo: IReadingHistoryRepository = Depends(get_reading_history_repository),
    popularity_repo: IPopularityRepository = Depends(get_popularity_repository),
    content_filter: IContentFilter = Depends(get_content_filter),
) -> IRecommendationService:
    return RecommendationService(
        book_repository=book_repo,
        taxonomy_repository=taxonomy_repo,
        genre_view_repository=view_repo,
        reading_history_repository=history_repo,
        popularity_repository=popularity_repo,
        content_filter=content_filter,
    )


async def get_compatibility_service(
    pref_repo: IRatingPreferenceRepository = Depends(get_rating_preference_repository),
) -> ICompatibilityService:
    return CompatibilityService(preference_repository=pref_repo)


# ---------------------------------------------------------------------------
# Reader identity
# ---------------------------------------------------------------------------
async def get_current_reader(
    x_reader_id: Annotated[Optional[str], Header()] = None,
) -> UUID:
    """Reader id forwarded by the authentication layer in ``X-Reader-Id``."""
    if not x_reader_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    try:
        return UUID(x_reader_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid reader id",
        )
