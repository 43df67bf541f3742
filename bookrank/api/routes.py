"""Ranking API routes (popular books, recommendations, discovery, compatibility)."""

import logging
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from bookrank.api.schemas import (
    CalculationResponse,
    CompatibilityResponse,
    CriterionCompatibilityResponse,
    PersonalRatingRequest,
    PersonalRatingResponse,
    PopularBookResponse,
    RatingPreferenceResponse,
    RatingPreferenceUpdateRequest,
    RecommendationResponse,
    RecommendedBookResponse,
)
from bookrank.core.dependencies import (
    get_compatibility_service,
    get_current_reader,
    get_popularity_ranker,
    get_recommendation_service,
)
from bookrank.domain.services import (
    ICompatibilityService,
    IPopularityRanker,
    IRecommendationService,
)
from bookrank.infrastructure.tasks.popularity_tasks import recompute_popularity

logger = logging.getLogger(__name__)
router = APIRouter(tags=["ranking"])


# ---------------------------------------------------------------------------
# Popularity
# ---------------------------------------------------------------------------
@router.get("/popular-books", response_model=list[PopularBookResponse])
async def get_popular_books(
    ranker: Annotated[IPopularityRanker, Depends(get_popularity_ranker)],
    limit: Optional[int] = Query(None, ge=1, le=500),
    random: bool = False,
    count: int = Query(5, ge=1, le=100),
) -> list[PopularBookResponse]:
    """Current trending list in rank order.

    With ``random=true`` a random ``count`` books are drawn from the top
    ``limit`` (default pool of 50) instead.
    """
    if limit is None:
        limit = 50 if random else 10
    entries = await ranker.get_popular_books(limit=limit, sample=count if random else None)
    return [PopularBookResponse.model_validate(e) for e in entries]


@router.post(
    "/popular-books/calculate",
    response_model=CalculationResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def calculate_popular_books(
    reader_id: Annotated[UUID, Depends(get_current_reader)],
) -> CalculationResponse:
    """Queue a popularity recomputation outside the nightly schedule.

    Poll ``GET /tasks/{task_id}`` for completion.
    """
    task = recompute_popularity.delay()
    logger.info("Popularity recompute %s requested by %s", task.id, reader_id)
    return CalculationResponse(task_id=task.id)


# ---------------------------------------------------------------------------
# Recommendations & discovery
# ---------------------------------------------------------------------------
@router.get("/recommendations", response_model=RecommendationResponse)
async def get_recommendations(
    reader_id: Annotated[UUID, Depends(get_current_reader)],
    service: Annotated[IRecommendationService, Depends(get_recommendation_service)],
    limit: Optional[int] = Query(None, ge=1, le=100),
) -> RecommendationResponse:
    """Personalised picks for the current reader.

    Results are a random sample of the best taxonomy matches, so repeated
    calls can differ. Readers without a default genre view get the most
    viewed books instead (``strategy="popular"``).
    """
    results = await service.recommend(reader_id, limit)
    return _recommendation_response(results, default_strategy="taxonomy")


@router.get("/discover/views/{view_id}", response_model=RecommendationResponse)
async def discover_by_view(
    view_id: UUID,
    service: Annotated[IRecommendationService, Depends(get_recommendation_service)],
    limit: int = Query(150, ge=1, le=500),
) -> RecommendationResponse:
    """Books tagged with a genre view's terms, most defining matches first."""
    results = await service.books_for_view(view_id, limit)
    return _recommendation_response(results, default_strategy="view")


def _recommendation_response(results, default_strategy: str) -> RecommendationResponse:
    reasons = {r.reason for r in results}
    strategy = reasons.pop() if len(reasons) == 1 else default_strategy
    return RecommendationResponse(
        recommendations=[RecommendedBookResponse.model_validate(r) for r in results],
        total=len(results),
        strategy=strategy,
    )


# ---------------------------------------------------------------------------
# Rating preferences & compatibility
# ---------------------------------------------------------------------------
@router.get("/rating-preferences", response_model=RatingPreferenceResponse)
async def get_rating_preferences(
    reader_id: Annotated[UUID, Depends(get_current_reader)],
    service: Annotated[ICompatibilityService, Depends(get_compatibility_service)],
) -> RatingPreferenceResponse:
    """Current reader's criterion weights; created with defaults on first read."""
    vector = await service.get_preferences(reader_id)
    return RatingPreferenceResponse.model_validate(vector)


@router.put("/rating-preferences", response_model=RatingPreferenceResponse)
async def update_rating_preferences(
    body: RatingPreferenceUpdateRequest,
    reader_id: Annotated[UUID, Depends(get_current_reader)],
    service: Annotated[ICompatibilityService, Depends(get_compatibility_service)],
) -> RatingPreferenceResponse:
    """Update criterion weights. Only fields present in the body change."""
    try:
        if body.order is not None:
            vector = await service.update_from_order(reader_id, body.order)
            if body.auto_adjust is not None:
                vector = await service.update_preferences(
                    reader_id, auto_adjust=body.auto_adjust
                )
        else:
            weights = body.model_dump(exclude_none=True, exclude={"order", "auto_adjust"})
            vector = await service.update_preferences(
                reader_id, auto_adjust=body.auto_adjust, **weights
            )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return RatingPreferenceResponse.model_validate(vector)


@router.post("/rating-preferences/overall", response_model=PersonalRatingResponse)
async def personal_overall_rating(
    body: PersonalRatingRequest,
    reader_id: Annotated[UUID, Depends(get_current_reader)],
    service: Annotated[ICompatibilityService, Depends(get_compatibility_service)],
) -> PersonalRatingResponse:
    """Combine per-criterion scores into one rating using the reader's own weights."""
    try:
        overall = await service.personal_rating(reader_id, body.ratings)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return PersonalRatingResponse(overall_rating=overall)


@router.get("/compatibility/{other_reader_id}", response_model=CompatibilityResponse)
async def get_compatibility(
    other_reader_id: UUID,
    reader_id: Annotated[UUID, Depends(get_current_reader)],
    service: Annotated[ICompatibilityService, Depends(get_compatibility_service)],
) -> CompatibilityResponse:
    """How similarly the current reader and another reader weigh rating criteria."""
    result = await service.compatibility(reader_id, other_reader_id)
    return CompatibilityResponse(
        overall_label=result.overall_label,
        overall_score=result.overall_score,
        normalized_difference=result.normalized_difference,
        per_criterion={
            criterion: CriterionCompatibilityResponse(label=c.label, diff=c.diff)
            for criterion, c in result.per_criterion.items()
        },
    )
