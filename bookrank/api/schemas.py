"""Pydantic schemas for API requests and responses."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Popularity
# ---------------------------------------------------------------------------
class PopularBookResponse(BaseModel):
    book_id: UUID
    score: float
    rank: int
    first_ranked_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CalculationResponse(BaseModel):
    task_id: str
    status: str = "PENDING"


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------
class RecommendedBookResponse(BaseModel):
    book_id: UUID
    score: float
    reason: str = Field(..., description="taxonomy | popular | view | trending")

    model_config = ConfigDict(from_attributes=True)


class RecommendationResponse(BaseModel):
    recommendations: list[RecommendedBookResponse]
    total: int = Field(0, description="Number of recommendations returned")
    strategy: str = Field(
        "taxonomy",
        description="Path used: taxonomy, popular (fallback), view, trending",
    )


# ---------------------------------------------------------------------------
# Rating preferences & compatibility
# ---------------------------------------------------------------------------
class RatingPreferenceResponse(BaseModel):
    user_id: UUID
    enjoyment: float
    writing: float
    themes: float
    characters: float
    worldbuilding: float
    auto_adjust: bool
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RatingPreferenceUpdateRequest(BaseModel):
    """Partial update; either explicit weights or a criteria ordering."""

    enjoyment: Optional[float] = Field(None, ge=0.0, le=1.0)
    writing: Optional[float] = Field(None, ge=0.0, le=1.0)
    themes: Optional[float] = Field(None, ge=0.0, le=1.0)
    characters: Optional[float] = Field(None, ge=0.0, le=1.0)
    worldbuilding: Optional[float] = Field(None, ge=0.0, le=1.0)
    auto_adjust: Optional[bool] = None
    order: Optional[list[str]] = Field(
        None, description="Criteria from most to least important; overrides weights"
    )


class PersonalRatingRequest(BaseModel):
    ratings: dict[str, float] = Field(
        ..., description="Score per rating criterion, e.g. {\"writing\": 4, \"themes\": 3}"
    )


class PersonalRatingResponse(BaseModel):
    overall_rating: float


class CriterionCompatibilityResponse(BaseModel):
    label: str
    diff: float


class CompatibilityResponse(BaseModel):
    overall_label: str
    overall_score: int = Field(..., ge=-3, le=3)
    normalized_difference: float
    per_criterion: dict[str, CriterionCompatibilityResponse]


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------
class TaskStatusResponse(BaseModel):
    task_id: str
    status: str
    result: Optional[int] = None
    error: Optional[str] = None
