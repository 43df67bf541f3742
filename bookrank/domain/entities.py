"""Domain entities for bookrank."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from bookrank.domain.scoring import RATING_CRITERIA, tag_importance, view_term_weight


class InteractionKind(str, Enum):
    VIEW = "view"
    DETAIL_EXPAND = "detail-expand"
    CARD_CLICK = "card-click"
    REFERRAL_CLICK = "referral-click"


# Engagement weight per interaction kind. Plain impressions carry no weight.
INTERACTION_WEIGHTS = {
    InteractionKind.VIEW: 0.0,
    InteractionKind.DETAIL_EXPAND: 0.25,
    InteractionKind.CARD_CLICK: 0.5,
    InteractionKind.REFERRAL_CLICK: 1.0,
}


class TaxonomyKind(str, Enum):
    GENRE = "genre"
    SUBGENRE = "subgenre"
    THEME = "theme"
    TROPE = "trope"


class ReadingState(str, Enum):
    READING = "reading"
    WANT_TO_READ = "want-to-read"
    COMPLETED = "completed"


class BlockType(str, Enum):
    BOOK = "book"
    AUTHOR = "author"
    TAXONOMY = "taxonomy"


@dataclass
class Book:
    id: UUID
    title: str
    author_id: Optional[UUID] = None
    impression_count: int = 0
    click_through_count: int = 0
    last_impression_at: Optional[datetime] = None
    last_click_through_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class InteractionEvent:
    """One observed reader action on a book.

    Append-only: the engine reads these but never updates or deletes them.
    """

    id: UUID
    book_id: UUID
    kind: InteractionKind
    weight: float
    user_id: Optional[UUID] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def for_kind(
        cls,
        book_id: UUID,
        kind: InteractionKind,
        user_id: Optional[UUID] = None,
        created_at: Optional[datetime] = None,
    ) -> "InteractionEvent":
        return cls(
            id=uuid4(),
            book_id=book_id,
            kind=kind,
            weight=INTERACTION_WEIGHTS[kind],
            user_id=user_id,
            created_at=created_at or datetime.utcnow(),
        )


@dataclass
class TaxonomyTerm:
    id: UUID
    name: str
    kind: TaxonomyKind = TaxonomyKind.GENRE


@dataclass
class BookTaxonomyTag:
    """A taxonomy term assigned to a book at a given rank.

    Rank 1 is the most defining tag for the book. ``importance`` is derived
    from the rank and must never be set independently of it.
    """

    book_id: UUID
    term_id: UUID
    rank: int
    importance: float = field(init=False)

    def __post_init__(self) -> None:
        self.importance = tag_importance(self.rank)

    def with_rank(self, rank: int) -> "BookTaxonomyTag":
        return replace(self, rank=rank)


@dataclass
class GenreViewTerm:
    term_id: UUID
    rank: int

    @property
    def weight(self) -> float:
        return view_term_weight(self.rank)


@dataclass
class GenreView:
    """A reader's ranked list of preferred taxonomy terms."""

    id: UUID
    user_id: UUID
    name: str
    is_default: bool = False
    terms: list[GenreViewTerm] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)

    def term_weights(self) -> dict[UUID, float]:
        return {t.term_id: t.weight for t in self.terms}


@dataclass
class PopularityEntry:
    book_id: UUID
    score: float
    rank: int
    first_ranked_at: datetime
    active: bool = True
    weighted_engagement: float = 0.0
    generation: int = 0
    computed_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class RatingPreferenceVector:
    """How much each rating criterion counts toward a reader's overall rating."""

    user_id: UUID
    enjoyment: float = 0.5
    writing: float = 0.5
    themes: float = 0.5
    characters: float = 0.5
    worldbuilding: float = 0.5
    auto_adjust: bool = True
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def weights(self) -> dict[str, float]:
        return {c: float(getattr(self, c)) for c in RATING_CRITERIA}

    @classmethod
    def default_for(cls, user_id: UUID) -> "RatingPreferenceVector":
        return cls(user_id=user_id)


@dataclass
class Rating:
    user_id: UUID
    book_id: UUID
    rating: int
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ReadingStatus:
    user_id: UUID
    book_id: UUID
    status: ReadingState
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ContentBlock:
    user_id: UUID
    block_type: BlockType
    block_id: UUID


@dataclass
class Recommendation:
    """A recommended book with its relevance score and the path that produced it."""

    book_id: UUID
    score: float
    reason: str = "taxonomy"
