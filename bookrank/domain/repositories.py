"""Repository interfaces (ports) for dependency inversion."""

from abc import ABC, abstractmethod
from typing import Iterable, Optional
from uuid import UUID

from bookrank.domain.entities import (
    Book,
    BookTaxonomyTag,
    ContentBlock,
    GenreView,
    InteractionEvent,
    PopularityEntry,
    Rating,
    RatingPreferenceVector,
    ReadingStatus,
    TaxonomyTerm,
)
from bookrank.domain.queries import BookQuery, TagQuery


class IBookRepository(ABC):

    @abstractmethod
    async def create(self, book: Book) -> Book:
        pass

    @abstractmethod
    async def find(self, query: BookQuery) -> list[Book]:
        pass

    @abstractmethod
    async def rollback(self) -> None:
        """Discard a failed transaction so the session can serve new queries."""
        pass


class IInteractionRepository(ABC):

    @abstractmethod
    async def record(self, event: InteractionEvent) -> InteractionEvent:
        """Append an interaction event."""
        pass

    @abstractmethod
    async def weighted_engagement(self, book_ids: Iterable[UUID]) -> dict[UUID, float]:
        """Sum of event weights per book, ignoring plain ``view`` events.

        Books without any qualifying event are absent from the result.
        """
        pass


class ITaxonomyRepository(ABC):

    @abstractmethod
    async def create_term(self, term: TaxonomyTerm) -> TaxonomyTerm:
        pass

    @abstractmethod
    async def tag_book(self, tag: BookTaxonomyTag) -> BookTaxonomyTag:
        """Create or re-rank a book's tag; importance follows the rank."""
        pass

    @abstractmethod
    async def find_tags(self, query: TagQuery) -> list[BookTaxonomyTag]:
        pass

    @abstractmethod
    async def rank_books_by_importance(self, query: TagQuery) -> list[tuple[UUID, float]]:
        """(book_id, mean importance of matching tags), highest first."""
        pass


class IGenreViewRepository(ABC):

    @abstractmethod
    async def save(self, view: GenreView) -> GenreView:
        """Persist a view and its terms.

        Saving a default view clears the default flag on the reader's other
        views in the same transaction.
        """
        pass

    @abstractmethod
    async def get_by_id(self, view_id: UUID) -> Optional[GenreView]:
        pass

    @abstractmethod
    async def get_default(self, user_id: UUID) -> Optional[GenreView]:
        pass


class IReadingHistoryRepository(ABC):

    @abstractmethod
    async def add_rating(self, rating: Rating) -> Rating:
        pass

    @abstractmethod
    async def set_status(self, status: ReadingStatus) -> ReadingStatus:
        pass

    @abstractmethod
    async def seen_book_ids(self, user_id: UUID) -> set[UUID]:
        """Books the reader has rated or marked completed."""
        pass


class IPopularityRepository(ABC):

    @abstractmethod
    async def get_active(self, limit: Optional[int] = None) -> list[PopularityEntry]:
        """Active entries in rank order."""
        pass

    @abstractmethod
    async def replace_active(self, entries: Iterable[PopularityEntry]) -> list[PopularityEntry]:
        """Atomically retire the active ranking and publish ``entries``.

        Readers see either the previous ranking or the new one. If anything
        fails the transaction is rolled back and the error is re-raised.
        """
        pass


class IRatingPreferenceRepository(ABC):

    @abstractmethod
    async def get(self, user_id: UUID) -> Optional[RatingPreferenceVector]:
        pass

    @abstractmethod
    async def get_or_create(self, user_id: UUID) -> RatingPreferenceVector:
        """Return the reader's vector, inserting the default if absent.

        Safe under concurrent first reads: the insert is conflict-tolerant and
        always followed by a re-read.
        """
        pass

    @abstractmethod
    async def update(self, vector: RatingPreferenceVector) -> RatingPreferenceVector:
        pass


class IContentBlockRepository(ABC):

    @abstractmethod
    async def add(self, block: ContentBlock) -> ContentBlock:
        pass

    @abstractmethod
    async def list_for_user(self, user_id: UUID) -> list[ContentBlock]:
        pass

    @abstractmethod
    async def blocked_book_ids(self, user_id: UUID, book_ids: Iterable[UUID]) -> set[UUID]:
        """Subset of ``book_ids`` the reader has blocked directly or indirectly."""
        pass


class IContentFilter(ABC):

    @abstractmethod
    async def filter(self, reader_id: UUID, book_ids: list[UUID]) -> list[UUID]:
        """Return the allowed subset of ``book_ids``, preserving order."""
        pass
