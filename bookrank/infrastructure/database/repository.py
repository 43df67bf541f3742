"""Repository implementations."""

import logging
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID, uuid4

from sqlalchemy import func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bookrank.domain.entities import (
    BlockType,
    Book,
    BookTaxonomyTag,
    ContentBlock,
    GenreView,
    GenreViewTerm,
    InteractionEvent,
    InteractionKind,
    PopularityEntry,
    Rating,
    RatingPreferenceVector,
    ReadingState,
    ReadingStatus,
    TaxonomyKind,
    TaxonomyTerm,
)
from bookrank.domain.queries import BookQuery, TagQuery
from bookrank.domain.repositories import (
    IBookRepository,
    IContentBlockRepository,
    IGenreViewRepository,
    IInteractionRepository,
    IPopularityRepository,
    IRatingPreferenceRepository,
    IReadingHistoryRepository,
    ITaxonomyRepository,
)
from bookrank.infrastructure.database.models import (
    BookModel,
    BookTaxonomyTagModel,
    ContentBlockModel,
    GenreViewModel,
    GenreViewTermModel,
    InteractionEventModel,
    PopularityEntryModel,
    RatingModel,
    RatingPreferenceModel,
    ReadingStatusModel,
    TaxonomyTermModel,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Book Repository
# ---------------------------------------------------------------------------
class BookRepository(IBookRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, book: Book) -> Book:
        db_book = BookModel(
            id=book.id,
            title=book.title,
            author_id=book.author_id,
            impression_count=book.impression_count,
            click_through_count=book.click_through_count,
            last_impression_at=book.last_impression_at,
            last_click_through_at=book.last_click_through_at,
            created_at=book.created_at,
        )
        self.session.add(db_book)
        await self.session.commit()
        await self.session.refresh(db_book)
        return self._to_entity(db_book)

    async def rollback(self) -> None:
        await self.session.rollback()

    async def find(self, query: BookQuery) -> list[Book]:
        stmt = select(BookModel)
        if query.min_impressions:
            stmt = stmt.where(BookModel.impression_count >= query.min_impressions)
        if query.min_click_throughs:
            stmt = stmt.where(BookModel.click_through_count >= query.min_click_throughs)
        if query.exclude_book_ids:
            stmt = stmt.where(BookModel.id.not_in(list(query.exclude_book_ids)))
        if query.order_by_impressions:
            stmt = stmt.order_by(BookModel.impression_count.desc(), BookModel.created_at)
        else:
            stmt = stmt.order_by(BookModel.created_at)
        if query.limit is not None:
            stmt = stmt.limit(query.limit)
        result = await self.session.execute(stmt)
        return [self._to_entity(b) for b in result.scalars().all()]

    @staticmethod
    def _to_entity(model: BookModel) -> Book:
        return Book(
            id=model.id,
            title=model.title,
            author_id=model.author_id,
            impression_count=model.impression_count,
            click_through_count=model.click_through_count,
            last_impression_at=model.last_impression_at,
            last_click_through_at=model.last_click_through_at,
            created_at=model.created_at,
        )


# ---------------------------------------------------------------------------
# Interaction Repository
# ---------------------------------------------------------------------------
class InteractionRepository(IInteractionRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(self, event: InteractionEvent) -> InteractionEvent:
        db_event = InteractionEventModel(
            id=event.id,
            book_id=event.book_id,
            user_id=event.user_id,
            kind=event.kind.value,
            weight=event.weight,
            created_at=event.created_at,
        )
        self.session.add(db_event)
        await self.session.commit()
        await self.session.refresh(db_event)
        return self._to_entity(db_event)

    async def weighted_engagement(self, book_ids: Iterable[UUID]) -> dict[UUID, float]:
        ids = list(book_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(
                InteractionEventModel.book_id,
                func.sum(InteractionEventModel.weight),
            )
            .where(
                InteractionEventModel.book_id.in_(ids),
                InteractionEventModel.kind != InteractionKind.VIEW.value,
            )
            .group_by(InteractionEventModel.book_id)
        )
        return {row[0]: float(row[1] or 0.0) for row in result.all()}

    @staticmethod
    def _to_entity(model: InteractionEventModel) -> InteractionEvent:
        return InteractionEvent(
            id=model.id,
            book_id=model.book_id,
            user_id=model.user_id,
            kind=InteractionKind(model.kind),
            weight=model.weight,
            created_at=model.created_at,
        )


# ---------------------------------------------------------------------------
# Taxonomy Repository
# ---------------------------------------------------------------------------
class TaxonomyRepository(ITaxonomyRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_term(self, term: TaxonomyTerm) -> TaxonomyTerm:
        db_term = TaxonomyTermModel(id=term.id, name=term.name, kind=term.kind.value)
        self.session.add(db_term)
        await self.session.commit()
        await self.session.refresh(db_term)
        return TaxonomyTerm(id=db_term.id, name=db_term.name, kind=TaxonomyKind(db_term.kind))

    async def tag_book(self, tag: BookTaxonomyTag) -> BookTaxonomyTag:
        result = await self.session.execute(
            select(BookTaxonomyTagModel).where(
                BookTaxonomyTagModel.book_id == tag.book_id,
                BookTaxonomyTagModel.term_id == tag.term_id,
            )
        )
        db_tag = result.scalar_one_or_none()
        if db_tag is None:
            db_tag = BookTaxonomyTagModel(
                id=uuid4(),
                book_id=tag.book_id,
                term_id=tag.term_id,
            )
            self.session.add(db_tag)
        db_tag.rank = tag.rank
        db_tag.importance = tag.importance
        await self.session.commit()
        await self.session.refresh(db_tag)
        return self._to_entity(db_tag)

    async def find_tags(self, query: TagQuery) -> list[BookTaxonomyTag]:
        if not query.term_ids:
            return []
        stmt = self._filtered(select(BookTaxonomyTagModel), query)
        if query.limit is not None:
            stmt = stmt.limit(query.limit)
        result = await self.session.execute(stmt)
        return [self._to_entity(t) for t in result.scalars().all()]

    async def rank_books_by_importance(self, query: TagQuery) -> list[tuple[UUID, float]]:
        """Books matching ``query`` ordered by the mean importance of the matching tags."""
        if not query.term_ids:
            return []
        avg_importance = func.avg(BookTaxonomyTagModel.importance)
        stmt = self._filtered(
            select(BookTaxonomyTagModel.book_id, avg_importance), query
        ).group_by(BookTaxonomyTagModel.book_id).order_by(avg_importance.desc())
        if query.limit is not None:
            stmt = stmt.limit(query.limit)
        result = await self.session.execute(stmt)
        return [(row[0], float(row[1])) for row in result.all()]

    @staticmethod
    def _filtered(stmt, query: TagQuery):
        stmt = stmt.where(BookTaxonomyTagModel.term_id.in_(list(query.term_ids)))
        if query.exclude_book_ids:
            stmt = stmt.where(BookTaxonomyTagModel.book_id.not_in(list(query.exclude_book_ids)))
        return stmt

    @staticmethod
    def _to_entity(model: BookTaxonomyTagModel) -> BookTaxonomyTag:
        return BookTaxonomyTag(book_id=model.book_id, term_id=model.term_id, rank=model.rank)


# ---------------------------------------------------------------------------
# Genre View Repository
# ---------------------------------------------------------------------------
class GenreViewRepository(IGenreViewRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(self, view: GenreView) -> GenreView:
        if view.is_default:
            await self.session.execute(
                update(GenreViewModel)
                .where(
                    GenreViewModel.user_id == view.user_id,
                    GenreViewModel.id != view.id,
                )
                .values(is_default=False)
            )

        result = await self.session.execute(
            select(GenreViewModel).where(GenreViewModel.id == view.id)
        )
        db_view = result.scalar_one_or_none()
        if db_view is None:
            db_view = GenreViewModel(id=view.id, user_id=view.user_id, created_at=view.created_at)
            self.session.add(db_view)
        else:
            # Old terms must be gone before re-inserting under uq_view_term
            db_view.terms.clear()
            await self.session.flush()
        db_view.name = view.name
        db_view.is_default = view.is_default
        # Assigning a list marks the collection loaded even when it is empty,
        # so _to_entity never triggers a lazy load after commit
        db_view.terms = [
            GenreViewTermModel(id=uuid4(), term_id=t.term_id, rank=t.rank)
            for t in view.terms
        ]
        await self.session.commit()
        return self._to_entity(db_view)

    async def get_by_id(self, view_id: UUID) -> Optional[GenreView]:
        result = await self.session.execute(
            select(GenreViewModel).where(GenreViewModel.id == view_id)
        )
        db_view = result.scalar_one_or_none()
        return self._to_entity(db_view) if db_view else None

    async def get_default(self, user_id: UUID) -> Optional[GenreView]:
        result = await self.session.execute(
            select(GenreViewModel)
            .where(GenreViewModel.user_id == user_id, GenreViewModel.is_default.is_(True))
            .order_by(GenreViewModel.created_at.desc())
        )
        db_view = result.scalars().first()
        return self._to_entity(db_view) if db_view else None

    @staticmethod
    def _to_entity(model: GenreViewModel) -> GenreView:
        return GenreView(
            id=model.id,
            user_id=model.user_id,
            name=model.name,
            is_default=model.is_default,
            terms=sorted(
                (GenreViewTerm(term_id=t.term_id, rank=t.rank) for t in model.terms),
                key=lambda t: t.rank,
            ),
            created_at=model.created_at,
        )


# ---------------------------------------------------------------------------
# Reading History Repository (ratings + reading status)
# ---------------------------------------------------------------------------
class ReadingHistoryRepository(IReadingHistoryRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_rating(self, rating: Rating) -> Rating:
        result = await self.session.execute(
            select(RatingModel).where(
                RatingModel.user_id == rating.user_id,
                RatingModel.book_id == rating.book_id,
            )
        )
        db_rating = result.scalar_one_or_none()
        if db_rating is None:
            db_rating = RatingModel(
                id=uuid4(),
                user_id=rating.user_id,
                book_id=rating.book_id,
                created_at=rating.created_at,
            )
            self.session.add(db_rating)
        db_rating.rating = rating.rating
        await self.session.commit()
        return Rating(
            user_id=db_rating.user_id,
            book_id=db_rating.book_id,
            rating=db_rating.rating,
            created_at=db_rating.created_at,
        )

    async def set_status(self, status: ReadingStatus) -> ReadingStatus:
        result = await self.session.execute(
            select(ReadingStatusModel).where(
                ReadingStatusModel.user_id == status.user_id,
                ReadingStatusModel.book_id == status.book_id,
            )
        )
        db_status = result.scalar_one_or_none()
        if db_status is None:
            db_status = ReadingStatusModel(
                id=uuid4(), user_id=status.user_id, book_id=status.book_id
            )
            self.session.add(db_status)
        db_status.status = status.status.value
        db_status.updated_at = datetime.utcnow()
        await self.session.commit()
        return ReadingStatus(
            user_id=db_status.user_id,
            book_id=db_status.book_id,
            status=ReadingState(db_status.status),
            updated_at=db_status.updated_at,
        )

    async def seen_book_ids(self, user_id: UUID) -> set[UUID]:
        rated = await self.session.execute(
            select(RatingModel.book_id).where(RatingModel.user_id == user_id)
        )
        completed = await self.session.execute(
            select(ReadingStatusModel.book_id).where(
                ReadingStatusModel.user_id == user_id,
                ReadingStatusModel.status == ReadingState.COMPLETED.value,
            )
        )
        return set(rated.scalars().all()) | set(completed.scalars().all())


# ---------------------------------------------------------------------------
# Popularity Repository
# ---------------------------------------------------------------------------
class PopularityRepository(IPopularityRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active(self, limit: Optional[int] = None) -> list[PopularityEntry]:
        stmt = (
            select(PopularityEntryModel)
            .where(PopularityEntryModel.active.is_(True))
            .order_by(PopularityEntryModel.rank)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [self._to_entity(e) for e in result.scalars().all()]

    async def replace_active(self, entries: Iterable[PopularityEntry]) -> list[PopularityEntry]:
        try:
            result = await self.session.execute(
                select(func.max(PopularityEntryModel.generation))
            )
            generation = (result.scalar_one_or_none() or 0) + 1

            await self.session.execute(
                update(PopularityEntryModel)
                .where(PopularityEntryModel.active.is_(True))
                .values(active=False)
            )

            db_entries = []
            for entry in entries:
                db_entry = PopularityEntryModel(
                    id=uuid4(),
                    book_id=entry.book_id,
                    score=entry.score,
                    rank=entry.rank,
                    weighted_engagement=entry.weighted_engagement,
                    first_ranked_at=entry.first_ranked_at,
                    active=True,
                    generation=generation,
                    computed_at=entry.computed_at,
                )
                self.session.add(db_entry)
                db_entries.append(db_entry)
            if not db_entries:
                raise ValueError("refusing to publish an empty popularity ranking")

            await self.session.flush()
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            logger.error("Popularity swap rolled back; previous ranking kept", exc_info=True)
            raise

        logger.info(
            "Published popularity generation %d (%d entries)", generation, len(db_entries)
        )
        return [self._to_entity(e) for e in db_entries]

    @staticmethod
    def _to_entity(model: PopularityEntryModel) -> PopularityEntry:
        return PopularityEntry(
            book_id=model.book_id,
            score=model.score,
            rank=model.rank,
            first_ranked_at=model.first_ranked_at,
            active=model.active,
            weighted_engagement=model.weighted_engagement,
            generation=model.generation,
            computed_at=model.computed_at,
        )


# ---------------------------------------------------------------------------
# Rating Preference Repository
# ---------------------------------------------------------------------------
class RatingPreferenceRepository(IRatingPreferenceRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: UUID) -> Optional[RatingPreferenceVector]:
        result = await self.session.execute(
            select(RatingPreferenceModel).where(RatingPreferenceModel.user_id == user_id)
        )
        db_pref = result.scalar_one_or_none()
        return self._to_entity(db_pref) if db_pref else None

    async def get_or_create(self, user_id: UUID) -> RatingPreferenceVector:
        existing = await self.get(user_id)
        if existing is not None:
            return existing

        default = RatingPreferenceVector.default_for(user_id)
        values = {
            "id": uuid4(),
            "user_id": user_id,
            **default.weights(),
            "auto_adjust": default.auto_adjust,
            "updated_at": default.updated_at,
        }
        try:
            await self.session.execute(self._insert_if_absent(values))
            await self.session.commit()
        except IntegrityError:
            # Another request created the row between our read and insert
            await self.session.rollback()

        created = await self.get(user_id)
        if created is None:
            raise RuntimeError(f"rating preferences for {user_id} missing after upsert")
        logger.info("Ensured default rating preferences for user %s", user_id)
        return created

    def _insert_if_absent(self, values: dict):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(RatingPreferenceModel).values(**values).on_conflict_do_nothing(
                index_elements=["user_id"]
            )
        if dialect == "sqlite":
            return sqlite_insert(RatingPreferenceModel).values(**values).on_conflict_do_nothing(
                index_elements=["user_id"]
            )
        return insert(RatingPreferenceModel).values(**values)

    async def update(self, vector: RatingPreferenceVector) -> RatingPreferenceVector:
        result = await self.session.execute(
            select(RatingPreferenceModel).where(RatingPreferenceModel.user_id == vector.user_id)
        )
        db_pref = result.scalar_one()
        for criterion, weight in vector.weights().items():
            setattr(db_pref, criterion, weight)
        db_pref.auto_adjust = vector.auto_adjust
        db_pref.updated_at = datetime.utcnow()
        await self.session.commit()
        await self.session.refresh(db_pref)
        return self._to_entity(db_pref)

    @staticmethod
    def _to_entity(model: RatingPreferenceModel) -> RatingPreferenceVector:
        return RatingPreferenceVector(
            user_id=model.user_id,
            enjoyment=model.enjoyment,
            writing=model.writing,
            themes=model.themes,
            characters=model.characters,
            worldbuilding=model.worldbuilding,
            auto_adjust=model.auto_adjust,
            updated_at=model.updated_at,
        )


# ---------------------------------------------------------------------------
# Content Block Repository
# ---------------------------------------------------------------------------
class ContentBlockRepository(IContentBlockRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, block: ContentBlock) -> ContentBlock:
        self.session.add(
            ContentBlockModel(
                id=uuid4(),
                user_id=block.user_id,
                block_type=block.block_type.value,
                block_id=block.block_id,
            )
        )
        await self.session.commit()
        return block

    async def list_for_user(self, user_id: UUID) -> list[ContentBlock]:
        result = await self.session.execute(
            select(ContentBlockModel).where(ContentBlockModel.user_id == user_id)
        )
        return [
            ContentBlock(
                user_id=b.user_id,
                block_type=BlockType(b.block_type),
                block_id=b.block_id,
            )
            for b in result.scalars().all()
        ]

    async def blocked_book_ids(self, user_id: UUID, book_ids: Iterable[UUID]) -> set[UUID]:
        candidates = list(book_ids)
        if not candidates:
            return set()
        blocks = await self.list_for_user(user_id)
        if not blocks:
            return set()

        by_type: dict[BlockType, list[UUID]] = {t: [] for t in BlockType}
        for block in blocks:
            by_type[block.block_type].append(block.block_id)

        blocked = set(by_type[BlockType.BOOK]) & set(candidates)

        if by_type[BlockType.AUTHOR]:
            result = await self.session.execute(
                select(BookModel.id).where(
                    BookModel.id.in_(candidates),
                    BookModel.author_id.in_(by_type[BlockType.AUTHOR]),
                )
            )
            blocked.update(result.scalars().all())

        if by_type[BlockType.TAXONOMY]:
            result = await self.session.execute(
                select(BookTaxonomyTagModel.book_id).where(
                    BookTaxonomyTagModel.book_id.in_(candidates),
                    BookTaxonomyTagModel.term_id.in_(by_type[BlockType.TAXONOMY]),
                )
            )
            blocked.update(result.scalars().all())

        return blocked
