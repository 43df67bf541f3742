from collections.abc import AsyncGenerator
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from bookrank.domain.entities import (
    Book,
    BookTaxonomyTag,
    GenreView,
    GenreViewTerm,
    InteractionEvent,
    InteractionKind,
    TaxonomyTerm,
)
from bookrank.infrastructure.database.connection import get_db
from bookrank.infrastructure.database.models import Base
from bookrank.infrastructure.database.repository import (
    BookRepository,
    GenreViewRepository,
    InteractionRepository,
    TaxonomyRepository,
)
from bookrank.main import app

# In-memory database, one per test
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture
async def client(session_maker) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def reader_id() -> UUID:
    return uuid4()


@pytest.fixture
def reader_client(client: AsyncClient, reader_id: UUID) -> AsyncClient:
    client.headers["X-Reader-Id"] = str(reader_id)
    return client


# ── Seed helpers ───────────────────────────────────


class Seeder:
    """Writes books, interactions, terms and views through the real repositories."""

    def __init__(self, session: AsyncSession):
        self.books = BookRepository(session)
        self.interactions = InteractionRepository(session)
        self.taxonomy = TaxonomyRepository(session)
        self.views = GenreViewRepository(session)

    async def book(
        self,
        title: str = "Book",
        impressions: int = 1,
        click_throughs: int = 1,
        author_id: Optional[UUID] = None,
        created_at: Optional[datetime] = None,
    ) -> Book:
        return await self.books.create(
            Book(
                id=uuid4(),
                title=title,
                author_id=author_id,
                impression_count=impressions,
                click_through_count=click_throughs,
                created_at=created_at or datetime.utcnow(),
            )
        )

    async def interact(self, book: Book, kind: InteractionKind, times: int = 1) -> None:
        for _ in range(times):
            await self.interactions.record(InteractionEvent.for_kind(book.id, kind))

    async def term(self, name: str) -> TaxonomyTerm:
        return await self.taxonomy.create_term(TaxonomyTerm(id=uuid4(), name=name))

    async def tag(self, book: Book, term: TaxonomyTerm, rank: int) -> BookTaxonomyTag:
        return await self.taxonomy.tag_book(
            BookTaxonomyTag(book_id=book.id, term_id=term.id, rank=rank)
        )

    async def view(
        self,
        user_id: UUID,
        terms: list[TaxonomyTerm],
        name: str = "My view",
        is_default: bool = True,
    ) -> GenreView:
        return await self.views.save(
            GenreView(
                id=uuid4(),
                user_id=user_id,
                name=name,
                is_default=is_default,
                terms=[GenreViewTerm(term_id=t.id, rank=i) for i, t in enumerate(terms, start=1)],
            )
        )


@pytest.fixture
def seed(session: AsyncSession) -> Seeder:
    return Seeder(session)
