from random import Random
from uuid import uuid4

import pytest

from bookrank.domain.entities import (
    BlockType,
    ContentBlock,
    GenreView,
    GenreViewTerm,
    PopularityEntry,
    Rating,
    ReadingState,
    ReadingStatus,
)
from bookrank.domain.repositories import IContentFilter
from bookrank.infrastructure.database.models import BookTaxonomyTagModel
from bookrank.infrastructure.database.repository import (
    BookRepository,
    ContentBlockRepository,
    GenreViewRepository,
    PopularityRepository,
    ReadingHistoryRepository,
    TaxonomyRepository,
)
from bookrank.services.content_filter import BlockListContentFilter
from bookrank.services.recommendation import RecommendationService


class BrokenTaxonomyRepository(TaxonomyRepository):
    async def find_tags(self, query):
        raise RuntimeError("taxonomy store unavailable")


class ConstraintViolatingTaxonomyRepository(TaxonomyRepository):
    """Fails inside the database: re-inserts an existing (book, term) tag."""

    def __init__(self, session, book_id, term_id):
        super().__init__(session)
        self.book_id = book_id
        self.term_id = term_id

    async def find_tags(self, query):
        self.session.add(
            BookTaxonomyTagModel(
                id=uuid4(), book_id=self.book_id, term_id=self.term_id, rank=1, importance=1.0
            )
        )
        await self.session.flush()
        return []


class BrokenContentFilter(IContentFilter):
    async def filter(self, reader_id, book_ids):
        raise RuntimeError("block list unavailable")


@pytest.fixture
def make_service(session):
    def _make(rng=None, sample_size=7, pool_size=40, taxonomy_repository=None, content_filter=None):
        return RecommendationService(
            book_repository=BookRepository(session),
            taxonomy_repository=taxonomy_repository or TaxonomyRepository(session),
            genre_view_repository=GenreViewRepository(session),
            reading_history_repository=ReadingHistoryRepository(session),
            popularity_repository=PopularityRepository(session),
            content_filter=content_filter or BlockListContentFilter(ContentBlockRepository(session)),
            rng=rng or Random(0),
            pool_size=pool_size,
            sample_size=sample_size,
            fallback_pool_size=50,
        )

    return _make


@pytest.fixture
async def two_term_library(seed, reader_id):
    """TermX ranked first and TermY second in the reader's default view.

    Book A is tagged TermX (rank 1) and TermY (rank 2); book B only TermY (rank 1).
    """
    term_x = await seed.term("TermX")
    term_y = await seed.term("TermY")
    book_a = await seed.book("A")
    book_b = await seed.book("B")
    await seed.tag(book_a, term_x, 1)
    await seed.tag(book_a, term_y, 2)
    await seed.tag(book_b, term_y, 1)
    view = await seed.view(reader_id, [term_x, term_y])
    return {"x": term_x, "y": term_y, "a": book_a, "b": book_b, "view": view}


# ── Taxonomy scoring ───────────────────────────────


@pytest.mark.asyncio
async def test_score_view_matches_formula(make_service, two_term_library):
    lib = two_term_library
    scores = await make_service().score_view(lib["view"])

    expected_a = 1.0 * (1 / 1.1) + (1 / (1 + 0.6931471805599453)) * (1 / 2.1)
    expected_b = 1.0 * (1 / 2.1)
    assert scores[lib["a"].id] == pytest.approx(expected_a)
    assert scores[lib["b"].id] == pytest.approx(expected_b)


@pytest.mark.asyncio
async def test_best_match_ranked_first(make_service, reader_id, two_term_library):
    lib = two_term_library
    results = await make_service().recommend(reader_id, limit=5)

    assert [r.book_id for r in results] == [lib["a"].id, lib["b"].id]
    assert all(r.reason == "taxonomy" for r in results)
    assert results[0].score > results[1].score


@pytest.mark.asyncio
async def test_untagged_books_are_not_recommended(make_service, seed, reader_id, two_term_library):
    other = await seed.book("Unrelated")
    results = await make_service().recommend(reader_id, limit=10)
    assert other.id not in {r.book_id for r in results}


# ── Exclusions ─────────────────────────────────────


@pytest.mark.asyncio
async def test_rated_and_completed_books_never_returned(
    make_service, session, seed, reader_id, two_term_library
):
    lib = two_term_library
    extra = await seed.book("C")
    await seed.tag(extra, lib["x"], 2)
    wanted = await seed.book("D")
    await seed.tag(wanted, lib["x"], 3)

    history = ReadingHistoryRepository(session)
    await history.add_rating(Rating(user_id=reader_id, book_id=lib["a"].id, rating=4))
    await history.set_status(
        ReadingStatus(user_id=reader_id, book_id=lib["b"].id, status=ReadingState.COMPLETED)
    )
    await history.set_status(
        ReadingStatus(user_id=reader_id, book_id=wanted.id, status=ReadingState.WANT_TO_READ)
    )

    for seed_value in range(30):
        results = await make_service(rng=Random(seed_value), sample_size=3).recommend(reader_id)
        ids = {r.book_id for r in results}
        assert lib["a"].id not in ids
        assert lib["b"].id not in ids
        assert ids == {extra.id, wanted.id}


@pytest.mark.asyncio
async def test_everything_seen_falls_back_to_popular(
    make_service, session, seed, reader_id, two_term_library
):
    lib = two_term_library
    history = ReadingHistoryRepository(session)
    for book in (lib["a"], lib["b"]):
        await history.add_rating(Rating(user_id=reader_id, book_id=book.id, rating=5))
    unread = await seed.book("Unread", impressions=3)

    results = await make_service().recommend(reader_id)

    assert [r.book_id for r in results] == [unread.id]
    assert results[0].reason == "popular"


# ── Sampling ───────────────────────────────────────


@pytest.mark.asyncio
async def test_seeded_sampling_is_reproducible(make_service, seed, reader_id):
    term = await seed.term("Space opera")
    for i in range(12):
        book = await seed.book(f"Book {i}")
        await seed.tag(book, term, i + 1)
    await seed.view(reader_id, [term])

    first = await make_service(rng=Random(123), sample_size=4).recommend(reader_id)
    second = await make_service(rng=Random(123), sample_size=4).recommend(reader_id)

    assert len(first) == 4
    assert [r.book_id for r in first] == [r.book_id for r in second]
    scores = [r.score for r in first]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_pool_size_caps_candidates(make_service, seed, reader_id):
    term = await seed.term("Cozy mystery")
    books = []
    for i in range(6):
        book = await seed.book(f"Book {i}")
        await seed.tag(book, term, i + 1)
        books.append(book)
    await seed.view(reader_id, [term])

    results = await make_service(sample_size=10, pool_size=3).recommend(reader_id)

    assert {r.book_id for r in results} == {b.id for b in books[:3]}


# ── Fallback ───────────────────────────────────────


@pytest.mark.asyncio
async def test_no_default_view_returns_most_impressed(make_service, seed, reader_id):
    low = await seed.book("Low", impressions=10)
    high = await seed.book("High", impressions=50)
    mid = await seed.book("Mid", impressions=30)

    results = await make_service(sample_size=3).recommend(reader_id)

    assert [r.book_id for r in results] == [high.id, mid.id, low.id]
    assert [r.score for r in results] == [50.0, 30.0, 10.0]
    assert all(r.reason == "popular" for r in results)


@pytest.mark.asyncio
async def test_view_without_terms_falls_back(make_service, seed, reader_id):
    book = await seed.book("Only book", impressions=4)
    await seed.view(reader_id, [])

    results = await make_service().recommend(reader_id)

    assert [r.book_id for r in results] == [book.id]
    assert results[0].reason == "popular"


@pytest.mark.asyncio
async def test_scoring_failure_falls_back_without_raising(
    make_service, session, seed, reader_id, two_term_library
):
    popular = await seed.book("Popular", impressions=100)
    service = make_service(taxonomy_repository=BrokenTaxonomyRepository(session))

    results = await service.recommend(reader_id, limit=1)

    assert [r.book_id for r in results] == [popular.id]
    assert results[0].reason == "popular"


@pytest.mark.asyncio
async def test_database_error_during_scoring_still_falls_back(
    make_service, session, seed, reader_id, two_term_library
):
    lib = two_term_library
    popular = await seed.book("Popular", impressions=100)
    service = make_service(
        taxonomy_repository=ConstraintViolatingTaxonomyRepository(
            session, lib["a"].id, lib["x"].id
        )
    )

    results = await service.recommend(reader_id, limit=1)

    assert [r.book_id for r in results] == [popular.id]
    assert results[0].reason == "popular"


@pytest.mark.asyncio
async def test_filter_failure_in_fallback_returns_nothing(make_service, seed, reader_id):
    await seed.book("Popular", impressions=100)
    service = make_service(content_filter=BrokenContentFilter())

    assert await service.recommend(reader_id) == []


# ── Content filtering ──────────────────────────────


@pytest.mark.asyncio
async def test_blocked_author_is_filtered(make_service, session, seed, reader_id):
    term = await seed.term("Grimdark")
    author = uuid4()
    blocked = await seed.book("Blocked", author_id=author)
    allowed = await seed.book("Allowed")
    await seed.tag(blocked, term, 1)
    await seed.tag(allowed, term, 1)
    await seed.view(reader_id, [term])
    await ContentBlockRepository(session).add(
        ContentBlock(user_id=reader_id, block_type=BlockType.AUTHOR, block_id=author)
    )

    results = await make_service().recommend(reader_id)

    assert [r.book_id for r in results] == [allowed.id]


@pytest.mark.asyncio
async def test_blocked_book_removed_from_fallback(make_service, session, seed, reader_id):
    blocked = await seed.book("Blocked", impressions=90)
    allowed = await seed.book("Allowed", impressions=10)
    await ContentBlockRepository(session).add(
        ContentBlock(user_id=reader_id, block_type=BlockType.BOOK, block_id=blocked.id)
    )

    results = await make_service().recommend(reader_id)

    assert [r.book_id for r in results] == [allowed.id]


@pytest.mark.asyncio
async def test_blocked_taxonomy_term(session, seed, reader_id):
    dark = await seed.term("Horror")
    scary = await seed.book("Scary")
    calm = await seed.book("Calm")
    await seed.tag(scary, dark, 4)
    await ContentBlockRepository(session).add(
        ContentBlock(user_id=reader_id, block_type=BlockType.TAXONOMY, block_id=dark.id)
    )

    content_filter = BlockListContentFilter(ContentBlockRepository(session))

    assert await content_filter.filter(reader_id, [scary.id, calm.id]) == [calm.id]
    assert await content_filter.filter(uuid4(), [scary.id, calm.id]) == [scary.id, calm.id]


# ── Genre views ────────────────────────────────────


@pytest.mark.asyncio
async def test_only_one_default_view(session, seed, reader_id):
    term = await seed.term("Fantasy")
    first = await seed.view(reader_id, [term], name="First")
    second = await seed.view(reader_id, [term], name="Second")

    views = GenreViewRepository(session)
    assert (await views.get_default(reader_id)).id == second.id
    assert (await views.get_by_id(first.id)).is_default is False


@pytest.mark.asyncio
async def test_new_view_without_terms_saves(session, reader_id):
    views = GenreViewRepository(session)

    saved = await views.save(GenreView(id=uuid4(), user_id=reader_id, name="Empty", is_default=True))

    assert saved.terms == []
    assert (await views.get_default(reader_id)).id == saved.id


@pytest.mark.asyncio
async def test_resaving_view_replaces_terms(session, seed, reader_id):
    a = await seed.term("A")
    b = await seed.term("B")
    view = await seed.view(reader_id, [a, b])

    views = GenreViewRepository(session)
    reordered = GenreView(
        id=view.id,
        user_id=reader_id,
        name=view.name,
        is_default=True,
        terms=[GenreViewTerm(term_id=b.id, rank=1), GenreViewTerm(term_id=a.id, rank=2)],
        created_at=view.created_at,
    )
    await views.save(reordered)

    stored = await views.get_by_id(view.id)
    assert [t.term_id for t in stored.terms] == [b.id, a.id]


@pytest.mark.asyncio
async def test_books_for_view_orders_by_importance(make_service, seed, reader_id):
    term = await seed.term("Solarpunk")
    weak = await seed.book("Weak")
    strong = await seed.book("Strong")
    await seed.tag(weak, term, 5)
    await seed.tag(strong, term, 1)
    view = await seed.view(reader_id, [term])

    results = await make_service().books_for_view(view.id)

    assert [r.book_id for r in results] == [strong.id, weak.id]
    assert results[0].score == 1.0
    assert all(r.reason == "view" for r in results)


@pytest.mark.asyncio
async def test_books_for_view_without_matches_returns_trending(make_service, session, seed, reader_id):
    term = await seed.term("Nobody reads this")
    view = await seed.view(reader_id, [term])
    trending = await seed.book("Trending")
    await PopularityRepository(session).replace_active(
        [PopularityEntry(book_id=trending.id, score=3.5, rank=1, first_ranked_at=trending.created_at)]
    )

    results = await make_service().books_for_view(view.id)

    assert [r.book_id for r in results] == [trending.id]
    assert results[0].reason == "trending"


@pytest.mark.asyncio
async def test_books_for_empty_view_returns_trending(make_service, session, seed, reader_id):
    view = await seed.view(reader_id, [])
    trending = await seed.book("Trending")
    await PopularityRepository(session).replace_active(
        [PopularityEntry(book_id=trending.id, score=1.5, rank=1, first_ranked_at=trending.created_at)]
    )

    results = await make_service().books_for_view(view.id)

    assert [r.book_id for r in results] == [trending.id]


@pytest.mark.asyncio
async def test_books_for_unknown_view(make_service):
    assert await make_service().books_for_view(uuid4()) == []
