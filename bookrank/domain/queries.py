"""Typed query specifications passed from services to repositories.

Services describe *what* rows they want; repositories translate these into
SQLAlchemy predicates. No service ever builds query text.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional
from uuid import UUID


@dataclass(frozen=True)
class TagQuery:
    """Select taxonomy tags whose term is one of ``term_ids``.

    Tags on books listed in ``exclude_book_ids`` are left out.
    """

    term_ids: frozenset[UUID]
    exclude_book_ids: frozenset[UUID] = field(default_factory=frozenset)
    limit: Optional[int] = None

    @classmethod
    def for_terms(
        cls,
        term_ids: Iterable[UUID],
        exclude_book_ids: Iterable[UUID] = (),
        limit: Optional[int] = None,
    ) -> "TagQuery":
        return cls(
            term_ids=frozenset(term_ids),
            exclude_book_ids=frozenset(exclude_book_ids),
            limit=limit,
        )


@dataclass(frozen=True)
class BookQuery:
    """Select books by their interaction counters."""

    min_impressions: int = 0
    min_click_throughs: int = 0
    exclude_book_ids: frozenset[UUID] = field(default_factory=frozenset)
    order_by_impressions: bool = False
    limit: Optional[int] = None
