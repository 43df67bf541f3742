"""SQLAlchemy database models."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


class BookModel(Base):
    """Book identity plus the running counters kept by the ingestion side."""

    __tablename__ = "books"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(500), nullable=False, index=True)
    author_id = Column(Uuid, nullable=True, index=True)
    impression_count = Column(Integer, default=0, nullable=False)
    click_through_count = Column(Integer, default=0, nullable=False)
    last_impression_at = Column(DateTime, nullable=True)
    last_click_through_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    tags = relationship("BookTaxonomyTagModel", back_populates="book", lazy="selectin", cascade="all, delete-orphan")


class InteractionEventModel(Base):
    """Append-only log of reader actions on books."""

    __tablename__ = "interaction_events"
    __table_args__ = (
        Index("ix_interaction_events_book_kind", "book_id", "kind"),
        Index("ix_interaction_events_created", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    book_id = Column(Uuid, ForeignKey("books.id"), nullable=False)
    user_id = Column(Uuid, nullable=True)
    kind = Column(String(30), nullable=False)  # view|detail-expand|card-click|referral-click
    weight = Column(Float, default=0.0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class TaxonomyTermModel(Base):
    __tablename__ = "taxonomy_terms"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    kind = Column(String(20), nullable=False, default="genre")  # genre|subgenre|theme|trope


class BookTaxonomyTagModel(Base):
    __tablename__ = "book_taxonomy_tags"
    __table_args__ = (
        UniqueConstraint("book_id", "term_id", name="uq_book_term"),
        Index("ix_book_taxonomy_tags_term", "term_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    book_id = Column(Uuid, ForeignKey("books.id"), nullable=False, index=True)
    term_id = Column(Uuid, ForeignKey("taxonomy_terms.id"), nullable=False)
    rank = Column(Integer, nullable=False)
    importance = Column(Float, nullable=False)

    book = relationship("BookModel", back_populates="tags")


class GenreViewModel(Base):
    """A reader's ranked list of preferred taxonomy terms."""

    __tablename__ = "genre_views"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    terms = relationship(
        "GenreViewTermModel",
        back_populates="view",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="GenreViewTermModel.rank",
    )


class GenreViewTermModel(Base):
    __tablename__ = "genre_view_terms"
    __table_args__ = (UniqueConstraint("view_id", "term_id", name="uq_view_term"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    view_id = Column(Uuid, ForeignKey("genre_views.id", ondelete="CASCADE"), nullable=False)
    term_id = Column(Uuid, ForeignKey("taxonomy_terms.id"), nullable=False)
    rank = Column(Integer, nullable=False)

    view = relationship("GenreViewModel", back_populates="terms")


class PopularityEntryModel(Base):
    """Cached output of a popularity run.

    Each run writes a new ``generation``; only one generation is active at a
    time.
    """

    __tablename__ = "popularity_entries"
    __table_args__ = (Index("ix_popularity_entries_active_rank", "active", "rank"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    book_id = Column(Uuid, ForeignKey("books.id"), nullable=False, index=True)
    score = Column(Float, nullable=False)
    rank = Column(Integer, nullable=False)
    weighted_engagement = Column(Float, default=0.0, nullable=False)
    first_ranked_at = Column(DateTime, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    generation = Column(Integer, default=0, nullable=False, index=True)
    computed_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class RatingPreferenceModel(Base):
    __tablename__ = "rating_preferences"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, unique=True)
    enjoyment = Column(Float, default=0.5, nullable=False)
    writing = Column(Float, default=0.5, nullable=False)
    themes = Column(Float, default=0.5, nullable=False)
    characters = Column(Float, default=0.5, nullable=False)
    worldbuilding = Column(Float, default=0.5, nullable=False)
    auto_adjust = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class RatingModel(Base):
    __tablename__ = "ratings"
    __table_args__ = (UniqueConstraint("user_id", "book_id", name="uq_user_book_rating"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    book_id = Column(Uuid, ForeignKey("books.id"), nullable=False)
    rating = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ReadingStatusModel(Base):
    __tablename__ = "reading_statuses"
    __table_args__ = (UniqueConstraint("user_id", "book_id", name="uq_user_book_status"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    book_id = Column(Uuid, ForeignKey("books.id"), nullable=False)
    status = Column(String(20), nullable=False)  # reading|want-to-read|completed
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ContentBlockModel(Base):
    __tablename__ = "content_blocks"
    __table_args__ = (
        UniqueConstraint("user_id", "block_type", "block_id", name="uq_user_block"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    block_type = Column(String(20), nullable=False)  # book|author|taxonomy
    block_id = Column(Uuid, nullable=False)
