"""Block-list content filter.

Readers can block individual books, authors, or taxonomy terms; any
candidate matching one of those blocks is removed before it is shown.
"""

import logging
from uuid import UUID

from bookrank.domain.repositories import IContentBlockRepository, IContentFilter

logger = logging.getLogger(__name__)


class BlockListContentFilter(IContentFilter):

    def __init__(self, block_repository: IContentBlockRepository):
        self.block_repository = block_repository

    async def filter(self, reader_id: UUID, book_ids: list[UUID]) -> list[UUID]:
        if not book_ids:
            return []
        blocked = await self.block_repository.blocked_book_ids(reader_id, book_ids)
        if blocked:
            logger.info(
                "Content filter removed %d of %d books for user %s",
                len(blocked), len(book_ids), reader_id,
            )
        return [bid for bid in book_ids if bid not in blocked]
