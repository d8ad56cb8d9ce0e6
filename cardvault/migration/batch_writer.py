"""
Batched record writer.

Splits a record list into fixed-size batches and commits them one after
another. A batch is atomic: it either lands completely or, after the
configured retries, is rolled back and all of its records are counted as
errors. Later batches are still attempted.

Batches are written sequentially to stay within the store's write quota
and so that card counts recomputed afterwards are deterministic.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from functools import partial

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardvault.config import settings
from cardvault.db.operations import add_cards, add_sold_items, update_collection_card_count
from cardvault.models.migration import Record, WriteResult

logger = logging.getLogger(__name__)

InsertBatch = Callable[[list[Record]], Awaitable[int]]


def iter_batches(records: Sequence[Record], batch_size: int) -> Iterator[list[Record]]:
    """Yield consecutive slices of at most ``batch_size`` records."""
    if batch_size < 1:
        msg = f"batch_size must be positive, got {batch_size}"
        raise ValueError(msg)
    for start in range(0, len(records), batch_size):
        yield list(records[start : start + batch_size])


class BatchWriter:
    """
    Writes cards and sold items for one account in bounded batches.

    Args:
        session: Database session; committed after every batch
        user_id: Account the records belong to
        batch_size: Records per batch
        max_attempts: Commit attempts per batch (defaults to settings)
        retry_backoff: Base delay in seconds between attempts (defaults to settings)
    """

    def __init__(
        self,
        session: AsyncSession,
        user_id: str,
        batch_size: int,
        *,
        max_attempts: int | None = None,
        retry_backoff: float | None = None,
    ):
        self.session = session
        self.user_id = user_id
        self.batch_size = batch_size
        self.max_attempts = max(
            1, settings.batch_max_attempts if max_attempts is None else max_attempts
        )
        self.retry_backoff = (
            settings.batch_retry_backoff if retry_backoff is None else retry_backoff
        )

    async def write_cards(self, cards: Sequence[Record], collection_id: str) -> WriteResult:
        """
        Write cards into a collection and refresh its card count.

        The count is recomputed from the store even when every batch failed,
        since an earlier import may already have written cards there.
        """
        result = await self._write(
            cards,
            partial(add_cards, self.session, self.user_id, collection_id),
            f"collection {collection_id}",
        )
        await self.refresh_card_count(collection_id)
        return result

    async def write_sold_items(self, items: Sequence[Record]) -> WriteResult:
        """Write sold items into the account's sold bucket."""
        return await self._write(
            items,
            partial(add_sold_items, self.session, self.user_id),
            "sold items",
        )

    async def refresh_card_count(self, collection_id: str) -> int | None:
        """Recompute and persist a collection's card count."""
        try:
            count = await update_collection_card_count(self.session, self.user_id, collection_id)
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("Failed to update card count for collection %s", collection_id)
            return None
        return count

    async def _write(
        self, records: Sequence[Record], insert: InsertBatch, target: str
    ) -> WriteResult:
        count = 0
        error_count = 0
        batches = 0

        for index, batch in enumerate(iter_batches(records, self.batch_size)):
            batches += 1
            if await self._commit_batch(batch, insert, target, index):
                count += len(batch)
            else:
                error_count += len(batch)

        logger.info(
            "Wrote %d records to %s in %d batches (%d failed)",
            count,
            target,
            batches,
            error_count,
        )
        return WriteResult(count=count, error_count=error_count, batches=batches)

    async def _commit_batch(
        self, batch: list[Record], insert: InsertBatch, target: str, index: int
    ) -> bool:
        for attempt in range(self.max_attempts):
            try:
                await insert(batch)
                await self.session.commit()
                return True
            except SQLAlchemyError as e:
                await self.session.rollback()
                if attempt < self.max_attempts - 1:
                    wait_time = self.retry_backoff * 2**attempt
                    logger.warning(
                        "Batch %d for %s failed (attempt %d/%d), retrying in %.1fs: %s",
                        index,
                        target,
                        attempt + 1,
                        self.max_attempts,
                        wait_time,
                        e,
                    )
                    await asyncio.sleep(wait_time)
                else:
                    logger.error(
                        "Batch %d for %s failed after %d attempts, %d records lost: %s",
                        index,
                        target,
                        self.max_attempts,
                        len(batch),
                        e,
                    )
        return False
