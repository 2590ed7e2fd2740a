"""Cursor-based incremental transaction sync against the provider feed."""

import logging
from typing import Optional, Protocol

from budget_bully.models import ProviderTransaction, SyncPage, SyncResult

logger = logging.getLogger(__name__)


class SyncFeed(Protocol):
    async def sync_page(self, access_token: str, cursor: Optional[str], page_size: int) -> SyncPage: ...


def _apply_page(changes: dict[str, Optional[ProviderTransaction]], page: SyncPage) -> None:
    """Fold one page into the per-id net changes. Later events replace earlier ones."""
    for txn in page.added:
        changes[txn.id] = txn
    for txn in page.modified:
        changes[txn.id] = txn
    for txn_id in page.removed:
        changes[txn_id] = None


async def sync_transactions(
    feed: SyncFeed,
    access_token: str,
    cursor: Optional[str],
    page_size: int = 200,
) -> SyncResult:
    """Page through the feed from `cursor` until `has_more` is false.

    Pages are requested one after another because each needs the previous
    page's cursor. If any request fails, everything gathered so far is
    dropped and the result carries the starting cursor with complete=False,
    so the next run re-reads from the same point.
    """
    added, modified, removed = [], [], []
    changes: dict[str, Optional[ProviderTransaction]] = {}
    next_cursor = cursor
    pages = 0
    has_more = True

    try:
        while has_more:
            page = await feed.sync_page(access_token, next_cursor, page_size)
            pages += 1
            added.extend(page.added)
            modified.extend(page.modified)
            removed.extend(page.removed)
            _apply_page(changes, page)
            has_more = page.has_more
            next_cursor = page.next_cursor
    except Exception as e:  # any failed page means no progress
        logger.warning(
            "Transaction sync aborted after %d page(s) (%s); rolling cursor back", pages, e,
        )
        return SyncResult(cursor=cursor, complete=False, pages=pages)

    logger.info(
        "Transaction sync done: %d page(s), %d added, %d modified, %d removed",
        pages, len(added), len(modified), len(removed),
    )
    return SyncResult(
        added=added,
        modified=modified,
        removed=removed,
        changes=changes,
        cursor=next_cursor,
        complete=True,
        pages=pages,
    )
