"""Item sync orchestration: reconcile, categorize, budget, persist, notify.

update_transactions() is the entry point for webhooks and manual triggers:

1. Load the linked item (cursor + access token)
2. Page through the provider's transactions feed from the stored cursor
3. Fetch the current account snapshot
4. Collapse the feed to one change per transaction id, categorize the
   survivors and flag them reviewed/unreviewed by posted month
5. Recompute suggested limits if the user already has stored transactions
6. Drop transactions outside the current/previous month retention window
7. Upsert accounts, upsert/delete transactions, store the new cursor
8. Push one notification if anything retained is unreviewed

The writes in step 7 are best-effort: each one is attempted on its own and a
failure is logged and counted in the SyncReport instead of aborting the run.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import date
from typing import Callable, Optional, Protocol, Sequence

from budget_bully.config import SYNC_PAGE_SIZE
from budget_bully.errors import NotFoundError, PersistenceError, UpstreamError
from budget_bully.models import (
    Account,
    ItemStatus,
    LinkedItem,
    ProviderTransaction,
    PushMessage,
    SyncReport,
    Transaction,
)
from budget_bully.notifications import select_notification
from budget_bully.store import AccountStore, CategoryStore, ItemStore, Store, TransactionStore, UserStore
from budget_bully.tools.budget import compute_limits
from budget_bully.tools.categories import map_category
from budget_bully.tools.reconciler import SyncFeed, sync_transactions

logger = logging.getLogger(__name__)


class Provider(SyncFeed, Protocol):
    async def get_accounts(self, access_token: str, user_id: str) -> list[Account]: ...
    async def exchange_public_token(self, public_token: str) -> tuple[str, str]: ...
    async def remove_item(self, access_token: str) -> None: ...


class PushSender(Protocol):
    async def send(self, message: PushMessage) -> bool: ...


# ---------------------------------------------------------------------------
# Per-transaction rules
# ---------------------------------------------------------------------------

def _year_month(d: date) -> tuple[int, int]:
    return d.year, d.month


def _previous_month(today: date) -> tuple[int, int]:
    return (today.year - 1, 12) if today.month == 1 else (today.year, today.month - 1)


def is_reviewed(txn_date: date, today: date) -> bool:
    """Transactions outside the current calendar month are presumed already seen."""
    return _year_month(txn_date) != _year_month(today)


def in_retention_window(txn_date: date, today: date) -> bool:
    """Only the current and the previous calendar month are kept locally."""
    return _year_month(txn_date) in (_year_month(today), _previous_month(today))


def categorize(txn: ProviderTransaction, user_id: str, today: date) -> Transaction:
    return Transaction(
        id=txn.id,
        user_id=user_id,
        account_id=txn.account_id,
        name=txn.name,
        date=txn.date,
        amount=txn.amount,
        category=map_category(txn.detailed_category, txn.primary_category),
        detailed_category=txn.detailed_category,
        reviewed=is_reviewed(txn.posted_date or txn.date, today),
        pending=txn.pending,
        logo_url=txn.logo_url,
    )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class SyncService:
    """Runs item syncs against a provider, a set of repositories and a push sender.

    Syncs for the same item are serialized with an in-process lock so two
    overlapping triggers cannot race on the stored cursor.
    """

    def __init__(
        self,
        provider: Provider,
        items: ItemStore,
        accounts: AccountStore,
        transactions: TransactionStore,
        categories: CategoryStore,
        users: UserStore,
        push: PushSender,
        page_size: int = SYNC_PAGE_SIZE,
        today: Callable[[], date] = date.today,
    ):
        self.provider = provider
        self.items = items
        self.accounts = accounts
        self.transactions = transactions
        self.categories = categories
        self.users = users
        self.push = push
        self.page_size = page_size
        self._today = today
        self._item_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @classmethod
    def from_store(cls, store: Store, provider: Provider, push: PushSender, **kwargs) -> "SyncService":
        return cls(
            provider=provider,
            items=store.items,
            accounts=store.accounts,
            transactions=store.transactions,
            categories=store.categories,
            users=store.users,
            push=push,
            **kwargs,
        )

    # --- entry points ---

    async def update_transactions(self, item_id: str) -> SyncReport:
        """Sync one linked item end to end. See the module docstring for the steps.

        Raises NotFoundError if the item or its access token is missing, and
        UpstreamError if the feed or the account snapshot could not be fetched
        (nothing is persisted in that case and the stored cursor is untouched).
        """
        async with self._item_locks[item_id]:
            return await self._update_transactions(item_id)

    async def link_item(self, link_token: str, public_token: str) -> SyncReport:
        """Finish a Link session: exchange the public token, store the item, run a first sync."""
        user_id = await asyncio.to_thread(self.users.get_id_by_link_token, link_token)
        if user_id is None:
            raise NotFoundError("No user owns the given link token")

        access_token, item_id = await self.provider.exchange_public_token(public_token)
        existing = await asyncio.to_thread(self.items.get, item_id)
        item = LinkedItem(
            id=item_id,
            user_id=user_id,
            access_token=access_token,
            cursor=existing.cursor if existing else None,
            status=ItemStatus.GOOD,
        )
        await asyncio.to_thread(self.items.save, item)
        logger.info("Linked item %s for user %s", item_id, user_id)
        return await self.update_transactions(item_id)

    async def set_item_status(self, item_id: str, status: ItemStatus) -> None:
        item = await asyncio.to_thread(self.items.get, item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        await asyncio.to_thread(self.items.update_status, item_id, status)
        logger.info("Item %s status %s -> %s", item_id, item.status.value, ItemStatus(status).value)

    async def remove_user_items(self, user_id: str) -> int:
        """Remove every item of a user at the provider, then locally. Returns how many went."""
        items = await asyncio.to_thread(self.items.list_for_user, user_id)
        removed = 0
        for item in items:
            try:
                if item.access_token:
                    await self.provider.remove_item(item.access_token)
                await asyncio.to_thread(self.items.delete, item.id)
                removed += 1
            except (UpstreamError, PersistenceError) as e:
                logger.error("Failed to remove item %s for user %s: %s", item.id, user_id, e)
        return removed

    async def notify_unreviewed(self, user_id: str, unreviewed: Sequence[Transaction]) -> bool:
        """Pick and send the unreviewed-transactions push for a user. Never raises."""
        try:
            push_token = await asyncio.to_thread(self.users.get_push_token, user_id)
            if not push_token:
                logger.warning("User %s has no push token, skipping notification", user_id)
                return False
            statuses = await asyncio.to_thread(self.categories.statuses_for_user, user_id)
            message = select_notification(unreviewed, statuses, push_token)
            return await self.push.send(message)
        except Exception:
            logger.exception("Unreviewed-transactions notification failed for user %s", user_id)
            return False

    # --- pipeline ---

    async def _update_transactions(self, item_id: str) -> SyncReport:
        today = self._today()

        item = await asyncio.to_thread(self.items.get, item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        if not item.access_token:
            raise NotFoundError(f"Access token missing for item {item_id}")

        result = await sync_transactions(self.provider, item.access_token, item.cursor, self.page_size)
        if not result.complete:
            raise UpstreamError(f"Transactions feed unavailable for item {item_id}; cursor left unchanged")

        try:
            accounts = await self.provider.get_accounts(item.access_token, item.user_id)
        except UpstreamError:
            logger.error("Account snapshot failed for item %s; nothing persisted", item_id)
            raise

        report = SyncReport(
            item_id=item_id,
            added=len(result.added),
            modified=len(result.modified),
            removed=len(result.removed),
            accounts=len(accounts),
        )

        incoming = [categorize(t, item.user_id, today) for t in result.changes.values() if t is not None]
        removed = [txn_id for txn_id, t in result.changes.items() if t is None]

        await self._recompute_limits(item.user_id, incoming, removed, accounts, today, report)

        retained = [t for t in incoming if in_retention_window(t.date, today)]
        report.retained = len(retained)
        if len(retained) < len(incoming):
            logger.info("Dropped %d transaction(s) outside the retention window", len(incoming) - len(retained))

        await self._save_accounts(item.user_id, accounts, report)
        await self._save_transactions(retained, removed, report)
        await self._save_cursor(item, result.cursor, report)

        unreviewed = [t for t in retained if not t.reviewed]
        if unreviewed:
            report.notified = await self.notify_unreviewed(item.user_id, unreviewed)

        logger.info(
            "Item %s synced: +%d ~%d -%d, %d retained, %d accounts, %d failure(s)",
            item_id, report.added, report.modified, report.removed,
            report.retained, report.accounts, len(report.failures),
        )
        return report

    async def _fan_out(self, label: str, calls: list[tuple[Callable, tuple]], report: SyncReport) -> int:
        """Run store calls concurrently in worker threads. Returns how many failed."""
        if not calls:
            return 0
        results = await asyncio.gather(
            *(asyncio.to_thread(fn, *args) for fn, args in calls),
            return_exceptions=True,
        )
        failed = 0
        for (fn, args), res in zip(calls, results):
            if isinstance(res, Exception):
                failed += 1
                logger.error("%s failed for %s: %s", label, getattr(args[0], "id", args[0]), res)
                report.failures.append(f"{label}: {res}")
        return failed

    async def _recompute_limits(
        self,
        user_id: str,
        incoming: list[Transaction],
        removed: list[str],
        accounts: list[Account],
        today: date,
        report: SyncReport,
    ) -> None:
        try:
            if not await asyncio.to_thread(self.transactions.has_any, user_id):
                logger.info("User %s has no stored transactions yet, skipping limits", user_id)
                return
            stored = await asyncio.to_thread(self.transactions.list_for_user, user_id)
        except PersistenceError as e:
            logger.error("Could not load transaction history for %s: %s", user_id, e)
            report.failures.append(f"limits: {e}")
            return

        history = {t.id: t for t in stored}
        for txn_id in removed:
            history.pop(txn_id, None)
        history.update({t.id: t for t in incoming})

        limits = compute_limits(user_id, list(history.values()), accounts, today)
        failed = await self._fan_out(
            "set_limit",
            [(self.categories.set_limit, (user_id, cl.category, cl.limit)) for cl in limits],
            report,
        )
        report.limits_written = len(limits) - failed

    async def _save_accounts(self, user_id: str, accounts: list[Account], report: SyncReport) -> None:
        failed = await self._fan_out("upsert_account", [(self.accounts.upsert, (a,)) for a in accounts], report)
        if not accounts:
            logger.warning("Empty account snapshot for user %s; keeping stored accounts", user_id)
            return
        try:
            deleted = await asyncio.to_thread(self.accounts.delete_missing, user_id, {a.id for a in accounts})
            if deleted:
                logger.info("Deleted %d stale account(s) for user %s", deleted, user_id)
        except PersistenceError as e:
            logger.error("Stale account cleanup failed for user %s: %s", user_id, e)
            report.failures.append(f"delete_missing_accounts: {e}")
        logger.info("Upserted %d/%d account(s) for user %s", len(accounts) - failed, len(accounts), user_id)

    async def _save_transactions(self, retained: list[Transaction], removed: list[str], report: SyncReport) -> None:
        calls = [(self.transactions.upsert, (t,)) for t in retained]
        calls += [(self.transactions.delete, (txn_id,)) for txn_id in removed]
        await self._fan_out("transaction_write", calls, report)

    async def _save_cursor(self, item: LinkedItem, cursor: Optional[str], report: SyncReport) -> None:
        try:
            await asyncio.to_thread(self.items.update_cursor, item.id, cursor)
            if item.status != ItemStatus.GOOD:
                await asyncio.to_thread(self.items.update_status, item.id, ItemStatus.GOOD)
        except PersistenceError as e:
            logger.error("Failed to store cursor for item %s: %s", item.id, e)
            report.failures.append(f"update_cursor: {e}")
