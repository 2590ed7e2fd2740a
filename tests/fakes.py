"""Test doubles for the provider and the push transport."""

from dataclasses import replace
from datetime import date
from typing import Optional

from budget_bully.errors import UpstreamError
from budget_bully.models import Account, ProviderTransaction, PushMessage, SyncPage


def ptxn(
    txn_id: str,
    when: date,
    amount: float,
    detailed: str = "",
    primary: str = "",
    account_id: str = "acc-checking",
    name: str = "Merchant",
) -> ProviderTransaction:
    return ProviderTransaction(
        id=txn_id,
        account_id=account_id,
        name=name,
        date=when,
        amount=amount,
        primary_category=primary,
        detailed_category=detailed,
    )


def checking(balance: float = 1000.0) -> Account:
    return Account(id="acc-checking", user_id="", name="Checking", balance=balance, type="depository", mask="0000")


def credit_card(balance: float = -250.0) -> Account:
    return Account(id="acc-credit", user_id="", name="Credit Card", balance=balance, type="credit", mask="1111")


class FakeProvider:
    """Scripted provider: the feed is a map of cursor -> page.

    A cursor with no scripted page yields an empty final page that keeps the
    cursor where it is. Cursors listed in `failing_cursors` raise UpstreamError.
    """

    def __init__(self):
        self.feed: dict[Optional[str], SyncPage] = {}
        self.failing_cursors: set[Optional[str]] = set()
        self.accounts: list[Account] = [checking()]
        self.fail_accounts = False
        self.exchanges: dict[str, tuple[str, str]] = {}
        self.removed_tokens: list[str] = []
        self.failing_removals: set[str] = set()
        self.requests: list[tuple[str, Optional[str], int]] = []

    async def sync_page(self, access_token: str, cursor: Optional[str], page_size: int) -> SyncPage:
        self.requests.append((access_token, cursor, page_size))
        if cursor in self.failing_cursors:
            raise UpstreamError("feed unavailable", error_code="INTERNAL_SERVER_ERROR", status_code=500)
        return self.feed.get(cursor, SyncPage(next_cursor=cursor or "", has_more=False))

    async def get_accounts(self, access_token: str, user_id: str) -> list[Account]:
        if self.fail_accounts:
            raise UpstreamError("accounts unavailable", status_code=500)
        return [replace(a, user_id=user_id) for a in self.accounts]

    async def exchange_public_token(self, public_token: str) -> tuple[str, str]:
        if public_token not in self.exchanges:
            raise UpstreamError("INVALID_PUBLIC_TOKEN", error_code="INVALID_PUBLIC_TOKEN", status_code=400)
        return self.exchanges[public_token]

    async def remove_item(self, access_token: str) -> None:
        if access_token in self.failing_removals:
            raise UpstreamError("remove failed", status_code=500)
        self.removed_tokens.append(access_token)


class RecordingPush:
    def __init__(self, accept: bool = True):
        self.accept = accept
        self.messages: list[PushMessage] = []

    async def send(self, message: PushMessage) -> bool:
        self.messages.append(message)
        return self.accept
