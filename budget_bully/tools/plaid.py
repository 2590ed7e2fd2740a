"""Plaid API wrapper: transactions sync, accounts, item exchange and removal."""

import logging
from datetime import date
from typing import Optional

import httpx

from budget_bully.config import PLAID_BASE_URL, PLAID_CLIENT_ID, PLAID_SECRET, PLAID_TIMEOUT
from budget_bully.errors import UpstreamError
from budget_bully.models import Account, ProviderTransaction, SyncPage

logger = logging.getLogger(__name__)


def _mask_token(token: str) -> str:
    """Keep only the environment prefix and last 4 chars of an access token for logs."""
    if not token:
        return "<empty>"
    return f"{token.split('-')[0]}-...{token[-4:]}"


def parse_transaction(raw: dict) -> ProviderTransaction:
    """Convert a Plaid transaction object to a ProviderTransaction.

    Plaid reports money leaving the account as a positive amount; the sign is
    flipped here so that positive means inflow everywhere else. `date` is the
    authorized date when Plaid has one; the posted date is kept separately.
    """
    pfc = raw.get("personal_finance_category") or {}
    raw_date = raw.get("authorized_date") or raw["date"]
    return ProviderTransaction(
        id=raw["transaction_id"],
        account_id=raw["account_id"],
        name=raw.get("merchant_name") or raw.get("name") or "",
        date=date.fromisoformat(str(raw_date)),
        amount=-float(raw.get("amount") or 0.0),
        primary_category=pfc.get("primary") or "",
        detailed_category=pfc.get("detailed") or "",
        pending=bool(raw.get("pending", False)),
        logo_url=raw.get("logo_url"),
        posted_date=date.fromisoformat(str(raw["date"])),
    )


def parse_account(raw: dict, user_id: str) -> Account:
    """Convert a Plaid account object; prefers the available balance over current."""
    balances = raw.get("balances") or {}
    balance = balances.get("available")
    if balance is None:
        balance = balances.get("current")
    return Account(
        id=raw["account_id"],
        user_id=user_id,
        name=raw.get("name") or raw.get("official_name") or "",
        balance=float(balance or 0.0),
        type=str(raw.get("type") or ""),
        subtype=raw.get("subtype"),
        mask=raw.get("mask"),
    )


class PlaidClient:
    """Thin async client for the Plaid endpoints the sync pipeline needs.

    Each call opens its own httpx.AsyncClient. `transport` exists so tests can
    plug in an httpx.MockTransport.
    """

    def __init__(
        self,
        client_id: str = PLAID_CLIENT_ID,
        secret: str = PLAID_SECRET,
        base_url: str = PLAID_BASE_URL,
        timeout: float = PLAID_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.secret = secret
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    async def _post(self, path: str, body: dict) -> dict:
        payload = {"client_id": self.client_id, "secret": self.secret, **body}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post(path, json=payload)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Plaid request {path} failed: {e}") from e

        if resp.status_code != 200:
            try:
                err = resp.json()
            except ValueError:
                err = {}
            error_code = err.get("error_code", "")
            logger.error(
                "Plaid %s failed: %s %s %s",
                path, resp.status_code, error_code, err.get("error_message", resp.text[:200]),
            )
            raise UpstreamError(
                f"Plaid request {path} returned {resp.status_code} {error_code}".strip(),
                error_code=error_code,
                status_code=resp.status_code,
            )
        return resp.json()

    async def sync_page(self, access_token: str, cursor: Optional[str], page_size: int) -> SyncPage:
        """Fetch one page of /transactions/sync starting at `cursor` (None = from the beginning)."""
        body: dict = {
            "access_token": access_token,
            "count": page_size,
            "options": {"include_personal_finance_category": True},
        }
        if cursor:
            body["cursor"] = cursor

        data = await self._post("/transactions/sync", body)
        page = SyncPage(
            added=[parse_transaction(t) for t in data.get("added", [])],
            modified=[parse_transaction(t) for t in data.get("modified", [])],
            removed=[r["transaction_id"] for r in data.get("removed", []) if r.get("transaction_id")],
            next_cursor=data.get("next_cursor", ""),
            has_more=bool(data.get("has_more", False)),
        )
        logger.debug(
            "Sync page for %s: +%d ~%d -%d has_more=%s",
            _mask_token(access_token), len(page.added), len(page.modified), len(page.removed), page.has_more,
        )
        return page

    async def get_accounts(self, access_token: str, user_id: str) -> list[Account]:
        data = await self._post("/accounts/get", {"access_token": access_token})
        accounts = [parse_account(a, user_id) for a in data.get("accounts", [])]
        logger.info("Fetched %d accounts for %s", len(accounts), _mask_token(access_token))
        return accounts

    async def exchange_public_token(self, public_token: str) -> tuple[str, str]:
        """Exchange a Link public token. Returns (access_token, item_id)."""
        data = await self._post("/item/public_token/exchange", {"public_token": public_token})
        return data["access_token"], data["item_id"]

    async def remove_item(self, access_token: str) -> None:
        await self._post("/item/remove", {"access_token": access_token})
        logger.info("Removed Plaid item %s", _mask_token(access_token))
