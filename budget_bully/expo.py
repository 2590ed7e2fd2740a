"""Expo push notification sending via the Expo push HTTP API."""

import logging
import re
from typing import Optional

import httpx

from budget_bully.config import EXPO_ACCESS_TOKEN
from budget_bully.models import PushMessage

logger = logging.getLogger(__name__)

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"
MAX_BATCH_SIZE = 100  # Expo accepts at most 100 messages per request

_PUSH_TOKEN_RE = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[.+\]$")


def is_expo_push_token(token: str) -> bool:
    """Return True if the token looks like ExponentPushToken[...] / ExpoPushToken[...]."""
    return bool(token) and bool(_PUSH_TOKEN_RE.match(token))


def _headers() -> dict[str, str]:
    headers = {
        "Accept": "application/json",
        "Content-Type": "application/json",
    }
    if EXPO_ACCESS_TOKEN:
        headers["Authorization"] = f"Bearer {EXPO_ACCESS_TOKEN}"
    return headers


def _chunk(messages: list[PushMessage]) -> list[list[PushMessage]]:
    return [messages[i:i + MAX_BATCH_SIZE] for i in range(0, len(messages), MAX_BATCH_SIZE)]


class ExpoPushSender:
    """Fire-and-forget push sender. Failures are logged, never raised."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def send(self, message: PushMessage) -> bool:
        return await self.send_many([message]) == 1

    async def send_many(self, messages: list[PushMessage]) -> int:
        """Send messages in batches. Returns how many Expo accepted."""
        valid = []
        for m in messages:
            if is_expo_push_token(m.to):
                valid.append(m)
            else:
                logger.warning("Push token %s is not a valid Expo push token, skipping", m.to[:24])

        accepted = 0
        for batch in _chunk(valid):
            try:
                async with httpx.AsyncClient(transport=self._transport) as client:
                    resp = await client.post(
                        EXPO_PUSH_URL,
                        json=[m.to_payload() for m in batch],
                        headers=_headers(),
                    )
                if resp.status_code == 429:
                    logger.warning("Expo rate limit hit, %d notification(s) dropped", len(batch))
                    continue
                if resp.status_code != 200:
                    logger.error("Expo push failed: %s %s", resp.status_code, resp.text[:300])
                    continue
                tickets = resp.json().get("data", [])
            except Exception:
                logger.exception("Expo push request failed")
                continue

            for ticket in tickets:
                if ticket.get("status") == "ok":
                    accepted += 1
                else:
                    details = ticket.get("details") or {}
                    logger.error(
                        "Expo rejected notification: %s (%s)",
                        ticket.get("message", ""), details.get("error", "unknown"),
                    )
        return accepted
