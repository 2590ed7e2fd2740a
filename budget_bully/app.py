"""FastAPI app: Plaid webhook + manual sync/maintenance endpoints."""

import asyncio
import logging
from dataclasses import asdict
from datetime import date
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel

from budget_bully.config import DATABASE_URL, LOG_LEVEL, SYNC_API_SECRET
from budget_bully.errors import BudgetBullyError, NotFoundError, UpstreamError, ValidationError
from budget_bully.expo import ExpoPushSender, is_expo_push_token
from budget_bully.models import ItemStatus, Transaction
from budget_bully.store import create_store
from budget_bully.sync import SyncService
from budget_bully.tools.categories import map_category
from budget_bully.tools.plaid import PlaidClient

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Bully Sync")

TRANSACTION_SYNC_CODES = {
    "SYNC_UPDATES_AVAILABLE",
    "DEFAULT_UPDATE",
    "INITIAL_UPDATE",
    "HISTORICAL_UPDATE",
    "TRANSACTIONS_REMOVED",
}

ITEM_STATUS_CODES = {
    "LOGIN_REPAIRED": ItemStatus.GOOD,
    "PENDING_EXPIRATION": ItemStatus.PENDING_EXPIRATION,
    "PENDING_DISCONNECT": ItemStatus.PENDING_DISCONNECT,
}


# ---------------------------------------------------------------------------
# Service wiring (overridden in tests)
# ---------------------------------------------------------------------------

_service: Optional[SyncService] = None


def get_sync_service() -> SyncService:
    global _service
    if _service is None:
        _service = SyncService.from_store(create_store(DATABASE_URL), PlaidClient(), ExpoPushSender())
    return _service


async def verify_sync_auth(x_sync_auth: str = Header(None)):
    """Verify X-Sync-Auth header for /api/v1/* endpoints."""
    if not SYNC_API_SECRET:
        logger.error("SYNC_API_SECRET not configured, rejecting request")
        raise HTTPException(status_code=503, detail="API authentication not configured")
    if x_sync_auth != SYNC_API_SECRET:
        raise HTTPException(status_code=401, detail="Invalid or missing X-Sync-Auth header")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class PlaidWebhook(BaseModel):
    webhook_type: str
    webhook_code: str
    item_id: Optional[str] = None
    link_token: Optional[str] = None
    public_tokens: list[str] = []
    status: Optional[str] = None
    error: Optional[dict] = None


class PushTokenRequest(BaseModel):
    push_token: str


class UnreviewedTransactionIn(BaseModel):
    name: str
    category: str = ""
    detailed_category: str = ""


class UnreviewedNotificationRequest(BaseModel):
    user_id: str
    transactions: list[UnreviewedTransactionIn]


# ---------------------------------------------------------------------------
# Background jobs
# ---------------------------------------------------------------------------

async def _run_sync(service: SyncService, item_id: str):
    try:
        report = await service.update_transactions(item_id)
        logger.info("Background sync for %s finished (%d failure(s))", item_id, len(report.failures))
    except BudgetBullyError as e:
        logger.error("Background sync for %s failed: %s", item_id, e)
    except Exception:
        logger.exception("Background sync for %s crashed", item_id)


async def _run_link(service: SyncService, link_token: str, public_token: str):
    try:
        report = await service.link_item(link_token, public_token)
        logger.info("Item %s linked and synced", report.item_id)
    except BudgetBullyError as e:
        logger.error("Linking item failed: %s", e)
    except Exception:
        logger.exception("Linking item crashed")


async def _run_status_update(service: SyncService, item_id: str, status: ItemStatus):
    try:
        await service.set_item_status(item_id, status)
    except BudgetBullyError as e:
        logger.error("Status update for %s failed: %s", item_id, e)


def _item_error_status(payload: PlaidWebhook) -> ItemStatus:
    error_code = (payload.error or {}).get("error_code", "")
    if error_code == "ITEM_LOGIN_REQUIRED":
        return ItemStatus.LOGIN_REQUIRED
    return ItemStatus.ERROR


def dispatch_webhook(payload: PlaidWebhook, service: SyncService, background_tasks: BackgroundTasks) -> str:
    """Queue the work a webhook asks for. Returns a short label of what was queued.

    Raises ValidationError if the payload lacks the field its event needs.
    """
    wtype, code = payload.webhook_type.upper(), payload.webhook_code.upper()

    if wtype == "TRANSACTIONS" and code in TRANSACTION_SYNC_CODES:
        if not payload.item_id:
            raise ValidationError(f"{wtype}/{code} webhook without item_id")
        background_tasks.add_task(_run_sync, service, payload.item_id)
        return "sync"

    if wtype == "LINK" and code == "SESSION_FINISHED":
        if (payload.status or "").lower() != "success":
            logger.info("Link session finished with status %s, nothing to do", payload.status)
            return "ignored"
        if not payload.link_token or not payload.public_tokens:
            raise ValidationError("SESSION_FINISHED webhook without link_token/public_tokens")
        background_tasks.add_task(_run_link, service, payload.link_token, payload.public_tokens[0])
        return "link"

    if wtype == "ITEM" and (code == "ERROR" or code in ITEM_STATUS_CODES):
        if not payload.item_id:
            raise ValidationError(f"{wtype}/{code} webhook without item_id")
        status = _item_error_status(payload) if code == "ERROR" else ITEM_STATUS_CODES[code]
        background_tasks.add_task(_run_status_update, service, payload.item_id, status)
        return "status"

    logger.info("Unhandled webhook %s/%s", wtype, code)
    return "ignored"


# ---------------------------------------------------------------------------
# Plaid webhook
# ---------------------------------------------------------------------------

@app.post("/plaid/webhook")
async def plaid_webhook(
    payload: PlaidWebhook,
    background_tasks: BackgroundTasks,
    service: SyncService = Depends(get_sync_service),
):
    """Acknowledge every Plaid webhook; the actual work runs after the response."""
    logger.info("Plaid webhook %s/%s for item %s", payload.webhook_type, payload.webhook_code, payload.item_id)
    try:
        action = dispatch_webhook(payload, service, background_tasks)
    except ValidationError as e:
        logger.warning("Malformed webhook ignored: %s", e)
        action = "invalid"
    return {"status": "ok", "action": action}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Manual endpoints
# ---------------------------------------------------------------------------

@app.post("/api/v1/items/{item_id}/sync", dependencies=[Depends(verify_sync_auth)])
async def sync_item(item_id: str, service: SyncService = Depends(get_sync_service)):
    """Run a sync inline and return its report."""
    try:
        report = await service.update_transactions(item_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UpstreamError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"status": "synced", "report": asdict(report)}


@app.post("/api/v1/users/{user_id}/push-token", dependencies=[Depends(verify_sync_auth)])
async def register_push_token(
    user_id: str,
    req: PushTokenRequest,
    service: SyncService = Depends(get_sync_service),
):
    if not is_expo_push_token(req.push_token):
        raise HTTPException(status_code=400, detail="Not an Expo push token")
    await asyncio.to_thread(service.users.set_push_token, user_id, req.push_token)
    logger.info("Registered push token for user %s", user_id)
    return {"status": "registered"}


@app.delete("/api/v1/users/{user_id}/items", dependencies=[Depends(verify_sync_auth)])
async def remove_user_items(user_id: str, service: SyncService = Depends(get_sync_service)):
    removed = await service.remove_user_items(user_id)
    return {"status": "removed", "removed": removed}


@app.post("/api/v1/notifications/unreviewed", dependencies=[Depends(verify_sync_auth)])
async def send_unreviewed_notification(
    req: UnreviewedNotificationRequest,
    service: SyncService = Depends(get_sync_service),
):
    """Send the unreviewed-transactions push for hand-written transactions (manual testing)."""
    today = date.today()
    unreviewed = [
        Transaction(
            id=f"manual-{i}",
            user_id=req.user_id,
            account_id="",
            name=t.name,
            date=today,
            amount=0.0,
            category=map_category(t.detailed_category, t.category),
            detailed_category=t.detailed_category,
        )
        for i, t in enumerate(req.transactions)
    ]
    sent = await service.notify_unreviewed(req.user_id, unreviewed)
    return {"status": "sent" if sent else "not_sent"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("budget_bully.app:app", host="0.0.0.0", port=8000)
