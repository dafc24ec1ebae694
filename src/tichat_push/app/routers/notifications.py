"""Notification routes: push tokens, preferences and close tracking."""

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from tichat_push.app import config
from tichat_push.app.models.push import NotificationAction, NotificationPreferences
from tichat_push.app.services.logging_service import get_logger
from tichat_push.app.services.store_backend import NotificationStore

logger = get_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


class PushTokenCreate(BaseModel):
    """Register a push token. The token is the JSON-encoded subscription."""
    token: str | None = None
    device_type: str = config.DEVICE_TYPE


class PushTokenDelete(BaseModel):
    token: str | None = None


class CloseEvent(BaseModel):
    notificationId: Any = None
    action: str = "close"


class PushMessage(BaseModel):
    """Dev-only push to every stored subscription."""
    title: str
    message: str
    tag: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    actions: list[NotificationAction] = Field(default_factory=list)


def _store(request: Request) -> NotificationStore:
    return request.app.state.notification_store


@router.post("/push-token")
async def register_push_token(body: PushTokenCreate, request: Request) -> dict:
    """Register or update a device's push token."""
    if not body.token:
        raise HTTPException(status_code=400, detail="Token es requerido")
    record = _store(request).upsert_token(body.token, body.device_type)
    return {"pushToken": record}


@router.delete("/push-token")
async def remove_push_token(body: PushTokenDelete, request: Request) -> dict:
    """Remove a device's push token."""
    if not body.token:
        raise HTTPException(status_code=400, detail="Token es requerido")
    _store(request).remove_token(body.token)
    return {"success": True}


@router.get("/preferences")
async def get_preferences(request: Request) -> dict:
    return {"preferences": _store(request).get_preferences().model_dump()}


@router.put("/preferences")
async def update_preferences(body: NotificationPreferences, request: Request) -> dict:
    return {"preferences": _store(request).save_preferences(body).model_dump()}


@router.post("/track-close")
async def track_close(body: CloseEvent, request: Request) -> dict:
    logger.info(f"Notification {body.notificationId!r} closed")
    _store(request).record_close(body.notificationId, body.action)
    return {"success": True}


@router.post("/send")
def send_push(body: PushMessage, request: Request) -> dict:
    """Send a push notification to all registered devices."""
    sent = _store(request).send_to_all(body.model_dump(exclude_none=True))
    return {"sent": sent}
