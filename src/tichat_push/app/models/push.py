"""Push notification models: subscriptions, payloads and preferences."""

import json
import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tichat_push.app import config
from tichat_push.app.services.logging_service import get_logger

logger = get_logger(__name__)


class PermissionState(str, Enum):
    """Notification permission as reported by the platform."""

    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


class SubscriptionKeys(BaseModel):
    """Cryptographic material the push service uses to encrypt payloads."""

    p256dh: str
    auth: str


class Subscription(BaseModel):
    """One browser installation's registered push endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    endpoint: str
    keys: SubscriptionKeys
    expiration_time: int | None = Field(default=None, alias="expirationTime")
    device_type: str = Field(default=config.DEVICE_TYPE, exclude=True)

    def to_token(self) -> str:
        """Serialize the way the platform's subscription JSON looks on the wire."""
        return json.dumps({
            "endpoint": self.endpoint,
            "expirationTime": self.expiration_time,
            "keys": self.keys.model_dump(),
        })

    def to_subscription_info(self) -> dict[str, Any]:
        """Shape expected by pywebpush."""
        return {"endpoint": self.endpoint, "keys": self.keys.model_dump()}


class NotificationAction(BaseModel):
    action: str
    title: str


class NotificationPayload(BaseModel):
    """A fully-populated notification show request.

    Every field has a default so a partial or malformed push message still
    renders.
    """

    title: str = config.DEFAULT_TITLE
    body: str = config.DEFAULT_BODY
    icon: str = config.FAVICON_PATH
    badge: str = config.FAVICON_PATH
    tag: str = config.DEFAULT_TAG
    data: dict[str, Any] = Field(default_factory=dict)
    actions: list[NotificationAction] = Field(default_factory=list)
    require_interaction: bool = False
    silent: bool = False
    vibrate: list[int] = Field(default_factory=lambda: list(config.DEFAULT_VIBRATE))
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))

    @classmethod
    def from_push_data(cls, raw: bytes | str | None) -> "NotificationPayload":
        """Build a payload from raw push message bytes.

        Invalid JSON, a non-object document or wrong-typed fields all fall
        back to the defaults field by field.
        """
        if raw is None:
            return cls()
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            message = json.loads(raw)
        except (UnicodeDecodeError, ValueError, RecursionError):
            logger.error("Error parsing push payload, using defaults")
            return cls()
        if not isinstance(message, dict):
            return cls()
        return cls.from_message(message)

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "NotificationPayload":
        data = message.get("data")
        data = dict(data) if isinstance(data, dict) else {}
        if "id" in message and "id" not in data:
            data["id"] = message["id"]

        return cls(
            title=_text(message.get("title")) or config.DEFAULT_TITLE,
            body=_text(message.get("message")) or _text(message.get("body")) or config.DEFAULT_BODY,
            icon=_text(message.get("icon")) or config.FAVICON_PATH,
            badge=_text(message.get("badge")) or config.FAVICON_PATH,
            tag=_text(message.get("tag")) or _text(data.get("id")) or config.DEFAULT_TAG,
            data=data,
            actions=_actions(message.get("actions")),
            require_interaction=message.get("requireInteraction") is True,
            silent=message.get("silent") is True,
        )

    def show_options(self) -> dict[str, Any]:
        """Options as handed to the platform's show-notification call."""
        return {
            "body": self.body,
            "icon": self.icon,
            "badge": self.badge,
            "tag": self.tag,
            "data": self.data,
            "actions": [a.model_dump() for a in self.actions],
            "requireInteraction": self.require_interaction,
            "silent": self.silent,
            "vibrate": self.vibrate,
            "timestamp": self.timestamp,
        }


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list, bool)):
        return ""
    return str(value)


def _actions(value: Any) -> list[NotificationAction]:
    if not isinstance(value, list):
        return []
    actions = []
    for item in value:
        if isinstance(item, dict) and _text(item.get("action")) and _text(item.get("title")):
            actions.append(NotificationAction(action=_text(item["action"]), title=_text(item["title"])))
    return actions


class NotificationPreferences(BaseModel):
    """Per-user notification opt-in matrix."""

    email_notifications: bool = True
    push_notifications: bool = True
    new_posts: bool = True
    new_servers: bool = True
    new_games: bool = False
    follows: bool = True
