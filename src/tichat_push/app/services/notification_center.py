"""Displayed notifications, coalesced by tag."""

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from tichat_push.app.services.logging_service import get_logger

logger = get_logger(__name__)


@dataclass
class Notification:
    """A notification currently shown to the user."""

    title: str
    tag: str
    options: dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def body(self) -> str:
        return self.options.get("body", "")

    @property
    def data(self) -> dict[str, Any]:
        return self.options.get("data") or {}


class NotificationCenter:
    """Platform notification tray.

    A notification shown with the tag of one already displayed replaces it.
    """

    def __init__(self) -> None:
        self._by_tag: dict[str, Notification] = {}

    async def show(self, title: str, options: dict[str, Any]) -> Notification:
        tag = options.get("tag") or str(uuid.uuid4())
        notification = Notification(title=title, tag=tag, options=dict(options))
        replaced = self._by_tag.pop(tag, None)
        self._by_tag[tag] = notification
        if replaced:
            logger.debug(f"Notification tag={tag!r} replaced")
        return notification

    def get_notifications(self, tag: Optional[str] = None) -> list[Notification]:
        if tag is not None:
            found = self._by_tag.get(tag)
            return [found] if found else []
        return list(self._by_tag.values())

    def close(self, notification: Notification) -> None:
        """Remove the notification if it is still the one shown for its tag."""
        current = self._by_tag.get(notification.tag)
        if current is not None and current.id == notification.id:
            del self._by_tag[notification.tag]

