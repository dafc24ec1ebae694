"""Open application windows controlled by the delivery agent."""

import uuid
from typing import Any, Optional
from urllib.parse import urljoin, urlsplit

from tichat_push.app.services.logging_service import get_logger
from tichat_push.app.services.messaging import MessageChannel

logger = get_logger(__name__)


class WindowClient:
    """One open window/tab of the application."""

    def __init__(self, url: str, controlled: bool = False):
        self.id = str(uuid.uuid4())
        self.url = url
        self.controlled = controlled
        self.focused = False
        self.inbox = MessageChannel(name=f"window:{self.id[:8]}")

    def post_message(self, message: dict[str, Any]) -> None:
        self.inbox.post_message(message)

    async def focus(self) -> "WindowClient":
        self.focused = True
        return self

    def __repr__(self) -> str:
        return f"WindowClient(url={self.url!r}, controlled={self.controlled})"


class ClientRegistry:
    """The set of windows open for one origin."""

    def __init__(self, origin: str):
        self.origin = origin.rstrip("/")
        self._clients: list[WindowClient] = []

    def same_origin(self, url: str) -> bool:
        origin = urlsplit(self.origin)
        target = urlsplit(url)
        return (target.scheme, target.netloc) == (origin.scheme, origin.netloc)

    def add_window(self, path: str = "/", controlled: bool = False) -> WindowClient:
        """Register a window the user opened."""
        client = WindowClient(urljoin(self.origin + "/", path), controlled=controlled)
        self._clients.append(client)
        return client

    def remove_window(self, client: WindowClient) -> None:
        if client in self._clients:
            self._clients.remove(client)
            client.inbox.close()

    async def match_all(self, include_uncontrolled: bool = False) -> list[WindowClient]:
        return [c for c in self._clients if include_uncontrolled or c.controlled]

    async def open_window(self, url: str) -> Optional[WindowClient]:
        """Open a new window. Cross-origin targets are refused."""
        absolute = urljoin(self.origin + "/", url)
        if not self.same_origin(absolute):
            logger.warning(f"Refusing to open cross-origin window: {absolute}")
            return None
        client = WindowClient(absolute, controlled=True)
        client.focused = True
        self._clients.append(client)
        logger.debug(f"Opened window {absolute}")
        return client

    async def claim(self) -> int:
        """Take control of every open window. Returns how many were claimed."""
        claimed = 0
        for client in self._clients:
            if not client.controlled:
                client.controlled = True
                claimed += 1
        return claimed
