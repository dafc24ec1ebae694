"""Background Delivery Agent.

Runs independently of any page: receives push messages, renders
notifications and routes clicks back into the application. It is an actor
with an inbox; the only links to pages are the client registry and
message channels.

Lifecycle events (install, activate) are handled one at a time in arrival
order. Functional events (push, clicks, closes, messages) run as separate
tasks, so two pushes arriving together are not serialized.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from tichat_push.app.models.push import NotificationPayload
from tichat_push.app.services.clients import ClientRegistry
from tichat_push.app.services.logging_service import ExecutionContext, get_logger
from tichat_push.app.services.messaging import MessageChannel
from tichat_push.app.services.notification_center import Notification, NotificationCenter
from tichat_push.app.services.subscription_store import SubscriptionStoreClient

logger = get_logger(__name__)

NOTIFICATION_CLICK = "NOTIFICATION_CLICK"
SKIP_WAITING = "SKIP_WAITING"
DISMISS_ACTION = "dismiss"

# Routing hints checked in priority order: (camelCase key, snake_case key, path prefix)
_ROUTES = [
    ("postId", "post_id", "/post"),
    ("gameId", "game_id", "/game"),
    ("serverId", "server_id", "/server"),
]


class AgentState(str, Enum):
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


@dataclass
class InstallEvent:
    pass


@dataclass
class ActivateEvent:
    pass


@dataclass
class PushEvent:
    data: Optional[bytes] = None


@dataclass
class NotificationClickEvent:
    notification: Notification
    action: str = ""


@dataclass
class NotificationCloseEvent:
    notification: Notification


@dataclass
class MessageEvent:
    data: Any = field(default_factory=dict)


AgentEvent = Union[
    InstallEvent, ActivateEvent, PushEvent,
    NotificationClickEvent, NotificationCloseEvent, MessageEvent,
]


def resolve_click_url(data: dict[str, Any]) -> str:
    """Target url for a notification click: explicit url, then post, game, server, then home."""
    url = data.get("url")
    if isinstance(url, str) and url:
        return url
    for camel, snake, prefix in _ROUTES:
        value = data.get(camel)
        if value in (None, ""):
            value = data.get(snake)
        if value not in (None, ""):
            return f"{prefix}/{value}"
    return "/"


class BackgroundDeliveryAgent:
    """Page-independent push handler."""

    def __init__(
        self,
        notifications: NotificationCenter,
        clients: ClientRegistry,
        store: Optional[SubscriptionStoreClient] = None,
    ) -> None:
        self.notifications = notifications
        self.clients = clients
        self.store = store
        self.state = AgentState.PARSED
        self.channel = MessageChannel(name="agent")
        self.skip_waiting_requested = False
        self.on_activated: Optional[Callable[["BackgroundDeliveryAgent"], None]] = None

        self._inbox: Optional[asyncio.Queue] = None
        self._runner: Optional[asyncio.Task] = None
        self._pump: Optional[asyncio.Task] = None
        self._in_flight: set[asyncio.Task] = set()
        self._handlers: dict[type, Callable[[Any], Awaitable[None]]] = {
            InstallEvent: self._on_install,
            ActivateEvent: self._on_activate,
            PushEvent: self._on_push,
            NotificationClickEvent: self._on_notification_click,
            NotificationCloseEvent: self._on_notification_close,
            MessageEvent: self._on_message,
        }

    # -- actor plumbing ------------------------------------------------

    def start(self) -> None:
        if self._runner is not None and not self._runner.done():
            return
        self._inbox = asyncio.Queue()
        self._runner = asyncio.create_task(self._run())
        self._pump = asyncio.create_task(self._pump_messages())

    async def stop(self) -> None:
        """Let in-flight event work settle, then stop the actor."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        for task in (self._runner, self._pump):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._runner = None
        self._pump = None
        dropped = 0
        while self._inbox is not None and not self._inbox.empty():
            event, future = self._inbox.get_nowait()
            if not future.done():
                future.set_result(False)
            dropped += 1
        if dropped:
            logger.warning(f"Delivery agent stopped with {dropped} queued event(s) unhandled")

    def dispatch(self, event: AgentEvent) -> "asyncio.Future[bool]":
        """Queue an event.

        The returned future resolves once the event's work (its extended
        lifetime) settles: True if handled cleanly, False if an error was
        logged. It never raises.
        """
        self.start()
        future = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait((event, future))
        return future

    def post_message(self, message: dict[str, Any]) -> None:
        """Page-to-agent link."""
        self.channel.post_message(message)

    async def _run(self) -> None:
        while True:
            event, future = await self._inbox.get()
            if isinstance(event, (InstallEvent, ActivateEvent)):
                await self._handle(event, future)
                continue
            task = asyncio.create_task(self._handle(event, future))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _pump_messages(self) -> None:
        async for message in self.channel:
            self.dispatch(MessageEvent(data=message))

    async def _handle(self, event: AgentEvent, future: "asyncio.Future[bool]") -> None:
        with ExecutionContext("agent"):
            ok = True
            try:
                await self._handlers[type(event)](event)
            except Exception:
                logger.exception(f"Unhandled error in {type(event).__name__} handler")
                ok = False
            except asyncio.CancelledError:
                if not future.done():
                    future.set_result(False)
                raise
            if not future.done():
                future.set_result(ok)

    # -- lifecycle -----------------------------------------------------

    def skip_waiting(self) -> None:
        """Activate without waiting for older pages to close."""
        self.skip_waiting_requested = True
        if self.state == AgentState.INSTALLED:
            logger.info("Skip waiting requested, activating")
            self.dispatch(ActivateEvent())

    async def _on_install(self, event: InstallEvent) -> None:
        self.state = AgentState.INSTALLING
        logger.info("Delivery agent installed")
        self.skip_waiting()
        self.state = AgentState.INSTALLED

    async def _on_activate(self, event: ActivateEvent) -> None:
        if self.state == AgentState.ACTIVATED:
            return
        self.state = AgentState.ACTIVATING
        claimed = await self.clients.claim()
        self.state = AgentState.ACTIVATED
        logger.info(f"Delivery agent activated, claimed {claimed} window(s)")
        if self.on_activated is not None:
            self.on_activated(self)

    # -- functional events ---------------------------------------------

    async def _on_push(self, event: PushEvent) -> None:
        payload = NotificationPayload.from_push_data(event.data)
        logger.info(f"Push received: tag={payload.tag!r} title={payload.title!r}")
        await self._show(payload)

    async def _show(self, payload: NotificationPayload) -> None:
        try:
            await self.notifications.show(payload.title, payload.show_options())
            return
        except Exception as e:
            logger.error(f"Failed to show notification tag={payload.tag!r}: {e}")

        fallback = NotificationPayload()
        try:
            await self.notifications.show(fallback.title, fallback.show_options())
        except Exception as e:
            logger.error(f"Failed to show fallback notification: {e}")

    async def _on_notification_click(self, event: NotificationClickEvent) -> None:
        notification = event.notification
        self.notifications.close(notification)

        if event.action == DISMISS_ACTION:
            logger.debug(f"Notification {notification.tag!r} dismissed")
            return

        data = notification.data
        url = resolve_click_url(data)

        for client in await self.clients.match_all(include_uncontrolled=True):
            if self.clients.same_origin(client.url):
                client.post_message({"type": NOTIFICATION_CLICK, "url": url, "data": data})
                await client.focus()
                logger.info(f"Routed notification click to open window: {url}")
                return

        await self.clients.open_window(url)
        logger.info(f"Opened new window for notification click: {url}")

    async def _on_notification_close(self, event: NotificationCloseEvent) -> None:
        data = event.notification.data
        if data.get("trackClose") is not True or self.store is None:
            return
        if not await self.store.track_close(data.get("id")):
            logger.warning(f"Close tracking failed for notification {data.get('id')!r}")

    async def _on_message(self, event: MessageEvent) -> None:
        logger.debug(f"Message received: {event.data!r}")
        if isinstance(event.data, dict) and event.data.get("type") == SKIP_WAITING:
            self.skip_waiting()
