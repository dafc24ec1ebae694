"""Permission/Subscription Manager.

Mediates between platform capability, user consent and the remote
Subscription Store. UI consumers read `snapshot` or register a listener;
state changes are pushed to listeners, never polled.

States::

    unsupported                      terminal
    unregistered ──register_agent──▶ no_permission | unsubscribed | subscribed
    no_permission ──request_permission (granted)──▶ unsubscribed
    unsubscribed ──subscribe──▶ subscribed
    subscribed ──unsubscribe──▶ unsubscribed

Local `subscribed` always implies the Store accepted the subscription: a
failed Store write rolls the platform subscription back.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional
from urllib.parse import urljoin

from tichat_push.app import config
from tichat_push.app.models.push import PermissionState, Subscription
from tichat_push.app.services.clients import WindowClient
from tichat_push.app.services.delivery_agent import NOTIFICATION_CLICK, SKIP_WAITING
from tichat_push.app.services.logging_service import get_logger
from tichat_push.app.services.platform import PushPlatform, PushPlatformError
from tichat_push.app.services.subscription_store import SubscriptionStoreClient
from tichat_push.app.services.vapid import InvalidApplicationServerKey, decode_application_server_key

logger = get_logger(__name__)


class PushState(str, Enum):
    UNSUPPORTED = "unsupported"
    UNREGISTERED = "unregistered"
    NO_PERMISSION = "no_permission"
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBED = "subscribed"


@dataclass(frozen=True)
class PushSnapshot:
    """Read-only view of the manager handed to UI consumers."""

    state: PushState
    permission: PermissionState
    last_error: Optional[str] = None

    @property
    def supported(self) -> bool:
        return self.state != PushState.UNSUPPORTED

    @property
    def subscribed(self) -> bool:
        return self.state == PushState.SUBSCRIBED


Listener = Callable[[PushSnapshot], None]


class PushSubscriptionManager:
    """Owns the push subscription lifecycle for one installation."""

    def __init__(
        self,
        platform: PushPlatform,
        store: SubscriptionStoreClient,
        application_server_key: str | None = None,
        window: Optional[WindowClient] = None,
        on_navigate: Optional[Callable[[str], Any]] = None,
        script_url: str = config.SERVICE_WORKER_URL,
    ) -> None:
        self.platform = platform
        self.store = store
        self.window = window
        self.on_navigate = on_navigate
        self.script_url = script_url
        self._application_server_key = application_server_key or config.APPLICATION_SERVER_KEY
        self._state = PushState.UNREGISTERED
        self._permission = PermissionState.DEFAULT
        self._last_error: Optional[str] = None
        self._listeners: list[Listener] = []
        self._lock = asyncio.Lock()
        self._window_task: Optional[asyncio.Task] = None

    # -- observable state ----------------------------------------------

    @property
    def state(self) -> PushState:
        return self._state

    @property
    def snapshot(self) -> PushSnapshot:
        return PushSnapshot(self._state, self._permission, self._last_error)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a state listener. Returns a function that removes it."""
        self._listeners.append(listener)
        listener(self.snapshot)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _set_state(self, state: PushState, error: Optional[str] = None) -> None:
        self._state = state
        self._last_error = error
        snapshot = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(f"Push state listener failed: {e}")

    def _state_for_permission(self, has_subscription: bool) -> PushState:
        if self._permission != PermissionState.GRANTED:
            return PushState.NO_PERMISSION
        return PushState.SUBSCRIBED if has_subscription else PushState.UNSUBSCRIBED

    # -- lifecycle -----------------------------------------------------

    async def init(self) -> PushSnapshot:
        """Detect support and register the delivery agent."""
        try:
            supported = self.platform.is_supported()
            if supported:
                self._permission = self.platform.permission
        except Exception:
            logger.exception("Push support detection failed")
            supported = False
        if not supported:
            logger.warning("Push notifications are not supported on this platform")
            self._set_state(PushState.UNSUPPORTED)
            return self.snapshot
        if self.window is not None and self._window_task is None:
            self._window_task = asyncio.create_task(self._listen_window())
        await self.register_agent()
        return self.snapshot

    async def dispose(self) -> None:
        self._listeners.clear()
        if self._window_task is not None:
            self._window_task.cancel()
            try:
                await self._window_task
            except asyncio.CancelledError:
                pass
            self._window_task = None

    async def register_agent(self) -> bool:
        if self._state == PushState.UNSUPPORTED:
            return False
        try:
            await self.platform.register_agent(self.script_url)
            subscription = await self.platform.get_subscription()
        except PushPlatformError as e:
            logger.error(f"Delivery agent registration failed: {e}")
            self._set_state(PushState.UNREGISTERED, str(e))
            return False
        except Exception as e:
            logger.exception("Delivery agent registration failed")
            self._set_state(PushState.UNREGISTERED, str(e))
            return False
        self._permission = self.platform.permission
        logger.info(f"Delivery agent registered: {self.script_url}")
        self._set_state(self._state_for_permission(subscription is not None))
        return True

    # -- operations ----------------------------------------------------

    async def request_permission(self) -> bool:
        async with self._lock:
            return await self._request_permission()

    async def _request_permission(self) -> bool:
        if self._state == PushState.UNSUPPORTED:
            logger.warning("Push notifications are not supported")
            return False
        self._permission = self.platform.permission
        if self._permission == PermissionState.DENIED:
            # Sticky until changed in browser settings; never re-prompt.
            self._refresh_permission_state()
            return False
        if self._permission == PermissionState.DEFAULT:
            try:
                self._permission = await self.platform.request_permission()
            except PushPlatformError as e:
                logger.error(f"Permission request failed: {e}")
                return False
            except Exception:
                logger.exception("Permission request failed")
                return False
        self._refresh_permission_state()
        return self._permission == PermissionState.GRANTED

    def _refresh_permission_state(self) -> None:
        if self._state in (PushState.UNREGISTERED, PushState.UNSUPPORTED):
            return
        if self._permission != PermissionState.GRANTED:
            self._set_state(PushState.NO_PERMISSION)
        elif self._state == PushState.NO_PERMISSION:
            self._set_state(PushState.UNSUBSCRIBED)

    async def subscribe(self) -> bool:
        async with self._lock:
            if self._state in (PushState.UNSUPPORTED, PushState.UNREGISTERED):
                logger.warning("Delivery agent not registered or push unsupported")
                return False
            if self._state == PushState.SUBSCRIBED:
                try:
                    if await self.platform.get_subscription() is not None:
                        return True
                except Exception:
                    logger.exception("Could not read the current subscription, subscribing again")
            if not await self._request_permission():
                return False

            try:
                key = decode_application_server_key(self._application_server_key)
                subscription = await self.platform.subscribe(key)
            except (PushPlatformError, InvalidApplicationServerKey) as e:
                logger.error(f"Push subscribe failed: {e}")
                self._set_state(PushState.UNSUBSCRIBED, str(e))
                return False
            except Exception as e:
                logger.exception("Push subscribe failed")
                self._set_state(PushState.UNSUBSCRIBED, str(e))
                return False

            if not await self.store.save_subscription(subscription):
                logger.error("Store rejected the subscription, rolling back")
                await self._rollback(subscription)
                self._set_state(PushState.UNSUBSCRIBED, "No se pudo registrar la suscripción en el servidor")
                return False

            logger.info("Subscribed to push notifications")
            self._set_state(PushState.SUBSCRIBED)
            return True

    async def _rollback(self, subscription: Subscription) -> None:
        try:
            await self.platform.unsubscribe()
        except PushPlatformError as e:
            logger.error(f"Rollback of subscription {subscription.endpoint} failed: {e}")
        except Exception:
            logger.exception(f"Rollback of subscription {subscription.endpoint} failed")

    async def unsubscribe(self) -> bool:
        async with self._lock:
            if self._state != PushState.SUBSCRIBED:
                return False
            try:
                subscription = await self.platform.get_subscription()
                if subscription is not None and not await self.platform.unsubscribe():
                    raise PushPlatformError("Platform refused to unsubscribe")
            except PushPlatformError as e:
                logger.error(f"Push unsubscribe failed: {e}")
                self._set_state(PushState.SUBSCRIBED, str(e))
                return False
            except Exception as e:
                logger.exception("Push unsubscribe failed")
                self._set_state(PushState.SUBSCRIBED, str(e))
                return False

            if subscription is None:
                self._set_state(PushState.UNSUBSCRIBED)
                return True

            removed = await self.store.delete_subscription(subscription)
            if not removed:
                logger.warning(f"Store delete failed for {subscription.endpoint}, record left for pruning")
            self._set_state(
                PushState.UNSUBSCRIBED,
                None if removed else "No se pudo eliminar la suscripción del servidor",
            )
            logger.info("Unsubscribed from push notifications")
            return removed

    async def test_notification(self) -> bool:
        """Show a local notification without going through the network."""
        if self._state not in (PushState.UNSUBSCRIBED, PushState.SUBSCRIBED):
            return False
        try:
            await self.platform.show_notification(config.TEST_NOTIFICATION_TITLE, {
                "body": config.TEST_NOTIFICATION_BODY,
                "icon": config.FAVICON_PATH,
                "tag": config.TEST_NOTIFICATION_TAG,
            })
        except PushPlatformError as e:
            logger.error(f"Test notification failed: {e}")
            return False
        except Exception:
            logger.exception("Test notification failed")
            return False
        return True

    def request_update(self) -> None:
        """Ask a waiting delivery agent to activate now."""
        if self._state in (PushState.UNSUPPORTED, PushState.UNREGISTERED):
            return
        try:
            self.platform.post_message_to_agent({"type": SKIP_WAITING})
        except Exception:
            logger.exception("Could not reach the delivery agent")

    # -- agent-to-page link --------------------------------------------

    async def _listen_window(self) -> None:
        async for message in self.window.inbox:
            if message.get("type") == NOTIFICATION_CLICK:
                url = message.get("url") or "/"
                logger.info(f"Notification click, navigating to {url}")
                self.window.url = urljoin(self.window.url, url)
                if self.on_navigate is None:
                    continue
                try:
                    result = self.on_navigate(url)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception:
                    logger.exception(f"Navigation to {url} failed")
