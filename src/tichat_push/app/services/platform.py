"""Push platform interface and an in-process implementation.

`PushPlatform` is everything the Manager needs from the browser: capability
detection, permission, agent registration, the push subscription and local
notifications. `LocalPushPlatform` plays the browser for one installation:
it mints real P-256 subscription keys, drives a BackgroundDeliveryAgent
and simulates push delivery and user interaction.
"""

import os
import secrets
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from tichat_push.app.models.push import PermissionState, Subscription, SubscriptionKeys
from tichat_push.app.services.clients import ClientRegistry
from tichat_push.app.services.delivery_agent import (
    ActivateEvent,
    AgentState,
    BackgroundDeliveryAgent,
    InstallEvent,
    NotificationClickEvent,
    NotificationCloseEvent,
    PushEvent,
)
from tichat_push.app.services.logging_service import get_logger
from tichat_push.app.services.notification_center import Notification, NotificationCenter
from tichat_push.app.services.subscription_store import SubscriptionStoreClient
from tichat_push.app.services.vapid import b64url_encode

logger = get_logger(__name__)

DEFAULT_PUSH_SERVICE_URL = "https://push.tichat.local/send"


class PushPlatformError(Exception):
    """A platform call (registration, subscribe, unsubscribe, show) failed."""


class PushPlatform(ABC):
    """Browser capabilities used by the subscription manager."""

    @abstractmethod
    def is_supported(self) -> bool:
        ...

    @property
    @abstractmethod
    def permission(self) -> PermissionState:
        ...

    @abstractmethod
    async def request_permission(self) -> PermissionState:
        ...

    @abstractmethod
    async def register_agent(self, script_url: str) -> None:
        """Register and activate the delivery agent. Raises PushPlatformError."""

    @abstractmethod
    async def get_subscription(self) -> Optional[Subscription]:
        ...

    @abstractmethod
    async def subscribe(self, application_server_key: bytes) -> Subscription:
        """Return the installation's subscription, creating it if needed."""

    @abstractmethod
    async def unsubscribe(self) -> bool:
        ...

    @abstractmethod
    async def show_notification(self, title: str, options: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def post_message_to_agent(self, message: dict[str, Any]) -> None:
        """Page-to-agent structured message."""


class LocalPushPlatform(PushPlatform):
    """In-process browser for one installation of the application."""

    def __init__(
        self,
        origin: str = "http://127.0.0.1:4321",
        agent_factory: Optional[Callable[[NotificationCenter, ClientRegistry], BackgroundDeliveryAgent]] = None,
        supported: bool = True,
        permission: PermissionState = PermissionState.DEFAULT,
        permission_prompt: Optional[Callable[[], PermissionState]] = None,
        push_service_url: str = DEFAULT_PUSH_SERVICE_URL,
        store: Optional[SubscriptionStoreClient] = None,
    ) -> None:
        self.origin = origin
        self.notifications = NotificationCenter()
        self.clients = ClientRegistry(origin)
        self.agent: Optional[BackgroundDeliveryAgent] = None
        self.waiting_agent: Optional[BackgroundDeliveryAgent] = None
        self.registered_script: Optional[str] = None
        self.prompt_count = 0
        self.store = store
        self._agent_factory = agent_factory or (lambda n, c: BackgroundDeliveryAgent(n, c, self.store))
        self._supported = supported
        self._permission = permission
        self._permission_prompt = permission_prompt or (lambda: PermissionState.GRANTED)
        self._push_service_url = push_service_url.rstrip("/")
        self._subscription: Optional[Subscription] = None
        self._subscription_key: Optional[bytes] = None

    # -- PushPlatform --------------------------------------------------

    def is_supported(self) -> bool:
        return self._supported

    @property
    def permission(self) -> PermissionState:
        return self._permission

    def set_permission(self, permission: PermissionState) -> None:
        """Out-of-band change, as from the browser's site settings."""
        self._permission = permission
        if permission != PermissionState.GRANTED:
            self._subscription = None
            self._subscription_key = None

    async def request_permission(self) -> PermissionState:
        self._require_support()
        if self._permission == PermissionState.DEFAULT:
            self.prompt_count += 1
            self._permission = PermissionState(self._permission_prompt())
        return self._permission

    async def register_agent(self, script_url: str) -> None:
        self._require_support()
        if self.agent is not None and self.registered_script == script_url:
            return
        try:
            agent = self._agent_factory(self.notifications, self.clients)
        except Exception as e:
            raise PushPlatformError(f"Could not load {script_url}: {e}") from e
        if not await agent.dispatch(InstallEvent()):
            raise PushPlatformError(f"Install of {script_url} failed")
        if agent.skip_waiting_requested or self.agent is None:
            if not await agent.dispatch(ActivateEvent()):
                raise PushPlatformError(f"Activation of {script_url} failed")
        else:
            agent.on_activated = self._promote
            self.waiting_agent = agent
        if agent.state == AgentState.ACTIVATED:
            self._promote(agent)
        self.registered_script = script_url

    async def get_subscription(self) -> Optional[Subscription]:
        return self._subscription

    async def subscribe(self, application_server_key: bytes) -> Subscription:
        self._require_support()
        if self.agent is None:
            raise PushPlatformError("No active delivery agent")
        if self._permission != PermissionState.GRANTED:
            raise PushPlatformError("Notification permission not granted")
        if self._subscription is not None:
            if self._subscription_key != application_server_key:
                raise PushPlatformError("A subscription with a different application server key already exists")
            return self._subscription

        private_key = ec.generate_private_key(ec.SECP256R1())
        p256dh = private_key.public_key().public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.UncompressedPoint,
        )
        self._subscription = Subscription(
            endpoint=f"{self._push_service_url}/{secrets.token_urlsafe(24)}",
            keys=SubscriptionKeys(p256dh=b64url_encode(p256dh), auth=b64url_encode(os.urandom(16))),
        )
        self._subscription_key = application_server_key
        logger.debug(f"Minted push subscription {self._subscription.endpoint}")
        return self._subscription

    async def unsubscribe(self) -> bool:
        if self._subscription is None:
            return False
        self._subscription = None
        self._subscription_key = None
        return True

    async def show_notification(self, title: str, options: dict[str, Any]) -> None:
        if self._permission != PermissionState.GRANTED:
            raise PushPlatformError("Notification permission not granted")
        await self.notifications.show(title, options)

    def post_message_to_agent(self, message: dict[str, Any]) -> None:
        target = self.waiting_agent or self.agent
        if target is not None:
            target.post_message(message)

    # -- push transport and user interaction ---------------------------

    async def deliver(self, data: Optional[bytes | str]) -> bool:
        """Deliver a push message to the active agent and wait for it to settle."""
        if self.agent is None or self._subscription is None:
            logger.warning("Push dropped: no active agent or subscription")
            return False
        if isinstance(data, str):
            data = data.encode("utf-8")
        return await self.agent.dispatch(PushEvent(data=data))

    async def click_notification(self, notification: Notification, action: str = "") -> bool:
        return await self._require_agent().dispatch(NotificationClickEvent(notification, action))

    async def close_notification(self, notification: Notification) -> bool:
        """The user dismisses a notification from the tray."""
        self.notifications.close(notification)
        return await self._require_agent().dispatch(NotificationCloseEvent(notification))

    async def shutdown(self) -> None:
        for agent in (self.waiting_agent, self.agent):
            if agent is not None:
                await agent.stop()

    # -- helpers -------------------------------------------------------

    def _require_support(self) -> None:
        if not self._supported:
            raise PushPlatformError("Push notifications are not supported")

    def _require_agent(self) -> BackgroundDeliveryAgent:
        if self.agent is None:
            raise PushPlatformError("No active delivery agent")
        return self.agent

    def _promote(self, agent: BackgroundDeliveryAgent) -> None:
        if self.agent is not None and self.agent is not agent:
            self.agent.state = AgentState.REDUNDANT
        self.agent = agent
        if self.waiting_agent is agent:
            self.waiting_agent = None
