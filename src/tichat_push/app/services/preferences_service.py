"""Notification preferences view model.

Loads the opt-in matrix from the Store, applies user toggles locally and
persists them only on an explicit save. The push toggle is kept consistent
with the subscription manager.
"""

from typing import Optional

from tichat_push.app.models.push import NotificationPreferences, PermissionState
from tichat_push.app.services.logging_service import get_logger
from tichat_push.app.services.push_manager import PushState, PushSubscriptionManager
from tichat_push.app.services.subscription_store import SubscriptionStoreClient

logger = get_logger(__name__)

UNSUPPORTED_LABEL = "Tu navegador no soporta notificaciones push"
DENIED_WARNING = (
    "Las notificaciones están bloqueadas. Actívalas desde la configuración del navegador."
)


class PreferencesController:
    """Backs the notification settings view."""

    def __init__(self, store: SubscriptionStoreClient, manager: PushSubscriptionManager) -> None:
        self.store = store
        self.manager = manager
        self.preferences = NotificationPreferences()
        self.loaded = False
        self.dirty = False
        self.error: Optional[str] = None

    @property
    def push_disabled_reason(self) -> Optional[str]:
        """Why the push toggle is unavailable, if it is."""
        snapshot = self.manager.snapshot
        if not snapshot.supported:
            return UNSUPPORTED_LABEL
        if snapshot.permission == PermissionState.DENIED:
            return DENIED_WARNING
        return None

    async def load(self) -> bool:
        """Fetch stored preferences. The push flag follows the manager state."""
        preferences = await self.store.get_preferences()
        if preferences is None:
            self.error = "Error al cargar preferencias"
            return False
        subscribed = self.manager.state == PushState.SUBSCRIBED
        if preferences.push_notifications != subscribed:
            logger.info(f"Stored push flag out of sync, using subscription state: {subscribed}")
        self.preferences = preferences.model_copy(update={"push_notifications": subscribed})
        self.loaded = True
        self.dirty = preferences.push_notifications != subscribed
        self.error = None
        return True

    def set(self, key: str, value: bool) -> None:
        """Apply a toggle locally. Nothing is persisted until save()."""
        if key == "push_notifications":
            raise ValueError("Use set_push() for the push toggle")
        if key not in NotificationPreferences.model_fields:
            raise KeyError(key)
        self.preferences = self.preferences.model_copy(update={key: bool(value)})
        self.dirty = True

    async def set_push(self, enabled: bool) -> bool:
        """Toggle push delivery, subscribing or unsubscribing as needed.

        The stored flag follows the resulting manager state, so a failed
        subscribe leaves the toggle off.
        """
        self.error = None
        if enabled:
            if self.manager.state != PushState.SUBSCRIBED:
                await self.manager.subscribe()
        elif self.manager.state == PushState.SUBSCRIBED:
            await self.manager.unsubscribe()

        subscribed = self.manager.state == PushState.SUBSCRIBED
        if enabled and not subscribed:
            self.error = self.push_disabled_reason or self.manager.snapshot.last_error or (
                "No se pudieron activar las notificaciones push"
            )
            logger.warning(f"Push toggle reverted: {self.error}")
        self.preferences = self.preferences.model_copy(update={"push_notifications": subscribed})
        self.dirty = True
        return subscribed == enabled

    async def save(self) -> bool:
        if not await self.store.save_preferences(self.preferences):
            self.error = "Error al guardar preferencias"
            return False
        self.dirty = False
        self.error = None
        return True
