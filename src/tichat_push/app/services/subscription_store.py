"""HTTP client for the remote Subscription Store.

Pure request/response translation: 2xx is success, anything else
(including transport errors) is reported as failure. Nothing raises to
callers.
"""

from typing import Any, Optional

import httpx

from tichat_push.app import config
from tichat_push.app.models.push import NotificationPreferences, Subscription
from tichat_push.app.services.logging_service import get_logger

logger = get_logger(__name__)


class SubscriptionStoreClient:
    """Maps subscription and preference operations to REST calls."""

    def __init__(
        self,
        base_url: str | None = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url or config.API_BASE_URL,
            timeout=timeout or config.HTTP_TIMEOUT_SECONDS,
        )

    async def _request(self, method: str, path: str, json: Any = None) -> Optional[httpx.Response]:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            return None
        if not response.is_success:
            logger.warning(f"{method} {path} returned {response.status_code}")
        return response

    async def save_subscription(self, subscription: Subscription) -> bool:
        """Create (upsert by endpoint) the subscription record."""
        response = await self._request("POST", config.PUSH_TOKEN_PATH, json={
            "token": subscription.to_token(),
            "device_type": subscription.device_type,
        })
        return response is not None and response.is_success

    async def delete_subscription(self, subscription: Subscription) -> bool:
        response = await self._request("DELETE", config.PUSH_TOKEN_PATH, json={
            "token": subscription.to_token(),
        })
        return response is not None and response.is_success

    async def get_preferences(self) -> Optional[NotificationPreferences]:
        response = await self._request("GET", config.PREFERENCES_PATH)
        if response is None or not response.is_success:
            return None
        try:
            return NotificationPreferences.model_validate(response.json()["preferences"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Malformed preferences response: {e}")
            return None

    async def save_preferences(self, preferences: NotificationPreferences) -> bool:
        response = await self._request("PUT", config.PREFERENCES_PATH, json=preferences.model_dump())
        return response is not None and response.is_success

    async def track_close(self, notification_id: Any) -> bool:
        """Best-effort close tracking."""
        response = await self._request("POST", config.TRACK_CLOSE_PATH, json={
            "notificationId": notification_id,
            "action": "close",
        })
        return response is not None and response.is_success

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
