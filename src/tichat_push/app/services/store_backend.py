"""File-backed backend for the reference Subscription Store server.

Push tokens are upserted by subscription endpoint, so duplicate create
calls from several tabs converge on one record. Preferences are created
with defaults on first read.
"""

import json
import time
from pathlib import Path
from typing import Any, Optional

from tichat_push.app import config
from tichat_push.app.models.push import NotificationPreferences
from tichat_push.app.services.logging_service import get_logger
from tichat_push.app.services.vapid import get_or_create_vapid_keys

logger = get_logger(__name__)


def token_identity(token: str) -> str:
    """Natural identity of a push token: the subscription endpoint when the token is subscription JSON."""
    try:
        parsed = json.loads(token)
    except (ValueError, RecursionError):
        return token
    if isinstance(parsed, dict) and isinstance(parsed.get("endpoint"), str):
        return parsed["endpoint"]
    return token


def _load_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to load {path.name}: {e}")
        return default


def _save_json(path: Path, value: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(value, f, indent=2)


class NotificationStore:
    """Push tokens, preferences and close events for a single profile."""

    def __init__(self, home: Optional[Path] = None) -> None:
        home = home or config.APP_HOME
        self.tokens_file = home / config.PUSH_TOKENS_FILE.name
        self.preferences_file = home / config.PREFERENCES_FILE.name
        self.closes_file = home / config.CLOSE_EVENTS_FILE.name
        self.vapid_keys_file = home / config.VAPID_KEYS_FILE.name
        self._tokens: list[dict[str, Any]] = _load_json(self.tokens_file, [])
        logger.info(f"Loaded {len(self._tokens)} push tokens")

    # -- push tokens ---------------------------------------------------

    def upsert_token(self, token: str, device_type: str = config.DEVICE_TYPE) -> dict[str, Any]:
        identity = token_identity(token)
        self._tokens = [t for t in self._tokens if t.get("identity") != identity]
        record = {
            "identity": identity,
            "token": token,
            "device_type": device_type,
            "created_at": time.time(),
        }
        self._tokens.append(record)
        _save_json(self.tokens_file, self._tokens)
        logger.info(f"Stored push token (total: {len(self._tokens)})")
        return record

    def remove_token(self, token: str) -> bool:
        identity = token_identity(token)
        before = len(self._tokens)
        self._tokens = [t for t in self._tokens if t.get("identity") != identity]
        removed = len(self._tokens) < before
        if removed:
            _save_json(self.tokens_file, self._tokens)
            logger.info(f"Removed push token (total: {len(self._tokens)})")
        return removed

    def get_tokens(self) -> list[dict[str, Any]]:
        return list(self._tokens)

    # -- preferences ---------------------------------------------------

    def get_preferences(self) -> NotificationPreferences:
        stored = _load_json(self.preferences_file, None)
        if stored is None:
            preferences = NotificationPreferences()
            _save_json(self.preferences_file, preferences.model_dump())
            return preferences
        return NotificationPreferences.model_validate(stored)

    def save_preferences(self, preferences: NotificationPreferences) -> NotificationPreferences:
        _save_json(self.preferences_file, preferences.model_dump())
        return preferences

    # -- close tracking ------------------------------------------------

    def record_close(self, notification_id: Any, action: str = "close") -> None:
        events = _load_json(self.closes_file, [])
        events.append({"notificationId": notification_id, "action": action, "at": time.time()})
        _save_json(self.closes_file, events)

    def get_close_events(self) -> list[dict[str, Any]]:
        return _load_json(self.closes_file, [])

    # -- delivery ------------------------------------------------------

    def send_to_all(self, message: dict[str, Any]) -> int:
        """Send a push message to every stored subscription.

        Subscriptions the push service reports as gone (404/410) are
        deleted. Returns the number of successful deliveries.
        """
        from pywebpush import WebPushException, webpush

        keys = get_or_create_vapid_keys(self.vapid_keys_file)
        payload = json.dumps(message)

        sent = 0
        expired = []

        for record in self._tokens:
            try:
                subscription_info = json.loads(record["token"])
            except (ValueError, RecursionError):
                subscription_info = None
            if not (
                isinstance(subscription_info, dict)
                and subscription_info.get("endpoint")
                and isinstance(subscription_info.get("keys"), dict)
            ):
                logger.warning(f"Skipping non-subscription token {record['identity'][:24]}")
                continue
            try:
                webpush(
                    subscription_info=subscription_info,
                    data=payload,
                    vapid_private_key=keys["vapid_private_key"],
                    vapid_claims={"sub": config.VAPID_SUBJECT},
                )
                sent += 1
            except WebPushException as e:
                # 410 Gone or 404 means the platform invalidated the subscription
                if e.response is not None and e.response.status_code in (404, 410):
                    expired.append(record["identity"])
                    logger.info(f"Push subscription expired (status {e.response.status_code})")
                    continue
                logger.warning(f"Failed to send push: {e}")
            except Exception as e:
                logger.warning(f"Push send error for {record['identity'][:24]}: {e}")

        if expired:
            self._tokens = [t for t in self._tokens if t["identity"] not in expired]
            _save_json(self.tokens_file, self._tokens)
            logger.info(f"Cleaned up {len(expired)} expired subscriptions")

        logger.info(f"Push notification sent to {sent}/{len(self._tokens)} devices")
        return sent
