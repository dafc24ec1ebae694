"""Configuration and constants."""

import os
from pathlib import Path

# Base storage directory (reference store server data, VAPID keys, logs)
APP_HOME = Path(os.environ.get("TICHAT_PUSH_HOME", Path.home() / ".tichat-push"))

# Data files for the reference store server
PUSH_TOKENS_FILE = APP_HOME / "push_tokens.json"
PREFERENCES_FILE = APP_HOME / "notification_preferences.json"
CLOSE_EVENTS_FILE = APP_HOME / "notification_closes.json"
VAPID_KEYS_FILE = APP_HOME / "vapid_keys.json"

# Remote Subscription Store
API_BASE_URL = os.environ.get("TICHAT_API_URL", "http://127.0.0.1:4321")
API_PREFIX = "/api"
PUSH_TOKEN_PATH = f"{API_PREFIX}/notifications/push-token"
PREFERENCES_PATH = f"{API_PREFIX}/notifications/preferences"
TRACK_CLOSE_PATH = f"{API_PREFIX}/notifications/track-close"
HTTP_TIMEOUT_SECONDS = float(os.environ.get("TICHAT_HTTP_TIMEOUT", "10"))

# Fixed public key used for every subscribe call
APPLICATION_SERVER_KEY = os.environ.get(
    "TICHAT_APPLICATION_SERVER_KEY",
    "BEl62iUYgUivxIkv69yViEuiBIa40HI80NM9f8HnKJuOmLWjMpS_7VnYkYdw7MWBpVha6r5FhMKt2A_q_1_LFDo",
)
VAPID_SUBJECT = os.environ.get("TICHAT_VAPID_SUBJECT", "mailto:notificaciones@tichat.local")

# Background delivery agent
SERVICE_WORKER_URL = "/sw.js"
DEVICE_TYPE = "web"

# Notification defaults
FAVICON_PATH = "/favicon.png"
DEFAULT_TITLE = "Nueva notificación"
DEFAULT_BODY = "Tienes una nueva notificación en TiChat"
DEFAULT_TAG = "default"
DEFAULT_VIBRATE = [200, 100, 200]

TEST_NOTIFICATION_TITLE = "Notificación de prueba"
TEST_NOTIFICATION_BODY = "Esta es una notificación de prueba de TiChat"
TEST_NOTIFICATION_TAG = "test"


def ensure_directories() -> None:
    """Create required directories if they don't exist."""
    for directory in [APP_HOME, APP_HOME / "logs"]:
        directory.mkdir(parents=True, exist_ok=True)
