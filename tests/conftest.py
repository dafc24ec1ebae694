from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient


# Ensure src/ is on sys.path so `import tichat_push` works without installation.
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))


class FakeStore:
    """In-memory stand-in for SubscriptionStoreClient that records calls."""

    def __init__(self, save_ok: bool = True, delete_ok: bool = True) -> None:
        self.save_ok = save_ok
        self.delete_ok = delete_ok
        self.records: dict[str, object] = {}
        self.calls: list[str] = []
        self.closed: list[object] = []
        self.preferences = None

    async def save_subscription(self, subscription) -> bool:
        self.calls.append("save")
        if self.save_ok:
            self.records[subscription.endpoint] = subscription
        return self.save_ok

    async def delete_subscription(self, subscription) -> bool:
        self.calls.append("delete")
        if self.delete_ok:
            self.records.pop(subscription.endpoint, None)
        return self.delete_ok

    async def get_preferences(self):
        self.calls.append("get_preferences")
        return self.preferences

    async def save_preferences(self, preferences) -> bool:
        self.calls.append("save_preferences")
        self.preferences = preferences
        return True

    async def track_close(self, notification_id) -> bool:
        self.closed.append(notification_id)
        return True


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def store_app(tmp_path: Path):
    from tichat_push.app.main import create_app

    return create_app(home=tmp_path / "tichat-home", configure_logging=False)


@pytest.fixture
def client(store_app):
    with TestClient(store_app) as test_client:
        yield test_client
