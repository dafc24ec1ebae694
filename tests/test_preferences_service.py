"""Tests for the notification preferences view model."""

from __future__ import annotations

import asyncio

import pytest

from tichat_push.app.models.push import NotificationPreferences, PermissionState
from tichat_push.app.services.platform import LocalPushPlatform
from tichat_push.app.services.preferences_service import (
    DENIED_WARNING,
    UNSUPPORTED_LABEL,
    PreferencesController,
)
from tichat_push.app.services.push_manager import PushState, PushSubscriptionManager


async def _controller(store, **platform_kwargs):
    platform = LocalPushPlatform(origin="http://tichat.test", **platform_kwargs)
    manager = PushSubscriptionManager(platform, store)
    await manager.init()
    return platform, manager, PreferencesController(store, manager)


class TestLoadSave:
    def test_load_failure_keeps_defaults(self, fake_store):
        async def _run():
            platform, _, controller = await _controller(fake_store)
            assert await controller.load() is False
            assert controller.error == "Error al cargar preferencias"
            assert controller.preferences == NotificationPreferences()
            await platform.shutdown()

        asyncio.run(_run())

    def test_toggles_are_not_saved_until_save(self, fake_store):
        fake_store.preferences = NotificationPreferences()

        async def _run():
            platform, _, controller = await _controller(fake_store)
            assert await controller.load() is True
            controller.set("new_games", True)
            assert controller.dirty is True
            assert "save_preferences" not in fake_store.calls

            assert await controller.save() is True
            assert fake_store.preferences.new_games is True
            assert controller.dirty is False
            await platform.shutdown()

        asyncio.run(_run())

    def test_load_aligns_push_flag_with_subscription(self, fake_store):
        fake_store.preferences = NotificationPreferences(push_notifications=True, new_games=True)

        async def _run():
            platform, manager, controller = await _controller(fake_store)
            assert manager.state == PushState.NO_PERMISSION
            assert await controller.load() is True
            assert controller.preferences.push_notifications is False
            assert controller.preferences.new_games is True
            assert controller.dirty is True

            assert await controller.save() is True
            assert fake_store.preferences.push_notifications is False
            await platform.shutdown()

        asyncio.run(_run())

    def test_load_keeps_push_flag_when_subscribed(self, fake_store):
        fake_store.preferences = NotificationPreferences(push_notifications=False)

        async def _run():
            platform, manager, controller = await _controller(fake_store, permission=PermissionState.GRANTED)
            assert await manager.subscribe() is True
            assert await controller.load() is True
            assert controller.preferences.push_notifications is True
            await platform.shutdown()

        asyncio.run(_run())

    def test_set_rejects_unknown_and_push_keys(self, fake_store):
        async def _run():
            platform, _, controller = await _controller(fake_store)
            with pytest.raises(KeyError):
                controller.set("carrier_pigeon", True)
            with pytest.raises(ValueError):
                controller.set("push_notifications", True)
            await platform.shutdown()

        asyncio.run(_run())


class TestPushToggle:
    def test_enable_subscribes(self, fake_store):
        async def _run():
            platform, manager, controller = await _controller(fake_store)
            assert await controller.set_push(True) is True
            assert manager.state == PushState.SUBSCRIBED
            assert controller.preferences.push_notifications is True
            await platform.shutdown()

        asyncio.run(_run())

    def test_disable_unsubscribes(self, fake_store):
        async def _run():
            platform, manager, controller = await _controller(fake_store, permission=PermissionState.GRANTED)
            await controller.set_push(True)
            assert await controller.set_push(False) is True
            assert manager.state == PushState.UNSUBSCRIBED
            assert controller.preferences.push_notifications is False
            assert fake_store.records == {}
            await platform.shutdown()

        asyncio.run(_run())

    def test_store_failure_reverts_toggle(self, fake_store):
        fake_store.save_ok = False

        async def _run():
            platform, manager, controller = await _controller(fake_store, permission=PermissionState.GRANTED)
            assert await controller.set_push(True) is False
            assert controller.preferences.push_notifications is False
            assert controller.error
            assert manager.state == PushState.UNSUBSCRIBED
            await platform.shutdown()

        asyncio.run(_run())

    def test_denied_shows_persistent_warning(self, fake_store):
        async def _run():
            platform, _, controller = await _controller(fake_store, permission=PermissionState.DENIED)
            assert await controller.set_push(True) is False
            assert controller.error == DENIED_WARNING
            assert controller.push_disabled_reason == DENIED_WARNING
            await platform.shutdown()

        asyncio.run(_run())

    def test_unsupported_disables_toggle(self, fake_store):
        async def _run():
            platform, _, controller = await _controller(fake_store, supported=False)
            assert controller.push_disabled_reason == UNSUPPORTED_LABEL
            assert await controller.set_push(True) is False
            assert controller.preferences.push_notifications is False

        asyncio.run(_run())
