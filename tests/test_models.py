"""Tests for push payload normalization and wire models."""

from __future__ import annotations

import json

import pytest

from tichat_push.app.models.push import (
    NotificationPayload,
    NotificationPreferences,
    Subscription,
    SubscriptionKeys,
)


class TestNotificationPayload:
    def test_full_message(self):
        payload = NotificationPayload.from_push_data(json.dumps({
            "title": "X",
            "message": "Y",
            "tag": "t1",
            "data": {"serverId": "9"},
        }).encode())
        assert payload.title == "X"
        assert payload.body == "Y"
        assert payload.tag == "t1"
        assert payload.data == {"serverId": "9"}

    def test_empty_object_uses_defaults(self):
        payload = NotificationPayload.from_push_data(b"{}")
        assert payload.title == "Nueva notificación"
        assert payload.body == "Tienes una nueva notificación en TiChat"
        assert payload.tag == "default"
        assert payload.icon == "/favicon.png"
        assert payload.badge == "/favicon.png"
        assert payload.data == {}
        assert payload.actions == []
        assert payload.require_interaction is False
        assert payload.silent is False

    @pytest.mark.parametrize("raw", [
        None,
        b"",
        b"not json at all",
        b"\xff\xfe\x00",
        b"[1, 2, 3]",
        b'"just a string"',
        b"null",
        b'{"title": null, "body": 12, "actions": "nope", "data": [1]}',
        b"[" * 100000,
    ])
    def test_malformed_payloads_render_every_field(self, raw):
        payload = NotificationPayload.from_push_data(raw)
        options = payload.show_options()
        assert payload.title
        for key in ("body", "icon", "badge", "tag", "data", "actions",
                    "requireInteraction", "silent", "vibrate", "timestamp"):
            assert options[key] is not None

    def test_body_prefers_message_over_body(self):
        payload = NotificationPayload.from_message({"message": "from message", "body": "from body"})
        assert payload.body == "from message"
        assert NotificationPayload.from_message({"body": "from body"}).body == "from body"

    def test_tag_falls_back_to_id(self):
        payload = NotificationPayload.from_message({"id": "n-17"})
        assert payload.tag == "n-17"
        assert payload.data == {"id": "n-17"}

    def test_tag_falls_back_to_data_id(self):
        assert NotificationPayload.from_message({"data": {"id": 5}}).tag == "5"

    def test_malformed_actions_are_dropped(self):
        payload = NotificationPayload.from_message({"actions": [
            {"action": "view", "title": "Ver"},
            {"action": "dismiss"},
            "garbage",
            {"action": "dismiss", "title": "Cerrar"},
        ]})
        assert [a.action for a in payload.actions] == ["view", "dismiss"]

    def test_flags_only_true_when_true(self):
        payload = NotificationPayload.from_message({"requireInteraction": "yes", "silent": True})
        assert payload.require_interaction is False
        assert payload.silent is True

    def test_show_options_shape(self):
        options = NotificationPayload.from_message({"title": "A"}).show_options()
        assert options["vibrate"] == [200, 100, 200]
        assert isinstance(options["timestamp"], int)


class TestSubscription:
    def test_token_matches_browser_json(self):
        sub = Subscription(endpoint="https://push.example/abc", keys=SubscriptionKeys(p256dh="p", auth="a"))
        assert json.loads(sub.to_token()) == {
            "endpoint": "https://push.example/abc",
            "expirationTime": None,
            "keys": {"p256dh": "p", "auth": "a"},
        }
        assert sub.device_type == "web"

    def test_parse_from_browser_json(self):
        sub = Subscription.model_validate({
            "endpoint": "https://push.example/abc",
            "expirationTime": 123,
            "keys": {"p256dh": "p", "auth": "a"},
        })
        assert sub.expiration_time == 123
        assert sub.to_subscription_info() == {
            "endpoint": "https://push.example/abc",
            "keys": {"p256dh": "p", "auth": "a"},
        }


def test_preferences_defaults():
    assert NotificationPreferences().model_dump() == {
        "email_notifications": True,
        "push_notifications": True,
        "new_posts": True,
        "new_servers": True,
        "new_games": False,
        "follows": True,
    }
