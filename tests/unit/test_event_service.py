"""
Unit tests for EventService and EventBusSecurityAlertNotifier
"""

import json
from unittest.mock import Mock

import pytest

from twofa_service.schemas.events import EventChannel, EventType
from twofa_service.services.event_service import EventService
from twofa_service.services.notifications import EventBusSecurityAlertNotifier


@pytest.fixture
def mock_redis():
    """Mock Redis client"""
    redis = Mock()
    redis.publish.return_value = 1
    return redis


@pytest.fixture
def event_service(mock_redis):
    return EventService(mock_redis)


class TestEventService:

    def test_security_alert_routed_to_security_channels(self, event_service, mock_redis):
        # Act
        event_id = event_service.publish_security_alert(
            email="alice@example.com",
            name="Alice",
            alert_type="2fa_enabled",
            message="Two-factor authentication has been enabled on your account",
            user_id=1,
        )

        # Assert
        assert event_id is not None
        channels = [c.args[0] for c in mock_redis.publish.call_args_list]
        assert channels == [EventChannel.SECURITY_EVENTS.value, EventChannel.ALL_EVENTS.value]

        payload = json.loads(mock_redis.publish.call_args_list[0].args[1])
        assert payload["event_type"] == EventType.SECURITY_ALERT.value
        assert payload["subject"] == "user:1"
        assert payload["priority"] == "high"
        assert payload["data"]["alert_type"] == "2fa_enabled"
        assert payload["data"]["email"] == "alice@example.com"

    def test_publish_failure_is_swallowed(self, event_service, mock_redis):
        mock_redis.publish.side_effect = ConnectionError("redis down")

        assert event_service.publish_step_up_completed(1, "totp") is None

    def test_partial_failure_still_publishes(self, event_service, mock_redis):
        mock_redis.publish.side_effect = [ConnectionError("redis down"), 1]

        assert event_service.publish_step_up_completed(1, "totp") is not None


class TestNotifier:

    def test_send_security_alert(self):
        event_service = Mock()
        notifier = EventBusSecurityAlertNotifier(event_service)

        notifier.send_security_alert("alice@example.com", "Alice", "2fa_disabled", "disabled")

        event_service.publish_security_alert.assert_called_once_with(
            email="alice@example.com",
            name="Alice",
            alert_type="2fa_disabled",
            message="disabled",
        )

    def test_unpublished_alert_does_not_raise(self):
        event_service = Mock()
        event_service.publish_security_alert.return_value = None
        notifier = EventBusSecurityAlertNotifier(event_service)

        notifier.send_security_alert("alice@example.com", "Alice", "2fa_disabled", "disabled")
