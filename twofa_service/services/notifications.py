"""
Security alert notifications

Delivery (email) happens in the notification service; this side only hands
the alert over. Notification is best-effort and never blocks or rolls back a
2FA state change.
"""

import logging
from typing import Protocol

from twofa_service.services.event_service import EventService
from twofa_service.utils.security import mask_email

logger = logging.getLogger(__name__)


class SecurityAlertNotifier(Protocol):

    def send_security_alert(self, email: str, name: str, event_type: str, message: str) -> None:
        ...


class EventBusSecurityAlertNotifier:
    """Publishes security alerts as security.alert events on Redis pub/sub"""

    def __init__(self, event_service: EventService):
        self.event_service = event_service

    def send_security_alert(self, email: str, name: str, event_type: str, message: str) -> None:
        event_id = self.event_service.publish_security_alert(
            email=email,
            name=name,
            alert_type=event_type,
            message=message,
        )
        if event_id is None:
            logger.warning(f"Security alert {event_type} for {mask_email(email)} was not published")
