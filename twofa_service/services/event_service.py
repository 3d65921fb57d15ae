"""
Event Publishing Service

Publishes events to Redis pub/sub channels for inter-service communication.

- JSON serialization for cross-language compatibility
- Fire-and-forget pattern (non-blocking)
- Graceful degradation on publish failure (logs error, doesn't block operation)
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from twofa_service.core.redis_client import RedisClient
from twofa_service.schemas.events import (
    Event,
    EventType,
    EventPriority,
    EventChannel,
    EVENT_CHANNEL_MAP,
    SecurityAlertEvent,
)

logger = logging.getLogger(__name__)


class EventService:
    """Service for publishing events to Redis pub/sub"""

    def __init__(self, redis: RedisClient):
        self.redis = redis

    def publish_event(
        self,
        event_type: EventType,
        subject: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        priority: EventPriority = EventPriority.NORMAL
    ) -> Optional[str]:
        """
        Publish an event to every channel routed for its type

        Returns:
            Event ID (UUID) if published to at least one channel, None otherwise
        """
        try:
            event_id = str(uuid.uuid4())

            event = Event(
                event_id=event_id,
                event_type=event_type,
                timestamp=datetime.now(timezone.utc).isoformat(),
                priority=priority,
                subject=subject,
                data=data or {},
                metadata=metadata or {}
            )
            event_json = event.model_dump_json()

            channels = EVENT_CHANNEL_MAP.get(event_type, [EventChannel.ALL_EVENTS])

            published_count = 0
            for channel in channels:
                try:
                    subscriber_count = self.redis.publish(channel.value, event_json)
                    published_count += 1
                    logger.debug(
                        f"Published event {event_id} ({event_type.value}) to channel {channel.value} "
                        f"({subscriber_count} subscribers)"
                    )
                except Exception as e:
                    logger.error(f"Failed to publish event {event_id} to channel {channel.value}: {str(e)}")

            if published_count > 0:
                logger.info(f"Event {event_id} ({event_type.value}) published to {published_count} channels")
                return event_id

            logger.warning(f"Event {event_id} ({event_type.value}) not published to any channels")
            return None

        except Exception as e:
            # Event publishing failures must not break core operations
            logger.error(f"Failed to publish event {event_type.value}: {str(e)}")
            return None

    def publish_security_alert(
        self,
        email: str,
        name: str,
        alert_type: str,
        message: str,
        user_id: Optional[int] = None,
    ) -> Optional[str]:
        """Publish security.alert event"""
        payload = SecurityAlertEvent(email=email, name=name, alert_type=alert_type, message=message)
        return self.publish_event(
            event_type=EventType.SECURITY_ALERT,
            subject=f"user:{user_id}" if user_id is not None else None,
            data=payload.model_dump(),
            priority=EventPriority.HIGH
        )

    def publish_step_up_completed(self, user_id: int, method: str) -> Optional[str]:
        """Publish step_up.completed event"""
        return self.publish_event(
            event_type=EventType.STEP_UP_COMPLETED,
            subject=f"user:{user_id}",
            data={"user_id": user_id, "method": method}
        )
