"""
Event schemas for pub/sub messaging

Events are published to Redis pub/sub channels; the notification service
subscribes to deliver security alerts by email.
"""

from typing import Optional, Dict, Any, List
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


class EventType(str, Enum):
    """Event type enumeration"""
    SECURITY_ALERT = "security.alert"
    STEP_UP_COMPLETED = "step_up.completed"


class EventPriority(str, Enum):
    """Event priority for routing and processing"""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class Event(BaseModel):
    """
    Base event model for all published events
    """
    model_config = ConfigDict(use_enum_values=True)

    event_id: str = Field(..., description="Unique event ID (UUID)")
    event_type: EventType = Field(..., description="Type of event")
    timestamp: str = Field(..., description="Event timestamp (ISO 8601 format)")
    source: str = Field(default="twofa_service", description="Service that generated the event")
    priority: EventPriority = Field(default=EventPriority.NORMAL)
    subject: Optional[str] = Field(None, description="Subject of the event (e.g., user:123)")
    data: Dict[str, Any] = Field(default_factory=dict, description="Event-specific data payload")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional metadata (IP, user agent, etc.)")


class SecurityAlertEvent(BaseModel):
    """Payload of security.alert; consumed by the notification service"""
    email: str
    name: str
    alert_type: str
    message: str


class EventChannel(str, Enum):
    """Redis pub/sub channels"""
    ALL_EVENTS = "twofa_service.events.all"
    AUTH_EVENTS = "twofa_service.events.auth"
    SECURITY_EVENTS = "twofa_service.events.security"


EVENT_CHANNEL_MAP: Dict[EventType, List[EventChannel]] = {
    EventType.SECURITY_ALERT: [EventChannel.SECURITY_EVENTS, EventChannel.ALL_EVENTS],
    EventType.STEP_UP_COMPLETED: [EventChannel.AUTH_EVENTS, EventChannel.ALL_EVENTS],
}
