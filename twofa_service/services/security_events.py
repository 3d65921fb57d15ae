"""
Security event audit trail

Every 2FA-relevant action writes one immutable SecurityEvent, whatever its
outcome.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from twofa_service.core.exceptions import StorageError
from twofa_service.models import SecurityEventRecord

logger = logging.getLogger(__name__)

IP_ADDRESS_MAX_LENGTH = 45
USER_AGENT_MAX_LENGTH = 512


def _clip(value: Optional[str], length: int) -> Optional[str]:
    return value[:length] if value else value


class SecurityEventType(str, enum.Enum):
    SETUP_INITIATED = "2fa_setup_initiated"
    ENABLED = "2fa_enabled"
    ENABLE_FAILED = "2fa_enable_failed"
    DISABLED = "2fa_disabled"
    VERIFIED = "2fa_verified"
    FAILED = "2fa_failed"
    BACKUP_CODES_REGENERATED = "2fa_backup_codes_regenerated"


@dataclass(frozen=True)
class SecurityEvent:
    """Immutable audit record"""
    user_id: Optional[int]
    event_type: SecurityEventType
    details: str
    success: bool
    timestamp: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class SecurityEventLog(Protocol):
    """Append-only sink for SecurityEvent records"""

    def record(self, event: SecurityEvent) -> None:
        ...


class SqlSecurityEventLog:
    """
    SecurityEventLog persisting to the security_events table

    Rows are flushed into the session transaction, not committed, so an event
    lands together with the state change it describes.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(self, event: SecurityEvent) -> None:
        """
        Append an event to the current transaction

        Raises:
            StorageError: If the row cannot be written
        """
        row = SecurityEventRecord(
            user_id=event.user_id,
            event_type=event.event_type.value,
            details=event.details,
            event_metadata=event.metadata or None,
            ip_address=_clip(event.ip_address, IP_ADDRESS_MAX_LENGTH),
            user_agent=_clip(event.user_agent, USER_AGENT_MAX_LENGTH),
            success=event.success,
            timestamp=event.timestamp,
        )
        try:
            self.db.add(row)
            self.db.flush()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to record security event {event.event_type.value} for user {event.user_id}: {e}")
            raise StorageError(f"Failed to record security event: {e}") from e

        logger.info(
            f"Security event {event.event_type.value} user={event.user_id} success={event.success}"
        )
