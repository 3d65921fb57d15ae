"""
Security event model for the 2FA audit trail
"""

import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Text, Index, JSON

from twofa_service.core.database import Base
from twofa_service.models.user import Id


class SecurityEventRecord(Base):
    """Append-only audit record; rows are never updated"""
    __tablename__ = "security_events"
    __table_args__ = (
        Index('idx_security_events_user_id', 'user_id', 'timestamp'),
        Index('idx_security_events_type', 'event_type', 'timestamp'),
    )

    event_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Not a foreign key: audit rows outlive the user row
    user_id = Column(Id, nullable=True, index=True)
    event_type = Column(String(100), nullable=False)  # '2fa_enabled', '2fa_failed', etc.
    details = Column(Text, nullable=True)
    event_metadata = Column("metadata", JSON, nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    success = Column(Boolean, default=True, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<SecurityEventRecord(type='{self.event_type}', user_id={self.user_id}, success={self.success})>"
