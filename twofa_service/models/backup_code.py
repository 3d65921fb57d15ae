"""
Backup code model - one row per unused recovery code
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from twofa_service.core.database import Base
from twofa_service.models.user import Id


class BackupCode(Base):
    """Unused backup code digest; consuming a code deletes its row"""
    __tablename__ = "two_factor_backup_codes"
    __table_args__ = (
        UniqueConstraint('user_id', 'code_hash', name='uq_backup_code_user_hash'),
    )

    backup_code_id = Column(Id, primary_key=True, autoincrement=True)
    user_id = Column(Id, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    code_hash = Column(String(128), nullable=False)  # keyed digest, see BackupCodeManager
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="backup_codes")

    def __repr__(self):
        return f"<BackupCode(user_id={self.user_id})>"
