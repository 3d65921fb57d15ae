"""
User model (2FA fields only; the rest of the identity lives in the auth application)
"""

from datetime import datetime
from sqlalchemy import Column, BigInteger, Integer, String, Boolean, DateTime, Text
from sqlalchemy.orm import relationship

from twofa_service.core.database import Base

# SQLite only autoincrements INTEGER PRIMARY KEY
Id = BigInteger().with_variant(Integer, "sqlite")


class User(Base):
    """User model - per-user 2FA state"""
    __tablename__ = "users"

    user_id = Column(Id, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    two_factor_enabled = Column(Boolean, default=False, nullable=False)
    two_factor_secret = Column(Text, nullable=True)  # AES-256-GCM ciphertext, never plaintext
    two_factor_enabled_at = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    backup_codes = relationship("BackupCode", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(user_id={self.user_id}, two_factor_enabled={self.two_factor_enabled})>"
