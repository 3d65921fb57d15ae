"""
Database models
"""

from twofa_service.models.user import User
from twofa_service.models.backup_code import BackupCode
from twofa_service.models.security_event import SecurityEventRecord

__all__ = [
    "User",
    "BackupCode",
    "SecurityEventRecord",
]
