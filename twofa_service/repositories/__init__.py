"""
Persistence contract and implementations
"""

from twofa_service.repositories.base import TwoFactorRecord, TwoFactorRepository
from twofa_service.repositories.sqlalchemy_repository import SqlAlchemyTwoFactorRepository

__all__ = [
    "TwoFactorRecord",
    "TwoFactorRepository",
    "SqlAlchemyTwoFactorRepository",
]
