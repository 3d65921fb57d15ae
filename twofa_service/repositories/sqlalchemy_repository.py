"""
SQLAlchemy implementation of the 2FA repository.

Every guard is part of the UPDATE/DELETE statement itself, so two requests
racing on the same user cannot both pass it. Writes are flushed into the
session transaction and only become durable on commit().
"""

import logging
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from twofa_service.core.exceptions import StorageError
from twofa_service.models import BackupCode, User
from twofa_service.repositories.base import TwoFactorRecord

logger = logging.getLogger(__name__)


class SqlAlchemyTwoFactorRepository:
    """TwoFactorRepository backed by the users / two_factor_backup_codes tables"""

    def __init__(self, db: Session):
        self.db = db

    def _to_record(self, user: User) -> TwoFactorRecord:
        codes = self.db.execute(
            select(BackupCode.code_hash)
            .where(BackupCode.user_id == user.user_id)
            .order_by(BackupCode.backup_code_id)
        ).scalars().all()
        return TwoFactorRecord(
            user_id=user.user_id,
            email=user.email,
            name=user.name,
            enabled=bool(user.two_factor_enabled),
            encrypted_secret=user.two_factor_secret,
            backup_codes=list(codes),
            enabled_at=user.two_factor_enabled_at,
        )

    def _find(self, *criteria) -> Optional[TwoFactorRecord]:
        try:
            user = self.db.execute(
                select(User).where(*criteria).execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if user is None:
                return None
            return self._to_record(user)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to load user: {e}") from e

    def find_user(self, user_id: int) -> Optional[TwoFactorRecord]:
        return self._find(User.user_id == user_id)

    def find_user_by_email(self, email: str) -> Optional[TwoFactorRecord]:
        return self._find(User.email == email)

    def enable_two_factor(
        self,
        user_id: int,
        encrypted_secret: str,
        backup_codes: Sequence[str],
        enabled_at: datetime,
    ) -> bool:
        try:
            result = self.db.execute(
                update(User)
                .where(User.user_id == user_id, User.two_factor_enabled.is_(False))
                .values(
                    two_factor_enabled=True,
                    two_factor_secret=encrypted_secret,
                    two_factor_enabled_at=enabled_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False

            self.db.execute(
                delete(BackupCode)
                .where(BackupCode.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
            self.db.add_all([BackupCode(user_id=user_id, code_hash=code) for code in backup_codes])
            self.db.flush()
            return True
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to enable 2FA: {e}") from e

    def disable_two_factor(self, user_id: int) -> bool:
        try:
            result = self.db.execute(
                update(User)
                .where(User.user_id == user_id, User.two_factor_enabled.is_(True))
                .values(
                    two_factor_enabled=False,
                    two_factor_secret=None,
                    two_factor_enabled_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False

            self.db.execute(
                delete(BackupCode)
                .where(BackupCode.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
            self.db.flush()
            return True
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to disable 2FA: {e}") from e

    def consume_backup_code(self, user_id: int, encoded_code: str) -> bool:
        enabled_user = select(User.user_id).where(
            User.user_id == user_id,
            User.two_factor_enabled.is_(True),
        )
        try:
            result = self.db.execute(
                delete(BackupCode)
                .where(
                    BackupCode.user_id == user_id,
                    BackupCode.code_hash == encoded_code,
                    BackupCode.user_id.in_(enabled_user),
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to consume backup code: {e}") from e

    def replace_backup_codes(self, user_id: int, backup_codes: Sequence[str]) -> bool:
        try:
            # Row lock on Postgres; the guarded UPDATE below doubles as the check elsewhere
            result = self.db.execute(
                update(User)
                .where(User.user_id == user_id, User.two_factor_enabled.is_(True))
                .values(two_factor_enabled=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False

            self.db.execute(
                delete(BackupCode)
                .where(BackupCode.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
            self.db.add_all([BackupCode(user_id=user_id, code_hash=code) for code in backup_codes])
            self.db.flush()
            return True
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to replace backup codes: {e}") from e

    def record_login(self, user_id: int, at: datetime) -> None:
        try:
            self.db.execute(
                update(User)
                .where(User.user_id == user_id)
                .values(last_login_at=at)
                .execution_options(synchronize_session=False)
            )
            self.db.flush()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to record login: {e}") from e

    def commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to commit 2FA changes: {e}") from e

    def rollback(self) -> None:
        self.db.rollback()
