"""
Persistence contract for per-user 2FA state.

All mutating methods are conditional (compare-and-swap): they return False
when the guard no longer holds and change nothing. They do not commit; the
caller writes the matching security event in the same transaction and then
calls commit(), or rollback() to discard both. Infrastructure failures are
raised as StorageError.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol, Sequence


@dataclass(frozen=True)
class TwoFactorRecord:
    """Snapshot of a user's 2FA fields"""
    user_id: int
    email: str
    name: Optional[str]
    enabled: bool
    encrypted_secret: Optional[str]
    backup_codes: List[str] = field(default_factory=list)  # stored (encoded) form
    enabled_at: Optional[datetime] = None


class TwoFactorRepository(Protocol):

    def find_user(self, user_id: int) -> Optional[TwoFactorRecord]:
        ...

    def find_user_by_email(self, email: str) -> Optional[TwoFactorRecord]:
        ...

    def enable_two_factor(
        self,
        user_id: int,
        encrypted_secret: str,
        backup_codes: Sequence[str],
        enabled_at: datetime,
    ) -> bool:
        """Persist secret, backup-code set and enabled flag, only if 2FA is not already enabled"""
        ...

    def disable_two_factor(self, user_id: int) -> bool:
        """Clear all 2FA fields, only if 2FA is currently enabled"""
        ...

    def consume_backup_code(self, user_id: int, encoded_code: str) -> bool:
        """Remove one stored code, only if it is still present"""
        ...

    def replace_backup_codes(self, user_id: int, backup_codes: Sequence[str]) -> bool:
        """Swap the whole set, only if 2FA is enabled"""
        ...

    def record_login(self, user_id: int, at: datetime) -> None:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...
