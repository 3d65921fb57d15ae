"""
Backup (recovery) codes

Codes are shown to the user exactly once, then stored as keyed HMAC-SHA256
digests of their normalized form: equality can be checked, the code cannot be
recovered from storage.
"""

import hashlib
import hmac
import re
import secrets
import string
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from twofa_service.core.config import settings

BACKUP_CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class BackupCodeCheck:
    valid: bool
    remaining: List[str] = field(default_factory=list)
    matched: Optional[str] = None  # stored form of the consumed code


class BackupCodeManager:
    """Generation, storage encoding and single-use consumption of backup codes"""

    def __init__(self, pepper: bytes, count: Optional[int] = None, length: Optional[int] = None):
        """
        Args:
            pepper: Key for the storage digests (derived from the encryption key)
            count: Codes per set
            length: Characters per code, excluding the display dash
        """
        if not pepper:
            raise ValueError("Backup code pepper must not be empty")
        self._pepper = pepper
        self.count = count or settings.BACKUP_CODE_COUNT
        self.length = length or settings.BACKUP_CODE_LENGTH
        self._format_re = re.compile(rf"^[A-Z0-9]{{{self.length}}}$")

    @staticmethod
    def normalize(code: str) -> str:
        """Trim, drop dashes and whitespace, upper-case"""
        return re.sub(r"[-\s]", "", code or "").upper()

    def format_for_display(self, code: str) -> str:
        """Format as XXXX-XXXX for readability"""
        clean = self.normalize(code)
        if len(clean) == 8:
            return f"{clean[:4]}-{clean[4:]}"
        return clean

    def is_valid_backup_code_format(self, code: str) -> bool:
        return bool(self._format_re.match(self.normalize(code)))

    def generate(self, count: Optional[int] = None) -> List[str]:
        """
        Generate a fresh set of distinct codes

        Returns:
            Display-formatted plaintext codes
        """
        count = count or self.count
        codes: List[str] = []
        seen = set()
        while len(codes) < count:
            code = ''.join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(self.length))
            if code in seen:
                continue
            seen.add(code)
            codes.append(self.format_for_display(code))
        return codes

    def encode(self, code: str) -> str:
        digest = hmac.new(self._pepper, self.normalize(code).encode("utf-8"), hashlib.sha256)
        return digest.hexdigest()

    def encode_for_storage(self, codes: Sequence[str]) -> List[str]:
        return [self.encode(code) for code in codes]

    def validate_and_consume(self, submitted: str, stored: Sequence[str]) -> BackupCodeCheck:
        """
        Match a submitted code against the stored set

        On a match exactly that entry is removed from the returned `remaining`;
        otherwise `remaining` is the stored set unchanged. Persisting the removal
        is the caller's job and must be a conditional update.
        """
        stored = list(stored)
        if not self.is_valid_backup_code_format(submitted):
            return BackupCodeCheck(valid=False, remaining=stored)

        candidate = self.encode(submitted)
        for i, encoded in enumerate(stored):
            if hmac.compare_digest(encoded, candidate):
                remaining = stored[:i] + stored[i + 1:]
                return BackupCodeCheck(valid=True, remaining=remaining, matched=encoded)

        return BackupCodeCheck(valid=False, remaining=stored)
