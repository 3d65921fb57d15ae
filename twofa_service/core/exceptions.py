"""
Exception classes and result codes for the 2FA subsystem.

Expected failures (wrong code, wrong state) are reported as typed results
carrying a TwoFactorErrorCode; only the exceptional conditions below are raised.
"""

import enum


class TwoFactorError(Exception):
    """Base exception class for all 2FA exceptions."""


class ConfigurationError(TwoFactorError):
    """Raised when required configuration (e.g. the encryption key) is missing or invalid."""


class DecryptionError(TwoFactorError):
    """Raised when a stored or pending secret cannot be decrypted.

    Callers treat this as "secret unrecoverable, restart setup", never as a
    transient fault worth retrying.
    """


class ValidationError(TwoFactorError):
    """Raised when input format validation fails."""


class InvalidSecretError(ValidationError):
    """Raised when a TOTP secret is not valid base32 of sufficient length."""


class StorageError(TwoFactorError):
    """Raised when the repository cannot complete an operation."""


class TwoFactorErrorCode(str, enum.Enum):
    """Error codes carried by failed TwoFactorResult objects"""
    NOT_FOUND = "not_found"
    ALREADY_ENABLED = "already_enabled"
    NOT_ENABLED = "not_enabled"
    INVALID_CODE_FORMAT = "invalid_code_format"
    INVALID_BACKUP_CODE_FORMAT = "invalid_backup_code_format"
    INVALID_CODE = "invalid_code"
    SECRET_UNRECOVERABLE = "secret_unrecoverable"
    INVALID_SECRET = "invalid_secret"
    STEP_UP_EXPIRED = "step_up_expired"
    STEP_UP_NOT_VERIFIED = "step_up_not_verified"
    STEP_UP_TOO_MANY_ATTEMPTS = "step_up_too_many_attempts"
