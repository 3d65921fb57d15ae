"""
Two-factor authentication lifecycle

State machine: DISABLED -> PENDING_VERIFICATION -> ENABLED -> DISABLED.

The pending state is never persisted: setup hands the encrypted secret back to
the caller, and enable persists it only after a valid code has been shown.
Expected failures come back as TwoFactorResult objects; only storage and
configuration problems are raised. A state change and its security event are
committed in one transaction.
"""

import enum
import logging
import dataclasses
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional

from twofa_service.core.config import settings
from twofa_service.core.exceptions import DecryptionError, InvalidSecretError, TwoFactorErrorCode
from twofa_service.metrics import (
    twofa_setup_total,
    twofa_enable_attempts_total,
    twofa_disable_total,
    twofa_verifications_total,
    twofa_clock_drift_fallback_total,
)
from twofa_service.repositories.base import TwoFactorRecord, TwoFactorRepository
from twofa_service.services.backup_codes import BackupCodeManager
from twofa_service.services.notifications import SecurityAlertNotifier
from twofa_service.services.secret_codec import SecretCodec
from twofa_service.services.security_events import SecurityEvent, SecurityEventLog, SecurityEventType
from twofa_service.services.totp_engine import TotpEngine, ValidationOutcome, normalize_code, utc_now
from twofa_service.utils.security import mask_email

logger = logging.getLogger(__name__)

BACKUP_CODE_KEY_INFO = b"twofa:backup-codes:v1"


class TwoFactorState(str, enum.Enum):
    DISABLED = "disabled"
    PENDING_VERIFICATION = "pending_verification"
    ENABLED = "enabled"


class VerificationMethod(str, enum.Enum):
    TOTP = "totp"
    BACKUP_CODE = "backup_code"


@dataclass(frozen=True)
class RequestContext:
    """Client information recorded on security events"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class PendingSetup:
    """Output of setup; lives only in the caller's hands until enable"""
    encrypted_secret: str
    manual_entry_secret: str
    provisioning_uri: str
    qr_code_url: str
    backup_codes: List[str]

    @property
    def state(self) -> TwoFactorState:
        return TwoFactorState.PENDING_VERIFICATION


@dataclass(frozen=True)
class TwoFactorStatus:
    user_id: int
    state: TwoFactorState
    backup_codes_remaining: int
    enabled_at: Optional[datetime] = None

    @property
    def enabled(self) -> bool:
        return self.state == TwoFactorState.ENABLED


@dataclass(frozen=True)
class TwoFactorResult:
    """
    Outcome of a lifecycle operation

    `field` names the input a failure is scoped to (e.g. "verification_code"),
    so the caller can attach the message to the right form field.
    """
    success: bool
    message: str = ""
    error: Optional[TwoFactorErrorCode] = None
    field: Optional[str] = None
    data: Dict[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **data) -> "TwoFactorResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(
        cls,
        error: TwoFactorErrorCode,
        message: str,
        field: Optional[str] = None,
        **data,
    ) -> "TwoFactorResult":
        return cls(success=False, message=message, error=error, field=field, data=data)


class TwoFactorService:
    """Service for the 2FA setup / enable / verify / disable lifecycle"""

    def __init__(
        self,
        repository: TwoFactorRepository,
        codec: SecretCodec,
        engine: TotpEngine,
        event_log: SecurityEventLog,
        notifier: SecurityAlertNotifier,
        backup_codes: Optional[BackupCodeManager] = None,
        clock: Optional[Callable[[], datetime]] = None,
        login_allow_fallback: Optional[bool] = None,
    ):
        self.repository = repository
        self.codec = codec
        self.engine = engine
        self.event_log = event_log
        self.notifier = notifier
        self.backup_codes = backup_codes or BackupCodeManager(codec.derive_subkey(BACKUP_CODE_KEY_INFO))
        self.clock = clock or engine.clock or utc_now
        self.login_allow_fallback = (
            settings.TOTP_LOGIN_ALLOW_FALLBACK if login_allow_fallback is None else login_allow_fallback
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _unit_of_work(self) -> Iterator[None]:
        """Commit everything written inside the block, or roll all of it back"""
        try:
            yield
        except Exception:
            self.repository.rollback()
            raise
        self.repository.commit()

    def _event(
        self,
        user_id: int,
        event_type: SecurityEventType,
        details: str,
        success: bool,
        context: Optional[RequestContext],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SecurityEvent:
        context = context or RequestContext()
        return SecurityEvent(
            user_id=user_id,
            event_type=event_type,
            details=details,
            success=success,
            timestamp=self.clock(),
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            metadata=metadata or {},
        )

    def _record(self, *args, **kwargs) -> None:
        """Record an event that accompanies no state change"""
        with self._unit_of_work():
            self.event_log.record(self._event(*args, **kwargs))

    def _notify(self, user: TwoFactorRecord, event_type: SecurityEventType, message: str) -> None:
        """Best-effort alert; a failure here never undoes the state change"""
        try:
            self.notifier.send_security_alert(user.email, user.name or "", event_type.value, message)
        except Exception as e:
            logger.error(f"Failed to send {event_type.value} alert to {mask_email(user.email)}: {e}")

    def _timing(self, at: datetime) -> Dict[str, Any]:
        return {
            "server_time": at.isoformat(),
            "seconds_to_next_code": self.engine.seconds_to_next_code(at),
        }

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_two_factor_status(self, user_id: int) -> TwoFactorResult:
        user = self.repository.find_user(user_id)
        if user is None:
            return TwoFactorResult.fail(TwoFactorErrorCode.NOT_FOUND, "User not found")

        status = TwoFactorStatus(
            user_id=user.user_id,
            state=TwoFactorState.ENABLED if user.enabled else TwoFactorState.DISABLED,
            backup_codes_remaining=len(user.backup_codes) if user.enabled else 0,
            enabled_at=user.enabled_at,
        )
        return TwoFactorResult.ok("2FA status retrieved", status=status)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup_two_factor(self, email: str, context: Optional[RequestContext] = None) -> TwoFactorResult:
        """
        Start 2FA setup (DISABLED -> PENDING_VERIFICATION)

        Generates a secret and a backup-code set and encrypts the secret for the
        user. Nothing is persisted; the caller returns the encrypted secret with
        the verification code to enable_two_factor().

        Returns:
            Result whose data holds `pending` (PendingSetup)
        """
        user = self.repository.find_user_by_email(email)
        if user is None:
            return TwoFactorResult.fail(TwoFactorErrorCode.NOT_FOUND, "User not found")

        if user.enabled:
            logger.info(f"2FA setup refused for user {user.user_id}: already enabled")
            return TwoFactorResult.fail(
                TwoFactorErrorCode.ALREADY_ENABLED,
                "Two-factor authentication is already enabled. Disable it first to set it up again.",
            )

        generated = self.engine.generate_secret(user.email)
        pending = PendingSetup(
            encrypted_secret=self.codec.encrypt(generated.secret, context=user.user_id),
            manual_entry_secret=generated.secret,
            provisioning_uri=generated.provisioning_uri,
            qr_code_url=self.engine.qr_code_data_uri(generated.provisioning_uri),
            backup_codes=self.backup_codes.generate(),
        )

        self._record(
            user.user_id,
            SecurityEventType.SETUP_INITIATED,
            "Two-factor authentication setup started",
            True,
            context,
        )
        twofa_setup_total.inc()
        logger.info(f"2FA setup started for {mask_email(user.email)} (user {user.user_id})")

        return TwoFactorResult.ok("Scan the QR code with your authenticator app", pending=pending)

    # ------------------------------------------------------------------
    # Enable
    # ------------------------------------------------------------------

    def _enable_failed(
        self,
        user: TwoFactorRecord,
        error: TwoFactorErrorCode,
        message: str,
        details: str,
        context: Optional[RequestContext],
        field: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TwoFactorResult:
        metadata = dict(metadata or {})
        metadata["reason"] = error.value
        self._record(user.user_id, SecurityEventType.ENABLE_FAILED, details, False, context, metadata)
        twofa_enable_attempts_total.labels(status=error.value).inc()
        logger.info(f"2FA enable failed for user {user.user_id}: {error.value}")
        return TwoFactorResult.fail(error, message, field=field)

    def enable_two_factor(
        self,
        encrypted_secret: str,
        verification_code: str,
        user_id: int,
        context: Optional[RequestContext] = None,
    ) -> TwoFactorResult:
        """
        Confirm setup with a code from the authenticator (PENDING_VERIFICATION -> ENABLED)

        The secret is only persisted through a conditional update guarded on 2FA
        not being enabled yet, so of two racing enables only one wins.

        Returns:
            Result whose data holds the fresh `backup_codes` on success
        """
        user = self.repository.find_user(user_id)
        if user is None:
            return TwoFactorResult.fail(TwoFactorErrorCode.NOT_FOUND, "User not found")

        if user.enabled:
            return self._enable_failed(
                user,
                TwoFactorErrorCode.ALREADY_ENABLED,
                "Two-factor authentication is already enabled",
                "Enable attempted while 2FA already enabled",
                context,
            )

        if not self.engine.is_valid_code_format(verification_code):
            return self._enable_failed(
                user,
                TwoFactorErrorCode.INVALID_CODE_FORMAT,
                f"Enter the {self.engine.digits}-digit code from your authenticator app",
                "Malformed verification code",
                context,
                field="verification_code",
            )

        try:
            secret = self.codec.decrypt(encrypted_secret, context=user.user_id)
        except DecryptionError as e:
            logger.warning(f"Pending 2FA secret for user {user.user_id} could not be decrypted: {e}")
            return self._enable_failed(
                user,
                TwoFactorErrorCode.SECRET_UNRECOVERABLE,
                "This setup session can no longer be used. Please start two-factor setup again.",
                "Pending secret could not be decrypted",
                context,
                field="secret",
            )

        if not self.engine.is_valid_secret(secret):
            return self._enable_failed(
                user,
                TwoFactorErrorCode.INVALID_SECRET,
                "This setup session is invalid. Please start two-factor setup again.",
                "Pending secret has an invalid format",
                context,
                field="secret",
            )

        now = self.clock()
        outcome = self.engine.validate_with_fallback(verification_code, secret, now)
        if not outcome.valid:
            timing = self._timing(now)
            return self._enable_failed(
                user,
                TwoFactorErrorCode.INVALID_CODE,
                "Invalid verification code. Check that your device clock is correct and "
                f"try the next code (it changes in {timing['seconds_to_next_code']} seconds).",
                "Verification code did not match",
                context,
                field="verification_code",
                metadata={
                    "expected_code": self.engine.current_code(secret, now),
                    "submitted_code": normalize_code(verification_code),
                    **timing,
                },
            )

        self._count_drift(user.user_id, outcome)

        backup_codes = self.backup_codes.generate()
        with self._unit_of_work():
            enabled = self.repository.enable_two_factor(
                user.user_id,
                encrypted_secret,
                self.backup_codes.encode_for_storage(backup_codes),
                now,
            )
            if enabled:
                self.event_log.record(self._event(
                    user.user_id,
                    SecurityEventType.ENABLED,
                    "Two-factor authentication enabled",
                    True,
                    context,
                    {"matched_window_offset": outcome.matched_offset, "used_fallback": outcome.used_fallback},
                ))
        if not enabled:
            # Another enable won the conditional update; this secret is discarded
            return self._enable_failed(
                user,
                TwoFactorErrorCode.ALREADY_ENABLED,
                "Two-factor authentication is already enabled",
                "Enable lost to a concurrent enable",
                context,
            )

        twofa_enable_attempts_total.labels(status="success").inc()
        logger.info(f"2FA enabled for {mask_email(user.email)} (user {user.user_id})")

        self._notify(
            user,
            SecurityEventType.ENABLED,
            "Two-factor authentication has been enabled on your account",
        )

        return TwoFactorResult.ok("Two-factor authentication enabled", backup_codes=backup_codes)

    def _count_drift(self, user_id: int, outcome: ValidationOutcome) -> None:
        if outcome.used_fallback:
            twofa_clock_drift_fallback_total.inc()
            logger.warning(
                f"Code for user {user_id} accepted {outcome.matched_offset} windows off; "
                f"client clock is drifting"
            )

    # ------------------------------------------------------------------
    # Login verification
    # ------------------------------------------------------------------

    def _verify_failed(
        self,
        user_id: int,
        method: VerificationMethod,
        error: TwoFactorErrorCode,
        message: str,
        context: Optional[RequestContext],
        field: Optional[str] = "code",
    ) -> TwoFactorResult:
        label = "backup code" if method == VerificationMethod.BACKUP_CODE else "TOTP"
        self._record(
            user_id,
            SecurityEventType.FAILED,
            f"2FA verification failed using {label}",
            False,
            context,
            {"method": method.value, "reason": error.value},
        )
        twofa_verifications_total.labels(method=method.value, status=error.value).inc()
        logger.info(f"2FA verification failed for user {user_id} ({method.value}): {error.value}")
        return TwoFactorResult.fail(error, message, field=field)

    def verify_two_factor_code(
        self,
        user_id: int,
        code: str,
        use_backup_code: bool = False,
        context: Optional[RequestContext] = None,
    ) -> TwoFactorResult:
        """
        Check a login code (TOTP or backup code) for an enabled account

        No state transition; a backup code is consumed with a conditional delete.
        Writes exactly one 2fa_verified / 2fa_failed event.

        Returns:
            Result whose data holds `remaining_backup_codes` on success
        """
        method = VerificationMethod.BACKUP_CODE if use_backup_code else VerificationMethod.TOTP

        user = self.repository.find_user(user_id)
        if user is None:
            return TwoFactorResult.fail(TwoFactorErrorCode.NOT_FOUND, "User not found")

        if not user.enabled or not user.encrypted_secret:
            return self._verify_failed(
                user.user_id,
                method,
                TwoFactorErrorCode.NOT_ENABLED,
                "Two-factor authentication is not enabled for this account",
                context,
                field=None,
            )

        if use_backup_code:
            return self._verify_backup_code(user, code, context)
        return self._verify_totp(user, code, context)

    def _verify_totp(
        self,
        user: TwoFactorRecord,
        code: str,
        context: Optional[RequestContext],
    ) -> TwoFactorResult:
        method = VerificationMethod.TOTP

        if not self.engine.is_valid_code_format(code):
            return self._verify_failed(
                user.user_id, method, TwoFactorErrorCode.INVALID_CODE_FORMAT,
                "Invalid verification code format", context,
            )

        try:
            secret = self.codec.decrypt(user.encrypted_secret, context=user.user_id)
            now = self.clock()
            if self.login_allow_fallback:
                outcome = self.engine.validate_with_fallback(code, secret, now)
            else:
                offset = self.engine.match_window(code, secret, self.engine.tolerance_windows, now)
                outcome = ValidationOutcome(valid=offset is not None, matched_offset=offset)
        except (DecryptionError, InvalidSecretError) as e:
            logger.error(f"Stored 2FA secret for user {user.user_id} is unusable: {e}")
            return self._verify_failed(
                user.user_id, method, TwoFactorErrorCode.SECRET_UNRECOVERABLE,
                "Two-factor authentication needs to be set up again. Use a backup code to sign in.",
                context, field=None,
            )

        if not outcome.valid:
            return self._verify_failed(
                user.user_id, method, TwoFactorErrorCode.INVALID_CODE,
                "Invalid verification code", context,
            )

        self._count_drift(user.user_id, outcome)
        remaining = len(user.backup_codes)
        self._record(
            user.user_id,
            SecurityEventType.VERIFIED,
            "2FA verified using TOTP",
            True,
            context,
            {"method": method.value, "matched_window_offset": outcome.matched_offset},
        )
        twofa_verifications_total.labels(method=method.value, status="success").inc()
        return TwoFactorResult.ok(
            "2FA verified successfully",
            method=method.value,
            remaining_backup_codes=remaining,
        )

    def _verify_backup_code(
        self,
        user: TwoFactorRecord,
        code: str,
        context: Optional[RequestContext],
    ) -> TwoFactorResult:
        method = VerificationMethod.BACKUP_CODE

        if not self.backup_codes.is_valid_backup_code_format(code):
            return self._verify_failed(
                user.user_id, method, TwoFactorErrorCode.INVALID_BACKUP_CODE_FORMAT,
                "Invalid backup code format", context,
            )

        check = self.backup_codes.validate_and_consume(code, user.backup_codes)
        remaining = len(check.remaining)
        with self._unit_of_work():
            # The conditional delete decides between two concurrent uses of one code
            consumed = check.valid and self.repository.consume_backup_code(user.user_id, check.matched)
            if consumed:
                self.event_log.record(self._event(
                    user.user_id,
                    SecurityEventType.VERIFIED,
                    "2FA verified using backup code",
                    True,
                    context,
                    {"method": method.value, "remaining_backup_codes": remaining},
                ))
        if not consumed:
            return self._verify_failed(
                user.user_id, method, TwoFactorErrorCode.INVALID_CODE,
                "Invalid backup code", context,
            )

        twofa_verifications_total.labels(method=method.value, status="success").inc()
        logger.info(f"Backup code used by user {user.user_id}, {remaining} remaining")

        return TwoFactorResult.ok(
            "2FA verified successfully",
            method=method.value,
            remaining_backup_codes=remaining,
        )

    # ------------------------------------------------------------------
    # Disable
    # ------------------------------------------------------------------

    def disable_two_factor(self, user_id: int, context: Optional[RequestContext] = None) -> TwoFactorResult:
        """
        Turn 2FA off (ENABLED -> DISABLED)

        Calling this on a disabled account returns NOT_ENABLED and changes nothing.
        """
        user = self.repository.find_user(user_id)
        if user is None:
            twofa_disable_total.labels(status=TwoFactorErrorCode.NOT_FOUND.value).inc()
            return TwoFactorResult.fail(TwoFactorErrorCode.NOT_FOUND, "User not found")

        disabled = False
        if user.enabled:
            with self._unit_of_work():
                disabled = self.repository.disable_two_factor(user.user_id)
                if disabled:
                    self.event_log.record(self._event(
                        user.user_id,
                        SecurityEventType.DISABLED,
                        "Two-factor authentication disabled",
                        True,
                        context,
                    ))
        if not disabled:
            twofa_disable_total.labels(status=TwoFactorErrorCode.NOT_ENABLED.value).inc()
            return TwoFactorResult.fail(
                TwoFactorErrorCode.NOT_ENABLED,
                "Two-factor authentication is not enabled",
            )

        twofa_disable_total.labels(status="success").inc()
        logger.info(f"2FA disabled for {mask_email(user.email)} (user {user.user_id})")

        self._notify(
            user,
            SecurityEventType.DISABLED,
            "Two-factor authentication has been disabled on your account",
        )

        return TwoFactorResult.ok("Two-factor authentication disabled")

    # ------------------------------------------------------------------
    # Backup code regeneration
    # ------------------------------------------------------------------

    def _regenerate_failed(
        self,
        user_id: int,
        error: TwoFactorErrorCode,
        message: str,
        context: Optional[RequestContext],
        field: Optional[str] = None,
    ) -> TwoFactorResult:
        self._record(
            user_id,
            SecurityEventType.FAILED,
            f"Backup code regeneration refused: {error.value}",
            False,
            context,
            {"method": VerificationMethod.TOTP.value, "reason": error.value},
        )
        logger.info(f"Backup code regeneration refused for user {user_id}: {error.value}")
        return TwoFactorResult.fail(error, message, field=field)

    def regenerate_backup_codes(
        self,
        user_id: int,
        code: str,
        context: Optional[RequestContext] = None,
    ) -> TwoFactorResult:
        """
        Replace the whole backup-code set; requires a current TOTP code

        Returns:
            Result whose data holds the new `backup_codes`
        """
        user = self.repository.find_user(user_id)
        if user is None:
            return TwoFactorResult.fail(TwoFactorErrorCode.NOT_FOUND, "User not found")

        if not user.enabled or not user.encrypted_secret:
            return TwoFactorResult.fail(
                TwoFactorErrorCode.NOT_ENABLED,
                "Two-factor authentication is not enabled",
            )

        if not self.engine.is_valid_code_format(code):
            return self._regenerate_failed(
                user.user_id, TwoFactorErrorCode.INVALID_CODE_FORMAT,
                "Invalid verification code format", context, field="code",
            )

        try:
            secret = self.codec.decrypt(user.encrypted_secret, context=user.user_id)
            valid = self.engine.validate(code, secret, at=self.clock())
        except (DecryptionError, InvalidSecretError) as e:
            logger.error(f"Stored 2FA secret for user {user.user_id} is unusable: {e}")
            return self._regenerate_failed(
                user.user_id, TwoFactorErrorCode.SECRET_UNRECOVERABLE,
                "Two-factor authentication needs to be set up again", context,
            )

        if not valid:
            return self._regenerate_failed(
                user.user_id, TwoFactorErrorCode.INVALID_CODE,
                "Invalid verification code", context, field="code",
            )

        backup_codes = self.backup_codes.generate()
        with self._unit_of_work():
            replaced = self.repository.replace_backup_codes(
                user.user_id, self.backup_codes.encode_for_storage(backup_codes)
            )
            if replaced:
                self.event_log.record(self._event(
                    user.user_id,
                    SecurityEventType.BACKUP_CODES_REGENERATED,
                    "Backup codes regenerated",
                    True,
                    context,
                ))
        if not replaced:
            return TwoFactorResult.fail(
                TwoFactorErrorCode.NOT_ENABLED,
                "Two-factor authentication is not enabled",
            )

        logger.info(f"Backup codes regenerated for user {user.user_id}")

        self._notify(
            user,
            SecurityEventType.BACKUP_CODES_REGENERATED,
            "New backup codes were generated for your account. Previous codes no longer work.",
        )

        return TwoFactorResult.ok("Backup codes regenerated", backup_codes=backup_codes)
