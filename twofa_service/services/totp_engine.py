"""
TOTP engine - RFC 6238 time-based one-time passwords

Secrets are 160-bit base32 values generated with pyotp. Validation accepts a
code from any window in [current - N, current + N]; the same function serves
the normal profile (N=1) and the large-tolerance fallback used to absorb
larger client/server clock drift.
"""

import base64
import binascii
import io
import re
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Union

import pyotp
import qrcode

from twofa_service.core.config import settings
from twofa_service.core.exceptions import InvalidSecretError

SECRET_LENGTH = 32  # base32 chars -> 160 bits
MIN_SECRET_LENGTH = 16  # 80 bits, the RFC 4226 minimum

_BASE32_RE = re.compile(r"^[A-Z2-7]+=*$")

Instant = Union[datetime, int, float, None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class GeneratedSecret:
    secret: str
    provisioning_uri: str


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of a validation attempt with the fallback profile"""
    valid: bool
    matched_offset: Optional[int] = None
    used_fallback: bool = False


def normalize_secret(secret: str) -> str:
    return re.sub(r"\s", "", secret or "").upper()


def normalize_code(code: str) -> str:
    """Strip whitespace from a submitted code ("123 456" -> "123456")"""
    return re.sub(r"\s", "", code or "")


class TotpEngine:
    """TOTP secret generation, window codes and drift-tolerant validation"""

    def __init__(
        self,
        issuer: Optional[str] = None,
        digits: Optional[int] = None,
        interval: Optional[int] = None,
        tolerance_windows: Optional[int] = None,
        fallback_tolerance_windows: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.issuer = issuer or settings.TOTP_ISSUER
        self.digits = digits or settings.TOTP_DIGITS
        self.interval = interval or settings.TOTP_INTERVAL_SECONDS
        self.tolerance_windows = (
            settings.TOTP_TOLERANCE_WINDOWS if tolerance_windows is None else tolerance_windows
        )
        self.fallback_tolerance_windows = (
            settings.TOTP_FALLBACK_TOLERANCE_WINDOWS
            if fallback_tolerance_windows is None else fallback_tolerance_windows
        )
        self.clock = clock
        self._code_re = re.compile(rf"^\d{{{self.digits}}}$")

    # Formats

    def is_valid_secret(self, secret: str) -> bool:
        """Check that a secret is base32 of at least 80 bits"""
        normalized = normalize_secret(secret)
        if not _BASE32_RE.match(normalized) or len(normalized.rstrip("=")) < MIN_SECRET_LENGTH:
            return False
        padded = normalized.rstrip("=")
        padded += "=" * (-len(padded) % 8)
        try:
            base64.b32decode(padded)
        except (binascii.Error, ValueError):
            return False
        return True

    def is_valid_code_format(self, code: str) -> bool:
        return bool(self._code_re.match(normalize_code(code)))

    def _totp(self, secret: str) -> pyotp.TOTP:
        # Format check before any HMAC work
        if not self.is_valid_secret(secret):
            raise InvalidSecretError("TOTP secret is not valid base32")
        return pyotp.TOTP(normalize_secret(secret), digits=self.digits, interval=self.interval)

    def to_timestamp(self, at: Instant) -> int:
        if at is None:
            at = self.clock()
        if isinstance(at, datetime):
            if at.tzinfo is None:
                at = at.replace(tzinfo=timezone.utc)
            return int(at.timestamp())
        return int(at)

    # Generation

    def generate_secret(self, label: str) -> GeneratedSecret:
        """
        Generate a new random secret and its otpauth:// provisioning URI

        Args:
            label: Account label shown in the authenticator app (user's email)
        """
        secret = pyotp.random_base32(length=SECRET_LENGTH)
        uri = pyotp.TOTP(secret, digits=self.digits, interval=self.interval).provisioning_uri(
            name=label,
            issuer_name=self.issuer,
        )
        return GeneratedSecret(secret=secret, provisioning_uri=uri)

    def provisioning_uri(self, secret: str, label: str) -> str:
        return self._totp(secret).provisioning_uri(name=label, issuer_name=self.issuer)

    def qr_code_data_uri(self, provisioning_uri: str) -> str:
        """
        Render a provisioning URI as a PNG data URI (can be used in <img src="">)
        """
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=1,
        )
        qr.add_data(provisioning_uri)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        buffer = io.BytesIO()
        img.save(buffer)
        img_base64 = base64.b64encode(buffer.getvalue()).decode()
        return f"data:image/png;base64,{img_base64}"

    # Codes

    def current_window(self, at: Instant = None) -> int:
        return self.to_timestamp(at) // self.interval

    def seconds_to_next_code(self, at: Instant = None) -> int:
        return self.interval - (self.to_timestamp(at) % self.interval)

    def current_code(self, secret: str, at: Instant = None) -> str:
        """Code for window floor(at / interval)"""
        return self._totp(secret).at(self.to_timestamp(at))

    def code_at_offset(self, secret: str, offset: int, at: Instant = None) -> str:
        """Code for the window `offset` steps away from the one containing `at`"""
        return self._totp(secret).at(self.to_timestamp(at), counter_offset=offset)

    # Validation

    def match_window(
        self,
        code: str,
        secret: str,
        tolerance_windows: int,
        at: Instant = None,
    ) -> Optional[int]:
        """
        Find the window offset in [-tolerance, +tolerance] whose code equals `code`

        Offsets are tried nearest-first so the reported drift is minimal.

        Returns:
            The matching offset, or None if no window matches or the code is malformed

        Raises:
            InvalidSecretError: If the secret is not valid base32
        """
        totp = self._totp(secret)
        code = normalize_code(code)
        if not self._code_re.match(code):
            return None

        timestamp = self.to_timestamp(at)
        offsets = [0]
        for step in range(1, tolerance_windows + 1):
            offsets.extend((-step, step))

        for offset in offsets:
            if hmac.compare_digest(totp.at(timestamp, counter_offset=offset), code):
                return offset
        return None

    def validate(
        self,
        code: str,
        secret: str,
        tolerance_windows: Optional[int] = None,
        at: Instant = None,
    ) -> bool:
        if tolerance_windows is None:
            tolerance_windows = self.tolerance_windows
        return self.match_window(code, secret, tolerance_windows, at) is not None

    def validate_with_fallback(self, code: str, secret: str, at: Instant = None) -> ValidationOutcome:
        """
        Validate with the normal profile, then retry once with the large-tolerance profile
        """
        at = self.to_timestamp(at)
        offset = self.match_window(code, secret, self.tolerance_windows, at)
        if offset is not None:
            return ValidationOutcome(valid=True, matched_offset=offset)

        if self.fallback_tolerance_windows > self.tolerance_windows:
            offset = self.match_window(code, secret, self.fallback_tolerance_windows, at)
            if offset is not None:
                return ValidationOutcome(valid=True, matched_offset=offset, used_fallback=True)

        return ValidationOutcome(valid=False)
