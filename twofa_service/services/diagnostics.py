"""
TOTP diagnostics for support tooling and failure-path messages.

Read-only: nothing here writes state, and no result carries secret material.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional

from twofa_service.core.config import settings
from twofa_service.services.totp_engine import Instant, TotpEngine, normalize_code

# Seconds at either edge of a window where a code is about to change / just changed
EDGE_SECONDS = 5


@dataclass(frozen=True)
class WindowCode:
    offset: int
    code: str
    matches: bool


@dataclass(frozen=True)
class TotpDiagnosis:
    secret_valid: bool
    code_format_valid: bool
    expected_code: Optional[str]
    window_codes: List[WindowCode] = field(default_factory=list)
    matched_window_offset: Optional[int] = None
    server_time: str = ""
    seconds_into_window: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class TimeSyncReport:
    server_time: str
    server_timestamp: int
    current_window: int
    seconds_to_next_code: int
    recommendation: str

    def to_dict(self) -> Dict:
        return asdict(self)


class DiagnosticsService:
    """Explains failed codes and reports server-side TOTP timing"""

    def __init__(self, engine: TotpEngine, windows: Optional[int] = None):
        self.engine = engine
        self.windows = settings.TOTP_DIAGNOSTIC_WINDOWS if windows is None else windows

    @staticmethod
    def _iso(timestamp: int) -> str:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()

    def diagnose(self, secret: str, submitted_code: str, at: Instant = None) -> TotpDiagnosis:
        """
        Compute the expected code for each window around `at` and report which
        one (if any) the submitted code belongs to
        """
        timestamp = self.engine.to_timestamp(at)
        code_format_valid = self.engine.is_valid_code_format(submitted_code)
        seconds_into_window = timestamp % self.engine.interval

        if not self.engine.is_valid_secret(secret):
            return TotpDiagnosis(
                secret_valid=False,
                code_format_valid=code_format_valid,
                expected_code=None,
                server_time=self._iso(timestamp),
                seconds_into_window=seconds_into_window,
            )

        submitted = normalize_code(submitted_code)
        window_codes: List[WindowCode] = []
        for offset in range(-self.windows, self.windows + 1):
            code = self.engine.code_at_offset(secret, offset, timestamp)
            window_codes.append(WindowCode(offset=offset, code=code, matches=code_format_valid and code == submitted))

        matched = self.engine.match_window(submitted_code, secret, self.windows, timestamp)

        return TotpDiagnosis(
            secret_valid=True,
            code_format_valid=code_format_valid,
            expected_code=self.engine.current_code(secret, timestamp),
            window_codes=window_codes,
            matched_window_offset=matched,
            server_time=self._iso(timestamp),
            seconds_into_window=seconds_into_window,
        )

    def check_time_sync(self, at: Instant = None) -> TimeSyncReport:
        """Pure function of the clock: where the server is within the current window"""
        timestamp = self.engine.to_timestamp(at)
        interval = self.engine.interval
        seconds_to_next = interval - (timestamp % interval)

        if seconds_to_next < EDGE_SECONDS:
            recommendation = "Code will change soon. Wait for the next code."
        elif seconds_to_next > interval - EDGE_SECONDS:
            recommendation = "Code just changed. Use the code currently shown."
        else:
            recommendation = "Time appears synchronized"

        return TimeSyncReport(
            server_time=self._iso(timestamp),
            server_timestamp=timestamp,
            current_window=timestamp // interval,
            seconds_to_next_code=seconds_to_next,
            recommendation=recommendation,
        )
