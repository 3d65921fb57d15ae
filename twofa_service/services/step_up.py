"""
Step-up verification during sign-in

After the primary credentials are accepted, the login flow opens a short-lived
step-up session and gets back an opaque token. The user proves possession of
the second factor against that token, then the login flow completes it exactly
once. Sessions live in Redis with a TTL, so any service instance can continue
a flow started on another one.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Callable, Optional

from twofa_service.core.config import settings
from twofa_service.core.exceptions import TwoFactorErrorCode
from twofa_service.core.redis_client import RedisClient
from twofa_service.repositories.base import TwoFactorRepository
from twofa_service.services.event_service import EventService
from twofa_service.services.totp_engine import utc_now
from twofa_service.services.two_factor_service import RequestContext, TwoFactorResult, TwoFactorService
from twofa_service.utils.security import generate_random_token

logger = logging.getLogger(__name__)

KEY_PREFIX = "step_up:"
ATTEMPTS_KEY_PREFIX = "ratelimit:step_up:"


@dataclass(frozen=True)
class StepUpSession:
    user_id: int
    created_at: str
    callback_url: Optional[str] = None
    verified: bool = False
    method: Optional[str] = None


class StepUpSessionStore:
    """Redis-backed store for pending step-up sessions, keyed by token"""

    def __init__(
        self,
        redis: RedisClient,
        ttl_seconds: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ):
        self.redis = redis
        self.ttl_seconds = ttl_seconds or settings.STEP_UP_SESSION_TTL_SECONDS
        self.max_attempts = max_attempts or settings.STEP_UP_MAX_ATTEMPTS

    @staticmethod
    def _key(token: str) -> str:
        return f"{KEY_PREFIX}{token}"

    @staticmethod
    def _load(data: Optional[dict]) -> Optional[StepUpSession]:
        if not data:
            return None
        return StepUpSession(**data)

    def create(self, user_id: int, created_at: datetime, callback_url: Optional[str] = None) -> str:
        """Open a session and return its token"""
        token = generate_random_token(32)
        session = StepUpSession(user_id=user_id, created_at=created_at.isoformat(), callback_url=callback_url)
        self.redis.set_json(self._key(token), asdict(session), ttl=self.ttl_seconds)
        return token

    def get(self, token: str) -> Optional[StepUpSession]:
        if not token:
            return None
        return self._load(self.redis.get_json(self._key(token)))

    def mark_verified(self, token: str, method: str) -> bool:
        """
        Flag a live session as verified without extending its lifetime

        Returns:
            False if the session expired in the meantime
        """
        session = self.get(token)
        if session is None:
            return False
        verified = StepUpSession(
            user_id=session.user_id,
            created_at=session.created_at,
            callback_url=session.callback_url,
            verified=True,
            method=method,
        )
        return self.redis.set_json_if_exists(self._key(token), asdict(verified))

    def register_attempt(self, token: str) -> bool:
        """
        Count one verification attempt for a session

        Returns:
            False once the session has used up its attempts
        """
        allowed, _ = self.redis.check_rate_limit(
            f"{ATTEMPTS_KEY_PREFIX}{token}", self.max_attempts, self.ttl_seconds
        )
        return allowed

    def invalidate(self, token: str) -> None:
        self.redis.delete(self._key(token))

    def consume(self, token: str) -> Optional[StepUpSession]:
        """Atomically read and delete a session; a second call gets None"""
        if not token:
            return None
        return self._load(self.redis.getdel_json(self._key(token)))


class StepUpService:
    """begin / verify / complete for the second sign-in step"""

    def __init__(
        self,
        store: StepUpSessionStore,
        two_factor: TwoFactorService,
        repository: TwoFactorRepository,
        event_service: Optional[EventService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.two_factor = two_factor
        self.repository = repository
        self.event_service = event_service
        self.clock = clock or utc_now

    def begin(self, user_id: int, callback_url: Optional[str] = None) -> TwoFactorResult:
        """
        Open a step-up session for a user whose primary credentials were accepted

        Returns:
            Result whose data holds `token` and `expires_in` (seconds)
        """
        user = self.repository.find_user(user_id)
        if user is None:
            return TwoFactorResult.fail(TwoFactorErrorCode.NOT_FOUND, "User not found")
        if not user.enabled:
            return TwoFactorResult.fail(
                TwoFactorErrorCode.NOT_ENABLED,
                "Two-factor authentication is not enabled for this account",
            )

        token = self.store.create(user.user_id, self.clock(), callback_url)
        logger.info(f"Step-up session opened for user {user.user_id}")
        return TwoFactorResult.ok(
            "Enter your verification code",
            token=token,
            expires_in=self.store.ttl_seconds,
        )

    def verify(
        self,
        token: str,
        code: str,
        use_backup_code: bool = False,
        context: Optional[RequestContext] = None,
    ) -> TwoFactorResult:
        """
        Check the second factor for the session's user and flag the session verified

        Each token allows STEP_UP_MAX_ATTEMPTS checks; after that the session is
        dropped and sign-in has to start over.
        """
        session = self.store.get(token)
        if session is None:
            return TwoFactorResult.fail(
                TwoFactorErrorCode.STEP_UP_EXPIRED,
                "Authentication session expired. Please sign in again.",
            )

        if not self.store.register_attempt(token):
            self.store.invalidate(token)
            logger.warning(f"Step-up session for user {session.user_id} closed after too many attempts")
            return TwoFactorResult.fail(
                TwoFactorErrorCode.STEP_UP_TOO_MANY_ATTEMPTS,
                "Too many verification attempts. Please sign in again.",
            )

        result = self.two_factor.verify_two_factor_code(session.user_id, code, use_backup_code, context)
        if not result.success:
            return result

        if not self.store.mark_verified(token, result.data.get("method", "")):
            return TwoFactorResult.fail(
                TwoFactorErrorCode.STEP_UP_EXPIRED,
                "Authentication session expired. Please sign in again.",
            )
        return result

    def complete(self, token: str) -> TwoFactorResult:
        """
        Finish sign-in for a verified session; the token cannot be reused

        Returns:
            Result whose data holds `user_id` and `callback_url`
        """
        session = self.store.get(token)
        if session is None:
            return TwoFactorResult.fail(
                TwoFactorErrorCode.STEP_UP_EXPIRED,
                "Invalid or expired authentication session",
            )
        if not session.verified:
            return TwoFactorResult.fail(
                TwoFactorErrorCode.STEP_UP_NOT_VERIFIED,
                "Two-factor verification has not been completed",
            )

        session = self.store.consume(token)
        if session is None or not session.verified:
            return TwoFactorResult.fail(
                TwoFactorErrorCode.STEP_UP_EXPIRED,
                "Invalid or expired authentication session",
            )

        self.repository.record_login(session.user_id, self.clock())
        self.repository.commit()
        if self.event_service is not None:
            self.event_service.publish_step_up_completed(session.user_id, session.method or "")
        logger.info(f"Step-up completed for user {session.user_id}")

        return TwoFactorResult.ok(
            "2FA authentication completed successfully",
            user_id=session.user_id,
            callback_url=session.callback_url,
        )
