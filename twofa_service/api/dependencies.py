"""
API dependencies: service wiring and error mapping
"""

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from twofa_service.core.database import get_db
from twofa_service.core.exceptions import TwoFactorErrorCode
from twofa_service.core.redis_client import get_redis, RedisClient
from twofa_service.repositories import SqlAlchemyTwoFactorRepository
from twofa_service.services.diagnostics import DiagnosticsService
from twofa_service.services.event_service import EventService
from twofa_service.services.notifications import EventBusSecurityAlertNotifier
from twofa_service.services.secret_codec import SecretCodec, get_secret_codec
from twofa_service.services.security_events import SqlSecurityEventLog
from twofa_service.services.step_up import StepUpService, StepUpSessionStore
from twofa_service.services.totp_engine import TotpEngine
from twofa_service.services.two_factor_service import RequestContext, TwoFactorResult, TwoFactorService


ERROR_STATUS = {
    TwoFactorErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    TwoFactorErrorCode.ALREADY_ENABLED: status.HTTP_409_CONFLICT,
    TwoFactorErrorCode.NOT_ENABLED: status.HTTP_409_CONFLICT,
    TwoFactorErrorCode.INVALID_CODE_FORMAT: status.HTTP_400_BAD_REQUEST,
    TwoFactorErrorCode.INVALID_BACKUP_CODE_FORMAT: status.HTTP_400_BAD_REQUEST,
    TwoFactorErrorCode.INVALID_SECRET: status.HTTP_400_BAD_REQUEST,
    TwoFactorErrorCode.SECRET_UNRECOVERABLE: status.HTTP_400_BAD_REQUEST,
    TwoFactorErrorCode.INVALID_CODE: status.HTTP_401_UNAUTHORIZED,
    TwoFactorErrorCode.STEP_UP_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    TwoFactorErrorCode.STEP_UP_NOT_VERIFIED: status.HTTP_401_UNAUTHORIZED,
    TwoFactorErrorCode.STEP_UP_TOO_MANY_ATTEMPTS: status.HTTP_429_TOO_MANY_REQUESTS,
}


def raise_for_result(result: TwoFactorResult) -> TwoFactorResult:
    """
    Turn a failed TwoFactorResult into an HTTPException

    Returns:
        The result unchanged when it succeeded
    """
    if result.success:
        return result
    raise HTTPException(
        status_code=ERROR_STATUS.get(result.error, status.HTTP_400_BAD_REQUEST),
        detail={
            "error": result.error.value,
            "message": result.message,
            "field": result.field,
        },
    )


def get_request_context(request: Request) -> RequestContext:
    """Client IP and user agent for security events"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return RequestContext(ip_address=ip_address, user_agent=request.headers.get("user-agent"))


_totp_engine = TotpEngine()


def get_totp_engine() -> TotpEngine:
    return _totp_engine


def get_codec() -> SecretCodec:
    return get_secret_codec()


def get_event_service(redis: RedisClient = Depends(get_redis)) -> EventService:
    return EventService(redis)


def get_two_factor_service(
    db: Session = Depends(get_db),
    codec: SecretCodec = Depends(get_codec),
    engine: TotpEngine = Depends(get_totp_engine),
    event_service: EventService = Depends(get_event_service),
) -> TwoFactorService:
    """
    Get 2FA lifecycle service instance

    Args:
        db: Database session
        codec: Secret codec
        engine: TOTP engine
        event_service: Event publisher used for security alerts

    Returns:
        TwoFactorService instance
    """
    return TwoFactorService(
        repository=SqlAlchemyTwoFactorRepository(db),
        codec=codec,
        engine=engine,
        event_log=SqlSecurityEventLog(db),
        notifier=EventBusSecurityAlertNotifier(event_service),
    )


def get_step_up_service(
    two_factor: TwoFactorService = Depends(get_two_factor_service),
    redis: RedisClient = Depends(get_redis),
    event_service: EventService = Depends(get_event_service),
) -> StepUpService:
    return StepUpService(
        store=StepUpSessionStore(redis),
        two_factor=two_factor,
        repository=two_factor.repository,
        event_service=event_service,
    )


def get_diagnostics_service(engine: TotpEngine = Depends(get_totp_engine)) -> DiagnosticsService:
    return DiagnosticsService(engine)
