"""
TOTP troubleshooting endpoints
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from twofa_service.api.dependencies import get_diagnostics_service
from twofa_service.core.config import settings
from twofa_service.services.diagnostics import DiagnosticsService
from twofa_service.schemas.two_factor import (
    TimeSyncResponse,
    TotpDiagnosticsRequest,
    TotpDiagnosticsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def require_debug_endpoint() -> None:
    if not settings.FEATURE_TOTP_DEBUG_ENDPOINT:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Not Found"
        )


@router.get("/time-sync", response_model=TimeSyncResponse)
async def check_time_sync(
    diagnostics: DiagnosticsService = Depends(get_diagnostics_service)
):
    """
    Server time and TOTP window timing

    Lets users compare the server clock with their device when codes keep
    being rejected.
    """
    return TimeSyncResponse(**diagnostics.check_time_sync().to_dict())


@router.post(
    "/totp",
    response_model=TotpDiagnosticsResponse,
    dependencies=[Depends(require_debug_endpoint)],
)
async def diagnose_totp(
    request_data: TotpDiagnosticsRequest,
    diagnostics: DiagnosticsService = Depends(get_diagnostics_service)
):
    """
    Explain why a code was rejected for a given secret

    Disabled unless FEATURE_TOTP_DEBUG_ENDPOINT is set. The secret is never
    echoed back or logged.
    """
    diagnosis = diagnostics.diagnose(request_data.secret, request_data.code)
    logger.info(
        f"TOTP diagnosis: secret_valid={diagnosis.secret_valid} "
        f"matched_window_offset={diagnosis.matched_window_offset}"
    )
    return TotpDiagnosticsResponse(**diagnosis.to_dict())
