"""
2FA lifecycle and step-up endpoints

These endpoints are internal: the calling application has already
authenticated the user and passes the user id in the request body.
"""

from fastapi import APIRouter, Depends

from twofa_service.api.dependencies import (
    get_request_context,
    get_step_up_service,
    get_two_factor_service,
    raise_for_result,
)
from twofa_service.services.step_up import StepUpService
from twofa_service.services.two_factor_service import RequestContext, TwoFactorService
from twofa_service.schemas.two_factor import (
    TwoFactorSetupRequest,
    TwoFactorSetupResponse,
    TwoFactorEnableRequest,
    TwoFactorEnableResponse,
    TwoFactorVerifyRequest,
    TwoFactorVerifyResponse,
    TwoFactorDisableRequest,
    TwoFactorDisableResponse,
    TwoFactorStatusResponse,
    BackupCodesRegenerateRequest,
    BackupCodesRegenerateResponse,
    StepUpBeginRequest,
    StepUpBeginResponse,
    StepUpVerifyRequest,
    StepUpCompleteRequest,
    StepUpCompleteResponse,
)


router = APIRouter()


@router.post("/setup", response_model=TwoFactorSetupResponse)
async def setup_two_factor(
    request_data: TwoFactorSetupRequest,
    context: RequestContext = Depends(get_request_context),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """
    Start 2FA setup

    Generates a TOTP secret, QR code and backup codes. Nothing is stored yet:
    the returned encrypted `secret` must be sent back to `/2fa/enable` together
    with a code from the authenticator app.

    **Process:**
    1. Call this endpoint to get the QR code
    2. Scan it with an authenticator app (or type `manual_entry_secret`)
    3. Call `/2fa/enable` with `secret` and the 6-digit code

    **Errors:**
    - 404: User not found
    - 409: 2FA already enabled (disable it first to set it up again)
    """
    result = raise_for_result(service.setup_two_factor(request_data.email, context))
    pending = result.data["pending"]

    return TwoFactorSetupResponse(
        qr_code_url=pending.qr_code_url,
        backup_codes=pending.backup_codes,
        secret=pending.encrypted_secret,
        manual_entry_secret=pending.manual_entry_secret,
        provisioning_uri=pending.provisioning_uri,
        message=result.message,
    )


@router.post("/enable", response_model=TwoFactorEnableResponse)
async def enable_two_factor(
    request_data: TwoFactorEnableRequest,
    context: RequestContext = Depends(get_request_context),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """
    Confirm setup with an authenticator code and enable 2FA

    Returns a fresh set of backup codes; they are shown only once.

    **Errors:**
    - 400: Malformed code, or the setup session can no longer be used (start setup again)
    - 401: Code did not match
    - 404: User not found
    - 409: 2FA already enabled
    """
    result = raise_for_result(service.enable_two_factor(
        request_data.encrypted_secret,
        request_data.verification_code,
        request_data.user_id,
        context,
    ))

    return TwoFactorEnableResponse(
        user_id=request_data.user_id,
        backup_codes=result.data["backup_codes"],
        message=result.message,
    )


@router.post("/verify", response_model=TwoFactorVerifyResponse)
async def verify_two_factor_code(
    request_data: TwoFactorVerifyRequest,
    context: RequestContext = Depends(get_request_context),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """
    Verify a TOTP code or a backup code

    A backup code is consumed on success.

    **Errors:**
    - 400: Malformed code
    - 401: Code did not match
    - 404: User not found
    - 409: 2FA not enabled
    """
    result = raise_for_result(service.verify_two_factor_code(
        request_data.user_id,
        request_data.code,
        request_data.use_backup_code,
        context,
    ))

    return TwoFactorVerifyResponse(
        method=result.data["method"],
        remaining_backup_codes=result.data["remaining_backup_codes"],
        message=result.message,
    )


@router.post("/disable", response_model=TwoFactorDisableResponse)
async def disable_two_factor(
    request_data: TwoFactorDisableRequest,
    context: RequestContext = Depends(get_request_context),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """
    Disable 2FA

    Removes the secret and all backup codes.

    **Errors:**
    - 404: User not found
    - 409: 2FA not enabled
    """
    result = raise_for_result(service.disable_two_factor(request_data.user_id, context))

    return TwoFactorDisableResponse(user_id=request_data.user_id, message=result.message)


@router.get("/status/{user_id}", response_model=TwoFactorStatusResponse)
async def get_two_factor_status(
    user_id: int,
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """
    Get 2FA status for a user

    **Errors:**
    - 404: User not found
    """
    status = raise_for_result(service.get_two_factor_status(user_id)).data["status"]

    return TwoFactorStatusResponse(
        user_id=status.user_id,
        state=status.state.value,
        two_factor_enabled=status.enabled,
        backup_codes_remaining=status.backup_codes_remaining,
        enabled_at=status.enabled_at,
    )


@router.post("/backup-codes/regenerate", response_model=BackupCodesRegenerateResponse)
async def regenerate_backup_codes(
    request_data: BackupCodesRegenerateRequest,
    context: RequestContext = Depends(get_request_context),
    service: TwoFactorService = Depends(get_two_factor_service)
):
    """
    Replace all backup codes

    Requires a current TOTP code (a backup code is not accepted here).
    Old codes stop working immediately.
    """
    result = raise_for_result(service.regenerate_backup_codes(request_data.user_id, request_data.code, context))

    return BackupCodesRegenerateResponse(backup_codes=result.data["backup_codes"])


# Step-up during sign-in

@router.post("/step-up/begin", response_model=StepUpBeginResponse)
async def begin_step_up(
    request_data: StepUpBeginRequest,
    step_up: StepUpService = Depends(get_step_up_service)
):
    """
    Open a step-up session after the primary credentials were accepted

    The returned token is valid for `expires_in` seconds.
    """
    result = raise_for_result(step_up.begin(request_data.user_id, request_data.callback_url))

    return StepUpBeginResponse(token=result.data["token"], expires_in=result.data["expires_in"])


@router.post("/step-up/verify", response_model=TwoFactorVerifyResponse)
async def verify_step_up(
    request_data: StepUpVerifyRequest,
    context: RequestContext = Depends(get_request_context),
    step_up: StepUpService = Depends(get_step_up_service)
):
    """
    Verify the second factor for a step-up session

    **Errors:**
    - 401: Code did not match, or the session expired
    - 429: Too many attempts for this session; sign in again
    """
    result = raise_for_result(step_up.verify(
        request_data.token,
        request_data.code,
        request_data.use_backup_code,
        context,
    ))

    return TwoFactorVerifyResponse(
        method=result.data["method"],
        remaining_backup_codes=result.data["remaining_backup_codes"],
        message=result.message,
    )


@router.post("/step-up/complete", response_model=StepUpCompleteResponse)
async def complete_step_up(
    request_data: StepUpCompleteRequest,
    step_up: StepUpService = Depends(get_step_up_service)
):
    """
    Complete sign-in for a verified step-up session (one-shot)

    **Errors:**
    - 401: Session expired, already completed, or not verified
    """
    result = raise_for_result(step_up.complete(request_data.token))

    return StepUpCompleteResponse(
        user_id=result.data["user_id"],
        callback_url=result.data["callback_url"],
        message=result.message,
    )
