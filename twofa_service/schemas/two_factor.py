"""
Pydantic schemas for 2FA endpoints
"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


# Setup / enable

class TwoFactorSetupRequest(BaseModel):
    """
    2FA setup request

    Starts setup for the account with this email. Nothing is stored until
    the enable request succeeds.
    """
    email: str = Field(..., min_length=3, max_length=255)


class TwoFactorSetupResponse(BaseModel):
    qr_code_url: str = Field(
        ...,
        description="QR code as data URI (can be embedded in <img> tag)"
    )
    backup_codes: List[str] = Field(
        ...,
        description="Backup codes shown for this setup; enabling issues the final set"
    )
    secret: str = Field(
        ...,
        description="Encrypted secret; send it back unchanged with the enable request"
    )
    manual_entry_secret: str = Field(
        ...,
        description="Base32 secret for manual entry in the authenticator app (shown once)"
    )
    provisioning_uri: str
    message: str = "Scan the QR code with your authenticator app"


class TwoFactorEnableRequest(BaseModel):
    user_id: int
    encrypted_secret: str = Field(..., min_length=1)
    verification_code: str = Field(..., min_length=1, max_length=16)


class TwoFactorEnableResponse(BaseModel):
    user_id: int
    two_factor_enabled: bool = True
    backup_codes: List[str] = Field(
        ...,
        description="One-time backup codes. Store them securely, they are not shown again."
    )
    message: str = "Two-factor authentication enabled"


# Verification

class TwoFactorVerifyRequest(BaseModel):
    user_id: int
    code: str = Field(..., min_length=1, max_length=16)
    use_backup_code: bool = False


class TwoFactorVerifyResponse(BaseModel):
    success: bool = True
    method: str
    remaining_backup_codes: int
    message: str = "2FA verified successfully"


# Disable / status

class TwoFactorDisableRequest(BaseModel):
    user_id: int


class TwoFactorDisableResponse(BaseModel):
    user_id: int
    two_factor_enabled: bool = False
    message: str = "Two-factor authentication disabled"


class TwoFactorStatusResponse(BaseModel):
    user_id: int
    state: str
    two_factor_enabled: bool
    backup_codes_remaining: int
    enabled_at: Optional[datetime] = None


class BackupCodesRegenerateRequest(BaseModel):
    user_id: int
    code: str = Field(..., min_length=1, max_length=16, description="Current TOTP code")


class BackupCodesRegenerateResponse(BaseModel):
    backup_codes: List[str]
    message: str = "Backup codes regenerated. Previous codes no longer work."


# Step-up during sign-in

class StepUpBeginRequest(BaseModel):
    user_id: int
    callback_url: Optional[str] = Field(None, max_length=2048)


class StepUpBeginResponse(BaseModel):
    token: str
    expires_in: int = Field(..., description="Seconds until the session expires")


class StepUpVerifyRequest(BaseModel):
    token: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1, max_length=16)
    use_backup_code: bool = False


class StepUpCompleteRequest(BaseModel):
    token: str = Field(..., min_length=1)


class StepUpCompleteResponse(BaseModel):
    user_id: int
    callback_url: Optional[str] = None
    message: str = "2FA authentication completed successfully"


# Diagnostics

class TimeSyncResponse(BaseModel):
    server_time: str
    server_timestamp: int
    current_window: int
    seconds_to_next_code: int
    recommendation: str


class TotpDiagnosticsRequest(BaseModel):
    secret: str = Field(..., min_length=1, description="Base32 secret under test (never echoed back)")
    code: str = Field(..., min_length=1, max_length=16)


class WindowCodeResponse(BaseModel):
    offset: int
    code: str
    matches: bool


class TotpDiagnosticsResponse(BaseModel):
    secret_valid: bool
    code_format_valid: bool
    expected_code: Optional[str] = None
    window_codes: List[WindowCodeResponse] = Field(default_factory=list)
    matched_window_offset: Optional[int] = None
    server_time: str
    seconds_into_window: int

