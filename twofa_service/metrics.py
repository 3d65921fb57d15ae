"""
Prometheus metrics for twofa_service.

- 2FA setup / enable / disable operations
- Login verifications (TOTP and backup codes)
- Clock drift absorbed by the large-tolerance fallback
"""

from prometheus_client import Counter, Info

# ============================================================================
# Application Info
# ============================================================================

app_info = Info('twofa_service', 'Two-factor authentication service info')

# ============================================================================
# Lifecycle Metrics
# ============================================================================

twofa_setup_total = Counter(
    'twofa_setup_total',
    'Total 2FA setups started'
)

twofa_enable_attempts_total = Counter(
    'twofa_enable_attempts_total',
    'Total attempts to enable 2FA',
    ['status']  # success, invalid_code, secret_unrecoverable, already_enabled, ...
)

twofa_disable_total = Counter(
    'twofa_disable_total',
    'Total attempts to disable 2FA',
    ['status']  # success, not_enabled, not_found
)

# ============================================================================
# Verification Metrics
# ============================================================================

twofa_verifications_total = Counter(
    'twofa_verifications_total',
    'Total 2FA code verifications',
    ['method', 'status']  # method: totp, backup_code
)

twofa_clock_drift_fallback_total = Counter(
    'twofa_clock_drift_fallback_total',
    'Codes accepted only by the large-tolerance fallback window'
)
