"""
Security utilities for logging and token handling
"""

import secrets
from typing import Optional


def generate_random_token(length: int = 32) -> str:
    """
    Generate a cryptographically secure random token

    Args:
        length: Number of random bytes

    Returns:
        URL-safe token string
    """
    return secrets.token_urlsafe(length)


def mask_email(email: Optional[str]) -> str:
    """
    Mask email address for logging

    Args:
        email: Email address to mask

    Returns:
        Masked email (e.g., u***r@example.com)
    """
    if not email or '@' not in email:
        return email or ""

    local, domain = email.split('@', 1)
    if len(local) <= 2:
        masked_local = '*' * len(local)
    else:
        masked_local = f"{local[0]}***{local[-1]}"

    return f"{masked_local}@{domain}"

