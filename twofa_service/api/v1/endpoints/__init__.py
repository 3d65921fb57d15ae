"""
API v1 endpoints
"""

from . import two_factor, diagnostics

__all__ = ["two_factor", "diagnostics"]
