"""
Authentication helpers for the Access Gateway service.

The gate itself lives in ``auth.gate`` and is wired by ``app.main``.
"""

from .principal import ANONYMOUS, Anonymous, Authenticated, Principal, Role, get_principal
from .tokens import TokenClaims, TokenService
from .passwords import hash_password, verify_password

__all__ = [
    "ANONYMOUS",
    "Anonymous",
    "Authenticated",
    "Principal",
    "Role",
    "TokenClaims",
    "TokenService",
    "get_principal",
    "hash_password",
    "verify_password",
]
