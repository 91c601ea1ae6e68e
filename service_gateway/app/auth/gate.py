"""
Authentication gate for the Access Gateway.

Resolves the bearer token of every request into a principal. The gate never
rejects a request: missing or invalid tokens resolve to ``ANONYMOUS`` and the
authorization middleware decides what an anonymous caller may reach.
"""

from typing import Iterable, Optional, Tuple

from starlette.authentication import AuthCredentials, AuthenticationBackend
from starlette.requests import HTTPConnection

from shared.errors import AuthenticationError
from shared.logging import get_logger, set_user_context
from shared.metrics import MetricsCollector

from ..adapters.credential_store import CredentialStore
from .principal import ANONYMOUS, Authenticated, Principal
from .tokens import TokenService


class TokenAuthBackend(AuthenticationBackend):
    """Starlette authentication backend backed by ``TokenService``."""

    def __init__(self, token_service: TokenService, credential_store: CredentialStore,
                 skip_paths: Iterable[str] = ("/auth/login",),
                 metrics: Optional[MetricsCollector] = None):
        self.token_service = token_service
        self.credential_store = credential_store
        self.skip_paths = frozenset(skip_paths)
        self.metrics = metrics
        self.logger = get_logger("gateway.auth_gate")

    async def authenticate(self, conn: HTTPConnection) -> Tuple[AuthCredentials, Principal]:
        if conn.url.path in self.skip_paths:
            return AuthCredentials(), ANONYMOUS

        token = self._extract_bearer(conn)
        if token is None:
            return AuthCredentials(), ANONYMOUS

        try:
            claims = self.token_service.validate(token)
        except AuthenticationError as e:
            reason = getattr(e, "reason", "invalid")
            self.logger.warning("Token rejected, continuing as anonymous", reason=reason, path=conn.url.path)
            self._count(reason)
            return AuthCredentials(), ANONYMOUS

        user = await self.credential_store.get_user(claims.sub)
        if user is None or not user.is_active:
            self.logger.warning("Token subject is not an active user", username=claims.sub)
            self._count("inactive_user")
            return AuthCredentials(), ANONYMOUS

        principal = Authenticated(
            username=claims.sub,
            role=claims.role,
            downstream_username=claims.downstream_username,
            downstream_password=claims.downstream_password,
        )
        set_user_context(principal.username)
        self._count("valid")
        return AuthCredentials(["authenticated", claims.role.value]), principal

    def _extract_bearer(self, conn: HTTPConnection) -> Optional[str]:
        authorization = conn.headers.get("Authorization")
        if not authorization:
            return None

        scheme, _, credentials = authorization.partition(" ")
        credentials = credentials.strip()
        if scheme.lower() != "bearer" or not credentials:
            self.logger.warning("Unsupported authorization scheme, continuing as anonymous", scheme=scheme)
            self._count("unsupported_scheme")
            return None
        return credentials

    def _count(self, status: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("token_validations_total", status=status)
