"""
Authorization middleware for Gateway.

Runs after the authentication gate and before routing. Every request is
checked against the authorization matrix; denials are rendered here, since
exceptions raised from middleware never reach the app's exception handlers.
"""

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp
from typing import Optional

from shared.errors import AccessLayerException
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..auth.principal import get_principal
from ..rules.matrix import AuthorizationMatrix


class AuthorizationMiddleware(BaseHTTPMiddleware):
    """Enforces the authorization matrix for every request."""

    def __init__(self, app: ASGIApp, matrix: AuthorizationMatrix,
                 metrics: Optional[MetricsCollector] = None):
        super().__init__(app)
        self.matrix = matrix
        self.metrics = metrics
        self.logger = get_logger("gateway.auth_middleware")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        principal = get_principal(request)
        try:
            self.matrix.enforce(request.method, request.url.path, principal)
        except AccessLayerException as e:
            self._count(e.code)
            return JSONResponse(status_code=e.status_code, content=e.to_response().model_dump())

        self._count("allow")
        return await call_next(request)

    def _count(self, decision: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("authorization_decisions_total", decision=decision)
