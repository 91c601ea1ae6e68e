"""
Orchestrator (Airflow REST API) client for Gateway.

Every call to the orchestrator goes through ``OrchestratorClient.request``:
one templated executor that fills path placeholders, drops empty query
parameters, authenticates with the caller's downstream credentials (or the
configured default pair), makes exactly one attempt and maps the outcome to
the shared error taxonomy.
"""

import string
import time
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple
from urllib.parse import quote

import httpx

from shared.errors import (
    BadRequestError,
    ConflictError,
    ConnectivityError,
    ExternalServiceError,
    NotFoundError,
    UpstreamServerError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..auth.principal import Authenticated, Principal


class ResponseShape(str, Enum):
    """How to read a successful response body."""
    JSON = "json"
    TEXT = "text"
    EMPTY = "empty"


class PathTemplateError(ValueError):
    """A path template was rendered with missing placeholder values."""


_formatter = string.Formatter()

DOT_SEGMENTS = (".", "..")


def render_path(template: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Substitute ``{name}`` placeholders with URL-encoded path segments."""
    params = params or {}
    rendered: List[str] = []
    missing: List[str] = []

    for literal, name, format_spec, conversion in _formatter.parse(template):
        rendered.append(literal)
        if name is None:
            continue
        if format_spec or conversion or not name.isidentifier():
            raise PathTemplateError(f"Unsupported placeholder '{{{name}}}' in {template}")
        value = params.get(name)
        if value is None or value == "":
            missing.append(name)
            continue
        segment = str(value)
        # Dot segments would be collapsed by the client and address a parent resource
        if segment in DOT_SEGMENTS:
            raise BadRequestError(f"Invalid path value for {name}: {segment}")
        rendered.append(quote(segment, safe=""))

    if missing:
        raise PathTemplateError(f"Unresolved placeholders {missing} in {template}")
    return "".join(rendered)


def build_query(query: Optional[Mapping[str, Any]]) -> List[Tuple[str, str]]:
    """Query pairs with ``None`` values omitted and booleans lowercased."""
    pairs: List[Tuple[str, str]] = []
    for key, value in (query or {}).items():
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            if item is None:
                continue
            if isinstance(item, bool):
                item = "true" if item else "false"
            elif isinstance(item, Enum):
                item = item.value
            pairs.append((key, str(item)))
    return pairs


class OrchestratorClient:
    """Client for the orchestrator's REST API."""

    SERVICE = "orchestrator"

    def __init__(self, base_url: str, timeout: float,
                 default_credentials: Optional[Tuple[str, str]] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._default_credentials = default_credentials
        self.metrics = metrics
        self.logger = get_logger("gateway.orchestrator_client")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def close(self):
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def request(self, method: str, path_template: str, *,
                      principal: Optional[Principal] = None,
                      path_params: Optional[Mapping[str, Any]] = None,
                      query: Optional[Mapping[str, Any]] = None,
                      body: Any = None,
                      shape: ResponseShape = ResponseShape.JSON,
                      resource: str = "Resource") -> Any:
        """Execute one orchestrator call and return the decoded body."""
        method = method.upper()
        # Raises before any I/O when the template cannot be filled
        path = render_path(path_template, path_params)
        params = build_query(query)
        auth = self._resolve_auth(principal)

        start_time = time.time()
        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                json=body,
                auth=auth,
                headers={"Accept": "text/plain"} if shape == ResponseShape.TEXT else None,
            )
        except httpx.TransportError as e:
            duration = time.time() - start_time
            self.logger.error(
                "Orchestrator unreachable",
                method=method,
                path=path_template,
                resource=resource,
                error_type=type(e).__name__,
                duration_ms=round(duration * 1000, 2)
            )
            self._record(method, resource, "connectivity_error", duration)
            kind = "timed out" if isinstance(e, httpx.TimeoutException) else "unreachable"
            raise ConnectivityError(
                self.SERVICE,
                f"{resource} request {kind}",
                details={"error": type(e).__name__}
            )

        duration = time.time() - start_time
        self.logger.info(
            "Orchestrator request",
            method=method,
            path=path_template,
            resource=resource,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2)
        )

        if not response.is_success:
            self._record(method, resource, str(response.status_code), duration)
            self._raise_for_status(response, resource, path_params)

        self._record(method, resource, "success", duration)
        return self._read_body(response, shape, resource)

    async def get(self, path_template: str, **kwargs) -> Any:
        return await self.request("GET", path_template, **kwargs)

    async def post(self, path_template: str, **kwargs) -> Any:
        return await self.request("POST", path_template, **kwargs)

    async def patch(self, path_template: str, **kwargs) -> Any:
        return await self.request("PATCH", path_template, **kwargs)

    async def delete(self, path_template: str, **kwargs) -> Any:
        kwargs.setdefault("shape", ResponseShape.EMPTY)
        return await self.request("DELETE", path_template, **kwargs)

    async def health(self) -> str:
        """Probe the orchestrator's unauthenticated health endpoint."""
        try:
            response = await self._client.get("/health")
        except httpx.TransportError:
            return "unreachable"
        return "ok" if response.is_success else f"status_{response.status_code}"

    def _resolve_auth(self, principal: Optional[Principal]) -> Optional[httpx.BasicAuth]:
        credentials = None
        if isinstance(principal, Authenticated):
            credentials = principal.downstream_credentials
        if credentials is None:
            credentials = self._default_credentials
        if credentials is None:
            return None
        username, password = credentials
        return httpx.BasicAuth(username, password)

    def _raise_for_status(self, response: httpx.Response, resource: str,
                          path_params: Optional[Mapping[str, Any]]) -> None:
        status = response.status_code
        details = {"upstream_status": status, "upstream_body": self._error_body(response)}
        identifier = "/".join(str(value) for value in (path_params or {}).values())

        if status == 404:
            message = f"{resource} not found: {identifier}" if identifier else f"{resource} not found"
            raise NotFoundError(message, details=details)
        if status == 400:
            raise BadRequestError(f"Invalid request for {resource}", details=details)
        if status == 409:
            message = f"{resource} conflict: {identifier}" if identifier else f"{resource} conflict"
            raise ConflictError(message, details=details)
        if status >= 500:
            raise UpstreamServerError(
                self.SERVICE,
                f"{resource} request failed with status {status}",
                details=details,
                upstream_status=status
            )
        raise ExternalServiceError(
            self.SERVICE,
            f"{resource} request failed with status {status}",
            details=details,
            upstream_status=status
        )

    @staticmethod
    def _error_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def _read_body(self, response: httpx.Response, shape: ResponseShape, resource: str) -> Any:
        if shape == ResponseShape.EMPTY:
            return None
        if shape == ResponseShape.TEXT:
            return response.text
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise UpstreamServerError(
                self.SERVICE,
                f"{resource} response is not valid JSON",
                details={"upstream_status": response.status_code}
            )

    def _record(self, method: str, resource: str, outcome: str, duration: float) -> None:
        if self.metrics:
            self.metrics.record_upstream_request(method, resource, outcome, duration)
