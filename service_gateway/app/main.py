"""
API Gateway service for the Airflow Access layer.
"""

import time
from typing import Any, Awaitable, Callable, List, Optional

import httpx
from fastapi import Query, Request, Response
from starlette.middleware.authentication import AuthenticationMiddleware

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.metrics import get_metrics_collector

from .adapters.audit_sink import ActionAuditSink, ActionType, InMemoryActionLogStore, PostgresActionLogStore
from .adapters.credential_store import CredentialStore, InMemoryCredentialStore, PostgresCredentialStore
from .adapters.orchestrator_client import OrchestratorClient
from .auth.gate import TokenAuthBackend
from .auth.principal import Principal, get_principal
from .auth.tokens import TokenService
from .domain.action_logs import ActionLogService
from .domain.actions import ActionRecorder
from .domain.auth_middleware import AuthorizationMiddleware
from .domain.dags import DagRunService, DagService, TaskInstanceService
from .domain.disconnect import run_while_connected
from .domain.models import (
    ActionLogPage,
    DagRunClear,
    DagRunCreate,
    DagRunNoteUpdate,
    DagRunStateUpdate,
    DagUpdate,
    LoginRequest,
    LoginResponse,
    TaskInstanceStateUpdate,
    UserActiveUpdate,
    UserCreate,
)
from .domain.users import LoginService, UserAdminService, bootstrap_users
from .rules.matrix import AuthorizationMatrix, default_rules

LOGIN_PATH = "/auth/login"


class GatewayService(BaseService):
    """API Gateway service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None,
                 credential_store: Optional[CredentialStore] = None,
                 audit_sink: Optional[ActionAuditSink] = None,
                 orchestrator_transport: Optional[httpx.AsyncBaseTransport] = None,
                 clock: Callable[[], float] = time.time):
        config = config or get_config("gateway", 8000)
        metrics = get_metrics_collector("gateway")

        self.credential_store = credential_store or self._build_credential_store(config)
        self.audit_sink = audit_sink or self._build_audit_sink(config)
        self.token_service = TokenService(config.token_secret, config.token_ttl_seconds, clock=clock)
        self.matrix = AuthorizationMatrix(default_rules(config.api_prefix))

        default_credentials = None
        if config.orchestrator_username and config.orchestrator_password:
            default_credentials = (
                config.orchestrator_username,
                config.orchestrator_password.get_secret_value(),
            )
        self.orchestrator_client = OrchestratorClient(
            config.orchestrator_api_url,
            config.orchestrator_timeout_seconds,
            default_credentials=default_credentials,
            transport=orchestrator_transport,
            metrics=metrics,
        )

        recorder = ActionRecorder(self.audit_sink, config.audit_timeout_seconds, metrics)
        self.dag_service = DagService(self.orchestrator_client, recorder)
        self.dag_run_service = DagRunService(self.orchestrator_client, recorder)
        self.task_instance_service = TaskInstanceService(self.orchestrator_client, recorder)
        self.action_log_service = ActionLogService(self.audit_sink)
        self.login_service = LoginService(self.credential_store, self.token_service)
        self.user_admin_service = UserAdminService(self.credential_store)

        super().__init__("gateway", config.port, config=config)

        self.prefix = self.config.api_prefix
        self._setup_gateway_routes()
        self._setup_dag_routes()
        self._setup_dag_run_routes()
        self._setup_log_routes()
        self._setup_admin_routes()

    @staticmethod
    def _build_credential_store(config: ServiceConfig) -> CredentialStore:
        if config.postgres_dsn:
            return PostgresCredentialStore(config.postgres_dsn)
        return InMemoryCredentialStore()

    @staticmethod
    def _build_audit_sink(config: ServiceConfig) -> ActionAuditSink:
        if config.postgres_dsn:
            return PostgresActionLogStore(config.postgres_dsn)
        return InMemoryActionLogStore()

    async def _on_startup(self):
        await self.credential_store.start()
        await self.audit_sink.start()
        await bootstrap_users(self.credential_store, self.config)

    async def _on_shutdown(self):
        await self.orchestrator_client.close()
        await self.audit_sink.stop()
        await self.credential_store.stop()

    def _setup_security_middleware(self):
        """Authorization first so that authentication wraps it."""
        self.app.add_middleware(AuthorizationMiddleware, matrix=self.matrix, metrics=self.metrics)
        self.app.add_middleware(
            AuthenticationMiddleware,
            backend=TokenAuthBackend(
                self.token_service,
                self.credential_store,
                skip_paths=(LOGIN_PATH,),
                metrics=self.metrics,
            ),
        )

    async def _check_dependencies(self):
        return {"orchestrator": await self.orchestrator_client.health()}

    @staticmethod
    async def _call(request: Request, operation: Callable[[Principal], Awaitable[Any]]) -> Any:
        """Run an operation for the request's principal, aborting on disconnect."""
        return await run_while_connected(request, operation(get_principal(request)))

    def _setup_gateway_routes(self):
        """Set up login and service routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": self.service_name,
                "message": "Airflow Access - API Gateway",
                "version": "1.0.0",
                "api_prefix": self.prefix,
            }

        @self.app.post(LOGIN_PATH, response_model=LoginResponse)
        async def login(credentials: LoginRequest):
            """Exchange username and password for a bearer token."""
            return await self.login_service.login(credentials.username, credentials.password)

    def _setup_dag_routes(self):
        """Set up DAG routes."""
        p = self.prefix

        @self.app.get(f"{p}/dags")
        async def list_dags(
            request: Request,
            is_active: Optional[bool] = Query(None, alias="isActive"),
            is_paused: Optional[bool] = Query(None, alias="isPaused"),
            search: Optional[str] = Query(None, max_length=250),
            page: int = Query(0, ge=0),
            size: int = Query(10, ge=1, le=100),
        ):
            return await self._call(request, lambda principal: self.dag_service.list_dags(
                principal, is_active=is_active, is_paused=is_paused, search=search, page=page, size=size))

        @self.app.get(f"{p}/dags/{{dag_id}}")
        async def get_dag(dag_id: str, request: Request):
            return await self._call(request, lambda principal: self.dag_service.get_dag(principal, dag_id))

        @self.app.get(f"{p}/dags/{{dag_id}}/details")
        async def get_dag_details(dag_id: str, request: Request):
            return await self._call(request, lambda principal: self.dag_service.get_dag_details(principal, dag_id))

        @self.app.get(f"{p}/dags/{{dag_id}}/tasks")
        async def get_dag_tasks(dag_id: str, request: Request):
            return await self._call(request, lambda principal: self.dag_service.get_tasks(principal, dag_id))

        @self.app.patch(f"{p}/dags/{{dag_id}}")
        async def update_dag(dag_id: str, update: DagUpdate, request: Request):
            return await self._call(request, lambda principal: self.dag_service.update_dag(principal, dag_id, update))

        @self.app.delete(f"{p}/dags/{{dag_id}}", status_code=204)
        async def delete_dag(dag_id: str, request: Request):
            await self._call(request, lambda principal: self.dag_service.delete_dag(principal, dag_id))
            return Response(status_code=204)

    def _setup_dag_run_routes(self):
        """Set up DAG run and task instance routes."""
        runs = f"{self.prefix}/dags/{{dag_id}}/dagRuns"
        run = f"{runs}/{{dag_run_id}}"

        @self.app.get(runs)
        async def list_dag_runs(
            dag_id: str,
            request: Request,
            state: Optional[List[str]] = Query(None),
            order_by: Optional[str] = Query(None, alias="orderBy"),
            page: int = Query(0, ge=0),
            size: int = Query(25, ge=1, le=100),
        ):
            return await self._call(request, lambda principal: self.dag_run_service.list_dag_runs(
                principal, dag_id, state=state, order_by=order_by, page=page, size=size))

        @self.app.post(runs)
        async def trigger_dag_run(dag_id: str, body: DagRunCreate, request: Request):
            return await self._call(request, lambda principal: self.dag_run_service.trigger_dag_run(
                principal, dag_id, body))

        @self.app.get(run)
        async def get_dag_run(dag_id: str, dag_run_id: str, request: Request):
            return await self._call(request, lambda principal: self.dag_run_service.get_dag_run(
                principal, dag_id, dag_run_id))

        @self.app.delete(run, status_code=204)
        async def delete_dag_run(dag_id: str, dag_run_id: str, request: Request):
            await self._call(request, lambda principal: self.dag_run_service.delete_dag_run(
                principal, dag_id, dag_run_id))
            return Response(status_code=204)

        @self.app.patch(run)
        async def update_dag_run_state(dag_id: str, dag_run_id: str, update: DagRunStateUpdate, request: Request):
            return await self._call(request, lambda principal: self.dag_run_service.update_dag_run_state(
                principal, dag_id, dag_run_id, update))

        @self.app.post(f"{run}/clear")
        async def clear_dag_run(dag_id: str, dag_run_id: str, body: DagRunClear, request: Request):
            return await self._call(request, lambda principal: self.dag_run_service.clear_dag_run(
                principal, dag_id, dag_run_id, body))

        @self.app.get(f"{run}/upstreamDatasetEvents")
        async def get_upstream_dataset_events(dag_id: str, dag_run_id: str, request: Request):
            return await self._call(request, lambda principal: self.dag_run_service.get_upstream_dataset_events(
                principal, dag_id, dag_run_id))

        @self.app.patch(f"{run}/setNote")
        async def set_dag_run_note(dag_id: str, dag_run_id: str, update: DagRunNoteUpdate, request: Request):
            return await self._call(request, lambda principal: self.dag_run_service.set_note(
                principal, dag_id, dag_run_id, update))

        @self.app.get(f"{run}/taskInstances")
        async def list_task_instances(dag_id: str, dag_run_id: str, request: Request):
            return await self._call(request, lambda principal: self.task_instance_service.list_task_instances(
                principal, dag_id, dag_run_id))

        @self.app.get(f"{run}/taskInstances/{{task_id}}")
        async def get_task_instance(dag_id: str, dag_run_id: str, task_id: str, request: Request):
            return await self._call(request, lambda principal: self.task_instance_service.get_task_instance(
                principal, dag_id, dag_run_id, task_id))

        @self.app.patch(f"{run}/taskInstances/{{task_id}}")
        async def update_task_instance_state(dag_id: str, dag_run_id: str, task_id: str,
                                             update: TaskInstanceStateUpdate, request: Request):
            return await self._call(request, lambda principal: self.task_instance_service.update_task_instance_state(
                principal, dag_id, dag_run_id, task_id, update))

    def _setup_log_routes(self):
        """Set up task log and action log routes."""
        logs = f"{self.prefix}/logs"

        @self.app.get(f"{logs}/dag-actions", response_model=ActionLogPage)
        async def list_action_logs(
            request: Request,
            page: int = Query(0, ge=0),
            size: int = Query(20, ge=1, le=100),
        ):
            return await self.action_log_service.list_logs(get_principal(request), page=page, size=size)

        @self.app.get(f"{logs}/dag-actions/dag/{{dag_id}}")
        async def action_logs_for_dag(dag_id: str, request: Request):
            return await self.action_log_service.logs_for_dag(get_principal(request), dag_id)

        @self.app.get(f"{logs}/dag-actions/type/{{action_type}}")
        async def action_logs_for_type(action_type: ActionType, request: Request):
            return await self.action_log_service.logs_for_type(get_principal(request), action_type)

        @self.app.get(f"{logs}/{{dag_id}}/dagRuns/{{dag_run_id}}/taskInstances/{{task_id}}")
        async def get_task_log(
            dag_id: str,
            dag_run_id: str,
            task_id: str,
            request: Request,
            try_number: int = Query(1, ge=1, alias="tryNumber"),
        ):
            content = await self._call(request, lambda principal: self.task_instance_service.get_task_log(
                principal, dag_id, dag_run_id, task_id, try_number))
            return Response(content=content or "", media_type="text/plain")

    def _setup_admin_routes(self):
        """Set up user administration routes."""
        users = f"{self.prefix}/admin/users"

        @self.app.get(users)
        async def list_users():
            return await self.user_admin_service.list_users()

        @self.app.post(users, status_code=201)
        async def create_user(body: UserCreate):
            return await self.user_admin_service.create_user(body)

        @self.app.patch(f"{users}/{{username}}/active")
        async def set_user_active(username: str, body: UserActiveUpdate):
            return await self.user_admin_service.set_active(username, body.active)


def create_app():
    """Create the gateway FastAPI application."""
    return GatewayService().app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
