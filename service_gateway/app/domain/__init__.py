"""
Domain layer for the Gateway Service.

Per-resource services that turn API calls into orchestrator calls and action
records, plus the request-scoped helpers around them:

- dags: DAG, DAG run and task instance operations
- action_logs: role-filtered reads of recorded actions
- users: login, user administration and bootstrap accounts
- actions: best-effort action recording
- auth_middleware: authorization enforcement
- disconnect: cancellation on client disconnect
"""

from .actions import ActionRecorder
from .action_logs import ActionLogService
from .auth_middleware import AuthorizationMiddleware
from .dags import DagRunService, DagService, TaskInstanceService
from .disconnect import run_while_connected
from .users import LoginService, UserAdminService, bootstrap_users

__all__ = [
    "ActionLogService",
    "ActionRecorder",
    "AuthorizationMiddleware",
    "DagRunService",
    "DagService",
    "LoginService",
    "TaskInstanceService",
    "UserAdminService",
    "bootstrap_users",
    "run_while_connected",
]
