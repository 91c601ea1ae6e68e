"""
Adapters package for the Gateway Service.

Contains the gateway's boundaries to the outside world:

- orchestrator_client: the single templated executor for Airflow REST calls,
  including downstream credential injection and status mapping
- credential_store: local user records (in-memory or PostgreSQL)
- audit_sink: action audit records (in-memory or PostgreSQL)

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .orchestrator_client import OrchestratorClient, PathTemplateError, ResponseShape
from .credential_store import CredentialStore, InMemoryCredentialStore, PostgresCredentialStore, UserRecord
from .audit_sink import (
    ActionAuditSink,
    ActionLogEntry,
    ActionType,
    InMemoryActionLogStore,
    PostgresActionLogStore,
)

__all__ = [
    "ActionAuditSink",
    "ActionLogEntry",
    "ActionType",
    "CredentialStore",
    "InMemoryActionLogStore",
    "InMemoryCredentialStore",
    "OrchestratorClient",
    "PathTemplateError",
    "PostgresActionLogStore",
    "PostgresCredentialStore",
    "ResponseShape",
    "UserRecord",
]
