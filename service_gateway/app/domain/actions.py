"""
Best-effort recording of mutating actions.
"""

import asyncio
from typing import Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..adapters.audit_sink import ActionAuditSink, ActionLogEntry, ActionType
from ..auth.principal import Authenticated, Principal


class ActionRecorder:
    """Writes action records without ever failing the caller.

    The write is bounded by ``timeout`` and shielded from cancellation of the
    request that triggered it, so an action that already happened on the
    orchestrator is still recorded if the client goes away.
    """

    def __init__(self, sink: ActionAuditSink, timeout: float = 5.0,
                 metrics: Optional[MetricsCollector] = None):
        self.sink = sink
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("gateway.action_recorder")

    async def record(self, principal: Principal, resource_id: str, action_type: ActionType,
                     details: str, success: bool = True, run_id: Optional[str] = None) -> bool:
        username = principal.username if isinstance(principal, Authenticated) else "unknown"
        entry = ActionLogEntry(
            username=username,
            dag_id=resource_id,
            action_type=action_type,
            details=details,
            success=success,
            run_id=run_id,
        )
        return await asyncio.shield(self._write(entry))

    async def _write(self, entry: ActionLogEntry) -> bool:
        try:
            await asyncio.wait_for(self.sink.log_action(entry), timeout=self.timeout)
        except Exception as e:
            self.logger.warning(
                "Action audit write failed",
                dag_id=entry.dag_id,
                action_type=entry.action_type.value,
                error_type=type(e).__name__,
                error=str(e)
            )
            self._count("failed")
            return False

        self._count("ok")
        return True

    def _count(self, status: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("audit_writes_total", status=status)
