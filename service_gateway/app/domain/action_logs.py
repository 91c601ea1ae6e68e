"""
Read access to recorded actions.

ADMIN principals see every entry; any other role sees only the entries it
created itself.
"""

from typing import Dict, List, Optional

from ..adapters.audit_sink import ActionAuditSink, ActionType
from ..auth.principal import Authenticated, Principal, Role
from .models import ActionLogPage


class ActionLogService:
    """Role-filtered queries over the action audit sink."""

    def __init__(self, sink: ActionAuditSink):
        self.sink = sink

    @staticmethod
    def _owner_filter(principal: Principal) -> Optional[str]:
        if isinstance(principal, Authenticated) and principal.role == Role.ADMIN:
            return None
        if isinstance(principal, Authenticated):
            return principal.username
        # Anonymous callers never get here through the router; match nothing
        return ""

    async def list_logs(self, principal: Principal, page: int = 0, size: int = 20) -> ActionLogPage:
        entries, total = await self.sink.list_entries(self._owner_filter(principal), page * size, size)
        return ActionLogPage(
            logs=[entry.to_dict() for entry in entries],
            total_count=total,
            page=page,
            size=size,
        )

    async def logs_for_dag(self, principal: Principal, dag_id: str) -> List[Dict]:
        entries = await self.sink.entries_for_dag(dag_id, self._owner_filter(principal))
        return [entry.to_dict() for entry in entries]

    async def logs_for_type(self, principal: Principal, action_type: ActionType) -> List[Dict]:
        entries = await self.sink.entries_for_type(action_type, self._owner_filter(principal))
        return [entry.to_dict() for entry in entries]
