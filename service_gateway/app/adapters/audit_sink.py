"""
Action audit storage for mutating orchestrator operations.
"""

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

import asyncpg

from shared.errors import AccessLayerException
from shared.logging import get_logger


class ActionType(str, Enum):
    """Kinds of recorded actions."""
    TRIGGERED = "TRIGGERED"
    PAUSED = "PAUSED"
    UNPAUSED = "UNPAUSED"
    DELETED = "DELETED"
    CLEARED = "CLEARED"
    TASK_STATE_CHANGED = "TASK_STATE_CHANGED"
    OTHER = "OTHER"


@dataclass(frozen=True)
class ActionLogEntry:
    """One recorded action."""

    username: str
    dag_id: str
    action_type: ActionType
    details: str
    success: bool = True
    run_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "dagId": self.dag_id,
            "actionType": self.action_type.value,
            "actionDetails": self.details,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "runId": self.run_id,
        }


class ActionAuditSink(ABC):
    """Where action records go and how they are read back.

    ``username=None`` on the read side means "every user".
    """

    @abstractmethod
    async def log_action(self, entry: ActionLogEntry) -> ActionLogEntry:
        """Persist one entry and return it with its id."""

    @abstractmethod
    async def list_entries(self, username: Optional[str], offset: int, limit: int) -> Tuple[List[ActionLogEntry], int]:
        """Newest first page of entries plus the total count."""

    @abstractmethod
    async def entries_for_dag(self, dag_id: str, username: Optional[str]) -> List[ActionLogEntry]:
        """Entries for one DAG, newest first."""

    @abstractmethod
    async def entries_for_type(self, action_type: ActionType, username: Optional[str]) -> List[ActionLogEntry]:
        """Entries of one action type, newest first."""

    async def start(self):
        """Open underlying resources."""

    async def stop(self):
        """Release underlying resources."""


class InMemoryActionLogStore(ActionAuditSink):
    """Process-local sink for development and tests."""

    def __init__(self):
        self._entries: List[ActionLogEntry] = []
        self._ids = itertools.count(1)

    async def log_action(self, entry: ActionLogEntry) -> ActionLogEntry:
        stored = ActionLogEntry(
            id=next(self._ids),
            username=entry.username,
            dag_id=entry.dag_id,
            action_type=entry.action_type,
            details=entry.details,
            success=entry.success,
            run_id=entry.run_id,
            timestamp=entry.timestamp,
        )
        self._entries.append(stored)
        return stored

    def _visible(self, username: Optional[str]) -> List[ActionLogEntry]:
        entries = [e for e in self._entries if username is None or e.username == username]
        return sorted(entries, key=lambda e: (e.timestamp, e.id or 0), reverse=True)

    async def list_entries(self, username: Optional[str], offset: int, limit: int) -> Tuple[List[ActionLogEntry], int]:
        entries = self._visible(username)
        return entries[offset:offset + limit], len(entries)

    async def entries_for_dag(self, dag_id: str, username: Optional[str]) -> List[ActionLogEntry]:
        return [e for e in self._visible(username) if e.dag_id == dag_id]

    async def entries_for_type(self, action_type: ActionType, username: Optional[str]) -> List[ActionLogEntry]:
        return [e for e in self._visible(username) if e.action_type == action_type]


class PostgresActionLogStore(ActionAuditSink):
    """Writes to the existing ``dag_action_logs`` table."""

    _COLUMNS = "id, username, dag_id, action_type, action_details, timestamp, success, run_id"

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("gateway.audit_sink.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=1,
                max_size=5,
                command_timeout=10
            )
            self.logger.info("PostgreSQL action log store started")
        except (OSError, asyncpg.PostgresError) as e:
            self.logger.error("Failed to start PostgreSQL action log store", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", "Action log store unavailable")

    async def stop(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL action log store stopped")

    async def log_action(self, entry: ActionLogEntry) -> ActionLogEntry:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO dag_action_logs (
                    username, dag_id, action_type, action_details, timestamp, success, run_id
                ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING {self._COLUMNS}
                """,
                entry.username,
                entry.dag_id,
                entry.action_type.value,
                entry.details,
                entry.timestamp.replace(tzinfo=None),
                entry.success,
                entry.run_id,
            )
        return self._row_to_entry(row)

    async def list_entries(self, username: Optional[str], offset: int, limit: int) -> Tuple[List[ActionLogEntry], int]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {self._COLUMNS} FROM dag_action_logs
                WHERE ($1::text IS NULL OR username = $1)
                ORDER BY timestamp DESC, id DESC
                OFFSET $2 LIMIT $3
                """,
                username, offset, limit
            )
            total = await conn.fetchval(
                "SELECT COUNT(*) FROM dag_action_logs WHERE ($1::text IS NULL OR username = $1)",
                username
            )
        return [self._row_to_entry(row) for row in rows], total

    async def entries_for_dag(self, dag_id: str, username: Optional[str]) -> List[ActionLogEntry]:
        return await self._fetch_where("dag_id = $1", dag_id, username)

    async def entries_for_type(self, action_type: ActionType, username: Optional[str]) -> List[ActionLogEntry]:
        return await self._fetch_where("action_type = $1", action_type.value, username)

    async def _fetch_where(self, condition: str, value: str, username: Optional[str]) -> List[ActionLogEntry]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {self._COLUMNS} FROM dag_action_logs
                WHERE {condition} AND ($2::text IS NULL OR username = $2)
                ORDER BY timestamp DESC, id DESC
                """,
                value, username
            )
        return [self._row_to_entry(row) for row in rows]

    @staticmethod
    def _row_to_entry(row) -> ActionLogEntry:
        timestamp = row["timestamp"]
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        try:
            action_type = ActionType(row["action_type"])
        except ValueError:
            action_type = ActionType.OTHER
        return ActionLogEntry(
            id=row["id"],
            username=row["username"],
            dag_id=row["dag_id"],
            action_type=action_type,
            details=row["action_details"],
            success=bool(row["success"]),
            run_id=row["run_id"],
            timestamp=timestamp,
        )
