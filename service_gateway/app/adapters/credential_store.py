"""
Local user and credential storage for the Access Gateway.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

import asyncpg

from shared.errors import AccessLayerException, ConflictError, NotFoundError
from shared.logging import get_logger

from ..auth.principal import Role


@dataclass(frozen=True)
class UserRecord:
    """A local account and the orchestrator credentials it acts with."""

    username: str
    password_hash: str = field(repr=False)
    role: Role
    is_active: bool = True
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    downstream_username: Optional[str] = None
    downstream_password: Optional[str] = field(default=None, repr=False)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def public_view(self) -> Dict[str, object]:
        """User fields safe to return to API callers."""
        return {
            "id": self.id,
            "username": self.username,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "role": self.role.value,
            "isActive": self.is_active,
            "downstreamUsername": self.downstream_username,
        }


class CredentialStore(ABC):
    """Narrow interface the gateway needs from user storage."""

    @abstractmethod
    async def get_user(self, username: str) -> Optional[UserRecord]:
        """Look up a user by username."""

    @abstractmethod
    async def list_users(self) -> List[UserRecord]:
        """All users, ordered by username."""

    @abstractmethod
    async def add_user(self, user: UserRecord) -> UserRecord:
        """Create a user. Raises ``ConflictError`` when the username exists."""

    @abstractmethod
    async def set_active(self, username: str, active: bool) -> UserRecord:
        """Toggle the active flag. Raises ``NotFoundError`` for unknown users."""

    async def start(self):
        """Open underlying resources."""

    async def stop(self):
        """Release underlying resources."""

    async def count(self) -> int:
        return len(await self.list_users())


class InMemoryCredentialStore(CredentialStore):
    """Process-local store for development and tests."""

    def __init__(self, users: Optional[List[UserRecord]] = None):
        self._users: Dict[str, UserRecord] = {}
        for user in users or []:
            self._users[user.username] = user

    async def get_user(self, username: str) -> Optional[UserRecord]:
        return self._users.get(username)

    async def list_users(self) -> List[UserRecord]:
        return [self._users[name] for name in sorted(self._users)]

    async def add_user(self, user: UserRecord) -> UserRecord:
        if user.username in self._users:
            raise ConflictError(f"User already exists: {user.username}")
        self._users[user.username] = user
        return user

    async def set_active(self, username: str, active: bool) -> UserRecord:
        user = self._users.get(username)
        if user is None:
            raise NotFoundError(f"User not found: {username}")
        updated = replace(user, is_active=active)
        self._users[username] = updated
        return updated


class PostgresCredentialStore(CredentialStore):
    """Reads and writes the existing ``users`` table.

    The table is owned by the deployment; this store never creates or
    migrates it.
    """

    _COLUMNS = (
        "id, username, password, role, is_active, first_name, last_name, email, "
        "airflow_username, airflow_password"
    )

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("gateway.credential_store.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=1,
                max_size=10,
                command_timeout=10
            )
            self.logger.info("PostgreSQL credential store started")
        except (OSError, asyncpg.PostgresError) as e:
            self.logger.error("Failed to start PostgreSQL credential store", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", "Credential store unavailable")

    async def stop(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL credential store stopped")

    async def get_user(self, username: str) -> Optional[UserRecord]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {self._COLUMNS} FROM users WHERE username = $1",
                username
            )
        return self._row_to_user(row) if row else None

    async def list_users(self) -> List[UserRecord]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"SELECT {self._COLUMNS} FROM users ORDER BY username")
        return [self._row_to_user(row) for row in rows]

    async def count(self) -> int:
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT COUNT(*) FROM users")

    async def add_user(self, user: UserRecord) -> UserRecord:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO users (
                        username, password, role, is_active, first_name, last_name, email,
                        airflow_username, airflow_password
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    RETURNING {self._COLUMNS}
                    """,
                    user.username,
                    user.password_hash,
                    user.role.value,
                    user.is_active,
                    user.first_name,
                    user.last_name,
                    user.email,
                    user.downstream_username,
                    user.downstream_password,
                )
        except asyncpg.UniqueViolationError:
            raise ConflictError(f"User already exists: {user.username}")
        return self._row_to_user(row)

    async def set_active(self, username: str, active: bool) -> UserRecord:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"UPDATE users SET is_active = $2 WHERE username = $1 RETURNING {self._COLUMNS}",
                username,
                active,
            )
        if row is None:
            raise NotFoundError(f"User not found: {username}")
        return self._row_to_user(row)

    @staticmethod
    def _row_to_user(row) -> UserRecord:
        return UserRecord(
            id=str(row["id"]),
            username=row["username"],
            password_hash=row["password"],
            role=Role(row["role"]),
            is_active=bool(row["is_active"]),
            first_name=row["first_name"],
            last_name=row["last_name"],
            email=row["email"],
            downstream_username=row["airflow_username"],
            downstream_password=row["airflow_password"],
        )
