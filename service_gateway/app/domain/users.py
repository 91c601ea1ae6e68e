"""
Login and local account administration.
"""

from typing import Dict, List

from starlette.concurrency import run_in_threadpool

from shared.config import BaseConfig
from shared.errors import AuthenticationError
from shared.logging import get_logger

from ..adapters.credential_store import CredentialStore, UserRecord
from ..auth.passwords import hash_password, verify_password
from ..auth.principal import Role
from ..auth.tokens import TokenService
from .models import LoginResponse, UserCreate

# Demo accounts, one per role, all acting as the same orchestrator user
DEMO_PASSWORD = "admin123"
DEMO_USERS = (
    ("admin", Role.ADMIN, "Sistem", "Yonetici"),
    ("admin_user", Role.ADMIN, "Admin", "User"),
    ("op_user", Role.OP, "Op", "User"),
    ("user_user", Role.USER, "User", "User"),
    ("viewer_user", Role.VIEWER, "Viewer", "User"),
    ("public_user", Role.PUBLIC, "Public", "User"),
)

_DUMMY_HASH = hash_password("unknown-user-placeholder")


class LoginService:
    """Exchanges a username and password for a gateway token."""

    def __init__(self, credential_store: CredentialStore, token_service: TokenService):
        self.credential_store = credential_store
        self.token_service = token_service
        self.logger = get_logger("gateway.login")

    async def login(self, username: str, password: str) -> LoginResponse:
        user = await self.credential_store.get_user(username)

        # Same error for every failure so usernames cannot be probed
        if user is None:
            # Same hashing cost as a known user
            await run_in_threadpool(verify_password, password, _DUMMY_HASH)
            self.logger.warning("Login failed: unknown user", username=username)
            raise AuthenticationError("Invalid username or password")
        if not await run_in_threadpool(verify_password, password, user.password_hash):
            self.logger.warning("Login failed: wrong password", username=username)
            raise AuthenticationError("Invalid username or password")
        if not user.is_active:
            self.logger.warning("Login failed: inactive user", username=username)
            raise AuthenticationError("Invalid username or password")

        token = self.token_service.issue(user)
        self.logger.info("Login succeeded", username=username, role=user.role.value)
        return LoginResponse(
            token=token,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            role=user.role,
        )


class UserAdminService:
    """Administrative user operations."""

    def __init__(self, credential_store: CredentialStore):
        self.credential_store = credential_store
        self.logger = get_logger("gateway.user_admin")

    async def list_users(self) -> List[Dict[str, object]]:
        return [user.public_view() for user in await self.credential_store.list_users()]

    async def create_user(self, request: UserCreate) -> Dict[str, object]:
        password_hash = await run_in_threadpool(hash_password, request.password)
        user = await self.credential_store.add_user(UserRecord(
            username=request.username,
            password_hash=password_hash,
            role=request.role,
            is_active=request.is_active,
            first_name=request.first_name,
            last_name=request.last_name,
            email=request.email,
            downstream_username=request.downstream_username,
            downstream_password=request.downstream_password,
        ))
        self.logger.info("User created", username=user.username, role=user.role.value)
        return user.public_view()

    async def set_active(self, username: str, active: bool) -> Dict[str, object]:
        user = await self.credential_store.set_active(username, active)
        self.logger.info("User active flag changed", username=username, active=active)
        return user.public_view()


async def bootstrap_users(store: CredentialStore, config: BaseConfig) -> int:
    """Seed an empty store from configuration. Returns the number of users added."""
    if await store.count() > 0:
        return 0

    logger = get_logger("gateway.bootstrap")
    downstream_username = config.orchestrator_username
    downstream_password = (
        config.orchestrator_password.get_secret_value() if config.orchestrator_password else None
    )
    users: List[UserRecord] = []

    if config.bootstrap_admin_username and config.bootstrap_admin_password:
        users.append(UserRecord(
            username=config.bootstrap_admin_username,
            password_hash=hash_password(config.bootstrap_admin_password.get_secret_value()),
            role=Role.ADMIN,
            downstream_username=downstream_username,
            downstream_password=downstream_password,
        ))

    if config.seed_demo_users:
        demo_hash = hash_password(DEMO_PASSWORD)
        taken = {user.username for user in users}
        for username, role, first_name, last_name in DEMO_USERS:
            if username in taken:
                continue
            users.append(UserRecord(
                username=username,
                password_hash=demo_hash,
                role=role,
                first_name=first_name,
                last_name=last_name,
                email=f"{username}@example.com",
                downstream_username=downstream_username or "admin",
                downstream_password=downstream_password or DEMO_PASSWORD,
            ))

    for user in users:
        await store.add_user(user)

    if users:
        logger.info("Bootstrapped users", count=len(users), usernames=[user.username for user in users])
    return len(users)
