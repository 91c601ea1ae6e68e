"""
Shared pytest fixtures for the gateway test suites.
"""

from typing import Callable, Dict, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from mocks.airflow.server import MockAirflowServer
from service_gateway.app.adapters.audit_sink import InMemoryActionLogStore
from service_gateway.app.adapters.credential_store import InMemoryCredentialStore, UserRecord
from service_gateway.app.auth.passwords import hash_password
from service_gateway.app.auth.principal import Role
from service_gateway.app.main import GatewayService
from shared.config import get_config

TEST_SECRET = "test-secret-that-is-long-enough-for-hs256-0123456789"
TEST_PASSWORD = "correct-horse-battery"
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)
DOWNSTREAM_CREDENTIALS = ("admin", "admin123")


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def username_for(role: Role) -> str:
    return f"{role.value.lower()}_user"


def make_user(username: str, role: Role, *, is_active: bool = True,
              downstream: Optional[Tuple[str, str]] = DOWNSTREAM_CREDENTIALS) -> UserRecord:
    return UserRecord(
        username=username,
        password_hash=TEST_PASSWORD_HASH,
        role=role,
        is_active=is_active,
        first_name=role.value.title(),
        last_name="Tester",
        email=f"{username}@example.com",
        downstream_username=downstream[0] if downstream else None,
        downstream_password=downstream[1] if downstream else None,
    )


@pytest.fixture
def frozen_clock():
    """Clock fixed at a known instant."""
    return FrozenClock()


@pytest.fixture
def gateway_config():
    """Gateway configuration isolated from the environment."""
    return get_config(
        "gateway",
        8000,
        env="test",
        token_secret=SecretStr(TEST_SECRET),
        token_ttl_seconds=3600,
        orchestrator_base_url="http://airflow.test",
        orchestrator_timeout_seconds=2.0,
        orchestrator_username=None,
        orchestrator_password=None,
        audit_timeout_seconds=1.0,
        postgres_dsn=None,
        seed_demo_users=False,
    )


@pytest.fixture
def users() -> Dict[Role, UserRecord]:
    """One active user per role."""
    return {role: make_user(username_for(role), role) for role in Role}


@pytest.fixture
def credential_store(users):
    """In-memory store holding the per-role users."""
    return InMemoryCredentialStore(list(users.values()))


@pytest.fixture
def audit_sink():
    """Empty in-memory action log."""
    return InMemoryActionLogStore()


@pytest.fixture
def mock_airflow():
    """Mock orchestrator reachable through an ASGI transport."""
    return MockAirflowServer()


@pytest.fixture
def gateway(gateway_config, credential_store, audit_sink, mock_airflow, frozen_clock):
    """Gateway wired to in-memory stores and the mock orchestrator."""
    return GatewayService(
        config=gateway_config,
        credential_store=credential_store,
        audit_sink=audit_sink,
        orchestrator_transport=httpx.ASGITransport(app=mock_airflow.app),
        clock=frozen_clock,
    )


@pytest.fixture
def client(gateway):
    """Test client with the gateway lifespan running."""
    with TestClient(gateway.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(gateway, users) -> Callable[[Role], Dict[str, str]]:
    """Bearer headers for the user holding ``role``."""
    def _headers(role: Role) -> Dict[str, str]:
        token = gateway.token_service.issue(users[role])
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def test_password() -> str:
    """Plaintext password of every fixture user."""
    return TEST_PASSWORD


@pytest.fixture
def user_factory() -> Callable[..., UserRecord]:
    """Build extra users with the shared test password."""
    return make_user
