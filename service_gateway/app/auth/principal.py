"""
Roles and per-request principals.

A principal is either ``Authenticated`` (a validated token whose subject is an
active local user) or ``ANONYMOUS``. It is attached to the request scope by the
authentication gate and handed explicitly to every domain call that needs it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

from starlette.authentication import BaseUser
from starlette.requests import HTTPConnection


class Role(str, Enum):
    """Local roles mirroring the orchestrator's RBAC. No implicit ordering."""
    ADMIN = "ADMIN"
    OP = "OP"
    USER = "USER"
    VIEWER = "VIEWER"
    PUBLIC = "PUBLIC"


@dataclass(frozen=True)
class Authenticated(BaseUser):
    """Identity resolved from a valid token."""

    username: str
    role: Role
    downstream_username: Optional[str] = None
    downstream_password: Optional[str] = field(default=None, repr=False)

    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def display_name(self) -> str:
        return self.username

    @property
    def identity(self) -> str:
        return self.username

    @property
    def downstream_credentials(self) -> Optional[Tuple[str, str]]:
        """Basic-auth pair for the orchestrator, when the token carried one."""
        if self.downstream_username and self.downstream_password is not None:
            return self.downstream_username, self.downstream_password
        return None


@dataclass(frozen=True)
class Anonymous(BaseUser):
    """No valid identity on this request."""

    @property
    def is_authenticated(self) -> bool:
        return False

    @property
    def display_name(self) -> str:
        return ""

    @property
    def identity(self) -> str:
        return ""


ANONYMOUS = Anonymous()

Principal = Union[Authenticated, Anonymous]


def get_principal(conn: HTTPConnection) -> Principal:
    """Principal attached by the authentication gate, anonymous when absent."""
    principal = conn.scope.get("user")
    if isinstance(principal, (Authenticated, Anonymous)):
        return principal
    return ANONYMOUS
