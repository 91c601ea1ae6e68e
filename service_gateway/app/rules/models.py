"""
Authorization rule data models.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, Tuple

from ..auth.principal import Role

_SLASHES = re.compile(r"/+")


class Decision(str, Enum):
    """Authorization outcomes."""
    ALLOW = "allow"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


def normalize_path(path: str) -> str:
    """Collapse duplicate slashes and drop the trailing slash."""
    path = _SLASHES.sub("/", "/" + path)
    if len(path) > 1:
        path = path.rstrip("/")
    return path


def split_path(path: str) -> Tuple[str, ...]:
    return tuple(segment for segment in normalize_path(path).split("/") if segment)


@dataclass(frozen=True)
class AuthorizationRule:
    """Allowed roles for a path pattern and optional method set.

    ``*`` matches exactly one path segment; ``**`` is only valid as the
    final segment and matches zero or more segments. An empty role set makes
    the rule public. An empty method set matches every method.
    """

    pattern: str
    roles: FrozenSet[Role]
    methods: FrozenSet[str] = frozenset()
    description: str = ""
    segments: Tuple[str, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        segments = split_path(self.pattern)
        if "**" in segments[:-1]:
            raise ValueError(f"'**' is only allowed as the last segment: {self.pattern}")
        object.__setattr__(self, "segments", segments)
        object.__setattr__(self, "roles", frozenset(Role(role) for role in self.roles))
        object.__setattr__(self, "methods", frozenset(method.upper() for method in self.methods))

    @property
    def public(self) -> bool:
        return not self.roles

    def matches(self, method: str, path_segments: Tuple[str, ...]) -> bool:
        if self.methods and method.upper() not in self.methods:
            return False

        for index, segment in enumerate(self.segments):
            if segment == "**":
                return True
            if index >= len(path_segments):
                return False
            if segment != "*" and segment != path_segments[index]:
                return False
        return len(self.segments) == len(path_segments)


def rules_for(patterns: Iterable[str], roles: Iterable[Role], methods: Iterable[str] = (),
              description: str = "") -> List[AuthorizationRule]:
    """One rule per pattern sharing the same roles and methods."""
    roles = frozenset(roles)
    methods = frozenset(methods)
    return [AuthorizationRule(pattern, roles, methods, description) for pattern in patterns]


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of evaluating one request."""
    decision: Decision
    rule: AuthorizationRule
    reason: str
    role: Optional[Role] = None

    @property
    def allowed(self) -> bool:
        return self.decision == Decision.ALLOW
