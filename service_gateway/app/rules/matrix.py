"""
Authorization matrix for the Access Gateway.
"""

from typing import Iterable, List, Optional

from shared.errors import AuthenticationError, AuthorizationError
from shared.logging import get_logger

from ..auth.principal import Authenticated, Principal, Role
from .models import AuthorizationRule, Decision, EvaluationResult, rules_for, split_path

ALL_ROLES = frozenset(Role)
RUN_ROLES = frozenset({Role.ADMIN, Role.OP, Role.USER})
WRITE_ROLES = frozenset({Role.ADMIN, Role.OP})
ADMIN_ROLES = frozenset({Role.ADMIN})
PUBLIC = frozenset()

DEFAULT_RULE = AuthorizationRule("/**", ADMIN_ROLES, description="default")

PUBLIC_PATHS = ("/", "/health", "/metrics", "/docs", "/redoc", "/openapi.json")


def default_rules(api_prefix: str = "/api/v1") -> List[AuthorizationRule]:
    """The gateway's rule table, in evaluation order."""
    p = api_prefix
    dag_run = f"{p}/dags/*/dagRuns/*"

    return [
        AuthorizationRule("/**", PUBLIC, frozenset({"OPTIONS"}), "CORS preflight"),
        AuthorizationRule("/auth/**", PUBLIC, description="login"),
        *rules_for(PUBLIC_PATHS, PUBLIC, {"GET"}, "service endpoints"),

        *rules_for(
            (f"{p}/dags", f"{p}/dags/*", f"{p}/dags/*/details", f"{p}/dags/*/tasks"),
            ALL_ROLES, {"GET"}, "read DAGs",
        ),
        AuthorizationRule(f"{p}/dags/*/dagRuns", RUN_ROLES, frozenset({"GET", "POST"}), "list and trigger runs"),
        AuthorizationRule(f"{p}/dags/*/dagRuns/**", RUN_ROLES, frozenset({"GET"}), "read runs and tasks"),
        AuthorizationRule(f"{dag_run}/clear", RUN_ROLES, frozenset({"POST"}), "clear run"),
        # Before the broad PATCH rule below, which would otherwise shadow these
        *rules_for(
            (dag_run, f"{dag_run}/setNote", f"{dag_run}/taskInstances/*"),
            RUN_ROLES, {"PATCH"}, "run and task state",
        ),
        AuthorizationRule(f"{p}/dags/**", WRITE_ROLES, frozenset({"PATCH", "DELETE"}), "modify DAGs"),

        AuthorizationRule(f"{p}/logs/**", ALL_ROLES, description="logs"),
        AuthorizationRule(f"{p}/admin/**", ADMIN_ROLES, description="administration"),
    ]


class AuthorizationMatrix:
    """Ordered, first-match-wins authorization over ``AuthorizationRule``."""

    def __init__(self, rules: Iterable[AuthorizationRule], default_rule: AuthorizationRule = DEFAULT_RULE):
        if default_rule.roles != ADMIN_ROLES:
            raise ValueError("The default rule must require ADMIN")
        self.rules = list(rules)
        self.default_rule = default_rule
        self.logger = get_logger("gateway.authorization")

    def find_rule(self, method: str, path: str) -> AuthorizationRule:
        segments = split_path(path)
        # Dot segments are never matched against the table
        if any(segment in (".", "..") for segment in segments):
            return self.default_rule

        for rule in self.rules:
            if rule.matches(method, segments):
                return rule
        return self.default_rule

    def evaluate(self, method: str, path: str, principal: Principal) -> EvaluationResult:
        rule = self.find_rule(method, path)

        if rule.public:
            return EvaluationResult(Decision.ALLOW, rule, "public")

        if not isinstance(principal, Authenticated):
            return EvaluationResult(Decision.UNAUTHENTICATED, rule, "authentication required")

        if principal.role not in rule.roles:
            return EvaluationResult(
                Decision.FORBIDDEN, rule,
                f"role {principal.role.value} not permitted", principal.role,
            )

        return EvaluationResult(Decision.ALLOW, rule, "role permitted", principal.role)

    def enforce(self, method: str, path: str, principal: Principal) -> EvaluationResult:
        """Evaluate and raise on denial."""
        result = self.evaluate(method, path, principal)

        if result.decision == Decision.UNAUTHENTICATED:
            raise AuthenticationError("Authentication required")
        if result.decision == Decision.FORBIDDEN:
            self.logger.warning(
                "Access denied",
                method=method,
                path=path,
                role=result.role.value if result.role else None,
                rule=result.rule.description or result.rule.pattern,
            )
            raise AuthorizationError(
                "Access denied",
                details={"required_roles": sorted(role.value for role in result.rule.roles)},
            )
        return result
