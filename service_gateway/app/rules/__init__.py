"""
Authorization rules package.

Defines the ordered rule table that maps an HTTP method and request path to
the set of local roles allowed to reach it. Rules are evaluated top to
bottom and the first match decides; paths no rule covers fall through to a
default rule that requires ADMIN.

Modules of interest:
- models: Rule data class, path normalization and matching, results.
- matrix: Evaluation against a principal and the gateway's rule table.
"""

from .models import AuthorizationRule, Decision, EvaluationResult, normalize_path
from .matrix import AuthorizationMatrix, default_rules

__all__ = [
    "AuthorizationMatrix",
    "AuthorizationRule",
    "Decision",
    "EvaluationResult",
    "default_rules",
    "normalize_path",
]
