"""
auth/rules.py -- Ordered, first-match-wins access rules.

Each AccessRule pairs a matcher (path pattern plus optional HTTP method) with
an Access decision. evaluate_rules() walks the list in declaration order and
returns the first rule that matches. DEFAULT_RULES ends with an explicit
catch-all so the fallthrough is visible in the table instead of implied by a
framework default.

Pattern syntax:
  "/error"        exact path only
  "/api/auth/**"  "/api/auth" and anything below it, segment-aware
                  ("/api/authors" does not match)
  "/**"           every path

Layer rule: pure data and functions; no imports from api/ or FastAPI.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum


class Access(str, Enum):
    PERMIT_ALL = "permit_all"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class AccessRule:
    pattern: str
    access: Access
    method: str | None = None  # None = any method
    roles: frozenset[str] = frozenset()  # any one of these satisfies the rule

    def matches(self, method: str, path: str) -> bool:
        if self.method is not None and self.method != method.upper():
            return False
        return path_matches(self.pattern, path)


def path_matches(pattern: str, path: str) -> bool:
    if pattern.endswith("/**"):
        base = pattern[:-3]
        return path == base or path.startswith(base + "/")
    return path == pattern


def evaluate_rules(rules: Sequence[AccessRule], method: str, path: str) -> AccessRule:
    """Return the first rule matching (method, path).

    Raises LookupError if nothing matches. DEFAULT_RULES cannot hit that
    branch because its last entry matches everything; a custom table without
    a catch-all is a configuration bug worth failing loudly on.
    """
    for rule in rules:
        if rule.matches(method, path):
            return rule
    raise LookupError(f"No access rule matches {method} {path}")


PUBLIC_PATHS = ("/", "/error", "/favicon.ico")
AUTH_NAMESPACE = "/api/auth/**"
ADMIN_NAMESPACE = "/api/admin/**"

DEFAULT_RULES: tuple[AccessRule, ...] = (
    # Browser pre-flight must never be blocked by authentication.
    AccessRule("/**", Access.PERMIT_ALL, method="OPTIONS"),
    *(AccessRule(p, Access.PERMIT_ALL) for p in PUBLIC_PATHS),
    AccessRule(AUTH_NAMESPACE, Access.PERMIT_ALL),
    AccessRule(ADMIN_NAMESPACE, Access.AUTHENTICATED, roles=frozenset({"admin"})),
    # Default deny: everything else needs a Principal.
    AccessRule("/**", Access.AUTHENTICATED),
)
