"""
auth/gatekeeper.py -- Per-request authorization decision.

The Gatekeeper is a fixed, ordered pipeline of named stages. Each stage gets
the shared _Context and either returns a final GateDecision or None to hand
over to the next stage:

  preflight  pre:  nothing inspected yet.
             post: OPTIONS requests are decided (permit); others continue.
  cors       pre:  method is not OPTIONS.
             post: ctx.cors_allowed records whether Origin is in the allow-set.
                   Never decides; CORS is enforced by the browser.
  token      pre:  CORS recorded.
             post: ctx.principal is a Principal for a valid bearer token,
                   otherwise None. Never decides; an absent or bad token is
                   not an error at this point.
  rules      pre:  principal resolved.
             post: always decides, via the first matching AccessRule.

Missing and invalid credentials both end as REJECT_401 so an anonymous caller
cannot tell them apart.

The Gatekeeper holds only immutable configuration. decide() is a pure function
of (request, config, token verifier answer) and is safe to call concurrently.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from auth.cors import CorsPolicy
from auth.models import Principal
from auth.rules import DEFAULT_RULES, Access, AccessRule, evaluate_rules

logger = logging.getLogger("edumate.gatekeeper")

TokenVerifierFn = Callable[[Mapping[str, str]], "Principal | None"]


class Outcome(str, Enum):
    PERMIT = "permit"
    PERMIT_ANONYMOUS = "permit_anonymous"
    REJECT_401 = "reject_401"
    REJECT_403 = "reject_403"

    @property
    def allowed(self) -> bool:
        return self in (Outcome.PERMIT, Outcome.PERMIT_ANONYMOUS)


@dataclass(frozen=True)
class GateRequest:
    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def of(cls, method: str, path: str, headers: Mapping[str, str] | None = None) -> GateRequest:
        """Normalize method case and header names so lookups are predictable."""
        normalized = {k.lower(): v for k, v in (headers or {}).items()}
        return cls(method=method.upper(), path=path, headers=normalized)

    @property
    def origin(self) -> str | None:
        return self.headers.get("origin")


@dataclass(frozen=True)
class GateDecision:
    outcome: Outcome
    stage: str
    principal: Principal | None = None
    cors_allowed: bool = False
    rule: AccessRule | None = None


@dataclass
class _Context:
    request: GateRequest
    cors_allowed: bool = False
    principal: Principal | None = None


def _no_token(headers: Mapping[str, str]) -> Principal | None:
    return None


class Gatekeeper:
    """Decides permit / permit-anonymous / 401 / 403 for every request."""

    def __init__(
        self,
        cors: CorsPolicy,
        rules: Sequence[AccessRule] = DEFAULT_RULES,
        verify_token: TokenVerifierFn = _no_token,
    ) -> None:
        self.cors = cors
        self.rules = tuple(rules)
        self._verify_token = verify_token
        self.stages: tuple[tuple[str, Callable[[_Context], GateDecision | None]], ...] = (
            ("preflight", self._preflight),
            ("cors", self._cors),
            ("token", self._token),
            ("rules", self._rules),
        )

    def decide(self, request: GateRequest) -> GateDecision:
        ctx = _Context(request=request)
        for _name, stage in self.stages:
            decision = stage(ctx)
            if decision is not None:
                return decision
        # The rules stage always decides; reaching here means it was removed.
        raise RuntimeError("Gatekeeper pipeline finished without a decision")

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _preflight(self, ctx: _Context) -> GateDecision | None:
        if ctx.request.method != "OPTIONS":
            return None
        return GateDecision(
            outcome=Outcome.PERMIT_ANONYMOUS,
            stage="preflight",
            cors_allowed=self.cors.allows_origin(ctx.request.origin),
        )

    def _cors(self, ctx: _Context) -> GateDecision | None:
        ctx.cors_allowed = self.cors.allows_origin(ctx.request.origin)
        return None

    def _token(self, ctx: _Context) -> GateDecision | None:
        ctx.principal = self._verify_token(ctx.request.headers)
        return None

    def _rules(self, ctx: _Context) -> GateDecision:
        req = ctx.request
        rule = evaluate_rules(self.rules, req.method, req.path)

        def done(outcome: Outcome) -> GateDecision:
            return GateDecision(
                outcome=outcome,
                stage="rules",
                principal=ctx.principal,
                cors_allowed=ctx.cors_allowed,
                rule=rule,
            )

        if rule.access is Access.PERMIT_ALL:
            return done(Outcome.PERMIT if ctx.principal else Outcome.PERMIT_ANONYMOUS)
        if ctx.principal is None:
            return done(Outcome.REJECT_401)
        if rule.roles and ctx.principal.role not in rule.roles:
            return done(Outcome.REJECT_403)
        return done(Outcome.PERMIT)
