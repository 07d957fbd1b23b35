"""
tests/test_gatekeeper.py -- Decision-level tests for the request gatekeeper.

These exercise Gatekeeper.decide() directly with a stub token verifier, so
every property is checked without HTTP, a database or a clock.

Covers:
  - CorsPolicy built from settings; origin allow-set checks
  - OPTIONS is permitted on any path, before token verification runs
  - Public paths and the auth namespace: permitted without a Principal, and
    with the Principal forwarded when one is present
  - Protected paths: 401 without a Principal, permit with one
  - Admin namespace: 403 for an authenticated non-admin
  - Idempotence: same input, same decision
  - Stage ordering is explicit and fixed
"""

from __future__ import annotations

import pytest

from auth.cors import ALLOWED_METHODS, CorsPolicy
from auth.gatekeeper import Gatekeeper, GateRequest, Outcome
from auth.models import Principal
from core.config import Settings

ORIGIN = "http://localhost:5173"
STUDENT = Principal(user_id=2, username="student", role="user")
ADMIN = Principal(user_id=1, username="testadmin", role="admin")

TOKENS = {"Bearer student-token": STUDENT, "Bearer admin-token": ADMIN}


class RecordingVerifier:
    """Stub verifier: maps exact Authorization header values to Principals."""

    def __init__(self) -> None:
        self.calls = 0

    def __call__(self, headers):
        self.calls += 1
        return TOKENS.get(headers.get("authorization", ""))


@pytest.fixture
def policy(settings: Settings) -> CorsPolicy:
    return CorsPolicy.from_settings(settings)


@pytest.fixture
def verifier() -> RecordingVerifier:
    return RecordingVerifier()


@pytest.fixture
def gatekeeper(policy: CorsPolicy, verifier: RecordingVerifier) -> Gatekeeper:
    return Gatekeeper(cors=policy, verify_token=verifier)


def _req(method: str, path: str, token: str | None = None, origin: str | None = ORIGIN) -> GateRequest:
    headers = {}
    if origin:
        headers["Origin"] = origin
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return GateRequest.of(method, path, headers)


class TestCorsPolicy:
    def test_from_settings(self) -> None:
        settings = Settings(secret_key="k" * 32, cors_allowed_origins="https://a.example,https://b.example")
        policy = CorsPolicy.from_settings(settings)
        assert policy.allowed_origins == frozenset({"https://a.example", "https://b.example"})
        assert policy.allowed_methods == ("GET", "POST", "PUT", "DELETE", "OPTIONS")
        assert policy.allowed_headers == ("*",)
        assert policy.allow_credentials is True

    def test_patch_and_head_not_allowed(self) -> None:
        assert "PATCH" not in ALLOWED_METHODS
        assert "HEAD" not in ALLOWED_METHODS

    def test_allows_origin(self, policy: CorsPolicy) -> None:
        assert policy.allows_origin(ORIGIN)
        assert not policy.allows_origin("http://evil.example")
        assert not policy.allows_origin(None)
        # Exact match only: no prefix or port leniency.
        assert not policy.allows_origin("http://localhost:5173.evil.example")
        assert not policy.allows_origin("http://localhost:5174")

    def test_policy_is_immutable(self, policy: CorsPolicy) -> None:
        with pytest.raises(AttributeError):
            policy.allow_credentials = False


class TestPreflight:
    @pytest.mark.parametrize("path", ["/", "/api/profile", "/api/admin/users", "/nowhere"])
    def test_options_always_permitted(self, gatekeeper: Gatekeeper, verifier: RecordingVerifier, path: str) -> None:
        decision = gatekeeper.decide(_req("OPTIONS", path))
        assert decision.outcome is Outcome.PERMIT_ANONYMOUS
        assert decision.stage == "preflight"
        assert verifier.calls == 0

    def test_options_records_cors(self, gatekeeper: Gatekeeper) -> None:
        assert gatekeeper.decide(_req("OPTIONS", "/api/profile")).cors_allowed is True
        assert gatekeeper.decide(_req("OPTIONS", "/api/profile", origin="http://evil.example")).cors_allowed is False


class TestPublicPaths:
    @pytest.mark.parametrize("path", ["/", "/error", "/favicon.ico", "/api/auth/login", "/api/auth/register"])
    @pytest.mark.parametrize("method", ["GET", "POST", "PUT", "DELETE"])
    def test_permitted_without_principal(self, gatekeeper: Gatekeeper, method: str, path: str) -> None:
        decision = gatekeeper.decide(_req(method, path))
        assert decision.outcome is Outcome.PERMIT_ANONYMOUS
        assert decision.principal is None

    def test_principal_forwarded_on_public_path(self, gatekeeper: Gatekeeper) -> None:
        decision = gatekeeper.decide(_req("POST", "/api/auth/logout", token="student-token"))
        assert decision.outcome is Outcome.PERMIT
        assert decision.principal == STUDENT

    def test_invalid_token_on_public_path_is_anonymous(self, gatekeeper: Gatekeeper) -> None:
        decision = gatekeeper.decide(_req("POST", "/api/auth/login", token="forged"))
        assert decision.outcome is Outcome.PERMIT_ANONYMOUS


class TestProtectedPaths:
    @pytest.mark.parametrize("path", ["/api/profile", "/api/courses/1", "/api/authors", "/error/detail"])
    def test_missing_credential_is_401(self, gatekeeper: Gatekeeper, path: str) -> None:
        assert gatekeeper.decide(_req("GET", path)).outcome is Outcome.REJECT_401

    def test_invalid_credential_is_401(self, gatekeeper: Gatekeeper) -> None:
        assert gatekeeper.decide(_req("GET", "/api/profile", token="forged")).outcome is Outcome.REJECT_401

    def test_valid_principal_permitted(self, gatekeeper: Gatekeeper) -> None:
        decision = gatekeeper.decide(_req("GET", "/api/profile", token="student-token"))
        assert decision.outcome is Outcome.PERMIT
        assert decision.principal == STUDENT
        assert decision.rule.pattern == "/**"

    def test_admin_namespace_forbidden_for_user(self, gatekeeper: Gatekeeper) -> None:
        decision = gatekeeper.decide(_req("GET", "/api/admin/users", token="student-token"))
        assert decision.outcome is Outcome.REJECT_403

    def test_admin_namespace_unauthenticated_is_401_not_403(self, gatekeeper: Gatekeeper) -> None:
        assert gatekeeper.decide(_req("GET", "/api/admin/users")).outcome is Outcome.REJECT_401

    def test_admin_namespace_permitted_for_admin(self, gatekeeper: Gatekeeper) -> None:
        assert gatekeeper.decide(_req("GET", "/api/admin/users", token="admin-token")).outcome is Outcome.PERMIT


class TestCorsDoesNotDecide:
    def test_disallowed_origin_still_processed(self, gatekeeper: Gatekeeper) -> None:
        decision = gatekeeper.decide(_req("GET", "/api/profile", token="student-token", origin="http://evil.example"))
        assert decision.outcome is Outcome.PERMIT
        assert decision.cors_allowed is False

    def test_no_origin_header(self, gatekeeper: Gatekeeper) -> None:
        decision = gatekeeper.decide(_req("GET", "/", origin=None))
        assert decision.outcome is Outcome.PERMIT_ANONYMOUS
        assert decision.cors_allowed is False


class TestScenarios:
    def test_login_from_configured_origin(self, gatekeeper: Gatekeeper) -> None:
        decision = gatekeeper.decide(_req("GET", "/api/auth/login"))
        assert decision.outcome is Outcome.PERMIT_ANONYMOUS
        assert decision.principal is None
        assert decision.cors_allowed is True

    def test_profile_without_credential(self, gatekeeper: Gatekeeper) -> None:
        assert gatekeeper.decide(_req("GET", "/api/profile")).outcome is Outcome.REJECT_401

    def test_profile_with_principal(self, gatekeeper: Gatekeeper) -> None:
        decision = gatekeeper.decide(_req("GET", "/api/profile", token="student-token"))
        assert decision.outcome.allowed
        assert decision.principal == STUDENT


def test_decide_is_idempotent(gatekeeper: Gatekeeper) -> None:
    for request in (
        _req("GET", "/api/profile"),
        _req("GET", "/api/profile", token="student-token"),
        _req("GET", "/api/admin/users", token="student-token"),
        _req("OPTIONS", "/x", origin="http://evil.example"),
    ):
        assert gatekeeper.decide(request) == gatekeeper.decide(request)


def test_stage_order_is_fixed(gatekeeper: Gatekeeper) -> None:
    assert [name for name, _ in gatekeeper.stages] == ["preflight", "cors", "token", "rules"]


def test_without_verifier_everything_protected_is_401(policy: CorsPolicy) -> None:
    gate = Gatekeeper(cors=policy)
    assert gate.decide(_req("GET", "/api/profile", token="student-token")).outcome is Outcome.REJECT_401
    assert gate.decide(_req("GET", "/")).outcome is Outcome.PERMIT_ANONYMOUS
