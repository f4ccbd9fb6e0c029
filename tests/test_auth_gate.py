from datetime import timedelta

import pytest

from core.services.token_service import TokenClaims
from core.use_cases.auth_gate import build_gate, ADMITTED, REJECTED, AuthGate, extract_bearer
from core.use_cases.errors import AuthenticationError, AuthorizationError
from infrastructure.security.jwt_tokens import JoseTokenService

SECRET = "gate-secret-key-for-tests-only"


@pytest.fixture
def service():
    return JoseTokenService(SECRET, issuer="coworking", audience="coworking-api")


def _claims(role="user", nft=False):
    return TokenClaims(user_id=7, email="gate@example.com", role=role, nft_holder=nft)


def _bearer(token):
    return f"Bearer {token}"


def _rejection(gate, header):
    with pytest.raises((AuthenticationError, AuthorizationError)) as exc:
        gate.admit(header)
    return exc.value


def test_valid_token_is_admitted(service):
    ctx = build_gate(service).admit(_bearer(service.issue(_claims())))
    assert ctx.state == ADMITTED
    assert ctx.user_id == 7
    assert ctx.role == "user"


@pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Token abc", "Basic dXNlcjpwYXNz"])
def test_missing_token(service, header):
    err = _rejection(build_gate(service), header)
    assert isinstance(err, AuthenticationError)
    assert err.code == "TOKEN_MISSING"


def test_garbage_and_forged_tokens_are_invalid(service):
    forged = JoseTokenService("some-other-secret").issue(_claims())
    assert _rejection(build_gate(service), _bearer("not.a.jwt")).code == "TOKEN_INVALID"
    assert _rejection(build_gate(service), _bearer(forged)).code == "TOKEN_INVALID"


def test_expired_token(service):
    token = service.issue(_claims(), expires_delta=timedelta(minutes=-5))
    assert _rejection(build_gate(service), _bearer(token)).code == "TOKEN_EXPIRED"


def test_wrong_audience(service):
    other = JoseTokenService(SECRET, issuer="coworking", audience="someone-else")
    token = other.issue(_claims())
    assert _rejection(build_gate(service), _bearer(token)).code == "TOKEN_CLAIMS_INVALID"


def test_refresh_token_cannot_authenticate_requests(service):
    token = service.issue(_claims(), token_type="refresh")
    assert _rejection(build_gate(service), _bearer(token)).code == "TOKEN_TYPE_INVALID"


def test_role_check(service):
    token = service.issue(_claims(role="user"))
    err = _rejection(build_gate(service, roles=("staff", "admin")), _bearer(token))
    assert isinstance(err, AuthorizationError)
    assert err.code == "FORBIDDEN"

    staff = service.issue(_claims(role="staff"))
    assert build_gate(service, roles=("staff", "admin")).admit(_bearer(staff)).state == ADMITTED


def test_nft_gate(service):
    gate = build_gate(service, nft_required=True)
    assert _rejection(gate, _bearer(service.issue(_claims()))).code == "NFT_REQUIRED"
    assert gate.admit(_bearer(service.issue(_claims(nft=True)))).state == ADMITTED


def test_rejection_is_recorded_on_context(service):
    seen = []

    def spy(ctx):
        seen.append(ctx)
        return ctx

    gate = AuthGate([spy, extract_bearer])
    with pytest.raises(AuthenticationError):
        gate.admit(None)
    assert seen[0].state == REJECTED
    assert seen[0].error.code == "TOKEN_MISSING"
