"""Request admission as a pipeline of small stages.

Each stage takes the ``AuthContext`` and either advances its state or raises.
``AuthGate.admit`` runs the stages in order and records the rejection.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Callable, Iterable, List, Sequence

from core.entities.user import ROLES
from core.services.token_service import TokenClaims, TokenService
from core.use_cases.errors import AuthenticationError, AuthorizationError, DomainError

logger = logging.getLogger(__name__)

UNAUTHENTICATED = "unauthenticated"
TOKEN_EXTRACTED = "token-extracted"
TOKEN_VERIFIED = "token-verified"
ROLE_CHECKED = "role-checked"
ADMITTED = "admitted"
REJECTED = "rejected"


@dataclass
class AuthContext:
    authorization: Optional[str]
    state: str = UNAUTHENTICATED
    token: Optional[str] = None
    claims: Optional[TokenClaims] = None
    error: Optional[DomainError] = None

    @property
    def user_id(self) -> Optional[int]:
        return self.claims.user_id if self.claims else None

    @property
    def role(self) -> Optional[str]:
        return self.claims.role if self.claims else None


Stage = Callable[[AuthContext], AuthContext]


def extract_bearer(ctx: AuthContext) -> AuthContext:
    header = (ctx.authorization or "").strip()
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Authentication token is required", code="TOKEN_MISSING")
    ctx.token = token.strip()
    ctx.state = TOKEN_EXTRACTED
    return ctx


def verify_access_token(service: TokenService) -> Stage:
    def stage(ctx: AuthContext) -> AuthContext:
        claims = service.verify(ctx.token)
        if claims.token_type != "access":
            raise AuthenticationError("Access token required", code="TOKEN_TYPE_INVALID")
        if claims.role not in ROLES:
            raise AuthenticationError("Token carries an unknown role", code="TOKEN_CLAIMS_INVALID")
        ctx.claims = claims
        ctx.state = TOKEN_VERIFIED
        return ctx
    return stage


def check_roles(allowed: Iterable[str]) -> Stage:
    allowed = tuple(allowed) or ROLES

    def stage(ctx: AuthContext) -> AuthContext:
        if ctx.claims.role not in allowed:
            raise AuthorizationError("Insufficient permissions", code="FORBIDDEN")
        ctx.state = ROLE_CHECKED
        return ctx
    return stage


def require_nft_holder(ctx: AuthContext) -> AuthContext:
    if not ctx.claims.nft_holder:
        raise AuthorizationError("NFT holder access required", code="NFT_REQUIRED")
    return ctx


class AuthGate:
    def __init__(self, stages: Sequence[Stage]):
        self.stages: List[Stage] = list(stages)

    def admit(self, authorization: Optional[str]) -> AuthContext:
        ctx = AuthContext(authorization=authorization)
        try:
            for stage in self.stages:
                ctx = stage(ctx)
        except DomainError as e:
            ctx.state = REJECTED
            ctx.error = e
            logger.warning("Request rejected at %s: %s", e.code, e.message)
            raise
        ctx.state = ADMITTED
        return ctx


def build_gate(service: TokenService, roles: Iterable[str] = (), nft_required: bool = False) -> AuthGate:
    stages = [extract_bearer, verify_access_token(service), check_roles(roles)]
    if nft_required:
        stages.append(require_nft_holder)
    return AuthGate(stages)
