import logging
from typing import Optional, List

from passlib.context import CryptContext

from core.entities.user import User, ROLES
from core.repositories.user_repository import UserRepository
from core.services.token_service import TokenService, TokenClaims, TokenPair
from core.use_cases.errors import ValidationError, ConflictError, AuthenticationError, NotFoundError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

MIN_PASSWORD_LENGTH = 8


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def register_user(repo: UserRepository, email: str, password: str, full_name: Optional[str] = None,
                  role: str = "user") -> User:
    email = email.strip().lower()
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if role not in ROLES:
        raise ValidationError(f"Unknown role '{role}'")
    if repo.get_by_email(email) is not None:
        raise ConflictError("User with this email already exists", code="EMAIL_TAKEN")
    user = repo.create_user(email=email, password_hash=get_password_hash(password), role=role,
                            full_name=full_name)
    logger.info("Registered user %s", user.id)
    return user


def authenticate_user(repo: UserRepository, email: str, password: str) -> Optional[User]:
    email = email.strip().lower()
    user = repo.get_by_email(email)
    if not user:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def claims_for(user: User) -> TokenClaims:
    return TokenClaims(
        user_id=user.id,
        email=user.email,
        role=user.role,
        nft_holder=user.nft_holder,
        wallet_address=user.wallet_address,
    )


def issue_token_pair(tokens: TokenService, user: User) -> TokenPair:
    claims = claims_for(user)
    return TokenPair(
        access_token=tokens.issue(claims, token_type="access"),
        refresh_token=tokens.issue(claims, token_type="refresh"),
    )


def login(repo: UserRepository, tokens: TokenService, email: str, password: str) -> TokenPair:
    user = authenticate_user(repo, email, password)
    if user is None:
        logger.warning("Failed login for %s", email.strip().lower())
        raise AuthenticationError("Incorrect email or password", code="INVALID_CREDENTIALS")
    return issue_token_pair(tokens, user)


def refresh_tokens(repo: UserRepository, tokens: TokenService, refresh_token: str) -> TokenPair:
    """Claims are rebuilt from the stored user, so role changes apply on refresh."""
    claims = tokens.verify(refresh_token)
    if claims.token_type != "refresh":
        raise AuthenticationError("Refresh token required", code="TOKEN_TYPE_INVALID")
    user = repo.get_by_id(claims.user_id)
    if user is None:
        raise AuthenticationError("User no longer exists", code="TOKEN_INVALID")
    return issue_token_pair(tokens, user)


def get_profile(repo: UserRepository, user_id: int) -> User:
    user = repo.get_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def list_users(repo: UserRepository, role: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[User]:
    if role is not None and role not in ROLES:
        raise ValidationError(f"Unknown role '{role}'")
    limit = max(1, min(100, int(limit)))  # пагинация, не хотим возвращать много
    offset = max(0, int(offset))
    return repo.list_users(limit=limit, offset=offset, role=role)


def update_user_admin(repo: UserRepository, user_id: int, role: Optional[str] = None,
                      nft_holder: Optional[bool] = None, wallet_address: Optional[str] = None,
                      full_name: Optional[str] = None) -> User:
    get_profile(repo, user_id)
    fields = {}
    if role is not None:
        if role not in ROLES:
            raise ValidationError(f"Unknown role '{role}'")
        fields["role"] = role
    if nft_holder is not None:
        fields["nft_holder"] = bool(nft_holder)
    if wallet_address is not None:
        fields["wallet_address"] = wallet_address or None
    if full_name is not None:
        fields["full_name"] = full_name
    if not fields:
        raise ValidationError("Nothing to update")
    user = repo.update_user(user_id, **fields)
    logger.info("Admin updated user %s: %s", user_id, sorted(fields))
    return user
