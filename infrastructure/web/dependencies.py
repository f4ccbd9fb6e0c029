import sqlite3
from typing import Optional

from fastapi import Depends, Header, Request

from config.settings import Settings
from core.entities.user import User, STAFF_ROLES
from core.services.notifier import Notifier
from core.services.payment_provider import PaymentProvider
from core.services.token_service import TokenService
from core.use_cases.auth_gate import AuthContext, build_gate
from core.use_cases.errors import AuthenticationError
from infrastructure.db.sqlite import SQLiteUnitOfWork, connect


# все сервисы создаются один раз в create_app и лежат в app.state
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(settings: Settings = Depends(get_settings)):
    conn = connect(settings.DB_PATH, timeout=settings.DB_TIMEOUT_SECONDS)
    try:
        yield conn
    finally:
        conn.close()


def get_uow(conn: sqlite3.Connection = Depends(get_db)) -> SQLiteUnitOfWork:
    return SQLiteUnitOfWork(conn)


def get_payment_provider(request: Request) -> PaymentProvider:
    return request.app.state.payment_provider


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def require_roles(*roles: str, nft_required: bool = False):
    """Dependency running the auth gate; no roles means any authenticated user."""

    def dependency(
        authorization: Optional[str] = Header(None),
        tokens: TokenService = Depends(get_token_service),
    ) -> AuthContext:
        return build_gate(tokens, roles, nft_required=nft_required).admit(authorization)

    return dependency


authenticated = require_roles()
staff_only = require_roles(*STAFF_ROLES)
admin_only = require_roles("admin")
nft_holder_only = require_roles(nft_required=True)


def get_current_user(
    ctx: AuthContext = Depends(authenticated),
    uow: SQLiteUnitOfWork = Depends(get_uow),
) -> User:
    user = uow.users.get_by_id(ctx.user_id)
    if user is None:
        raise AuthenticationError("Could not validate credentials", code="TOKEN_INVALID")
    return user
