from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel, EmailStr, Field

from core.entities.user import User
from core.services.token_service import TokenService
from core.use_cases import user_use_cases
from infrastructure.db.sqlite import SQLiteUnitOfWork
from infrastructure.web.dependencies import get_uow, get_token_service, get_current_user
from infrastructure.web.schemas import UserResponse, CreditsResponse, credits_response

router = APIRouter(prefix="/auth", tags=["auth"])

basic_security = HTTPBasic()


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: Optional[str] = Field(None, max_length=200)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


class ProfileResponse(UserResponse):
    credits: CreditsResponse


@router.post("/register", response_model=UserResponse, status_code=201)
def register(payload: RegisterRequest, uow: SQLiteUnitOfWork = Depends(get_uow)):
    user = user_use_cases.register_user(
        uow.users, email=payload.email, password=payload.password, full_name=payload.full_name,
    )
    return UserResponse.model_validate(user)


@router.post("/login", response_model=TokenResponse)
def login(
    credentials: HTTPBasicCredentials = Depends(basic_security),
    uow: SQLiteUnitOfWork = Depends(get_uow),
    tokens: TokenService = Depends(get_token_service),
):
    pair = user_use_cases.login(uow.users, tokens, credentials.username, credentials.password)
    return TokenResponse(access_token=pair.access_token, refresh_token=pair.refresh_token)


@router.post("/refresh", response_model=TokenResponse)
def refresh(
    payload: RefreshRequest,
    uow: SQLiteUnitOfWork = Depends(get_uow),
    tokens: TokenService = Depends(get_token_service),
):
    pair = user_use_cases.refresh_tokens(uow.users, tokens, payload.refresh_token)
    return TokenResponse(access_token=pair.access_token, refresh_token=pair.refresh_token)


@router.get("/me", response_model=ProfileResponse)
def get_profile(current_user: User = Depends(get_current_user)):
    data = UserResponse.model_validate(current_user).model_dump()
    return ProfileResponse(**data, credits=credits_response(current_user.credits))
