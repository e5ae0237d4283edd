"""Account registration, login and profile endpoints."""

import logging

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from trackme.models.user import LoginRequest, RegisterRequest, User, UserPublic
from trackme.security import get_current_user
from trackme.services import users

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


class AuthResponse(BaseModel):
    """User details and a fresh session token."""

    message: str
    user: UserPublic
    token: str


def _public(user: User) -> UserPublic:
    return UserPublic(
        id=user.id, email=user.email, role=user.role, created_at=user.created_at
    )


@router.post(
    "/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED
)
async def register(request: RegisterRequest) -> AuthResponse:
    """Create an account and return a session token.

    Raises:
        DuplicateOwner: 409 when the email is already registered.
    """
    user = users.register_user(request.email, request.password)
    return AuthResponse(
        message="Account created",
        user=_public(user),
        token=users.create_access_token(user),
    )


@router.post("/login", response_model=AuthResponse)
async def login(request: LoginRequest) -> AuthResponse:
    """Exchange email and password for a session token.

    Raises:
        InvalidCredentials: 401 on unknown email or wrong password.
    """
    user = users.authenticate(request.email, request.password)
    logger.info("User %d logged in", user.id)
    return AuthResponse(
        message="Logged in",
        user=_public(user),
        token=users.create_access_token(user),
    )


@router.get("/profile")
async def profile(user: User = Depends(get_current_user)) -> dict:
    """Current user with their latest parking and parking count."""
    return {"user": users.get_profile(user.id)}
