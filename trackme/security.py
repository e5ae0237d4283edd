"""Security dependencies for the FastAPI application."""

import logging

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from trackme.config import get_settings
from trackme.exceptions import (
    CredentialDisabled,
    CredentialExpired,
    CredentialInvalid,
    TrackMeError,
    Unauthorized,
)
from trackme.models.user import Role, User
from trackme.services import api_keys, users

logger = logging.getLogger(__name__)

# Default header name used for OpenAPI docs; runtime config may override.
DEFAULT_API_KEY_HEADER = "X-API-Key"
api_key_header = APIKeyHeader(
    name=DEFAULT_API_KEY_HEADER,
    description="API key required to access parking endpoints",
    auto_error=False,
)
bearer_scheme = HTTPBearer(
    description="Session token returned by /auth/login",
    auto_error=False,
)


def _unauthorized(detail: str, scheme: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": scheme},
    )


async def verify_api_key(
    request: Request,
    api_key: str | None = Security(api_key_header),
) -> User:
    """Validate the API key header and return the user owning the key."""
    settings = get_settings()
    header_name = settings.app.api_key_header_name or DEFAULT_API_KEY_HEADER

    # Allow dynamic header name from settings if different to default
    if not api_key and request:
        api_key = request.headers.get(header_name)

    if not api_key:
        raise _unauthorized("API key required", "API-Key")

    try:
        record = api_keys.verify_api_key(api_key)
    except CredentialInvalid as exc:
        raise _unauthorized("Invalid API key", "API-Key") from exc
    except (CredentialDisabled, CredentialExpired) as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail=exc.message
        ) from exc
    except Exception as exc:
        logger.error("API key validation failed: %s", exc, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication unavailable",
            headers={"WWW-Authenticate": "API-Key"},
        ) from exc

    user = users.get_user(record.user_id)
    if user is None:
        raise _unauthorized("Invalid API key", "API-Key")
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> User:
    """Validate the bearer session token and load its user."""
    if credentials is None:
        raise _unauthorized("Token required", "Bearer")

    try:
        user_id = users.decode_access_token(credentials.credentials)
    except Unauthorized as exc:
        raise _unauthorized(exc.message, "Bearer") from exc

    user = users.get_user(user_id)
    if user is None:
        raise _unauthorized("User not found", "Bearer")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Only let administrators through."""
    if user.role != Role.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator role required",
        )
    return user


def resolve_owner(credential: str | None) -> User:
    """Resolve a session token or API key to its user.

    Used by the realtime channel, which accepts either kind of credential.

    Raises:
        Unauthorized: If neither kind of credential is valid.
    """
    if not credential:
        raise Unauthorized("Missing authentication token")

    if credential.startswith(get_settings().app.api_key_tag):
        try:
            record = api_keys.verify_api_key(credential)
        except TrackMeError as exc:
            raise Unauthorized(exc.message) from exc
        user_id = record.user_id
    else:
        user_id = users.decode_access_token(credential)

    user = users.get_user(user_id)
    if user is None:
        raise Unauthorized("User not found")
    return user
