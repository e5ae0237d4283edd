"""Administration endpoints: provisioning users and API keys.

All endpoints require a session token of a user with the admin role.
Plaintext keys appear in responses exactly once, at creation.
"""

import logging

from fastapi import APIRouter, Depends, Request, status

from trackme.exceptions import UserNotFound
from trackme.models.user import (
    AdminApiKeyRequest,
    AdminCreateUserRequest,
    AdminNotificationRequest,
    ApiKeyPublic,
    ApiKeyRecord,
    User,
)
from trackme.security import require_admin
from trackme.services import api_keys, users

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/admin", tags=["admin"], dependencies=[Depends(require_admin)]
)

KEY_WARNING = "Store this API key securely; it will not be shown again."


def _issued_key(record: ApiKeyRecord, plaintext: str) -> dict:
    issued = ApiKeyPublic.from_record(record).model_dump(by_alias=True)
    issued["key"] = plaintext
    return issued


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(request: AdminCreateUserRequest) -> dict:
    """Create an API-only user together with its first key.

    Raises:
        DuplicateOwner: 409 when the email is already registered.
    """
    user, record, plaintext = users.create_user_with_api_key(
        request.email, request.name, request.expires_in_days
    )
    return {
        "message": "User and API key created",
        "user": {"id": user.id, "email": user.email, "createdAt": user.created_at},
        "apiKey": _issued_key(record, plaintext),
        "warning": KEY_WARNING,
    }


@router.get("/users")
async def list_users() -> dict:
    """All users with masked keys and usage counts."""
    results = users.list_users()
    return {"users": results, "total": len(results)}


@router.post("/users/{user_id}/api-keys", status_code=status.HTTP_201_CREATED)
async def create_api_key(user_id: int, request: AdminApiKeyRequest) -> dict:
    """Issue an additional key to an existing user.

    Raises:
        UserNotFound: 404 when the user does not exist.
    """
    record, plaintext = users.create_api_key_for_user(
        user_id, request.name, request.expires_in_days
    )
    return {
        "message": "API key created",
        "apiKey": _issued_key(record, plaintext),
        "warning": KEY_WARNING,
    }


@router.post("/users/{user_id}/notify")
async def notify_user(
    user_id: int, body: AdminNotificationRequest, request: Request
) -> dict:
    """Push a ``notification`` event to every open socket of a user.

    Raises:
        UserNotFound: 404 when the user does not exist.
    """
    if users.get_user(user_id) is None:
        raise UserNotFound()

    delivered = await request.app.state.connections.send_notification_to_user(
        user_id, body.message, title=body.title
    )
    return {"message": "Notification sent", "delivered": delivered}


@router.delete("/api-keys/{key_id}")
async def deactivate_api_key(
    key_id: int, admin: User = Depends(require_admin)
) -> dict:
    """Deactivate a key. Deactivating an inactive key succeeds.

    Raises:
        ApiKeyNotFound: 404 when the key does not exist.
    """
    api_keys.revoke_api_key(key_id)
    logger.info("API key %d deactivated by admin %d", key_id, admin.id)
    return {"message": "API key deactivated"}


@router.get("/timers")
async def active_timers(request: Request) -> dict:
    """Timers currently armed in this process."""
    return request.app.state.timers.active_timers_stats()
