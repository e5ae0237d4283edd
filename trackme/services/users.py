"""User accounts, password hashing and session tokens.

Passwords are hashed with bcrypt. Session tokens are HS256 JWTs carrying
``userId`` and ``email`` claims.
"""

import logging
from datetime import timedelta
from typing import Any

import bcrypt
import jwt
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from trackme.config import get_settings
from trackme.exceptions import (
    DuplicateOwner,
    InvalidCredentials,
    Unauthorized,
    UserNotFound,
)
from trackme.models.user import ApiKeyPublic, ApiKeyRecord, Role, User, utcnow
from trackme.services import api_keys, database, parking

logger = logging.getLogger(__name__)

# Stored instead of a hash for users that only authenticate with API keys
DISABLED_PASSWORD = "disabled"


def hash_password(password: str) -> str:
    """Hash a password with bcrypt.

    bcrypt ignores input past 72 bytes, so longer passwords are truncated
    explicitly rather than raising.
    """
    rounds = get_settings().auth.bcrypt_rounds
    password_bytes = password.encode("utf-8")[:72]
    return bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash."""
    if not password_hash or password_hash == DISABLED_PASSWORD:
        return False
    try:
        return bcrypt.checkpw(
            password.encode("utf-8")[:72], password_hash.encode("utf-8")
        )
    except ValueError:
        logger.warning("Stored password hash is not a bcrypt hash")
        return False


def create_access_token(user: User) -> str:
    """Sign a session token for a user."""
    settings = get_settings()
    now = utcnow()
    payload = {
        "userId": user.id,
        "email": user.email,
        "iat": now,
        "exp": now + timedelta(days=settings.auth.expires_days),
    }
    return jwt.encode(payload, settings.auth.secret, algorithm=settings.auth.algorithm)


def decode_access_token(token: str) -> int:
    """Validate a session token and return the user id it names.

    Raises:
        Unauthorized: If the token is expired, malformed or has no user id.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token, settings.auth.secret, algorithms=[settings.auth.algorithm]
        )
    except jwt.ExpiredSignatureError as e:
        raise Unauthorized("Your session has expired, please log in again") from e
    except jwt.InvalidTokenError as e:
        raise Unauthorized("Invalid token") from e

    user_id = payload.get("userId")
    if not isinstance(user_id, int):
        raise Unauthorized("Invalid token")
    return user_id


def _users():
    return database.get_collection(get_settings().mongo.users_collection)


def get_user(user_id: int) -> User | None:
    """Fetch a user by id."""
    doc = _users().find_one({"_id": user_id})
    return User.model_validate(doc) if doc else None


def get_user_by_email(email: str) -> User | None:
    """Fetch a user by email (emails are stored lower-cased)."""
    doc = _users().find_one({"email": email.lower()})
    return User.model_validate(doc) if doc else None


def _insert_user(email: str, password_hash: str) -> User:
    email = email.lower()
    if get_user_by_email(email) is not None:
        raise DuplicateOwner()

    user = User(
        id=database.next_id(get_settings().mongo.users_collection),
        email=email,
        password=password_hash,
        role=Role.USER,
    )
    try:
        _users().insert_one(database.to_document(user))
    except DuplicateKeyError as e:
        raise DuplicateOwner() from e
    return user


def register_user(email: str, password: str) -> User:
    """Create an account with a password.

    Raises:
        DuplicateOwner: If the email is already registered.
    """
    user = _insert_user(email, hash_password(password))
    logger.info("Registered user %d (%s)", user.id, user.email)
    return user


def authenticate(email: str, password: str) -> User:
    """Return the user for an email/password pair.

    Raises:
        InvalidCredentials: On unknown email or wrong password.
    """
    user = get_user_by_email(email)
    if user is None or not verify_password(password, user.password):
        logger.info("Failed login for %s", email)
        raise InvalidCredentials()
    return user


def get_profile(user_id: int) -> dict[str, Any]:
    """User details with their latest parking and parking count.

    Raises:
        UserNotFound: If the user no longer exists.
    """
    user = get_user(user_id)
    if user is None:
        raise UserNotFound()

    latest = parking.get_latest_parking(user_id)
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "createdAt": user.created_at,
        "lastParking": latest.model_dump(by_alias=True) if latest else None,
        "parkingsCount": parking.count_parkings(user_id),
    }


def create_user_with_api_key(
    email: str, name: str | None = None, days: int | None = None
) -> tuple[User, ApiKeyRecord, str]:
    """Provision an API-only user together with its first key.

    Args:
        email: Email of the new user.
        name: Key label, defaults to one naming the email.
        days: Key lifetime in days, None for no expiry.

    Returns:
        Tuple of (user, key record, plaintext key).

    Raises:
        DuplicateOwner: If the email is already registered.
    """
    user = _insert_user(email, DISABLED_PASSWORD)
    try:
        record, plaintext = api_keys.create_api_key(
            user.id, name or f"Key for {user.email}", days
        )
    except Exception:
        # A key-only user without a key cannot authenticate
        _users().delete_one({"_id": user.id})
        raise

    logger.info("Provisioned API user %d (%s)", user.id, user.email)
    return user, record, plaintext


def create_api_key_for_user(
    user_id: int, name: str | None = None, days: int | None = None
) -> tuple[ApiKeyRecord, str]:
    """Issue an extra key to an existing user.

    Raises:
        UserNotFound: If no user has this id.
    """
    if get_user(user_id) is None:
        raise UserNotFound()
    return api_keys.create_api_key(user_id, name, days)


def list_users() -> list[dict[str, Any]]:
    """All users, newest first, with masked keys and usage counts."""
    users = [
        User.model_validate(doc)
        for doc in _users().find().sort("createdAt", DESCENDING)
    ]

    results = []
    for user in users:
        keys = api_keys.list_api_keys(user.id)
        results.append(
            {
                "id": user.id,
                "email": user.email,
                "role": user.role,
                "createdAt": user.created_at,
                "apiKeysCount": len(keys),
                "parkingsCount": parking.count_parkings(user.id),
                "apiKeys": [
                    ApiKeyPublic.from_record(key).model_dump(by_alias=True)
                    for key in keys
                ],
            }
        )
    return results


def set_role(user_id_or_email: str, role: Role) -> User:
    """Change a user's role, addressing the user by id or email.

    Raises:
        UserNotFound: If no user matches.
    """
    if "@" in user_id_or_email:
        user = get_user_by_email(user_id_or_email)
    elif user_id_or_email.isdigit():
        user = get_user(int(user_id_or_email))
    else:
        user = None

    if user is None:
        raise UserNotFound(f"User not found: {user_id_or_email}")

    _users().update_one({"_id": user.id}, {"$set": {"role": Role(role).value}})
    user.role = Role(role).value
    logger.info("User %d role set to %s", user.id, user.role)
    return user

