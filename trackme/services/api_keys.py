"""API key issuance, verification and revocation backed by MongoDB.

Keys look like ``tk_live_<43 url-safe base64 chars>`` (32 random bytes).
Only the SHA-256 hash and a short display prefix are stored; the plaintext
is handed back once by :func:`create_api_key` and cannot be recovered.
"""

import base64
import hashlib
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

from pymongo import DESCENDING

from trackme.config import get_settings
from trackme.exceptions import ApiKeyDisabled, ApiKeyExpired, ApiKeyNotFound
from trackme.models.user import ApiKeyRecord, utcnow
from trackme.services import database

logger = logging.getLogger(__name__)

SECRET_BYTES = 32
# Characters of the random part kept in the display prefix
PREFIX_SECRET_CHARS = 4


class GeneratedKey(NamedTuple):
    """Freshly generated key material."""

    plaintext: str
    key_hash: str
    prefix: str


def hash_api_key(api_key: str) -> str:
    """Hash an API key using SHA-256 for storage and comparison.

    Args:
        api_key (str): API key in text to be hashed

    Returns:
        str: Hashed API key"""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def extract_prefix(api_key: str) -> str:
    """Return the display prefix of a key: its tag plus a few random chars.

    Args:
        api_key (str): Plaintext API key

    Returns:
        str: Prefix safe to show in listings, or '' for a foreign format"""
    tag = get_settings().app.api_key_tag
    if not api_key or not api_key.startswith(tag):
        return ""
    return api_key[: len(tag) + PREFIX_SECRET_CHARS]


def is_valid_api_key_format(api_key: str) -> bool:
    """Check that a string has the shape of a key this service issues."""
    if not api_key or not isinstance(api_key, str):
        return False
    tag = re.escape(get_settings().app.api_key_tag)
    return re.fullmatch(rf"{tag}[A-Za-z0-9_-]{{43}}", api_key) is not None


def generate_api_key() -> GeneratedKey:
    """Generate a new random API key with its hash and display prefix."""
    tag = get_settings().app.api_key_tag
    random_part = base64.urlsafe_b64encode(secrets.token_bytes(SECRET_BYTES))
    plaintext = tag + random_part.rstrip(b"=").decode("ascii")
    return GeneratedKey(
        plaintext=plaintext,
        key_hash=hash_api_key(plaintext),
        prefix=extract_prefix(plaintext),
    )


def expires_in_days(days: int | None, now: datetime | None = None) -> datetime | None:
    """Turn a day count into an expiry timestamp.

    Args:
        days: Number of days the key stays valid. None or <= 0 never expires.
        now: Reference time, defaults to the current UTC time.

    Returns:
        Expiry datetime or None."""
    if days is None or days <= 0:
        return None
    return (now or utcnow()) + timedelta(days=days)


def _as_utc(value: datetime) -> datetime:
    # MongoDB stores UTC; clients without tz_aware hand back naive values
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_api_key(
    user_id: int, name: str | None = None, days: int | None = None
) -> tuple[ApiKeyRecord, str]:
    """Issue a key for a user.

    Args:
        user_id: Owner of the new key.
        name: Label, defaults to one carrying today's date.
        days: Lifetime in days, see :func:`expires_in_days`.

    Returns:
        The stored record and the plaintext key. The plaintext is not kept.
    """
    settings = get_settings()
    col = database.get_collection(settings.mongo.api_keys_collection)

    generated = generate_api_key()
    now = utcnow()
    record = ApiKeyRecord(
        id=database.next_id(settings.mongo.api_keys_collection),
        user_id=user_id,
        key_hash=generated.key_hash,
        prefix=generated.prefix,
        name=name or f"API key - {now.date().isoformat()}",
        is_active=True,
        created_at=now,
        expires_at=expires_in_days(days, now),
    )
    col.insert_one(database.to_document(record))

    logger.info(
        "Created API key %d (%s...) for user %d", record.id, record.prefix, user_id
    )
    return record, generated.plaintext


def resolve_api_key(api_key: str) -> ApiKeyRecord | None:
    """Look up an API key record by the hash of the plaintext key.

    Args:
        api_key (str): Plaintext API key to be checked

    Returns:
        ApiKeyRecord: Record of API key or None if none found"""
    settings = get_settings()
    col = database.get_collection(settings.mongo.api_keys_collection)

    key_hash = hash_api_key(api_key)
    record = col.find_one({"keyHash": key_hash})

    return ApiKeyRecord.model_validate(record) if record else None


def verify_api_key(api_key: str, now: datetime | None = None) -> ApiKeyRecord:
    """Verify a presented key and record its use.

    Args:
        api_key: Plaintext key from the request.
        now: Reference time, defaults to the current UTC time.

    Returns:
        The matching, usable record.

    Raises:
        ApiKeyNotFound: No key with this hash.
        ApiKeyDisabled: The key was revoked.
        ApiKeyExpired: The key is past its expiry.
    """
    record = resolve_api_key(api_key)
    if record is None:
        raise ApiKeyNotFound("Invalid API key")
    if not record.is_active:
        raise ApiKeyDisabled()

    now = now or utcnow()
    if record.expires_at is not None and _as_utc(record.expires_at) < now:
        raise ApiKeyExpired()

    settings = get_settings()
    try:
        database.get_collection(settings.mongo.api_keys_collection).update_one(
            {"_id": record.id}, {"$set": {"lastUsedAt": now}}
        )
        record.last_used_at = now
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.warning("Could not record last use of API key %d: %s", record.id, e)

    return record


def revoke_api_key(key_id: int) -> ApiKeyRecord:
    """Deactivate a key. Revoking an inactive key is a no-op.

    Args:
        key_id: API key ID.

    Returns:
        The record after deactivation.

    Raises:
        ApiKeyNotFound: No key with this ID.
    """
    settings = get_settings()
    col = database.get_collection(settings.mongo.api_keys_collection)

    record = col.find_one({"_id": key_id})
    if record is None:
        raise ApiKeyNotFound()

    if record.get("isActive", True):
        col.update_one({"_id": key_id}, {"$set": {"isActive": False}})
        logger.info("Deactivated API key %d", key_id)
    record["isActive"] = False

    return ApiKeyRecord.model_validate(record)


def list_api_keys(user_id: int) -> list[ApiKeyRecord]:
    """List a user's keys, newest first."""
    settings = get_settings()
    col = database.get_collection(settings.mongo.api_keys_collection)

    cursor = col.find({"userId": user_id}).sort("createdAt", DESCENDING)
    return [ApiKeyRecord.model_validate(doc) for doc in cursor]
