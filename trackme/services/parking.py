"""Parking record storage.

All reads are scoped by owner: a record that exists but belongs to someone
else is reported exactly like a missing one.
"""

import logging

from pymongo import DESCENDING, ReturnDocument

from trackme.config import get_settings
from trackme.models.parking import Parking, ParkingCreate, ParkingUpdate
from trackme.models.user import utcnow
from trackme.services import database

logger = logging.getLogger(__name__)


def _parkings():
    return database.get_collection(get_settings().mongo.parkings_collection)


def create_parking(user_id: int, data: ParkingCreate) -> Parking:
    """Save a new parking position for a user."""
    now = utcnow()
    parking = Parking(
        id=database.next_id(get_settings().mongo.parkings_collection),
        user_id=user_id,
        latitude=data.latitude,
        longitude=data.longitude,
        address=data.address,
        note=data.note,
        created_at=now,
        updated_at=now,
    )
    _parkings().insert_one(database.to_document(parking))
    logger.info("Saved parking %d for user %d", parking.id, user_id)
    return parking


def get_latest_parking(user_id: int) -> Parking | None:
    """Most recently saved position of a user."""
    docs = list(
        _parkings().find({"userId": user_id}).sort("createdAt", DESCENDING).limit(1)
    )
    return Parking.model_validate(docs[0]) if docs else None


def get_parking_history(
    user_id: int, limit: int = 50, offset: int = 0
) -> tuple[list[Parking], int]:
    """Page through a user's positions, newest first.

    Args:
        user_id: Owner.
        limit: Page size.
        offset: Number of records to skip.

    Returns:
        Tuple of (page of records, total count).
    """
    cursor = (
        _parkings()
        .find({"userId": user_id})
        .sort("createdAt", DESCENDING)
        .skip(offset)
        .limit(limit)
    )
    parkings = [Parking.model_validate(doc) for doc in cursor]
    return parkings, count_parkings(user_id)


def count_parkings(user_id: int) -> int:
    return _parkings().count_documents({"userId": user_id})


def find_owned_parking(user_id: int, parking_id: int) -> Parking | None:
    """Return the parking only if it belongs to the user."""
    doc = _parkings().find_one({"_id": parking_id, "userId": user_id})
    return Parking.model_validate(doc) if doc else None


def update_parking(
    user_id: int, parking_id: int, data: ParkingUpdate
) -> Parking | None:
    """Edit the address and/or note of an owned parking.

    Only fields present in the request body are changed.

    Returns:
        Updated record, or None when not found or not owned.
    """
    changes = data.model_dump(exclude_unset=True)
    changes["updatedAt"] = utcnow()

    doc = _parkings().find_one_and_update(
        {"_id": parking_id, "userId": user_id},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    return Parking.model_validate(doc) if doc else None


def delete_parking(user_id: int, parking_id: int) -> bool:
    """Delete an owned parking. Returns False when not found or not owned."""
    result = _parkings().delete_one({"_id": parking_id, "userId": user_id})
    if result.deleted_count:
        logger.info("Deleted parking %d of user %d", parking_id, user_id)
    return bool(result.deleted_count)


def annotate_parking(parking_id: int, note_append: str) -> Parking:
    """Append text to a parking's note, joined with ' - ' to existing text.

    Raises:
        LookupError: If the parking no longer exists.
    """
    col = _parkings()
    doc = col.find_one({"_id": parking_id})
    if doc is None:
        raise LookupError(f"Parking {parking_id} no longer exists")

    note = f"{doc['note']} - {note_append}" if doc.get("note") else note_append
    doc = col.find_one_and_update(
        {"_id": parking_id},
        {"$set": {"note": note, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise LookupError(f"Parking {parking_id} no longer exists")
    return Parking.model_validate(doc)
