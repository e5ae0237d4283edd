"""Parking position endpoints, authenticated with an API key.

Every endpoint only sees the records of the user owning the key. Records
belonging to someone else are reported as not found.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from trackme.models.events import TimerCancelled, TimerStarted, TimerStatus
from trackme.models.parking import (
    Pagination,
    ParkingCreate,
    ParkingHistory,
    ParkingUpdate,
    StartTimerRequest,
)
from trackme.models.user import User
from trackme.security import verify_api_key
from trackme.services import parking
from trackme.services.timers import TimerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/parking", tags=["parking"])

NOT_FOUND_DETAIL = "This position does not exist or does not belong to you"


def get_timer_service(request: Request) -> TimerService:
    """Timer service created during application startup."""
    return request.app.state.timers


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_parking(
    body: ParkingCreate, user: User = Depends(verify_api_key)
) -> dict:
    """Save a new parking position."""
    record = parking.create_parking(user.id, body)
    return {"message": "Position saved", "parking": record}


@router.get("/current")
async def current_parking(user: User = Depends(verify_api_key)) -> dict:
    """Most recently saved position."""
    record = parking.get_latest_parking(user.id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="You have not saved a position yet",
        )
    return {"parking": record}


@router.get("/history", response_model=ParkingHistory)
async def parking_history(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(verify_api_key),
) -> ParkingHistory:
    """Saved positions, newest first, with pagination details."""
    records, total = parking.get_parking_history(user.id, limit, offset)
    return ParkingHistory(
        parkings=records,
        pagination=Pagination(
            total=total,
            limit=limit,
            offset=offset,
            has_more=total > offset + limit,
        ),
    )


@router.get("/timer/status", response_model_exclude_none=True)
async def timer_status(
    user: User = Depends(verify_api_key),
    timers: TimerService = Depends(get_timer_service),
) -> TimerStatus:
    """State of the caller's countdown."""
    return timers.get_timer_status(user.id)


@router.delete("/timer")
async def cancel_timer(
    user: User = Depends(verify_api_key),
    timers: TimerService = Depends(get_timer_service),
) -> TimerCancelled:
    """Cancel the caller's countdown.

    Raises:
        NoActiveTimer: 404 when nothing is armed.
    """
    return timers.cancel_timer(user.id)


@router.get("/{parking_id}")
async def get_parking(parking_id: int, user: User = Depends(verify_api_key)) -> dict:
    """One owned position."""
    record = parking.find_owned_parking(user.id, parking_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL
        )
    return {"parking": record}


@router.patch("/{parking_id}")
async def update_parking(
    parking_id: int, body: ParkingUpdate, user: User = Depends(verify_api_key)
) -> dict:
    """Edit the address and/or note of an owned position."""
    record = parking.update_parking(user.id, parking_id, body)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL
        )
    return {"message": "Position updated", "parking": record}


@router.delete("/{parking_id}")
async def delete_parking(
    parking_id: int, user: User = Depends(verify_api_key)
) -> dict:
    """Delete an owned position."""
    if not parking.delete_parking(user.id, parking_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_DETAIL
        )
    return {"message": "Position deleted"}


@router.post("/{parking_id}/start-timer")
async def start_timer(
    parking_id: int,
    body: StartTimerRequest | None = None,
    user: User = Depends(verify_api_key),
    timers: TimerService = Depends(get_timer_service),
) -> TimerStarted:
    """Arm a countdown for an owned position.

    The expiry notification is pushed to the user's open WebSocket
    connections.

    Raises:
        NotFoundOrForbidden: 404 when the position is not the caller's.
        InvalidTimerRequest: 422 for an out of range duration.
    """
    duration = body.duration if body else None
    return await timers.start_timer(user.id, parking_id, duration)

