"""Typed payloads exchanged over the realtime WebSocket channel.

Frames are JSON objects of the form ``{"event": <name>, "data": {...}}``.
Each outbound model knows its event name so the transport never has to
build payload dictionaries by hand.
"""

from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, StrictInt

from trackme.models.user import utcnow

EXPIRY_RECOMMENDATIONS = [
    "Check whether you need to move your vehicle",
    "Consider extending your parking time if possible",
    "Watch out for parking fines",
]


class OutboundEvent(BaseModel):
    """Base class for server to client events."""

    model_config = ConfigDict(populate_by_name=True)

    event: ClassVar[str] = "message"

    def frame(self) -> dict[str, Any]:
        """Serialise into the wire envelope."""
        return {
            "event": self.event,
            "data": self.model_dump(by_alias=True, mode="json", exclude_none=True),
        }


class Connected(OutboundEvent):
    event: ClassVar[str] = "connected"

    message: str = "WebSocket connection established"
    user_id: int = Field(alias="userId")
    email: str
    timestamp: datetime = Field(default_factory=utcnow)


class TimerStarted(OutboundEvent):
    event: ClassVar[str] = "timer_started"

    message: str = "Timer started"
    parking_id: int = Field(alias="parkingId")
    duration: int
    start_time: datetime = Field(alias="startTime")
    end_time: datetime = Field(alias="endTime")


class TimerCancelled(OutboundEvent):
    event: ClassVar[str] = "timer_cancelled"

    message: str = "Timer cancelled"
    parking_id: int = Field(alias="parkingId")
    timestamp: datetime = Field(default_factory=utcnow)


class TimerStatus(OutboundEvent):
    """Snapshot of an owner's timer. Only ``active`` is set when idle."""

    event: ClassVar[str] = "timer_status"

    active: bool
    message: str | None = None
    parking_id: int | None = Field(default=None, alias="parkingId")
    duration: int | None = None
    elapsed: int | None = None
    remaining: int | None = None
    start_time: datetime | None = Field(default=None, alias="startTime")


class TimerError(OutboundEvent):
    event: ClassVar[str] = "timer_error"

    error: str
    parking_id: int | None = Field(default=None, alias="parkingId")
    timestamp: datetime = Field(default_factory=utcnow)


class ParkingTimeExpired(OutboundEvent):
    event: ClassVar[str] = "parking_time_expired"

    message: str = "Parking time is up!"
    parking_id: int = Field(alias="parkingId")
    location: str
    duration: int
    expired_at: datetime = Field(default_factory=utcnow, alias="expiredAt")
    recommendations: list[str] = Field(
        default_factory=lambda: list(EXPIRY_RECOMMENDATIONS)
    )


class Notification(OutboundEvent):
    """Free-form notification pushed to a user by an administrator."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    event: ClassVar[str] = "notification"

    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class InboundMessage(BaseModel):
    """Client to server frame."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)


class StartTimerCommand(BaseModel):
    """Payload of ``start_parking_timer``."""

    model_config = ConfigDict(populate_by_name=True)

    parking_id: StrictInt = Field(alias="parkingId")
    duration: StrictInt | None = None
