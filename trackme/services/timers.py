"""Per-user parking countdown timers.

One :class:`TimerService` is created at startup and shared by every
connection. It keeps at most one armed timer per owner; starting another
replaces the first. Timers outlive the socket that armed them and the
expiry event goes to whatever sockets the owner has open when it fires.

Timers live in process memory only, so a restart drops them silently.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from types import ModuleType
from typing import Any, Callable

from trackme.config import get_settings
from trackme.exceptions import (
    InvalidTimerRequest,
    NoActiveTimer,
    NotFoundOrForbidden,
    PersistenceFailure,
)
from trackme.models.events import (
    ParkingTimeExpired,
    TimerCancelled,
    TimerError,
    TimerStarted,
    TimerStatus,
)
from trackme.models.user import utcnow
from trackme.services import parking as parking_service
from trackme.services.connections import ConnectionManager
from trackme.services.scheduler import AsyncioScheduler, ScheduledHandle, Scheduler

logger = logging.getLogger(__name__)

EXPIRY_NOTIFICATION_ERROR = "Error while sending the notification"


@dataclass
class TimerEntry:
    """One armed countdown."""

    owner_id: int
    parking_id: int
    duration: int
    started_at: datetime
    connection_id: str | None = None
    handle: ScheduledHandle | None = field(default=None, repr=False)

    @property
    def ends_at(self) -> datetime:
        return self.started_at + timedelta(seconds=self.duration)


class TimerService:
    """Registry of armed timers keyed by owner.

    Args:
        connections: Where expiry events are broadcast.
        scheduler: Delayed callback facility, asyncio based by default.
        parking_store: Object exposing ``find_owned_parking`` and
            ``annotate_parking``; the parking service module by default.
        clock: Returns the current aware datetime.
        store_timeout: Seconds allowed for each parking store call.
        default_duration: Countdown used when a request gives none.
        max_duration: Largest countdown accepted.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        scheduler: Scheduler | None = None,
        parking_store: Any | ModuleType = parking_service,
        clock: Callable[[], datetime] = utcnow,
        store_timeout: float | None = None,
        default_duration: int | None = None,
        max_duration: int | None = None,
    ):
        timer_settings = get_settings().timer
        self._connections = connections
        self._scheduler = scheduler or AsyncioScheduler()
        self._store = parking_store
        self._clock = clock
        self._store_timeout = (
            store_timeout
            if store_timeout is not None
            else timer_settings.store_timeout_seconds
        )
        self.default_duration = default_duration or timer_settings.default_duration
        self.max_duration = max_duration or timer_settings.max_duration
        self._timers: dict[int, TimerEntry] = {}

    def __len__(self) -> int:
        return len(self._timers)

    def __contains__(self, owner_id: int) -> bool:
        return owner_id in self._timers

    def get(self, owner_id: int) -> TimerEntry | None:
        return self._timers.get(owner_id)

    def resolve_duration(self, duration: Any) -> int:
        """Apply the default and check bounds.

        Raises:
            InvalidTimerRequest: For non-integers and out of range values.
        """
        if duration is None:
            return self.default_duration
        if isinstance(duration, bool) or not isinstance(duration, int):
            raise InvalidTimerRequest("Duration must be a whole number of seconds")
        if not 1 <= duration <= self.max_duration:
            raise InvalidTimerRequest(
                f"Duration must be between 1 and {self.max_duration} seconds"
            )
        return duration

    async def _call_store(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args), timeout=self._store_timeout
            )
        except asyncio.TimeoutError as e:
            raise PersistenceFailure("Storage did not answer in time") from e

    async def start_timer(
        self,
        owner_id: int,
        parking_id: int,
        duration: int | None = None,
        connection_id: str | None = None,
    ) -> TimerStarted:
        """Arm a countdown for a parking owned by ``owner_id``.

        Any timer the owner already has is cancelled and replaced.

        Returns:
            Acknowledgement for the requesting connection.

        Raises:
            InvalidTimerRequest: Bad duration.
            NotFoundOrForbidden: Parking missing or owned by someone else.
            PersistenceFailure: Ownership lookup failed or timed out.
        """
        duration = self.resolve_duration(duration)

        try:
            parking = await self._call_store(
                self._store.find_owned_parking, owner_id, parking_id
            )
        except PersistenceFailure:
            raise
        except Exception as e:
            logger.error("Ownership lookup failed: %s", e, exc_info=True)
            raise PersistenceFailure() from e

        if parking is None:
            raise NotFoundOrForbidden()

        # No await from here on: replace and register happen atomically
        existing = self._timers.get(owner_id)
        if existing is not None:
            existing.handle.cancel()
            logger.info(
                "Replaced timer for user %d (parking %d)",
                owner_id,
                existing.parking_id,
            )

        entry = TimerEntry(
            owner_id=owner_id,
            parking_id=parking_id,
            duration=duration,
            started_at=self._clock(),
            connection_id=connection_id,
        )
        entry.handle = self._scheduler.schedule(
            duration, lambda: self._expire(entry)
        )
        self._timers[owner_id] = entry

        logger.info(
            "Timer started for user %d, parking %d, %ds",
            owner_id,
            parking_id,
            duration,
        )
        return TimerStarted(
            parking_id=parking_id,
            duration=duration,
            start_time=entry.started_at,
            end_time=entry.ends_at,
        )

    def cancel_timer(self, owner_id: int) -> TimerCancelled:
        """Disarm the owner's timer.

        Raises:
            NoActiveTimer: If the owner has none.
        """
        entry = self._timers.pop(owner_id, None)
        if entry is None:
            raise NoActiveTimer()

        entry.handle.cancel()
        logger.info("Timer cancelled for user %d", owner_id)
        return TimerCancelled(parking_id=entry.parking_id)

    def get_timer_status(self, owner_id: int) -> TimerStatus:
        """Snapshot of the owner's timer, inactive when none is armed."""
        entry = self._timers.get(owner_id)
        if entry is None:
            return TimerStatus(active=False, message="No active timer")

        elapsed = int((self._clock() - entry.started_at).total_seconds())
        elapsed = max(0, elapsed)
        return TimerStatus(
            active=True,
            parking_id=entry.parking_id,
            duration=entry.duration,
            elapsed=elapsed,
            remaining=max(0, entry.duration - elapsed),
            start_time=entry.started_at,
        )

    async def _expire(self, entry: TimerEntry) -> None:
        # A replaced or cancelled entry must not touch the registry
        if self._timers.get(entry.owner_id) is not entry:
            return
        del self._timers[entry.owner_id]

        expired_at = self._clock()
        try:
            parking = await self._call_store(
                self._store.annotate_parking,
                entry.parking_id,
                f"Time expired at {expired_at.strftime('%H:%M:%S')}",
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error(
                "Could not annotate parking %d on expiry: %s",
                entry.parking_id,
                e,
                exc_info=True,
            )
            event = TimerError(
                error=EXPIRY_NOTIFICATION_ERROR, parking_id=entry.parking_id
            )
        else:
            event = ParkingTimeExpired(
                parking_id=entry.parking_id,
                location=parking.location,
                duration=entry.duration,
                expired_at=expired_at,
            )

        delivered = await self._connections.emit_to_owner(entry.owner_id, event)
        logger.info(
            "Timer fired for user %d, parking %d (%s delivered to %d connections)",
            entry.owner_id,
            entry.parking_id,
            event.event,
            delivered,
        )

    def active_timers_stats(self) -> dict[str, Any]:
        """Summary of armed timers for administrators."""
        return {
            "active_timers": len(self._timers),
            "timers": [
                {
                    "user_id": entry.owner_id,
                    "parking_id": entry.parking_id,
                    "duration": entry.duration,
                    "start_time": entry.started_at,
                    "connection_id": entry.connection_id,
                }
                for entry in self._timers.values()
            ],
        }

    def shutdown(self) -> None:
        """Cancel every pending timer."""
        for entry in self._timers.values():
            entry.handle.cancel()
        if self._timers:
            logger.info("Dropped %d pending timers on shutdown", len(self._timers))
        self._timers.clear()
