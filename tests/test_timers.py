"""Tests for the per-user parking timer service."""

import asyncio
import random
import time
from datetime import timedelta

import pytest

from trackme.exceptions import (
    InvalidTimerRequest,
    NoActiveTimer,
    NotFoundOrForbidden,
    PersistenceFailure,
)
from trackme.services import parking
from trackme.services.timers import EXPIRY_NOTIFICATION_ERROR, TimerService


def make_service(connections, scheduler, **kwargs) -> TimerService:
    return TimerService(
        connections, scheduler=scheduler, clock=scheduler.clock, **kwargs
    )


def test_start_timer_acknowledges_and_registers(
    connections, scheduler, api_user, make_parking
):
    """Starting a timer returns start/end times and arms one entry."""
    user, _ = api_user
    spot = make_parking(user.id)
    timers = make_service(connections, scheduler)

    started = asyncio.run(timers.start_timer(user.id, spot.id, 5, "conn-1"))

    assert started.parking_id == spot.id
    assert started.duration == 5
    assert (started.end_time - started.start_time).total_seconds() == 5
    assert started.frame()["event"] == "timer_started"
    assert started.frame()["data"]["parkingId"] == spot.id
    assert user.id in timers
    assert timers.get(user.id).connection_id == "conn-1"


def test_expiry_annotates_parking_and_broadcasts(
    connections, scheduler, api_user, make_parking
):
    """At T+D the owner is notified and the registry is empty."""
    user, _ = api_user
    spot = make_parking(user.id, note="Level 2")
    timers = make_service(connections, scheduler)

    async def scenario():
        await timers.start_timer(user.id, spot.id, 5)
        await scheduler.advance(4)
        assert connections.broadcasts == []
        await scheduler.advance(1)

    asyncio.run(scenario())

    expired = connections.events("parking_time_expired")
    assert len(expired) == 1
    assert expired[0].parking_id == spot.id
    assert expired[0].location == "1 Main Street"
    assert expired[0].duration == 5
    assert expired[0].recommendations
    assert user.id not in timers

    note = parking.find_owned_parking(user.id, spot.id).note
    assert note == "Level 2 - Time expired at 12:00:05"


def test_location_falls_back_to_coordinates(
    connections, scheduler, api_user, make_parking
):
    user, _ = api_user
    spot = make_parking(user.id, address=None)
    timers = make_service(connections, scheduler)

    async def scenario():
        await timers.start_timer(user.id, spot.id, 1)
        await scheduler.advance(1)

    asyncio.run(scenario())

    assert connections.events("parking_time_expired")[0].location == "48.8566, 2.3522"


def test_foreign_parking_is_rejected(
    connections, scheduler, api_user, other_api_user, make_parking
):
    """A parking of another owner is reported as not found."""
    owner, _ = api_user
    intruder, _ = other_api_user
    spot = make_parking(owner.id)
    timers = make_service(connections, scheduler)

    with pytest.raises(NotFoundOrForbidden):
        asyncio.run(timers.start_timer(intruder.id, spot.id, 5))

    assert intruder.id not in timers
    assert len(timers) == 0
    assert scheduler.handles == []


def test_second_start_replaces_first(connections, scheduler, api_user, make_parking):
    """The first timer's expiry is never observed after a replacement."""
    user, _ = api_user
    first = make_parking(user.id)
    second = make_parking(user.id)
    timers = make_service(connections, scheduler)

    async def scenario():
        await timers.start_timer(user.id, first.id, 5)
        await scheduler.advance(2)
        await timers.start_timer(user.id, second.id, 5)
        assert len(timers) == 1
        await scheduler.advance(10)

    asyncio.run(scenario())

    expired = connections.events("parking_time_expired")
    assert [event.parking_id for event in expired] == [second.id]
    assert parking.find_owned_parking(user.id, first.id).note is None


def test_concurrent_starts_leave_one_entry(
    connections, scheduler, api_user, make_parking
):
    """Racing starts for one owner serialise to a single armed timer."""
    user, _ = api_user
    spots = [make_parking(user.id) for _ in range(3)]
    timers = make_service(connections, scheduler)

    async def scenario():
        await asyncio.gather(
            *(timers.start_timer(user.id, spot.id, 5) for spot in spots)
        )

    asyncio.run(scenario())

    assert len(timers) == 1
    assert len(scheduler.pending) == 1
    assert timers.get(user.id).handle is scheduler.pending[0]


def test_status_reports_remaining_time(connections, scheduler, api_user, make_parking):
    user, _ = api_user
    spot = make_parking(user.id)
    timers = make_service(connections, scheduler)

    async def scenario():
        await timers.start_timer(user.id, spot.id, 10)
        await scheduler.advance(4)

    asyncio.run(scenario())

    status = timers.get_timer_status(user.id)
    assert status.active is True
    assert status.parking_id == spot.id
    assert status.elapsed == 4
    assert status.remaining == 6
    assert status.start_time == scheduler.now - timedelta(seconds=4)


def test_status_without_timer_is_inactive(connections, scheduler):
    timers = make_service(connections, scheduler)

    status = timers.get_timer_status(42)

    assert status.active is False
    assert status.frame() == {
        "event": "timer_status",
        "data": {"active": False, "message": "No active timer"},
    }


def test_cancel_removes_timer(connections, scheduler, api_user, make_parking):
    """A cancelled timer never fires and status reports inactive."""
    user, _ = api_user
    spot = make_parking(user.id)
    timers = make_service(connections, scheduler)

    async def scenario():
        await timers.start_timer(user.id, spot.id, 5)
        cancelled = timers.cancel_timer(user.id)
        assert cancelled.parking_id == spot.id
        await scheduler.advance(10)

    asyncio.run(scenario())

    assert connections.broadcasts == []
    assert timers.get_timer_status(user.id).active is False


def test_cancel_without_timer_raises(connections, scheduler):
    timers = make_service(connections, scheduler)

    with pytest.raises(NoActiveTimer):
        timers.cancel_timer(7)


def test_annotation_failure_reports_error_and_cleans_up(
    connections, scheduler, api_user, make_parking
):
    """A failed write at fire time yields timer_error, never a stale entry."""
    user, _ = api_user
    spot = make_parking(user.id)

    class FailingStore:
        find_owned_parking = staticmethod(parking.find_owned_parking)

        @staticmethod
        def annotate_parking(parking_id, note):
            raise RuntimeError("connection reset by peer")

    timers = make_service(connections, scheduler, parking_store=FailingStore)

    async def scenario():
        await timers.start_timer(user.id, spot.id, 3)
        await scheduler.advance(3)

    asyncio.run(scenario())

    assert connections.events("parking_time_expired") == []
    errors = connections.events("timer_error")
    assert len(errors) == 1
    assert errors[0].error == EXPIRY_NOTIFICATION_ERROR
    assert errors[0].parking_id == spot.id
    assert "connection reset" not in str(errors[0].frame())
    assert user.id not in timers


def test_deleted_parking_at_fire_time_reports_error(
    connections, scheduler, api_user, make_parking
):
    user, _ = api_user
    spot = make_parking(user.id)
    timers = make_service(connections, scheduler)

    async def scenario():
        await timers.start_timer(user.id, spot.id, 3)
        parking.delete_parking(user.id, spot.id)
        await scheduler.advance(3)

    asyncio.run(scenario())

    assert len(connections.events("timer_error")) == 1
    assert len(timers) == 0


def test_expiry_without_open_connections_is_not_an_error(
    connections, scheduler, api_user, make_parking
):
    """An owner with no sockets at fire time simply misses the event."""
    user, _ = api_user
    spot = make_parking(user.id)
    connections.offline.add(user.id)
    timers = make_service(connections, scheduler)

    async def scenario():
        await timers.start_timer(user.id, spot.id, 2)
        await scheduler.advance(2)

    asyncio.run(scenario())

    assert len(timers) == 0
    assert "Time expired" in parking.find_owned_parking(user.id, spot.id).note


@pytest.mark.parametrize("duration", [0, -5, 3601, "10", 2.5, True])
def test_invalid_durations_are_rejected(connections, scheduler, duration):
    timers = make_service(connections, scheduler)

    with pytest.raises(InvalidTimerRequest):
        asyncio.run(timers.start_timer(1, 1, duration))

    assert len(timers) == 0


def test_duration_defaults_to_ten_seconds(
    connections, scheduler, api_user, make_parking
):
    user, _ = api_user
    spot = make_parking(user.id)
    timers = make_service(connections, scheduler)

    started = asyncio.run(timers.start_timer(user.id, spot.id))

    assert started.duration == 10
    assert timers.resolve_duration(3600) == 3600


def test_slow_ownership_lookup_is_a_persistence_failure(connections, scheduler):
    class SlowStore:
        @staticmethod
        def find_owned_parking(owner_id, parking_id):
            time.sleep(0.5)

    timers = make_service(
        connections, scheduler, parking_store=SlowStore, store_timeout=0.05
    )

    with pytest.raises(PersistenceFailure):
        asyncio.run(timers.start_timer(1, 1, 5))

    assert len(timers) == 0


def test_at_most_one_entry_per_owner(connections, scheduler, make_parking):
    """Random start/cancel/advance sequences keep one entry per owner."""
    rng = random.Random(7)
    owners = [1, 2, 3]
    spots = {owner: [make_parking(owner).id for _ in range(2)] for owner in owners}
    timers = make_service(connections, scheduler)

    async def scenario():
        for _ in range(60):
            owner = rng.choice(owners)
            action = rng.random()
            if action < 0.5:
                await timers.start_timer(
                    owner, rng.choice(spots[owner]), rng.randint(1, 5)
                )
            elif action < 0.7 and owner in timers:
                timers.cancel_timer(owner)
            else:
                await scheduler.advance(rng.randint(0, 3))

            assert len(timers) <= len(owners)
            assert len(scheduler.pending) == len(timers)
            for entry_owner in owners:
                entry = timers.get(entry_owner)
                if entry is not None:
                    assert entry.owner_id == entry_owner
                    assert not entry.handle.cancelled

    asyncio.run(scenario())


def test_stats_and_shutdown(connections, scheduler, api_user, make_parking):
    user, _ = api_user
    spot = make_parking(user.id)
    timers = make_service(connections, scheduler)
    asyncio.run(timers.start_timer(user.id, spot.id, 30, "conn-9"))

    stats = timers.active_timers_stats()
    assert stats["active_timers"] == 1
    assert stats["timers"][0]["user_id"] == user.id
    assert stats["timers"][0]["connection_id"] == "conn-9"

    timers.shutdown()
    assert len(timers) == 0
    assert scheduler.pending == []
