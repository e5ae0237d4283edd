"""Tests for the realtime WebSocket channel and the connection registry."""

import asyncio

import pytest
from fastapi import WebSocketDisconnect

from trackme.models.events import TimerError
from trackme.services import users
from trackme.services.connections import ConnectionManager


def connect(test_client, token: str):
    return test_client.websocket_connect(f"/ws?token={token}")


def test_connection_without_token_is_rejected(test_client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with test_client.websocket_connect("/ws"):
            pass

    assert exc_info.value.code == 1008


def test_connection_with_unknown_key_is_rejected(test_client):
    with pytest.raises(WebSocketDisconnect):
        with connect(test_client, "tk_live_" + "z" * 43):
            pass


def test_connected_event_with_api_key(test_client, api_user):
    user, key = api_user

    with connect(test_client, key) as ws:
        frame = ws.receive_json()

    assert frame["event"] == "connected"
    assert frame["data"]["userId"] == user.id
    assert frame["data"]["email"] == "driver@example.com"


def test_session_token_is_accepted(test_client):
    user = users.register_user("jane@example.com", "Secret123")
    token = users.create_access_token(user)

    with test_client.websocket_connect(
        "/ws", headers={"Authorization": f"Bearer {token}"}
    ) as ws:
        frame = ws.receive_json()

    assert frame["data"]["userId"] == user.id


def test_status_without_timer(test_client, api_user):
    _, key = api_user

    with connect(test_client, key) as ws:
        ws.receive_json()
        ws.send_json({"event": "get_timer_status"})
        frame = ws.receive_json()

    assert frame == {
        "event": "timer_status",
        "data": {"active": False, "message": "No active timer"},
    }


def test_timer_runs_to_expiry(test_client, api_user, make_parking):
    """A one second timer is acknowledged then reported as expired."""
    user, key = api_user
    spot = make_parking(user.id)

    with connect(test_client, key) as ws:
        ws.receive_json()
        ws.send_json(
            {
                "event": "start_parking_timer",
                "data": {"parkingId": spot.id, "duration": 1},
            }
        )
        started = ws.receive_json()
        expired = ws.receive_json()

    assert started["event"] == "timer_started"
    assert started["data"]["parkingId"] == spot.id
    assert started["data"]["duration"] == 1
    assert expired["event"] == "parking_time_expired"
    assert expired["data"]["parkingId"] == spot.id
    assert expired["data"]["location"] == "1 Main Street"
    assert len(expired["data"]["recommendations"]) == 3
    assert test_client.app.state.timers.get(user.id) is None


def test_expiry_reaches_other_sockets_after_origin_closes(
    test_client, api_user, make_parking
):
    """The timer outlives the socket that armed it."""
    user, key = api_user
    spot = make_parking(user.id)

    with connect(test_client, key) as watcher:
        watcher.receive_json()
        with connect(test_client, key) as origin:
            origin.receive_json()
            origin.send_json(
                {
                    "event": "start_parking_timer",
                    "data": {"parkingId": spot.id, "duration": 1},
                }
            )
            assert origin.receive_json()["event"] == "timer_started"

        expired = watcher.receive_json()

    assert expired["event"] == "parking_time_expired"
    assert expired["data"]["parkingId"] == spot.id


def test_foreign_parking_is_a_timer_error(
    test_client, api_user, other_api_user, make_parking
):
    owner, _ = api_user
    _, intruder_key = other_api_user
    spot = make_parking(owner.id)

    with connect(test_client, intruder_key) as ws:
        ws.receive_json()
        ws.send_json(
            {"event": "start_parking_timer", "data": {"parkingId": spot.id}}
        )
        frame = ws.receive_json()

    assert frame["event"] == "timer_error"
    assert frame["data"]["error"] == "Parking not found or not authorised"
    assert frame["data"]["parkingId"] == spot.id
    assert len(test_client.app.state.timers) == 0


def test_start_then_cancel(test_client, api_user, make_parking):
    user, key = api_user
    spot = make_parking(user.id)

    with connect(test_client, key) as ws:
        ws.receive_json()
        ws.send_json(
            {
                "event": "start_parking_timer",
                "data": {"parkingId": spot.id, "duration": 60},
            }
        )
        assert ws.receive_json()["event"] == "timer_started"

        ws.send_json({"event": "get_timer_status"})
        status = ws.receive_json()["data"]
        assert status["active"] is True
        assert status["duration"] == 60

        ws.send_json({"event": "cancel_parking_timer"})
        cancelled = ws.receive_json()
        ws.send_json({"event": "cancel_parking_timer"})
        second = ws.receive_json()

    assert cancelled["event"] == "timer_cancelled"
    assert cancelled["data"]["parkingId"] == spot.id
    assert second["event"] == "timer_error"
    assert second["data"]["error"] == "No active timer to cancel"


@pytest.mark.parametrize(
    "message, error",
    [
        ({"event": "fly_away"}, "Unknown event: fly_away"),
        ({"data": {}}, "Malformed message"),
        (
            {"event": "start_parking_timer", "data": {}},
            "A numeric parkingId is required",
        ),
        (
            {"event": "start_parking_timer", "data": {"parkingId": "abc"}},
            "A numeric parkingId is required",
        ),
    ],
)
def test_bad_frames_get_timer_errors(test_client, api_user, message, error):
    _, key = api_user

    with connect(test_client, key) as ws:
        ws.receive_json()
        ws.send_json(message)
        frame = ws.receive_json()

    assert frame["event"] == "timer_error"
    assert frame["data"]["error"] == error


def test_non_json_frame(test_client, api_user):
    _, key = api_user

    with connect(test_client, key) as ws:
        ws.receive_json()
        ws.send_text("hello")
        frame = ws.receive_json()

    assert frame["data"]["error"] == "Frames must be JSON"


@pytest.mark.parametrize("duration", [True, "10", 5.0])
def test_non_integer_duration_is_a_timer_error(
    test_client, api_user, make_parking, duration
):
    user, key = api_user
    spot = make_parking(user.id)

    with connect(test_client, key) as ws:
        ws.receive_json()
        ws.send_json(
            {
                "event": "start_parking_timer",
                "data": {"parkingId": spot.id, "duration": duration},
            }
        )
        frame = ws.receive_json()

    assert frame["event"] == "timer_error"
    assert frame["data"]["error"] == "Duration must be a whole number of seconds"
    assert user.id not in test_client.app.state.timers


def test_binary_frame_is_answered_and_socket_stays_open(test_client, api_user):
    _, key = api_user

    with connect(test_client, key) as ws:
        ws.receive_json()
        ws.send_bytes(b'{"event": "get_timer_status"}')
        frame = ws.receive_json()
        ws.send_json({"event": "get_timer_status"})
        status = ws.receive_json()

    assert frame["event"] == "timer_error"
    assert frame["data"]["error"] == "Frames must be JSON"
    assert status["event"] == "timer_status"


def test_admin_notification_reaches_open_sockets(test_client, api_user, admin_token):
    user, key = api_user

    with connect(test_client, key) as ws:
        ws.receive_json()
        response = test_client.post(
            f"/api/v1/admin/users/{user.id}/notify",
            json={"message": "Street cleaning tomorrow", "title": "Heads up"},
            headers={"Authorization": f"Bearer {admin_token}"},
        )
        frame = ws.receive_json()

    assert response.status_code == 200
    assert response.json()["delivered"] == 1
    assert frame["event"] == "notification"
    assert frame["data"]["message"] == "Street cleaning tomorrow"
    assert frame["data"]["title"] == "Heads up"
    assert "timestamp" in frame["data"]


class FakeSocket:
    def __init__(self, broken: bool = False):
        self.accepted = False
        self.sent: list[dict] = []
        self.broken = broken

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(data)


def test_connection_manager_routes_by_owner():
    manager = ConnectionManager()
    mine, also_mine, theirs = FakeSocket(), FakeSocket(), FakeSocket()

    async def scenario():
        await manager.connect(1, mine)
        await manager.connect(1, also_mine)
        await manager.connect(2, theirs)
        return await manager.emit_to_owner(1, TimerError(error="boom"))

    delivered = asyncio.run(scenario())

    assert delivered == 2
    assert mine.accepted and also_mine.accepted
    assert mine.sent[0]["event"] == "timer_error"
    assert also_mine.sent == mine.sent
    assert theirs.sent == []
    assert manager.total_connections == 3


def test_connection_manager_drops_failed_sockets():
    manager = ConnectionManager()
    healthy, broken = FakeSocket(), FakeSocket(broken=True)

    async def scenario():
        await manager.connect(1, healthy)
        await manager.connect(1, broken)
        delivered = await manager.send_notification_to_user(1, "hello", kind="info")
        missing = await manager.emit_to_owner(9, TimerError(error="nobody home"))
        return delivered, missing

    delivered, missing = asyncio.run(scenario())

    assert delivered == 1
    assert missing == 0
    assert manager.owner_connection_count(1) == 1
    assert healthy.sent[0]["data"]["message"] == "hello"
    assert healthy.sent[0]["data"]["kind"] == "info"
