"""Realtime WebSocket channel for parking timers.

Clients authenticate with a session token or an API key, passed as the
``token`` query parameter or an ``Authorization: Bearer`` header, then
exchange JSON frames ``{"event": <name>, "data": {...}}``.

Inbound events: ``start_parking_timer``, ``cancel_parking_timer`` and
``get_timer_status``. Every failure is answered with a ``timer_error``
event on the requesting connection.
"""

import contextlib
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from trackme.exceptions import TrackMeError, Unauthorized
from trackme.models.events import (
    Connected,
    InboundMessage,
    OutboundEvent,
    StartTimerCommand,
    TimerError,
)
from trackme.security import resolve_owner
from trackme.services.connections import ConnectionManager
from trackme.services.timers import TimerService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _credential(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return None


def _command_error(error: ValidationError) -> str:
    if any(detail["loc"][:1] == ("duration",) for detail in error.errors()):
        return "Duration must be a whole number of seconds"
    return "A numeric parkingId is required"


async def read_frame(websocket: WebSocket) -> object:
    """Receive one frame and decode it as JSON.

    Raises:
        WebSocketDisconnect: When the client goes away.
        ValueError: For binary frames and text that is not JSON.
    """
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(
            code=message.get("code", status.WS_1000_NORMAL_CLOSURE),
            reason=message.get("reason"),
        )
    text = message.get("text")
    if text is None:
        raise ValueError("Binary frames are not supported")
    return json.loads(text)


async def handle_message(
    timers: TimerService, owner_id: int, connection_id: str, raw: object
) -> OutboundEvent:
    """Dispatch one inbound frame and return the reply for the sender."""
    try:
        message = InboundMessage.model_validate(raw)
    except ValidationError:
        return TimerError(error="Malformed message")

    parking_id = None
    try:
        if message.event == "start_parking_timer":
            try:
                command = StartTimerCommand.model_validate(message.data)
            except ValidationError as e:
                return TimerError(error=_command_error(e))
            parking_id = command.parking_id
            return await timers.start_timer(
                owner_id, command.parking_id, command.duration, connection_id
            )
        if message.event == "cancel_parking_timer":
            return timers.cancel_timer(owner_id)
        if message.event == "get_timer_status":
            return timers.get_timer_status(owner_id)
        return TimerError(error=f"Unknown event: {message.event}")
    except TrackMeError as e:
        return TimerError(error=e.message, parking_id=parking_id)
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error(
            "Error handling %s for user %d: %s",
            message.event,
            owner_id,
            e,
            exc_info=True,
        )
        return TimerError(error="Error while handling the request")


@router.websocket("/ws")
async def realtime(websocket: WebSocket) -> None:
    """Authenticated per-user channel."""
    connections: ConnectionManager = websocket.app.state.connections
    timers: TimerService = websocket.app.state.timers

    try:
        user = resolve_owner(_credential(websocket))
    except Unauthorized as e:
        logger.info("Rejected WebSocket connection: %s", e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    connection_id = await connections.connect(user.id, websocket)
    await connections.emit_to_connection(
        user.id, connection_id, Connected(user_id=user.id, email=user.email)
    )

    try:
        while True:
            try:
                raw = await read_frame(websocket)
            except ValueError:
                reply = TimerError(error="Frames must be JSON")
            else:
                reply = await handle_message(timers, user.id, connection_id, raw)
            await connections.emit_to_connection(user.id, connection_id, reply)
    except WebSocketDisconnect as e:
        logger.info(
            "User %d disconnected (code %s)", user.id, getattr(e, "code", None)
        )
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error(
            "Realtime handler for user %d failed: %s", user.id, e, exc_info=True
        )
        with contextlib.suppress(RuntimeError, WebSocketDisconnect):
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        connections.disconnect(user.id, connection_id)
        if user.id in timers:
            logger.info(
                "Timer keeps running for user %d after disconnect", user.id
            )
