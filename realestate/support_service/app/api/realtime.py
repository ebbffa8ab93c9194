"""WebSocket channel for support case rooms."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from realestate.common import lifespan_session

from ..broadcaster import STOP_TYPING, TYPING, RoomBroadcaster, RoomRegistry
from ..metrics import SUPPORT_SIDE_EFFECT_FAILURES_TOTAL
from ..repository import SupportCaseRepository
from ..roles import Caller
from ..services import SupportCaseService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["support-cases"])


def _caller_for(websocket: WebSocket) -> Caller:
    identity = websocket.headers.get("x-user-id") or websocket.query_params.get("userId")
    role = websocket.headers.get("x-user-role") or websocket.query_params.get("role")
    return Caller.from_claims(identity, role)


async def _may_join(websocket: WebSocket, case_id: str, caller: Caller) -> bool:
    state = websocket.app.state
    async with lifespan_session(state.session_factory) as session:
        service = SupportCaseService(
            SupportCaseRepository(session), state.broadcaster, state.notifier, state.side_effects
        )
        return await service.can_join_room(case_id, caller)


async def _send_error(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"event": "error", "data": {"message": message}})


@router.websocket("/support-cases/ws")
async def support_case_socket(websocket: WebSocket) -> None:
    """Join and leave case rooms, relay typing signals, receive case events.

    Frames sent by the client look like ``{"event": "joinRoom", "caseId": "..."}``;
    events pushed by the server look like ``{"event": "receiveMessage", "data": {...}}``.
    """

    registry: RoomRegistry = websocket.app.state.room_registry
    broadcaster: RoomBroadcaster = websocket.app.state.broadcaster
    caller = _caller_for(websocket)

    await websocket.accept()
    registry.register(websocket)
    logger.info("Real-time connection opened (total: %d)", len(registry))
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame: Any = json.loads(raw)
            except ValueError:
                await _send_error(websocket, "Frames must be JSON objects")
                continue
            if not isinstance(frame, dict):
                await _send_error(websocket, "Frames must be JSON objects")
                continue

            event = frame.get("event")
            case_id = frame.get("caseId")
            if not isinstance(case_id, str) or not case_id:
                await _send_error(websocket, "caseId is required")
                continue

            if event == "joinRoom":
                if not await _may_join(websocket, case_id, caller):
                    await _send_error(websocket, "Forbidden")
                    continue
                registry.join(websocket, case_id)
                logger.info("Connection joined support case room %s", case_id)
                await websocket.send_json({"event": "roomJoined", "data": {"caseId": case_id}})
            elif event == "leaveRoom":
                registry.leave(websocket, case_id)
                await websocket.send_json({"event": "roomLeft", "data": {"caseId": case_id}})
            elif event in (TYPING, STOP_TYPING):
                if case_id not in registry.rooms_of(websocket):
                    await _send_error(websocket, "Join the room first")
                    continue
                payload = {"caseId": case_id, "user": frame.get("user")}
                try:
                    await broadcaster.broadcast_to_room(case_id, event, payload)
                except Exception:  # noqa: BLE001 - a lost typing signal must not close the socket
                    SUPPORT_SIDE_EFFECT_FAILURES_TOTAL.labels(effect="broadcast").inc()
                    logger.exception("Failed to relay %s for support case %s", event, case_id)
            else:
                await _send_error(websocket, f"Unknown event: {event}")
    except WebSocketDisconnect:
        pass
    finally:
        registry.unregister(websocket)
        logger.info("Real-time connection closed (total: %d)", len(registry))
