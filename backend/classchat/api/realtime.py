"""
Live channel websocket.

Routes:
    WS     /ws?token=<jwt>   — Room chat hints, live quiz launch/answers/results

Frames in are `{"event": <name>, ...}`; frames out are `{"event": <name>, "payload": ...}`.
Room and quiz existence are checked here, against the database, before a message
reaches the hub, so the hub itself never awaits I/O while holding a room lock.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from classchat.database import AsyncSessionLocal
from classchat.models.user import User
from classchat.middleware.rbac import resolve_member
from classchat.realtime.messages import JoinRoom, LaunchQuiz, parse_message
from classchat.services.quiz_service import get_question_ids
from classchat.services.room_service import room_exists

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Live"])


async def _resolve_ws_user(token: str) -> Optional[User]:
    async with AsyncSessionLocal() as db:
        return await resolve_member(db, token)


async def _room_exists(room_key: str) -> bool:
    async with AsyncSessionLocal() as db:
        return await room_exists(db, room_key)


async def _question_ids(quiz_id: int) -> Optional[List[int]]:
    async with AsyncSessionLocal() as db:
        return await get_question_ids(db, quiz_id)


@router.websocket("/ws")
async def live_socket(websocket: WebSocket):
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401, reason="Authentication required")
        return

    member = await _resolve_ws_user(token)
    if member is None:
        await websocket.close(code=4401, reason="Invalid or expired token")
        return

    await websocket.accept()
    hub = websocket.app.state.hub
    connection_id = await hub.attach(websocket, member_id=member.id, role=member.role.value)

    try:
        while True:
            try:
                raw = await websocket.receive_json()
            except (ValueError, KeyError):
                # not JSON, or a binary frame with no text
                logger.debug(f"Dropping non-JSON frame from {connection_id}")
                continue

            try:
                message = parse_message(raw)
            except ValidationError as exc:
                logger.debug(f"Dropping malformed frame from {connection_id}: {exc.error_count()} error(s)")
                continue

            if isinstance(message, (JoinRoom, LaunchQuiz)) and not await _room_exists(message.roomKey):
                logger.debug(f"Dropping '{message.event}' from {connection_id}: unknown room '{message.roomKey}'")
                continue

            if isinstance(message, LaunchQuiz):
                question_ids = await _question_ids(message.quizID)
                if question_ids is None:
                    logger.debug(f"Dropping launch from {connection_id}: unknown quiz {message.quizID}")
                    continue
                message = message.model_copy(update={"questionIDs": question_ids})

            await hub.handle(connection_id, message)
    except WebSocketDisconnect:
        pass
    finally:
        await hub.detach(connection_id)
