"""
Chat room API routes.

Routes:
    POST   /api/v1/rooms                        — Create room (admin/teacher)
    GET    /api/v1/rooms/{room_key}             — Get room by key
    GET    /api/v1/rooms/{room_key}/live-quiz   — Snapshot of the room's live quiz
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from classchat.database import get_db
from classchat.models.user import User
from classchat.schemas.room import RoomCreate, RoomResponse, LiveQuizSnapshot
from classchat.services.room_service import create_room, get_room_by_key
from classchat.middleware.rbac import get_current_user, require_admin_or_teacher

router = APIRouter(prefix="/api/v1/rooms", tags=["Rooms"])


@router.post("", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
async def create_new_room(
    body: RoomCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_teacher),
):
    try:
        room = await create_room(
            db,
            room_key=body.room_key,
            title=body.title,
            owner_id=current_user.id,
            description=body.description,
        )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return RoomResponse.model_validate(room)


@router.get("/{room_key}", response_model=RoomResponse)
async def get_room(
    room_key: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    room = await get_room_by_key(db, room_key)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return RoomResponse.model_validate(room)


@router.get("/{room_key}/live-quiz", response_model=LiveQuizSnapshot)
async def get_live_quiz(
    room_key: str,
    request: Request,
    current_user: User = Depends(get_current_user),
):
    """
    Authoritative tallies for the room's live quiz.
    Clients call this to reconcile after missing a `quiz-results` broadcast.
    """
    session = request.app.state.hub.engine.get(room_key)
    if session is None:
        raise HTTPException(status_code=404, detail="No live quiz in this room")
    return LiveQuizSnapshot(**session.snapshot())
