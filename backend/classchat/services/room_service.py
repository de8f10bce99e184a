"""Chat room service: creation and the existence checks used by the live channel."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from classchat.models.room import ChatRoom


async def create_room(
    db: AsyncSession,
    room_key: str,
    title: str,
    owner_id: int,
    description: Optional[str] = None,
) -> ChatRoom:
    """Create a chat room with a unique key."""
    existing = await db.execute(select(ChatRoom).where(ChatRoom.room_key == room_key))
    if existing.scalar_one_or_none():
        raise ValueError("Room key already exists")

    room = ChatRoom(
        room_key=room_key,
        title=title,
        description=description,
        owner_id=owner_id,
    )
    db.add(room)
    await db.flush()
    await db.refresh(room)
    return room


async def get_room_by_key(db: AsyncSession, room_key: str) -> Optional[ChatRoom]:
    result = await db.execute(select(ChatRoom).where(ChatRoom.room_key == room_key))
    return result.scalar_one_or_none()


async def room_exists(db: AsyncSession, room_key: str) -> bool:
    result = await db.execute(select(ChatRoom.id).where(ChatRoom.room_key == room_key))
    return result.scalar_one_or_none() is not None
