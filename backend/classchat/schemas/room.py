"""Pydantic schemas for chat rooms and the live quiz snapshot."""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict


class RoomCreate(BaseModel):
    room_key: str = Field(..., min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_\-]+$")
    title: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(None, max_length=500)


class RoomResponse(BaseModel):
    id: int
    room_key: str
    title: str
    description: Optional[str] = None
    owner_id: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LiveQuizSnapshot(BaseModel):
    """Point-in-time view of a room's live quiz tallies."""
    room: str
    quiz_id: int
    status: str
    opened_at: datetime
    frozen_at: Optional[datetime] = None
    participants: int
    active_participants: int
    tallies: List[Dict[str, int]]
