"""Connection registry: live connections and the single room each one is joined to."""

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    id: str
    member_id: Optional[int] = None
    role: Optional[str] = None
    current_room: Optional[str] = None


class ConnectionRegistry:
    """
    Tracks every live connection and the room it is currently joined to.

    Mutators return the set of room keys whose membership changed so the
    caller can publish roster updates.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[str, Set[str]] = {}

    def register(self, member_id: Optional[int] = None, role: Optional[str] = None) -> str:
        connection_id = uuid.uuid4().hex
        self._connections[connection_id] = Connection(
            id=connection_id,
            member_id=member_id,
            role=role,
        )
        logger.info(f"Connection {connection_id} registered (member={member_id})")
        return connection_id

    def unregister(self, connection_id: str) -> Set[str]:
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return set()
        changed = set()
        if connection.current_room is not None:
            self._leave(connection_id, connection.current_room)
            changed.add(connection.current_room)
        logger.info(f"Connection {connection_id} unregistered")
        return changed

    def set_room(self, connection_id: str, room: str) -> Set[str]:
        connection = self._connections.get(connection_id)
        if connection is None or connection.current_room == room:
            return set()
        changed = {room}
        previous = connection.current_room
        if previous is not None:
            self._leave(connection_id, previous)
            changed.add(previous)
            logger.info(f"Connection {connection_id} left room '{previous}'")
        self._rooms.setdefault(room, set()).add(connection_id)
        connection.current_room = room
        logger.info(f"Connection {connection_id} joined room '{room}'")
        return changed

    def _leave(self, connection_id: str, room: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room]

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def room_of(self, connection_id: str) -> Optional[str]:
        connection = self._connections.get(connection_id)
        return connection.current_room if connection else None

    def members(self, room: str) -> Set[str]:
        return set(self._rooms.get(room, ()))

    def connection_ids(self) -> List[str]:
        return list(self._connections)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)
