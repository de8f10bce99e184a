"""Room broadcast hub: relays real-time events and drives the live quiz engine."""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set, Tuple

from fastapi.encoders import jsonable_encoder

from classchat.realtime.aggregation import LiveQuizEngine
from classchat.realtime.messages import (
    DeleteMessage,
    EndQuiz,
    JoinRoom,
    LaunchQuiz,
    Message,
    NewAnswer,
    OutboundEvent,
    PromptResponse,
    SendMessage,
)
from classchat.realtime.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

PRIVILEGED_ROLES = {"TEACHER", "ADMIN"}

# Room-scoped hints: inbound event -> event relayed to the rest of the room
_RELAYED_HINTS = {
    SendMessage: "receive-message",
    DeleteMessage: "delete-message",
    PromptResponse: "prompt-response",
}


class Sink(Protocol):
    async def send_json(self, data: Any) -> None: ...


class RoomBroadcastHub:
    """
    Single dispatcher for every real-time event in the process.

    ``dispatch`` is synchronous and touches only in-memory state, returning the
    events to send. ``deliver`` performs the best-effort sends.
    """

    def __init__(self, registry: ConnectionRegistry, engine: LiveQuizEngine) -> None:
        self.registry = registry
        self.engine = engine
        self._sinks: Dict[str, Sink] = {}
        self._room_locks: Dict[str, asyncio.Lock] = {}
        # holders plus waiters per room; a lock is dropped when this reaches zero
        self._lock_users: Dict[str, int] = {}

    # ─── Event construction ───────────────────────────────────────────────────

    def broadcast(
        self,
        room: str,
        event: str,
        payload: Any = None,
        exclude: Optional[str] = None,
    ) -> OutboundEvent:
        recipients = tuple(sorted(cid for cid in self.registry.members(room) if cid != exclude))
        return OutboundEvent(recipients=recipients, event=event, payload=payload, room=room)

    def global_roster(self) -> List[str]:
        return self.registry.connection_ids()

    def _roster_event(self) -> OutboundEvent:
        roster = self.global_roster()
        return OutboundEvent(recipients=tuple(roster), event="update-participants", payload=roster)

    def _results_event(self, room: str) -> Optional[OutboundEvent]:
        session = self.engine.get(room)
        if session is None:
            return None
        return self.broadcast(room, "quiz-results", session.snapshot())

    # ─── Connection lifecycle ─────────────────────────────────────────────────

    def connect(self, member_id: Optional[int] = None, role: Optional[str] = None) -> Tuple[str, List[OutboundEvent]]:
        connection_id = self.registry.register(member_id=member_id, role=role)
        events = [
            OutboundEvent(recipients=(connection_id,), event="connected", payload={"connectionID": connection_id}),
            self._roster_event(),
        ]
        return connection_id, events

    def disconnect(self, connection_id: str) -> List[OutboundEvent]:
        if connection_id not in self.registry:
            return []
        changed = self.registry.unregister(connection_id)
        events = []
        for room in self.engine.disconnect(connection_id):
            results = self._results_event(room)
            if results is not None:
                events.append(results)
        self._discard_empty(changed)
        events.append(self._roster_event())
        return events

    def _discard_empty(self, rooms: Iterable[str]) -> None:
        for room in rooms:
            if not self.registry.members(room):
                self.engine.discard(room)

    # ─── Dispatcher ───────────────────────────────────────────────────────────

    def dispatch(self, connection_id: str, message: Message) -> List[OutboundEvent]:
        connection = self.registry.get(connection_id)
        if connection is None:
            return []

        if isinstance(message, JoinRoom):
            previous = connection.current_room
            changed = self.registry.set_room(connection_id, message.roomKey)
            if not changed:
                return []
            events = []
            if previous is not None and self.engine.disconnect(connection_id, room=previous):
                results = self._results_event(previous)
                if results is not None:
                    events.append(results)
            if self.engine.reconnect(connection_id, message.roomKey):
                events.append(self._results_event(message.roomKey))
            self._discard_empty(changed)
            events.append(self._roster_event())
            return events

        hint = _RELAYED_HINTS.get(type(message))
        if hint is not None:
            return [self.broadcast(message.roomKey, hint, {"roomKey": message.roomKey}, exclude=connection_id)]

        if isinstance(message, LaunchQuiz):
            if connection.role not in PRIVILEGED_ROLES:
                logger.debug(f"Connection {connection_id} may not launch quizzes")
                return []
            participants = self.registry.members(message.roomKey) - {connection_id}
            session = self.engine.launch(
                message.roomKey,
                quiz_id=message.quizID,
                question_ids=message.questionIDs,
                participants=participants,
            )
            started = {
                "roomKey": message.roomKey,
                "quizID": message.quizID,
                "questionIDs": list(session.question_ids),
                "participants": list(session.participants),
            }
            return [
                self.broadcast(message.roomKey, "quiz-started", started),
                self.broadcast(message.roomKey, "quiz-results", session.snapshot()),
            ]

        if isinstance(message, EndQuiz):
            if connection.role not in PRIVILEGED_ROLES:
                logger.debug(f"Connection {connection_id} may not end quizzes")
                return []
            if not self.engine.freeze(message.roomKey):
                return []
            return [
                self.broadcast(message.roomKey, "end-quiz", {"roomKey": message.roomKey}, exclude=connection_id),
                self._results_event(message.roomKey),
            ]

        if isinstance(message, NewAnswer):
            if message.connectionID != connection_id:
                logger.debug(f"Connection {connection_id} sent an answer for {message.connectionID}")
                return []
            room = connection.current_room
            if not self.engine.toggle(room, connection_id, message.questionIndex, message.correctness):
                return []
            return [self._results_event(room)]

        return []

    def rooms_for(self, connection_id: str, message: Message) -> Set[str]:
        """Rooms whose event stream a message can touch, and whose locks it needs."""
        current = self.registry.room_of(connection_id)
        if isinstance(message, JoinRoom):
            rooms = {message.roomKey, current}
        elif isinstance(message, NewAnswer):
            rooms = {current}
        else:
            rooms = {message.roomKey}
        rooms.discard(None)
        return rooms

    # ─── Delivery ─────────────────────────────────────────────────────────────

    async def deliver(self, events: Iterable[OutboundEvent]) -> List[str]:
        """
        Best-effort send of each event, in order. Connections whose send fails
        lose their sink and are returned so the caller can detach them once it
        no longer holds any room lock.
        """
        stale: List[str] = []
        for event in events:
            if event is None:
                continue
            frame = jsonable_encoder(event.frame())
            for connection_id in event.recipients:
                sink = self._sinks.get(connection_id)
                if sink is None:
                    continue
                try:
                    await sink.send_json(frame)
                except Exception as exc:
                    logger.warning(f"Dropping connection {connection_id} after failed send: {exc}")
                    self._sinks.pop(connection_id, None)
                    stale.append(connection_id)
        return stale

    async def attach(self, sink: Sink, member_id: Optional[int] = None, role: Optional[str] = None) -> str:
        connection_id, events = self.connect(member_id=member_id, role=role)
        self._sinks[connection_id] = sink
        await self._drop_stale(await self.deliver(events))
        return connection_id

    async def detach(self, connection_id: str) -> None:
        self._sinks.pop(connection_id, None)
        await self._serialized(
            lambda: {self.registry.room_of(connection_id)} - {None},
            lambda: self.disconnect(connection_id),
        )

    async def _drop_stale(self, connection_ids: Iterable[str]) -> None:
        for connection_id in connection_ids:
            await self.detach(connection_id)

    # ─── Per-room serialization ───────────────────────────────────────────────

    @asynccontextmanager
    async def _holding(self, rooms: Iterable[str]):
        """Hold the locks of several rooms, always taken in sorted order."""
        ordered = sorted(rooms)
        for room in ordered:
            if room not in self._room_locks:
                self._room_locks[room] = asyncio.Lock()
            self._lock_users[room] = self._lock_users.get(room, 0) + 1
        try:
            async with AsyncExitStack() as stack:
                for room in ordered:
                    await stack.enter_async_context(self._room_locks[room])
                yield
        finally:
            for room in ordered:
                self._lock_users[room] -= 1
                if not self._lock_users[room]:
                    del self._lock_users[room]
                    del self._room_locks[room]

    async def _serialized(
        self,
        rooms_of: Callable[[], Set[str]],
        build: Callable[[], List[OutboundEvent]],
    ) -> None:
        """
        Build and deliver events while holding the locks of every room they
        touch. Membership can move while waiting for a lock, so the room set is
        checked again once held.
        """
        stale: List[str] = []
        while True:
            rooms = rooms_of()
            async with self._holding(rooms):
                if rooms_of() != rooms:
                    continue
                try:
                    events = build()
                except Exception:
                    logger.exception("Failed to dispatch real-time event")
                    return
                stale = await self.deliver(events)
                break
        await self._drop_stale(stale)

    async def handle(self, connection_id: str, message: Message) -> None:
        """Dispatch and deliver one inbound message, serialized per room."""
        await self._serialized(
            lambda: self.rooms_for(connection_id, message),
            lambda: self.dispatch(connection_id, message),
        )

    async def expire_sessions(self, now: Optional[datetime] = None) -> List[str]:
        now = now or datetime.now(timezone.utc)
        expired = []
        for room in self.engine.overdue(now):
            async with self._holding([room]):
                if not self.engine.freeze(room, now=now):
                    continue
                logger.warning(f"Live session in room '{room}' exceeded its maximum duration")
                expired.append(room)
                stale = await self.deliver([
                    self.broadcast(room, "end-quiz", {"roomKey": room, "reason": "timeout"}),
                    self._results_event(room),
                ])
            await self._drop_stale(stale)
        return expired
