"""Live quiz aggregation: per-room ephemeral answer tables and their tallies."""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class TriState(str, enum.Enum):
    UNANSWERED = "unanswered"
    CORRECT = "correct"
    INCORRECT = "incorrect"

    @classmethod
    def from_correctness(cls, correctness: Optional[bool]) -> "TriState":
        if correctness is None:
            return cls.UNANSWERED
        return cls.CORRECT if correctness else cls.INCORRECT


class LiveSessionStatus(str, enum.Enum):
    OPEN = "open"
    FROZEN = "frozen"


@dataclass
class QuizSession:
    room: str
    quiz_id: int
    question_ids: Tuple[int, ...]
    participants: Tuple[str, ...]
    opened_at: datetime
    status: LiveSessionStatus = LiveSessionStatus.OPEN
    frozen_at: Optional[datetime] = None
    # (connection_id, question_index) -> state; absent means unanswered
    answers: Dict[Tuple[str, int], TriState] = field(default_factory=dict)
    disconnected: Set[str] = field(default_factory=set)

    @property
    def is_open(self) -> bool:
        return self.status == LiveSessionStatus.OPEN

    @property
    def question_count(self) -> int:
        return len(self.question_ids)

    @property
    def active_participants(self) -> int:
        return len(self.participants) - len(self.disconnected)

    def has_participant(self, connection_id: str) -> bool:
        return connection_id in self.participants

    def slot(self, connection_id: str, question_index: int) -> TriState:
        return self.answers.get((connection_id, question_index), TriState.UNANSWERED)

    def set_slot(self, connection_id: str, question_index: int, value: TriState) -> None:
        key = (connection_id, question_index)
        if value == TriState.UNANSWERED:
            self.answers.pop(key, None)
        else:
            self.answers[key] = value

    def tally(self, question_index: int) -> Dict[str, int]:
        counts = {state.value: 0 for state in TriState}
        for connection_id in self.participants:
            counts[self.slot(connection_id, question_index).value] += 1
        return counts

    def tallies(self) -> List[Dict[str, Any]]:
        return [
            {"question_index": index, "question_id": question_id, **self.tally(index)}
            for index, question_id in enumerate(self.question_ids)
        ]

    def snapshot(self) -> Dict[str, Any]:
        return {
            "room": self.room,
            "quiz_id": self.quiz_id,
            "status": self.status.value,
            "opened_at": self.opened_at,
            "frozen_at": self.frozen_at,
            "participants": len(self.participants),
            "active_participants": self.active_participants,
            "tallies": self.tallies(),
        }


class LiveQuizEngine:
    """
    Owns every live QuizSession, keyed by room.

    Nothing here raises on bad input from the wire: toggles that cannot apply
    are dropped and reported as False.
    """

    def __init__(self, max_duration: Optional[timedelta] = None) -> None:
        self.max_duration = max_duration
        self._sessions: Dict[str, QuizSession] = {}

    def launch(
        self,
        room: str,
        quiz_id: int,
        question_ids: Iterable[int],
        participants: Iterable[str],
        now: Optional[datetime] = None,
    ) -> QuizSession:
        if room in self._sessions:
            logger.info(f"Replacing live session in room '{room}'")
        session = QuizSession(
            room=room,
            quiz_id=quiz_id,
            question_ids=tuple(question_ids),
            participants=tuple(sorted(set(participants))),
            opened_at=now or datetime.now(timezone.utc),
        )
        self._sessions[room] = session
        logger.info(
            f"Live quiz {quiz_id} opened in room '{room}' "
            f"({len(session.participants)} participants, {session.question_count} questions)"
        )
        return session

    def get(self, room: str) -> Optional[QuizSession]:
        return self._sessions.get(room)

    def toggle(
        self,
        room: Optional[str],
        connection_id: str,
        question_index: int,
        correctness: Optional[bool],
    ) -> bool:
        session = self._sessions.get(room) if room is not None else None
        if session is None or not session.is_open:
            return False
        if not session.has_participant(connection_id):
            return False
        if question_index < 0 or question_index >= session.question_count:
            return False
        session.set_slot(connection_id, question_index, TriState.from_correctness(correctness))
        return True

    def tally(self, room: str, question_index: int) -> Optional[Dict[str, int]]:
        session = self._sessions.get(room)
        if session is None or question_index < 0 or question_index >= session.question_count:
            return None
        return session.tally(question_index)

    def freeze(self, room: str, now: Optional[datetime] = None) -> bool:
        session = self._sessions.get(room)
        if session is None or not session.is_open:
            return False
        session.status = LiveSessionStatus.FROZEN
        session.frozen_at = now or datetime.now(timezone.utc)
        logger.info(f"Live quiz {session.quiz_id} frozen in room '{room}'")
        return True

    def disconnect(self, connection_id: str, room: Optional[str] = None) -> Set[str]:
        """Mark a participant as gone, in one room or all of them. Its answer row is kept."""
        rooms = set()
        for key, session in self._sessions.items():
            if room is not None and key != room:
                continue
            if session.has_participant(connection_id) and connection_id not in session.disconnected:
                session.disconnected.add(connection_id)
                rooms.add(key)
        return rooms

    def reconnect(self, connection_id: str, room: str) -> bool:
        """A participant that left the session's room is back in it."""
        session = self._sessions.get(room)
        if session is None or connection_id not in session.disconnected:
            return False
        session.disconnected.discard(connection_id)
        return True

    def discard(self, room: str) -> Optional[QuizSession]:
        session = self._sessions.pop(room, None)
        if session is not None:
            logger.info(f"Live session for room '{room}' discarded")
        return session

    def overdue(self, now: Optional[datetime] = None) -> List[str]:
        """Rooms whose open session has outlived max_duration."""
        if self.max_duration is None:
            return []
        now = now or datetime.now(timezone.utc)
        return [
            room
            for room, session in self._sessions.items()
            if session.is_open and now - session.opened_at >= self.max_duration
        ]

    def expire(self, now: Optional[datetime] = None) -> List[str]:
        """Force-freeze open sessions older than max_duration. Returns the affected rooms."""
        now = now or datetime.now(timezone.utc)
        expired = self.overdue(now)
        for room in expired:
            logger.warning(f"Live session in room '{room}' exceeded its maximum duration")
            self.freeze(room, now=now)
        return expired

    def rooms(self) -> List[str]:
        return list(self._sessions)
