import asyncio
from datetime import timedelta

import pytest
from pydantic import ValidationError

from classchat.realtime import ConnectionRegistry, LiveQuizEngine, RoomBroadcastHub
from classchat.realtime.messages import parse_message


class RecordingSink:
    def __init__(self):
        self.frames = []

    async def send_json(self, data):
        self.frames.append(data)

    def events(self, name=None):
        return [frame for frame in self.frames if name is None or frame["event"] == name]

    def last(self, name):
        matching = self.events(name)
        return matching[-1]["payload"] if matching else None

    def clear(self):
        self.frames.clear()


class FlakySink(RecordingSink):
    def __init__(self):
        super().__init__()
        self.broken = False

    async def send_json(self, data):
        if self.broken:
            raise ConnectionResetError("peer went away")
        await super().send_json(data)


class GatedSink(RecordingSink):
    """Holds every frame of one event until released; other frames pass straight through."""

    def __init__(self, held_event):
        super().__init__()
        self.held_event = held_event
        self.reached = asyncio.Event()
        self.release = asyncio.Event()

    async def send_json(self, data):
        if data["event"] == self.held_event:
            self.reached.set()
            await self.release.wait()
        await super().send_json(data)


@pytest.fixture
def hub():
    return RoomBroadcastHub(ConnectionRegistry(), LiveQuizEngine())


async def _send(hub, connection_id, frame):
    await hub.handle(connection_id, parse_message(frame))


async def _join(hub, role=None, room=None):
    sink = RecordingSink()
    cid = await hub.attach(sink, member_id=None, role=role)
    if room is not None:
        await _send(hub, cid, {"event": "join-room", "roomKey": room})
    return cid, sink


async def test_attach_sends_connected_then_roster(hub):
    sink = RecordingSink()
    cid = await hub.attach(sink)

    assert sink.frames[0] == {"event": "connected", "payload": {"connectionID": cid}}
    assert sink.last("update-participants") == [cid]


async def test_roster_tracks_connects_and_disconnects(hub):
    a, sink_a = await _join(hub)
    b, _ = await _join(hub)
    assert sorted(sink_a.last("update-participants")) == sorted([a, b])

    await hub.detach(b)
    assert sink_a.last("update-participants") == [a]
    assert hub.global_roster() == [a]


async def test_room_isolation(hub):
    a, sink_a = await _join(hub, room="r1")
    b, sink_b = await _join(hub, room="r1")
    c, sink_c = await _join(hub, room="r2")
    for sink in (sink_a, sink_b, sink_c):
        sink.clear()

    await _send(hub, a, {"event": "send-message", "roomKey": "r1"})

    assert sink_b.events("receive-message") == [{"event": "receive-message", "payload": {"roomKey": "r1"}}]
    assert sink_a.events("receive-message") == []
    assert sink_c.frames == []


async def test_single_active_room(hub):
    a, sink_a = await _join(hub, room="r1")
    b, _ = await _join(hub, room="r1")

    await _send(hub, a, {"event": "join-room", "roomKey": "r2"})
    sink_a.clear()
    await _send(hub, b, {"event": "delete-message", "roomKey": "r1"})

    assert hub.registry.room_of(a) == "r2"
    assert hub.registry.members("r1") == {b}
    assert sink_a.frames == []


def test_malformed_frames_are_rejected():
    for frame in (
        {"event": "send-message"},
        {"event": "no-such-event", "roomKey": "r1"},
        {"event": "new-answer", "connectionID": "c1", "questionIndex": -1},
    ):
        with pytest.raises(ValidationError):
            parse_message(frame)


async def test_failed_send_unregisters_connection(hub):
    a, sink_a = await _join(hub, room="r1")
    flaky = FlakySink()
    stale = await hub.attach(flaky)
    await _send(hub, stale, {"event": "join-room", "roomKey": "r1"})
    assert hub.registry.members("r1") == {a, stale}

    flaky.broken = True
    await _send(hub, a, {"event": "prompt-response", "roomKey": "r1"})

    assert stale not in hub.registry
    assert hub.registry.members("r1") == {a}
    assert sink_a.last("update-participants") == [a]


async def test_students_cannot_launch_or_end(hub):
    student, sink = await _join(hub, role="STUDENT", room="r1")
    await _join(hub, role="STUDENT", room="r1")

    await hub.handle(student, parse_message(
        {"event": "launch-quiz", "roomKey": "r1", "quizID": 3, "questionIDs": [1]}
    ))

    assert hub.engine.get("r1") is None
    assert sink.events("quiz-started") == []


async def test_answers_for_another_connection_are_dropped(hub):
    teacher, _ = await _join(hub, role="TEACHER", room="r1")
    p1, _ = await _join(hub, role="STUDENT", room="r1")
    p2, _ = await _join(hub, role="STUDENT", room="r1")
    await hub.handle(teacher, parse_message(
        {"event": "launch-quiz", "roomKey": "r1", "quizID": 3, "questionIDs": [1]}
    ))

    await _send(hub, p1, {"event": "new-answer", "connectionID": p2, "questionIndex": 0, "correctness": True})

    assert hub.engine.tally("r1", 0) == {"unanswered": 2, "correct": 0, "incorrect": 0}


async def test_live_quiz_scenario(hub):
    teacher, sink_t = await _join(hub, role="TEACHER", room="r1")
    p1, sink_p1 = await _join(hub, role="STUDENT", room="r1")
    p2, sink_p2 = await _join(hub, role="STUDENT", room="r1")
    outsider, sink_out = await _join(hub, role="STUDENT", room="r2")

    await hub.handle(teacher, parse_message(
        {"event": "launch-quiz", "roomKey": "r1", "quizID": 9, "questionIDs": [101, 102]}
    ))

    started = sink_p1.last("quiz-started")
    assert started["quizID"] == 9
    assert started["questionIDs"] == [101, 102]
    assert sorted(started["participants"]) == sorted([p1, p2])
    assert sink_out.events("quiz-started") == []

    await _send(hub, p1, {"event": "new-answer", "connectionID": p1, "questionIndex": 0, "correctness": True})

    results = sink_t.last("quiz-results")
    assert results["tallies"][0] == {
        "question_index": 0,
        "question_id": 101,
        "unanswered": 1,
        "correct": 1,
        "incorrect": 0,
    }
    assert sink_p2.last("quiz-results") == results

    await _send(hub, teacher, {"event": "end-quiz", "roomKey": "r1"})
    assert sink_p1.last("end-quiz") == {"roomKey": "r1"}
    assert sink_t.events("end-quiz") == []
    assert sink_p2.last("quiz-results")["status"] == "frozen"

    sink_p2.clear()
    await _send(hub, p2, {"event": "new-answer", "connectionID": p2, "questionIndex": 0, "correctness": False})

    assert hub.engine.tally("r1", 0) == {"unanswered": 1, "correct": 1, "incorrect": 0}
    assert sink_p2.frames == []


async def test_participant_leaving_keeps_tallies(hub):
    teacher, sink_t = await _join(hub, role="TEACHER", room="r1")
    p1, _ = await _join(hub, role="STUDENT", room="r1")
    p2, _ = await _join(hub, role="STUDENT", room="r1")
    await hub.handle(teacher, parse_message(
        {"event": "launch-quiz", "roomKey": "r1", "quizID": 1, "questionIDs": [1]}
    ))
    await _send(hub, p1, {"event": "new-answer", "connectionID": p1, "questionIndex": 0, "correctness": True})

    await hub.detach(p1)

    results = sink_t.last("quiz-results")
    assert results["participants"] == 2
    assert results["active_participants"] == 1
    assert results["tallies"][0]["correct"] == 1


async def test_session_discarded_when_room_empties(hub):
    teacher, _ = await _join(hub, role="TEACHER", room="r1")
    p1, _ = await _join(hub, role="STUDENT", room="r1")
    await hub.handle(teacher, parse_message(
        {"event": "launch-quiz", "roomKey": "r1", "quizID": 1, "questionIDs": [1]}
    ))

    await hub.detach(p1)
    assert hub.engine.get("r1") is not None
    await _send(hub, teacher, {"event": "join-room", "roomKey": "r2"})

    assert hub.engine.get("r1") is None


async def test_expire_sessions_notifies_room(hub):
    hub.engine.max_duration = timedelta(seconds=1)
    teacher, sink_t = await _join(hub, role="TEACHER", room="r1")
    p1, sink_p1 = await _join(hub, role="STUDENT", room="r1")
    await hub.handle(teacher, parse_message(
        {"event": "launch-quiz", "roomKey": "r1", "quizID": 1, "questionIDs": [1]}
    ))
    opened_at = hub.engine.get("r1").opened_at

    expired = await hub.expire_sessions(now=opened_at + hub.engine.max_duration)

    assert expired == ["r1"]
    assert sink_p1.last("end-quiz") == {"roomKey": "r1", "reason": "timeout"}
    assert sink_t.last("quiz-results")["status"] == "frozen"


async def test_room_order_holds_while_a_send_is_blocked(hub):
    teacher, _ = await _join(hub, role="TEACHER", room="r1")
    p2, _ = await _join(hub, role="STUDENT", room="r1")
    gated = GatedSink("end-quiz")
    p3 = await hub.attach(gated, role="STUDENT")
    await _send(hub, p3, {"event": "join-room", "roomKey": "r1"})
    await _send(hub, teacher, {"event": "launch-quiz", "roomKey": "r1", "quizID": 1, "questionIDs": [1]})
    gated.clear()

    ending = asyncio.create_task(_send(hub, teacher, {"event": "end-quiz", "roomKey": "r1"}))
    await gated.reached.wait()
    leaving = asyncio.create_task(hub.detach(p2))
    for _ in range(10):
        await asyncio.sleep(0)
    assert gated.frames == []

    gated.release.set()
    await asyncio.gather(ending, leaving)

    names = [frame["event"] for frame in gated.frames]
    assert names == ["end-quiz", "quiz-results", "quiz-results", "update-participants"]
    assert gated.last("quiz-results")["active_participants"] == 1


async def test_participant_returning_to_room_is_active_again(hub):
    teacher, sink_t = await _join(hub, role="TEACHER", room="r1")
    p1, _ = await _join(hub, role="STUDENT", room="r1")
    await _send(hub, teacher, {"event": "launch-quiz", "roomKey": "r1", "quizID": 1, "questionIDs": [1]})

    await _send(hub, p1, {"event": "join-room", "roomKey": "r2"})
    assert sink_t.last("quiz-results")["active_participants"] == 0

    await _send(hub, p1, {"event": "join-room", "roomKey": "r1"})
    assert hub.engine.get("r1").active_participants == 1
    assert sink_t.last("quiz-results")["active_participants"] == 1

    await _send(hub, p1, {"event": "new-answer", "connectionID": p1, "questionIndex": 0, "correctness": True})
    assert hub.engine.tally("r1", 0)["correct"] == 1


async def test_room_locks_do_not_accumulate(hub):
    a, _ = await _join(hub, room="r1")
    for n in range(20):
        await _send(hub, a, {"event": "send-message", "roomKey": f"made-up-{n}"})
    await _send(hub, a, {"event": "join-room", "roomKey": "r2"})
    await hub.detach(a)

    assert hub._room_locks == {}
    assert hub._lock_users == {}
