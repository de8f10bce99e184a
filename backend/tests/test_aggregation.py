from datetime import datetime, timedelta, timezone

from classchat.realtime.aggregation import LiveQuizEngine, LiveSessionStatus, TriState


def _totals(counts):
    return counts["correct"] + counts["incorrect"] + counts["unanswered"]


def test_launch_starts_everyone_unanswered():
    engine = LiveQuizEngine()
    session = engine.launch("r1", quiz_id=7, question_ids=[10, 11, 12], participants=["p2", "p1"])

    assert session.participants == ("p1", "p2")
    assert session.status == LiveSessionStatus.OPEN
    for index in range(3):
        assert engine.tally("r1", index) == {"unanswered": 2, "correct": 0, "incorrect": 0}


def test_tally_conserves_participants():
    engine = LiveQuizEngine()
    engine.launch("r1", quiz_id=1, question_ids=[1, 2], participants=["a", "b", "c"])

    engine.toggle("r1", "a", 0, True)
    engine.toggle("r1", "b", 0, False)
    engine.toggle("r1", "a", 1, False)
    engine.toggle("r1", "a", 0, None)

    for index in range(2):
        assert _totals(engine.tally("r1", index)) == 3
    assert engine.tally("r1", 0) == {"unanswered": 2, "correct": 0, "incorrect": 1}


def test_toggle_is_idempotent():
    engine = LiveQuizEngine()
    engine.launch("r1", quiz_id=1, question_ids=[1], participants=["a", "b"])

    engine.toggle("r1", "a", 0, True)
    once = engine.tally("r1", 0)
    engine.toggle("r1", "a", 0, True)

    assert engine.tally("r1", 0) == once == {"unanswered": 1, "correct": 1, "incorrect": 0}


def test_toggle_drops_unknown_participant_and_bad_index():
    engine = LiveQuizEngine()
    engine.launch("r1", quiz_id=1, question_ids=[1, 2], participants=["a"])

    assert engine.toggle("r1", "late-joiner", 0, True) is False
    assert engine.toggle("r1", "a", 2, True) is False
    assert engine.toggle("r1", "a", -1, True) is False
    assert engine.toggle("nowhere", "a", 0, True) is False
    assert engine.tally("r1", 0) == {"unanswered": 1, "correct": 0, "incorrect": 0}
    assert engine.tally("r1", 5) is None


def test_freeze_rejects_further_toggles():
    engine = LiveQuizEngine()
    engine.launch("r1", quiz_id=1, question_ids=[1], participants=["a", "b"])
    engine.toggle("r1", "a", 0, True)

    assert engine.freeze("r1") is True
    assert engine.freeze("r1") is False
    assert engine.toggle("r1", "b", 0, False) is False
    assert engine.get("r1").slot("b", 0) == TriState.UNANSWERED
    assert engine.tally("r1", 0) == {"unanswered": 1, "correct": 1, "incorrect": 0}


def test_disconnect_keeps_answers_and_reports_affected_rooms():
    engine = LiveQuizEngine()
    engine.launch("r1", quiz_id=1, question_ids=[1], participants=["a", "b"])
    engine.launch("r2", quiz_id=2, question_ids=[1], participants=["c"])
    engine.toggle("r1", "a", 0, False)

    assert engine.disconnect("a") == {"r1"}
    assert engine.disconnect("a") == set()

    session = engine.get("r1")
    assert session.active_participants == 1
    assert session.snapshot()["participants"] == 2
    assert engine.tally("r1", 0) == {"unanswered": 1, "correct": 0, "incorrect": 1}


def test_relaunch_replaces_session():
    engine = LiveQuizEngine()
    engine.launch("r1", quiz_id=1, question_ids=[1], participants=["a"])
    engine.toggle("r1", "a", 0, True)

    engine.launch("r1", quiz_id=2, question_ids=[5, 6], participants=["a"])

    assert engine.get("r1").quiz_id == 2
    assert engine.tally("r1", 0) == {"unanswered": 1, "correct": 0, "incorrect": 0}


def test_expire_freezes_sessions_past_max_duration():
    engine = LiveQuizEngine(max_duration=timedelta(minutes=5))
    start = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
    engine.launch("old", quiz_id=1, question_ids=[1], participants=["a"], now=start)
    engine.launch("new", quiz_id=2, question_ids=[1], participants=["b"], now=start + timedelta(minutes=4))

    expired = engine.expire(now=start + timedelta(minutes=5))

    assert expired == ["old"]
    assert engine.get("old").status == LiveSessionStatus.FROZEN
    assert engine.get("new").is_open
    assert engine.expire(now=start + timedelta(minutes=6)) == []


def test_expire_without_max_duration_is_noop():
    engine = LiveQuizEngine()
    engine.launch("r1", quiz_id=1, question_ids=[1], participants=["a"])
    assert engine.expire(now=datetime.now(timezone.utc) + timedelta(days=1)) == []


def test_reconnect_restores_active_participant():
    engine = LiveQuizEngine()
    engine.launch("r1", quiz_id=1, question_ids=[1], participants=["a", "b"])
    engine.disconnect("a", room="r1")
    assert engine.get("r1").active_participants == 1

    assert engine.reconnect("a", "r1") is True
    assert engine.reconnect("a", "r1") is False
    assert engine.reconnect("stranger", "r1") is False
    assert engine.get("r1").active_participants == 2


def test_overdue_does_not_freeze():
    engine = LiveQuizEngine(max_duration=timedelta(minutes=1))
    start = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
    engine.launch("r1", quiz_id=1, question_ids=[1], participants=["a"], now=start)

    assert engine.overdue(now=start + timedelta(minutes=2)) == ["r1"]
    assert engine.get("r1").is_open
