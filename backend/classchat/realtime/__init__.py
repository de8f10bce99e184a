from classchat.realtime.registry import Connection, ConnectionRegistry
from classchat.realtime.aggregation import (
    LiveQuizEngine,
    LiveSessionStatus,
    QuizSession,
    TriState,
)
from classchat.realtime.hub import RoomBroadcastHub
