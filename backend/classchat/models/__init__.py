from classchat.models.user import User
from classchat.models.room import ChatRoom
from classchat.models.quiz import (
    Quiz,
    Question,
    Answer,
    Attempt,
    AttemptAnswer,
)
