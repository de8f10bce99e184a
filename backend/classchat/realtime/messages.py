"""Wire messages for the real-time channel."""

from dataclasses import dataclass
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter


class JoinRoom(BaseModel):
    event: Literal["join-room"]
    roomKey: str = Field(..., min_length=1, max_length=120)


class SendMessage(BaseModel):
    event: Literal["send-message"]
    roomKey: str = Field(..., min_length=1, max_length=120)


class DeleteMessage(BaseModel):
    event: Literal["delete-message"]
    roomKey: str = Field(..., min_length=1, max_length=120)


class PromptResponse(BaseModel):
    event: Literal["prompt-response"]
    roomKey: str = Field(..., min_length=1, max_length=120)


class LaunchQuiz(BaseModel):
    event: Literal["launch-quiz"]
    roomKey: str = Field(..., min_length=1, max_length=120)
    quizID: int = Field(..., ge=1)
    # Filled in server-side from the quiz's persisted questions
    questionIDs: List[int] = Field(default_factory=list)


class EndQuiz(BaseModel):
    event: Literal["end-quiz"]
    roomKey: str = Field(..., min_length=1, max_length=120)


class NewAnswer(BaseModel):
    event: Literal["new-answer"]
    connectionID: str = Field(..., min_length=1)
    questionIndex: int = Field(..., ge=0)
    correctness: Optional[bool] = None


Message = Annotated[
    Union[JoinRoom, SendMessage, DeleteMessage, PromptResponse, LaunchQuiz, EndQuiz, NewAnswer],
    Field(discriminator="event"),
]

_message_adapter = TypeAdapter(Message)


def parse_message(raw: Any) -> Message:
    """Validate an inbound frame. Raises pydantic.ValidationError on a malformed shape."""
    return _message_adapter.validate_python(raw)


@dataclass(frozen=True)
class OutboundEvent:
    recipients: Tuple[str, ...]
    event: str
    payload: Any = None
    room: Optional[str] = None

    def frame(self) -> Dict[str, Any]:
        return {"event": self.event, "payload": self.payload}
