"""Pydantic schemas for quiz authoring, attempts and reports."""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


# ─── Authoring ────────────────────────────────────────────────────────────────

class QuizCreate(BaseModel):
    quizName: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = Field(None, max_length=1000)


class AnswerCreate(BaseModel):
    answerText: str = Field(..., min_length=1, max_length=500)
    isCorrect: bool = False


class QuestionCreate(BaseModel):
    questionText: str = Field(..., min_length=1, max_length=500)
    answers: List[AnswerCreate] = Field(..., min_length=1)


class AnswerResponse(BaseModel):
    answer_id: int
    content: str
    is_correct: bool


class QuestionResponse(BaseModel):
    question_id: int
    content: str
    answers: List[AnswerResponse]


class QuizDetail(BaseModel):
    quiz_id: int
    title: str
    description: Optional[str] = None
    owner_id: int
    created_at: Optional[datetime] = None
    questions: List[QuestionResponse] = []


class QuestionCreated(BaseModel):
    questionID: int


# ─── Attempts ─────────────────────────────────────────────────────────────────

class AttemptAnswerIn(BaseModel):
    answer_id: int
    isChosen: bool = False


class AttemptQuestionIn(BaseModel):
    id: int
    answers: List[AttemptAnswerIn] = []


class AttemptCreate(BaseModel):
    quizAttempt: List[AttemptQuestionIn]


class AttemptCreated(BaseModel):
    attemptID: int


class AttemptAnswerDetail(AnswerResponse):
    is_chosen: bool


class AttemptQuestionDetail(BaseModel):
    question_id: int
    content: str
    is_fully_correct: bool
    answers: List[AttemptAnswerDetail]


class AttemptDetail(BaseModel):
    attempt_id: int
    quiz_id: int
    quiz_title: str
    member_id: int
    submitted_at: Optional[datetime] = None
    questions: List[AttemptQuestionDetail]

    model_config = ConfigDict(from_attributes=True)


# ─── Reports ──────────────────────────────────────────────────────────────────

class QuestionReport(BaseModel):
    question_id: int
    content: str
    percentage_fully_correct: int = Field(..., ge=0, le=100)
    answers: List[AnswerResponse]
