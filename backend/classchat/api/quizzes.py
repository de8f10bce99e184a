"""
Quiz API routes.

Routes:
    POST   /api/v1/quizzes                          — Create quiz (admin/teacher)
    GET    /api/v1/quizzes/attempts/{attempt_id}    — Attempt detail (owner member or admin/teacher)
    GET    /api/v1/quizzes/{quiz_id}                — Quiz with questions and answers
    POST   /api/v1/quizzes/{quiz_id}/questions      — Add question (quiz owner)
    POST   /api/v1/quizzes/{quiz_id}/attempts       — Submit an attempt
    GET    /api/v1/quizzes/{quiz_id}/report         — Exact-set grading report
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from classchat.database import get_db
from classchat.models.user import User, UserRole
from classchat.schemas.quiz import (
    QuizCreate,
    QuizDetail,
    QuestionCreate,
    QuestionCreated,
    AttemptCreate,
    AttemptCreated,
    AttemptDetail,
    QuestionReport,
)
from classchat.services.quiz_service import (
    QuizNotFound,
    DuplicateQuizTitle,
    create_quiz,
    get_quiz_by_id,
    serialize_quiz,
    add_question,
    record_attempt,
    question_report,
    get_attempt_detail,
)
from classchat.middleware.rbac import get_current_user, require_admin_or_teacher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/quizzes", tags=["Quizzes"])


@router.post("", response_model=QuizDetail, status_code=status.HTTP_201_CREATED)
async def create_new_quiz(
    body: QuizCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_teacher),
):
    try:
        quiz = await create_quiz(db, current_user.id, body.quizName, body.description)
    except DuplicateQuizTitle as e:
        raise HTTPException(status_code=409, detail=str(e))
    return QuizDetail(**serialize_quiz(quiz))


# Declared before /{quiz_id} routes so "attempts" is never parsed as an id.
@router.get("/attempts/{attempt_id}", response_model=AttemptDetail)
async def get_attempt(
    attempt_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    detail = await get_attempt_detail(db, attempt_id)
    if not detail:
        raise HTTPException(status_code=404, detail=f"No attempt with ID {attempt_id} found")
    if detail["member_id"] != current_user.id and current_user.role == UserRole.STUDENT:
        raise HTTPException(status_code=403, detail="Access denied")
    return AttemptDetail(**detail)


@router.get("/{quiz_id}", response_model=QuizDetail)
async def get_quiz(
    quiz_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    quiz = await get_quiz_by_id(db, quiz_id)
    if not quiz:
        raise HTTPException(status_code=404, detail=f"No quiz with ID {quiz_id} found")
    return QuizDetail(**serialize_quiz(quiz))


@router.post("/{quiz_id}/questions", response_model=QuestionCreated, status_code=status.HTTP_201_CREATED)
async def add_quiz_question(
    quiz_id: int,
    body: QuestionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_teacher),
):
    try:
        question = await add_question(
            db,
            quiz_id=quiz_id,
            owner_id=current_user.id,
            content=body.questionText,
            answers=[(answer.answerText, answer.isCorrect) for answer in body.answers],
        )
    except QuizNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return QuestionCreated(questionID=question.id)


@router.post("/{quiz_id}/attempts", response_model=AttemptCreated)
async def submit_attempt(
    quiz_id: int,
    body: AttemptCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Persist a completed attempt. Duplicate submissions are stored as separate attempts."""
    selections = [
        {
            "question_id": question.id,
            "answers": [
                {"answer_id": answer.answer_id, "is_chosen": answer.isChosen}
                for answer in question.answers
            ],
        }
        for question in body.quizAttempt
    ]
    try:
        attempt_id = await record_attempt(db, quiz_id, current_user.id, selections)
    except QuizNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Attempt {attempt_id} recorded for quiz {quiz_id} by member {current_user.id}")
    return AttemptCreated(attemptID=attempt_id)


@router.get("/{quiz_id}/report", response_model=List[QuestionReport])
async def get_quiz_report(
    quiz_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        report = await question_report(db, quiz_id)
    except QuizNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return [QuestionReport(**row) for row in report]
