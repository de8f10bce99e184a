"""Quiz service: authoring, attempt persistence and exact-set grading reports."""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from classchat.models.quiz import Quiz, Question, Answer, Attempt, AttemptAnswer


class QuizNotFound(ValueError):
    pass


class DuplicateQuizTitle(ValueError):
    pass


def grade_selection(chosen: Iterable[int], correct: Iterable[int]) -> bool:
    """A question is fully correct only when the chosen set equals the correct set."""
    return set(chosen) == set(correct)


def _percentage(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    # round half up, in integers
    return (200 * part + whole) // (2 * whole)


def _serialize_answer(answer: Answer) -> Dict[str, Any]:
    return {"answer_id": answer.id, "content": answer.content, "is_correct": bool(answer.is_correct)}


def serialize_quiz(quiz: Quiz) -> Dict[str, Any]:
    return {
        "quiz_id": quiz.id,
        "title": quiz.title,
        "description": quiz.description,
        "owner_id": quiz.owner_id,
        "created_at": quiz.created_at,
        "questions": [
            {
                "question_id": question.id,
                "content": question.content,
                "answers": [_serialize_answer(answer) for answer in question.answers],
            }
            for question in quiz.questions
        ],
    }


async def get_quiz_by_id(db: AsyncSession, quiz_id: int) -> Optional[Quiz]:
    result = await db.execute(
        select(Quiz)
        .options(selectinload(Quiz.questions).selectinload(Question.answers))
        .where(Quiz.id == quiz_id)
    )
    return result.scalar_one_or_none()


async def get_question_ids(db: AsyncSession, quiz_id: int) -> Optional[List[int]]:
    """Ordered question ids of a quiz, or None when the quiz does not exist."""
    quiz = await db.get(Quiz, quiz_id)
    if not quiz:
        return None
    result = await db.execute(
        select(Question.id)
        .where(Question.quiz_id == quiz_id)
        .order_by(Question.position.asc(), Question.id.asc())
    )
    return list(result.scalars().all())


async def create_quiz(
    db: AsyncSession,
    owner_id: int,
    title: str,
    description: Optional[str] = None,
) -> Quiz:
    existing = await db.execute(
        select(Quiz).where(Quiz.owner_id == owner_id, Quiz.title == title)
    )
    if existing.scalar_one_or_none():
        raise DuplicateQuizTitle(f"You already have a quiz named '{title}'. Please choose a different name")

    quiz = Quiz(title=title, description=description, owner_id=owner_id, questions=[])
    db.add(quiz)
    await db.flush()
    return quiz


async def add_question(
    db: AsyncSession,
    *,
    quiz_id: int,
    owner_id: int,
    content: str,
    answers: List[Tuple[str, bool]],
) -> Question:
    quiz = await get_quiz_by_id(db, quiz_id)
    if not quiz:
        raise QuizNotFound(f"No quiz with ID {quiz_id} found")
    if quiz.owner_id != owner_id:
        raise PermissionError("You do not own this quiz")
    if not answers:
        raise ValueError("A question needs at least one answer")
    if not any(is_correct for _, is_correct in answers):
        raise ValueError("A question needs at least one correct answer")

    question = Question(
        content=content,
        position=len(quiz.questions),
        answers=[Answer(content=text, is_correct=is_correct) for text, is_correct in answers],
    )
    quiz.questions.append(question)
    await db.flush()
    return question


async def record_attempt(
    db: AsyncSession,
    quiz_id: int,
    member_id: int,
    selections: List[Dict[str, Any]],
) -> int:
    """
    Persist one attempt and all of its selections in a single unit of work.

    ``selections`` is a list of ``{"question_id", "answers": [{"answer_id", "is_chosen"}]}``.
    Every row is validated before anything is added to the session, and the
    attempt and its answers are written by one flush.
    """
    quiz = await get_quiz_by_id(db, quiz_id)
    if not quiz:
        raise QuizNotFound(f"No quiz with ID {quiz_id} found")

    question_of_answer = {
        answer.id: question.id
        for question in quiz.questions
        for answer in question.answers
    }

    rows: List[AttemptAnswer] = []
    seen: Set[int] = set()
    for selection in selections:
        question_id = selection["question_id"]
        for choice in selection.get("answers", []):
            answer_id = choice["answer_id"]
            if question_of_answer.get(answer_id) != question_id:
                raise ValueError(f"Answer {answer_id} does not belong to question {question_id} of this quiz")
            if answer_id in seen:
                raise ValueError(f"Answer {answer_id} was submitted more than once")
            seen.add(answer_id)
            rows.append(
                AttemptAnswer(
                    question_id=question_id,
                    answer_id=answer_id,
                    is_chosen=bool(choice.get("is_chosen")),
                )
            )

    attempt = Attempt(
        quiz_id=quiz_id,
        member_id=member_id,
        submitted_at=datetime.now(timezone.utc),
        answers=rows,
    )
    try:
        db.add(attempt)
        await db.flush()
    except SQLAlchemyError:
        await db.rollback()
        raise
    return attempt.id


async def _chosen_sets(db: AsyncSession, quiz_id: int) -> Dict[Tuple[int, int], Set[int]]:
    result = await db.execute(
        select(AttemptAnswer.attempt_id, AttemptAnswer.question_id, AttemptAnswer.answer_id)
        .join(Attempt, Attempt.id == AttemptAnswer.attempt_id)
        .where(Attempt.quiz_id == quiz_id, AttemptAnswer.is_chosen.is_(True))
    )
    chosen: Dict[Tuple[int, int], Set[int]] = defaultdict(set)
    for attempt_id, question_id, answer_id in result.all():
        chosen[(attempt_id, question_id)].add(answer_id)
    return chosen


async def question_report(db: AsyncSession, quiz_id: int) -> List[Dict[str, Any]]:
    quiz = await get_quiz_by_id(db, quiz_id)
    if not quiz:
        raise QuizNotFound(f"No quiz with ID {quiz_id} found")

    attempt_rows = await db.execute(select(Attempt.id).where(Attempt.quiz_id == quiz_id))
    attempt_ids = list(attempt_rows.scalars().all())
    chosen = await _chosen_sets(db, quiz_id)

    report = []
    for question in quiz.questions:
        correct = {answer.id for answer in question.answers if answer.is_correct}
        fully_correct = sum(
            1
            for attempt_id in attempt_ids
            if grade_selection(chosen.get((attempt_id, question.id), ()), correct)
        )
        report.append({
            "question_id": question.id,
            "content": question.content,
            "percentage_fully_correct": _percentage(fully_correct, len(attempt_ids)),
            "answers": [_serialize_answer(answer) for answer in question.answers],
        })
    return report


async def get_attempt_detail(db: AsyncSession, attempt_id: int) -> Optional[Dict[str, Any]]:
    attempt = await db.execute(
        select(Attempt)
        .options(selectinload(Attempt.answers))
        .where(Attempt.id == attempt_id)
    )
    attempt = attempt.scalar_one_or_none()
    if not attempt:
        return None

    quiz = await get_quiz_by_id(db, attempt.quiz_id)
    chosen = {row.answer_id for row in attempt.answers if row.is_chosen}

    questions = []
    for question in quiz.questions:
        correct = {answer.id for answer in question.answers if answer.is_correct}
        picked = {answer.id for answer in question.answers if answer.id in chosen}
        questions.append({
            "question_id": question.id,
            "content": question.content,
            "is_fully_correct": grade_selection(picked, correct),
            "answers": [
                {**_serialize_answer(answer), "is_chosen": answer.id in chosen}
                for answer in question.answers
            ],
        })

    return {
        "attempt_id": attempt.id,
        "quiz_id": quiz.id,
        "quiz_title": quiz.title,
        "member_id": attempt.member_id,
        "submitted_at": attempt.submitted_at,
        "questions": questions,
    }
