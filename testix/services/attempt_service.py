"""Service layer for attempt statistics using SQLite database."""
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session as DBSession

from testix.models.db.attempt import Attempt, AttemptStatus


def start_attempt(
    db: DBSession,
    attempt_id: str,
    test_id: str,
    question_count: int,
    mode: str = "full",
    pass_threshold: int | None = None,
    settings: dict[str, Any] | None = None,
) -> Attempt:
    """
    Record the start of a session.
    Returns the existing row when the same session is reported twice.
    """
    attempt = db.get(Attempt, attempt_id)
    if attempt:
        if attempt.test_id != test_id:
            raise HTTPException(status_code=400, detail="Mismatched testId")
        return attempt

    attempt = Attempt(
        id=attempt_id,
        test_id=test_id,
        mode=mode,
        status=AttemptStatus.IN_PROGRESS.value,
        question_count=question_count,
        pass_threshold=pass_threshold,
    )
    if settings:
        attempt.settings = settings

    db.add(attempt)
    db.commit()
    db.refresh(attempt)
    return attempt


def finish_attempt(
    db: DBSession,
    attempt_id: str,
    correct_count: int,
    total_questions: int,
    percentage: int,
    time_taken_seconds: int,
    passed: bool | None = None,
) -> Attempt:
    """Store the graded outcome of a session."""
    attempt = get_attempt(db, attempt_id)
    if not attempt:
        raise HTTPException(status_code=404, detail="Attempt not found")

    attempt.status = AttemptStatus.COMPLETED.value
    attempt.finished_at = datetime.now(timezone.utc)
    attempt.question_count = total_questions
    attempt.correct_count = correct_count
    attempt.wrong_count = total_questions - correct_count
    attempt.percentage = percentage
    attempt.time_taken_seconds = time_taken_seconds
    attempt.passed = passed

    db.commit()
    db.refresh(attempt)
    return attempt


def abandon_attempt(db: DBSession, attempt_id: str) -> Attempt | None:
    """Mark an unfinished attempt as abandoned."""
    attempt = get_attempt(db, attempt_id)
    if not attempt or attempt.is_completed:
        return attempt

    attempt.status = AttemptStatus.ABANDONED.value
    attempt.finished_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(attempt)
    return attempt


def get_attempt(db: DBSession, attempt_id: str) -> Attempt | None:
    """Get attempt by ID."""
    return db.get(Attempt, attempt_id)


def get_attempts_by_test(
    db: DBSession,
    test_id: str,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Attempt]:
    """
    Get all attempts for a test, newest first.
    """
    query = select(Attempt).where(Attempt.test_id == test_id)

    if status:
        query = query.where(Attempt.status == status)

    query = query.order_by(Attempt.started_at.desc()).limit(limit).offset(offset)

    return list(db.execute(query).scalars().all())


def count_attempts(
    db: DBSession,
    test_id: str | None = None,
    status: str | None = None,
) -> int:
    """Count attempts matching criteria."""
    query = select(func.count(Attempt.id))

    if test_id:
        query = query.where(Attempt.test_id == test_id)
    if status:
        query = query.where(Attempt.status == status)

    return db.execute(query).scalar() or 0


def serialize_attempt(attempt: Attempt) -> dict[str, object]:
    return {
        "id": attempt.id,
        "testId": attempt.test_id,
        "mode": attempt.mode,
        "status": attempt.status,
        "startedAt": attempt.started_at.isoformat() if attempt.started_at else None,
        "finishedAt": attempt.finished_at.isoformat() if attempt.finished_at else None,
        "timeTaken": attempt.time_taken_seconds,
        "questionCount": attempt.question_count,
        "rightAnswers": attempt.correct_count,
        "wrongAnswers": attempt.wrong_count,
        "percentage": attempt.percentage,
        "passThreshold": attempt.pass_threshold,
        "passed": attempt.passed,
        "settings": attempt.settings,
    }
