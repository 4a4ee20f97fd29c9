"""Attempt statistics endpoints."""
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session as DbSession

from testix.database import get_db
from testix.services.attempt_service import (
    count_attempts,
    get_attempts_by_test,
    serialize_attempt,
)
from testix.utils import validate_id, validate_test_exists

router = APIRouter(prefix="/api/tests/{test_id}/attempts", tags=["attempts"])


@router.get("")
def list_attempts(
    test_id: str,
    db: Annotated[DbSession, Depends(get_db)],
    status: str | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict[str, object]:
    """List recorded attempts of a test, newest first."""
    test_id = validate_id("testId", test_id)
    validate_test_exists(test_id)
    attempts = get_attempts_by_test(db, test_id, status=status, limit=limit, offset=offset)
    return {
        "testId": test_id,
        "total": count_attempts(db, test_id=test_id, status=status),
        "attempts": [serialize_attempt(attempt) for attempt in attempts],
    }
