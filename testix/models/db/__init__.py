"""Database models."""
from testix.models.db.attempt import Attempt, AttemptStatus

__all__ = [
    "Attempt",
    "AttemptStatus",
]
