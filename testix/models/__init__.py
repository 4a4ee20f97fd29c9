"""Pydantic models."""
from testix.models.sessions import (
    AnswerRequest,
    NavigateRequest,
    StartSessionRequest,
)

__all__ = [
    "AnswerRequest",
    "NavigateRequest",
    "StartSessionRequest",
]
