"""Session-related Pydantic models."""
from pydantic import BaseModel, Field

from testix.engine.questions import CheckMode
from testix.engine.session import SessionMode


class SessionSettingsPayload(BaseModel):
    """Presentation toggles for a full session."""

    hintsEnabled: bool = False
    checkAfterAnswer: bool = False
    showIncorrectAtEnd: bool = True
    fullAnswerCheckMode: CheckMode = CheckMode.MEDIUM


class StartSessionRequest(BaseModel):
    """Model for starting a full or express session."""

    mode: SessionMode = SessionMode.FULL
    questionCount: int | None = None
    passThreshold: int | None = None
    timeLimitEnabled: bool = False
    timeLimitMinutes: float | None = Field(default=None, ge=1, le=999)
    fullAnswerCheckMode: CheckMode | None = None
    settings: SessionSettingsPayload | None = None


class AnswerRequest(BaseModel):
    """
    Answer to one question.

    Choice questions send option indices, matching questions send
    ``{"<meaning index>": "<term key>"}``, full answers send ``["text"]``.
    """

    answer: list[int] | list[str] | dict[str, str]


class NavigateRequest(BaseModel):
    """Model for moving between questions."""

    index: int | None = None
    direction: str | None = Field(default=None, pattern="^(next|prev)$")
