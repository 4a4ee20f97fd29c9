"""
Attempt database model for test completion statistics.
"""

from __future__ import annotations

import enum
import json
from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from testix.database import Base


class AttemptStatus(str, enum.Enum):
    """Status of a test attempt."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class Attempt(Base):
    """
    One test passing session, from start to graded result.
    The primary key is the session token.
    """

    __tablename__ = "attempts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, index=True)
    test_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    mode: Mapped[str] = mapped_column(String(16), default="full", nullable=False)

    # Timing
    started_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    finished_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    time_taken_seconds: Mapped[int | None] = mapped_column(nullable=True)

    # Status and results
    status: Mapped[str] = mapped_column(
        String(20), default=AttemptStatus.IN_PROGRESS.value, nullable=False
    )
    question_count: Mapped[int] = mapped_column(default=0, nullable=False)
    correct_count: Mapped[int] = mapped_column(default=0, nullable=False)
    wrong_count: Mapped[int] = mapped_column(default=0, nullable=False)
    percentage: Mapped[int] = mapped_column(default=0, nullable=False)
    pass_threshold: Mapped[int | None] = mapped_column(nullable=True)
    passed: Mapped[bool | None] = mapped_column(nullable=True)

    # Settings snapshot (stored as JSON string)
    settings_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def settings(self) -> dict[str, Any]:
        """Parse settings from JSON."""
        if not self.settings_json:
            return {}
        try:
            return json.loads(self.settings_json)
        except (json.JSONDecodeError, TypeError):
            return {}

    @settings.setter
    def settings(self, value: dict[str, Any]) -> None:
        """Serialize settings to JSON."""
        self.settings_json = json.dumps(value) if value else None

    @property
    def is_completed(self) -> bool:
        """Check if attempt is completed."""
        return self.status == AttemptStatus.COMPLETED.value
