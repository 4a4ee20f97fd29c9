"""
Session state store.

Holds the single live attempt. Every mutation produces a new frozen
``Session`` value and is mirrored to persistence before returning.
"""

from __future__ import annotations

import copy
import enum
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, Mapping

from testix.engine.errors import (
    InvalidConfiguration,
    NoActiveSession,
    SessionAlreadyFinished,
)
from testix.engine.questions import (
    Answer,
    CheckMode,
    Question,
    free_text,
    is_answer_complete,
    is_answer_present,
)

log = logging.getLogger(__name__)


class SessionMode(str, enum.Enum):
    FULL = "full"
    EXPRESS = "express"


@dataclass(frozen=True)
class SessionSettings:
    hints_enabled: bool = False
    check_after_answer: bool = False
    show_incorrect_at_end: bool = True
    full_answer_check_mode: CheckMode = CheckMode.MEDIUM


@dataclass(frozen=True)
class CachedEvaluation:
    """Evaluator verdict for a free-text answer as it was when evaluated."""

    user_answer_text: str
    score_percent: int
    comment: str


@dataclass(frozen=True)
class Session:
    test_id: str
    question_ids: tuple[int, ...]
    started_at: float
    mode: SessionMode = SessionMode.FULL
    current_index: int = 0
    answers: dict[int, Answer] = field(default_factory=dict)
    time_limit_seconds: int | None = None
    pass_threshold: int | None = None
    settings: SessionSettings = field(default_factory=SessionSettings)
    evaluations: dict[int, CachedEvaluation] = field(default_factory=dict)
    token: str = field(default_factory=lambda: uuid.uuid4().hex)
    finished: bool = False

    @property
    def current_question_id(self) -> int:
        return self.question_ids[self.current_index]

    def elapsed_seconds(self, now: float) -> float:
        return max(0.0, now - self.started_at)

    def is_expired(self, now: float) -> bool:
        if not self.time_limit_seconds or self.time_limit_seconds <= 0:
            return False
        return self.elapsed_seconds(now) >= self.time_limit_seconds

    def cached_evaluation(self, question_id: int) -> CachedEvaluation | None:
        """Evaluation for the current text of the answer, if still valid."""
        cached = self.evaluations.get(question_id)
        if cached is None:
            return None
        if cached.user_answer_text != free_text(self.answers.get(question_id)):
            return None
        return cached


class SessionStore:
    """
    Owner of the live Session.

    ``persistence`` is any object with ``save(session)``, ``clear(test_id)``
    and ``clear_active()``; see :class:`testix.engine.persistence.SessionPersistence`.
    """

    def __init__(self, persistence, clock: Callable[[], float] = time.time):
        self.persistence = persistence
        self.clock = clock
        self._session: Session | None = None
        self._questions: dict[int, Question] = {}

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def questions(self) -> Mapping[int, Question]:
        return self._questions

    def require(self) -> Session:
        if self._session is None:
            raise NoActiveSession("No active session")
        return self._session

    def start(
        self,
        test_id: str,
        question_ids: Iterable[int],
        *,
        mode: SessionMode = SessionMode.FULL,
        pass_threshold: int | None = None,
        time_limit_seconds: int | None = None,
        settings: SessionSettings | None = None,
        questions: Mapping[int, Question] | None = None,
    ) -> Session:
        """Create and persist a new session, replacing any previous one."""
        ids = tuple(question_ids)
        if not test_id:
            raise InvalidConfiguration("testId is required")
        if not ids:
            raise InvalidConfiguration("Session needs at least one question")
        if len(set(ids)) != len(ids):
            raise InvalidConfiguration("Duplicate question id in session")
        if pass_threshold is not None and not 1 <= pass_threshold <= len(ids):
            raise InvalidConfiguration(
                f"passThreshold must be within [1, {len(ids)}]"
            )
        if time_limit_seconds is not None and time_limit_seconds <= 0:
            raise InvalidConfiguration("timeLimitSeconds must be positive")
        if questions is not None:
            missing = [qid for qid in ids if qid not in questions]
            if missing:
                raise InvalidConfiguration(f"Unknown question ids: {missing}")

        if self._session is not None:
            self.persistence.clear(self._session.test_id)

        session = Session(
            test_id=test_id,
            question_ids=ids,
            started_at=self.clock(),
            mode=mode,
            time_limit_seconds=time_limit_seconds,
            pass_threshold=pass_threshold,
            settings=settings or SessionSettings(),
        )
        self._questions = dict(questions or {})
        self._commit(session)
        log.info(
            "Started %s session for test %s with %d questions",
            mode.value,
            test_id,
            len(ids),
        )
        return session

    def adopt(
        self,
        session: Session,
        questions: Mapping[int, Question] | None = None,
    ) -> Session:
        """Make a restored session the live one."""
        self._session = session
        self._questions = dict(questions or {})
        return session

    def record_answer(self, question_id: int, answer: Answer) -> Session:
        session = self._mutable()
        if question_id not in session.question_ids:
            raise InvalidConfiguration(
                f"Question {question_id} is not part of this session"
            )
        if session.answers.get(question_id) == answer:
            return session
        answers = dict(session.answers)
        answers[question_id] = copy.deepcopy(answer)
        return self._commit(replace(session, answers=answers))

    def navigate(self, index: int) -> Session:
        session = self._mutable()
        clamped = min(max(0, index), len(session.question_ids) - 1)
        if clamped == session.current_index:
            return session
        return self._commit(replace(session, current_index=clamped))

    def next(self) -> Session:
        return self.navigate(self.require().current_index + 1)

    def prev(self) -> Session:
        return self.navigate(self.require().current_index - 1)

    def store_evaluation(
        self, question_id: int, evaluation: CachedEvaluation
    ) -> Session:
        session = self._mutable()
        evaluations = dict(session.evaluations)
        evaluations[question_id] = evaluation
        return self._commit(replace(session, evaluations=evaluations))

    def is_answered(self, question_id: int) -> bool:
        session = self.require()
        answer = session.answers.get(question_id)
        question = self._questions.get(question_id)
        if question is None:
            return is_answer_present(answer)
        return is_answer_complete(question, answer)

    def answered_flags(self) -> list[bool]:
        session = self.require()
        return [self.is_answered(qid) for qid in session.question_ids]

    def finish(self) -> Session:
        """Freeze the session for grading."""
        session = self._mutable()
        finished = replace(session, finished=True)
        self._commit(finished)
        log.info("Finished session %s for test %s", session.token, session.test_id)
        return finished

    def reset(self) -> None:
        """Drop the live session and its persisted mirror."""
        session = self._session
        self._session = None
        self._questions = {}
        if session is None:
            self.persistence.clear_active()
            return
        self.persistence.clear(session.test_id)
        log.info("Reset session %s for test %s", session.token, session.test_id)

    def _mutable(self) -> Session:
        session = self.require()
        if session.finished:
            log.error(
                "Attempted to modify finished session %s for test %s",
                session.token,
                session.test_id,
            )
            raise SessionAlreadyFinished(
                f"Session for test {session.test_id} is already finished"
            )
        return session

    def _commit(self, session: Session) -> Session:
        self._session = session
        self.persistence.save(session)
        return session
