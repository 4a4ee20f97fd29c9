"""
Process-wide owner of the active attempt.

Wires the session store, persistence, lifecycle controller and page guard
together and records completion statistics for every attempt.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from testix.config import (
    RESULT_ROUTE_TEMPLATE,
    SESSION_ROUTE_TEMPLATE,
    TICK_INTERVAL_SECONDS,
)
from testix.database import SessionLocal
from testix.engine.errors import NoActiveSession
from testix.engine.grading import Evaluator, Result
from testix.engine.lifecycle import LifecycleState, TestPassingController
from testix.engine.persistence import (
    KeyValueStorage,
    SessionGuard,
    SessionPersistence,
)
from testix.engine.scheduler import SessionPlan
from testix.engine.session import Session, SessionStore
from testix.serialization import TestDefinition, serialize_question, settings_to_payload
from testix.services import attempt_service

log = logging.getLogger(__name__)


class SessionRuntime:
    def __init__(
        self,
        storage: KeyValueStorage,
        evaluator: Evaluator | None,
        db_factory: Callable[[], DBSession] = SessionLocal,
        clock: Callable[[], float] = time.time,
        tick_interval: float = TICK_INTERVAL_SECONDS,
    ):
        self.persistence = SessionPersistence(storage, clock)
        self.store = SessionStore(self.persistence, clock)
        self.controller = TestPassingController(
            self.store,
            evaluator,
            clock=clock,
            tick_interval=tick_interval,
            on_result=self._on_result,
        )
        self.guard = SessionGuard(self.persistence, SESSION_ROUTE_TEMPLATE)
        self.db_factory = db_factory
        self._results: dict[str, Result] = {}

    @property
    def state(self) -> LifecycleState:
        return self.controller.state

    def start(self, test: TestDefinition, plan: SessionPlan) -> Session:
        previous = self.store.session
        if previous is not None and not previous.finished:
            self._record(attempt_service.abandon_attempt, previous.token)
        self._results.pop(test.id, None)
        session = self.controller.start(test, plan)
        self._record(self._start_attempt, session)
        self._start_timer()
        return session

    def restore(self, load_test: Callable[[str], TestDefinition]) -> Session | None:
        """
        Bring a persisted attempt back into memory after a restart.
        Returns the live session, or ``None`` if nothing was persisted.
        """
        if self.store.session is not None:
            return self.store.session
        loaded = self.persistence.load_active()
        if loaded is None:
            return None
        self.controller.resume(load_test(loaded.session.test_id), loaded)
        if loaded.needs_grading:
            log.info("Restored attempt for test %s is due for grading", loaded.session.test_id)
        else:
            self._start_timer()
        return loaded.session

    async def submit(self) -> Result:
        return await self.controller.submit()

    def reset(self) -> None:
        session = self.store.session
        if session is not None and self.state is not LifecycleState.GRADED:
            self._record(attempt_service.abandon_attempt, session.token)
        self.controller.reset()

    def result_for(self, test_id: str) -> Result | None:
        return self._results.get(test_id)

    def result_route(self, test_id: str) -> str:
        return RESULT_ROUTE_TEMPLATE.format(test_id=test_id)

    def describe(self) -> dict[str, object]:
        """Snapshot of the live attempt for answering screens."""
        session = self.store.session
        if session is None:
            raise NoActiveSession("No active session")
        self.controller.tick()
        question = self.store.questions.get(session.current_question_id)
        return {
            "testId": session.test_id,
            "mode": session.mode.value,
            "state": self.state.value,
            "questionIds": list(session.question_ids),
            "currentQuestionIndex": session.current_index,
            "currentQuestion": serialize_question(question) if question else None,
            "answered": self.store.answered_flags(),
            "timeLeftSeconds": self.controller.remaining_seconds(),
            "passThreshold": session.pass_threshold,
            "settings": settings_to_payload(session.settings),
            "persistent": not self.persistence.ephemeral,
        }

    def _start_timer(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # no loop; expiry is caught by the next tick()
            return
        self.controller.start_timer()

    def _on_result(self, session: Session, result: Result) -> None:
        self._results[session.test_id] = result
        self._record(self._finish_attempt, session, result)

    @staticmethod
    def _start_attempt(db: DBSession, session: Session) -> None:
        attempt_service.start_attempt(
            db,
            session.token,
            session.test_id,
            len(session.question_ids),
            mode=session.mode.value,
            pass_threshold=session.pass_threshold,
            settings=settings_to_payload(session.settings),
        )

    @classmethod
    def _finish_attempt(cls, db: DBSession, session: Session, result: Result) -> None:
        # the start row is missing if the database was down at start
        if attempt_service.get_attempt(db, session.token) is None:
            cls._start_attempt(db, session)
        attempt_service.finish_attempt(
            db,
            session.token,
            result.correct_answers,
            result.total_questions,
            result.percentage,
            result.time_spent_seconds,
            passed=result.passed,
        )

    def _record(self, action, *args, **kwargs) -> None:
        """Statistics are best effort; they never block the attempt."""
        try:
            with self.db_factory() as db:
                action(db, *args, **kwargs)
        except (SQLAlchemyError, HTTPException):
            log.exception("Failed to save attempt statistics")
