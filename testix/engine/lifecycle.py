"""
Timer and lifecycle of a test passing attempt.

    NOT_STARTED -> RUNNING -> SUBMITTED | EXPIRED -> GRADED

Elapsed time is always derived from the session's ``started_at`` wall
clock timestamp, so suspended or missed ticks never extend the limit.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import math
import time
from typing import Callable

from testix.config import FULL_ANSWER_PASS_PERCENT, TICK_INTERVAL_SECONDS
from testix.engine.errors import InvalidConfiguration, NoActiveSession, StaleGrading
from testix.engine.grading import (
    Evaluation,
    Evaluator,
    Result,
    effective_check_mode,
    evaluate_full_answer,
    grade,
    grade_closed,
)
from testix.engine.persistence import LoadedSession
from testix.engine.questions import Answer, FullAnswerQuestion, Question, free_text
from testix.engine.scheduler import SessionPlan
from testix.engine.session import CachedEvaluation, Session, SessionStore
from testix.serialization import TestDefinition

log = logging.getLogger(__name__)


class LifecycleState(str, enum.Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    SUBMITTED = "submitted"
    EXPIRED = "expired"
    GRADED = "graded"


ResultCallback = Callable[[Session, Result], None]


class TestPassingController:
    """Drives one attempt at a time from start to graded result."""

    def __init__(
        self,
        store: SessionStore,
        evaluator: Evaluator | None,
        *,
        clock: Callable[[], float] | None = None,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        pass_percent: int = FULL_ANSWER_PASS_PERCENT,
        on_result: ResultCallback | None = None,
    ):
        self.store = store
        self.evaluator = evaluator
        self.clock = clock or store.clock or time.time
        self.tick_interval = tick_interval
        self.pass_percent = pass_percent
        self.on_result = on_result
        self.state = LifecycleState.NOT_STARTED
        self._timer_task: asyncio.Task | None = None
        self._grading_task: asyncio.Task | None = None

    @property
    def session(self) -> Session | None:
        return self.store.session

    def start(self, test: TestDefinition, plan: SessionPlan) -> Session:
        self.reset()
        session = self.store.start(
            test.id,
            plan.question_ids,
            mode=plan.mode,
            pass_threshold=plan.pass_threshold,
            time_limit_seconds=plan.time_limit_seconds,
            settings=plan.settings,
            questions=test.questions_by_id,
        )
        self.state = LifecycleState.RUNNING
        return session

    def resume(
        self, test: TestDefinition, loaded: LoadedSession | None = None
    ) -> LoadedSession | None:
        """
        Restore a persisted attempt for ``test``.

        Expired or already finished attempts are moved straight to
        submission; the caller must then await :meth:`submit`.
        """
        if loaded is None:
            loaded = self.store.persistence.load(test.id)
        if loaded is None:
            return None
        self._cancel_tasks()
        session = loaded.session
        self.store.adopt(session, test.questions_by_id)
        if session.finished:
            self.state = LifecycleState.SUBMITTED
        elif loaded.expired:
            self.state = LifecycleState.EXPIRED
            self.store.finish()
        else:
            self.state = LifecycleState.RUNNING
        return loaded

    def remaining_seconds(self) -> int | None:
        session = self.session
        if session is None or not session.time_limit_seconds:
            return None
        left = session.time_limit_seconds - session.elapsed_seconds(self.clock())
        return max(0, math.ceil(left))

    def tick(self) -> LifecycleState:
        """Check the countdown; expire the attempt when time is up."""
        session = self.session
        if self.state is not LifecycleState.RUNNING or session is None:
            return self.state
        if not session.is_expired(self.clock()):
            return self.state
        log.info("Time limit reached for test %s", session.test_id)
        self.state = LifecycleState.EXPIRED
        self.store.finish()
        self._schedule_grading()
        return self.state

    def record_answer(self, question_id: int, answer: Answer) -> Session:
        self.tick()
        return self.store.record_answer(question_id, answer)

    def navigate(self, index: int) -> Session:
        self.tick()
        return self.store.navigate(index)

    def step(self, forward: bool = True) -> Session:
        self.tick()
        return self.store.next() if forward else self.store.prev()

    async def evaluate_answer(self, question_id: int) -> Evaluation:
        """Immediate check of the current answer to one question."""
        self.tick()
        session = self.store.require()
        question = self.store.questions.get(question_id)
        if question is None:
            raise InvalidConfiguration(f"Question {question_id} is not loaded")
        answer = session.answers.get(question_id)
        if not isinstance(question, FullAnswerQuestion):
            correct = grade_closed(question, answer)
            return Evaluation(score_percent=100 if correct else 0, comment="")

        cached = session.cached_evaluation(question_id)
        if cached is not None:
            return Evaluation(cached.score_percent, cached.comment)
        user_text = free_text(answer)
        evaluation = await evaluate_full_answer(
            question, user_text, effective_check_mode(question, session), self.evaluator
        )
        current = self.store.session
        if current is None or current.token != session.token or current.finished:
            log.info("Dropping evaluation for question %s of a stale session", question_id)
            return evaluation
        self.store.store_evaluation(
            question_id,
            CachedEvaluation(
                user_answer_text=user_text,
                score_percent=evaluation.score_percent,
                comment=evaluation.comment,
            ),
        )
        return evaluation

    async def submit(self) -> Result:
        """Finish the attempt (if still running) and wait for its result."""
        if self.state is LifecycleState.RUNNING:
            self.tick()
        if self.state is LifecycleState.RUNNING:
            self.store.finish()
            self.state = LifecycleState.SUBMITTED
        graded = self._grading_task
        if (
            self.state is LifecycleState.GRADED
            and graded is not None
            and graded.done()
            and not graded.cancelled()
            and graded.result() is not None
        ):
            return graded.result()
        if self.state not in (LifecycleState.SUBMITTED, LifecycleState.EXPIRED):
            raise NoActiveSession("No attempt is waiting for grading")
        task = self._grading_task
        if task is None or task.get_loop() is not asyncio.get_running_loop():
            self._schedule_grading()
        task = self._grading_task
        try:
            result = await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise StaleGrading("Attempt was reset while grading") from None
            raise
        if result is None:
            raise StaleGrading("Attempt was replaced while grading")
        return result

    def reset(self) -> None:
        """Abandon the current attempt and any grading in flight."""
        self._cancel_tasks()
        self.store.reset()
        self.state = LifecycleState.NOT_STARTED

    def start_timer(self) -> asyncio.Task:
        """Tick on a fixed interval while running; needs an event loop."""
        if self._timer_task is None or self._timer_task.done():
            self._timer_task = asyncio.get_running_loop().create_task(self._run_timer())
        return self._timer_task

    def suspend_timer(self) -> None:
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None

    async def _run_timer(self) -> None:
        while self.state is LifecycleState.RUNNING:
            self.tick()
            await asyncio.sleep(self.tick_interval)

    def _schedule_grading(self) -> None:
        session = self.session
        if session is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # graded on the next submit()
            return
        self._grading_task = loop.create_task(self._grade(session))

    async def _grade(self, session: Session) -> Result | None:
        questions: dict[int, Question] = dict(self.store.questions)
        result = await grade(
            session,
            questions,
            self.evaluator,
            pass_percent=self.pass_percent,
            now=self.clock(),
        )
        current = self.store.session
        if current is None or current.token != session.token:
            log.info("Discarding stale result for session %s", session.token)
            return None
        self.state = LifecycleState.GRADED
        self.store.reset()
        log.info(
            "Graded test %s: %d/%d correct",
            result.test_id,
            result.correct_answers,
            result.total_questions,
        )
        if self.on_result is not None:
            try:
                self.on_result(session, result)
            except Exception:
                log.exception("Result callback failed for session %s", session.token)
        return result

    def _cancel_tasks(self) -> None:
        self.suspend_timer()
        if self._grading_task is not None and not self._grading_task.done():
            self._grading_task.cancel()
        self._grading_task = None
