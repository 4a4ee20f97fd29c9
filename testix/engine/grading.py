"""
Grading of a finished session.

Closed-form question types are graded locally. Free-text answers are sent
to an evaluator concurrently; the result is assembled only after every
evaluator call has settled.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Mapping, Protocol, assert_never

from testix.config import FULL_ANSWER_PASS_PERCENT
from testix.engine.errors import EvaluatorUnavailable, InvalidConfiguration
from testix.engine.questions import (
    Answer,
    CheckMode,
    FullAnswerQuestion,
    MatchingQuestion,
    MultipleChoiceQuestion,
    Question,
    SingleChoiceQuestion,
    free_text,
)
from testix.engine.session import CachedEvaluation, Session

log = logging.getLogger(__name__)

EMPTY_ANSWER_COMMENT = "Answer is empty."
EVALUATION_UNAVAILABLE_COMMENT = "evaluation unavailable"


@dataclass(frozen=True)
class Evaluation:
    score_percent: int
    comment: str


class Evaluator(Protocol):
    """Scores a free-text answer against reference answers."""

    async def evaluate(
        self,
        correct_answers: list[str],
        check_mode: CheckMode,
        user_text: str,
        *,
        question_text: str = "",
    ) -> Evaluation: ...


@dataclass(frozen=True)
class IncorrectReviewItem:
    question_number: int
    question_text: str
    correct_answers_text: list[str]


@dataclass(frozen=True)
class FullAnswerReviewItem:
    question_number: int
    question_text: str
    user_answer_text: str
    score_percent: int
    comment: str


@dataclass(frozen=True)
class AnswerOutcome:
    question_id: int
    user_answer: Answer | None
    correct: bool
    score_percent: int | None = None
    comment: str | None = None


@dataclass(frozen=True)
class Result:
    test_id: str
    total_questions: int
    correct_answers: int
    percentage: int
    time_spent_seconds: int
    passed: bool | None = None
    pass_threshold: int | None = None
    incorrect_review: list[IncorrectReviewItem] = field(default_factory=list)
    full_answer_review: list[FullAnswerReviewItem] = field(default_factory=list)
    answers: list[AnswerOutcome] = field(default_factory=list)

    @property
    def wrong_answers(self) -> int:
        return self.total_questions - self.correct_answers


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    return min(100, max(0, round_half_up(value)))


def grade_closed(question: Question, answer: Answer | None) -> bool:
    """Correctness of a single, multiple choice or matching answer."""
    if isinstance(question, SingleChoiceQuestion):
        if not isinstance(answer, list) or len(answer) != 1:
            return False
        return len(question.correct_answers) == 1 and answer[0] == question.correct_answers[0]
    if isinstance(question, MultipleChoiceQuestion):
        if not isinstance(answer, list):
            return False
        return sorted(answer) == sorted(question.correct_answers)
    if isinstance(question, MatchingQuestion):
        if not isinstance(answer, dict):
            return False
        return all(
            answer.get(index) == question.correct_matches.get(index)
            for index in range(len(question.meanings))
        )
    if isinstance(question, FullAnswerQuestion):
        raise InvalidConfiguration("Full-answer questions need an evaluator")
    assert_never(question)


def correct_answers_text(question: Question) -> list[str]:
    """Authored correct answers rendered for review."""
    if isinstance(question, (SingleChoiceQuestion, MultipleChoiceQuestion)):
        return [
            question.options[index]
            for index in sorted(question.correct_answers)
            if 0 <= index < len(question.options)
        ]
    if isinstance(question, MatchingQuestion):
        lines = []
        for meaning_index in sorted(question.correct_matches):
            key = question.correct_matches[meaning_index]
            meaning = (
                question.meanings[meaning_index]
                if 0 <= meaning_index < len(question.meanings)
                else ""
            )
            lines.append(f"{key}: {question.term_text(key)} -> {meaning}")
        return lines
    if isinstance(question, FullAnswerQuestion):
        return list(question.correct_answers)
    assert_never(question)


def effective_check_mode(question: FullAnswerQuestion, session: Session) -> CheckMode:
    return question.check_mode or session.settings.full_answer_check_mode


async def evaluate_full_answer(
    question: FullAnswerQuestion,
    user_text: str,
    check_mode: CheckMode,
    evaluator: Evaluator | None,
) -> Evaluation:
    """Run the evaluator for one free-text answer, recovering from failures."""
    if not user_text.strip():
        return Evaluation(score_percent=0, comment=EMPTY_ANSWER_COMMENT)
    if evaluator is None:
        return Evaluation(score_percent=0, comment=EVALUATION_UNAVAILABLE_COMMENT)
    try:
        evaluation = await evaluator.evaluate(
            list(question.correct_answers),
            check_mode,
            user_text.strip(),
            question_text=question.prompt,
        )
    except (EvaluatorUnavailable, asyncio.TimeoutError) as exc:
        log.warning("Evaluator unavailable for question %s: %s", question.id, exc)
        return Evaluation(score_percent=0, comment=EVALUATION_UNAVAILABLE_COMMENT)
    except Exception:
        log.exception("Evaluator errored for question %s", question.id)
        return Evaluation(score_percent=0, comment=EVALUATION_UNAVAILABLE_COMMENT)
    return Evaluation(
        score_percent=clamp_score(evaluation.score_percent),
        comment=evaluation.comment,
    )


async def _evaluate_cached(
    session: Session,
    question: FullAnswerQuestion,
    evaluator: Evaluator | None,
) -> Evaluation:
    cached: CachedEvaluation | None = session.cached_evaluation(question.id)
    if cached is not None:
        return Evaluation(score_percent=cached.score_percent, comment=cached.comment)
    user_text = free_text(session.answers.get(question.id))
    return await evaluate_full_answer(
        question, user_text, effective_check_mode(question, session), evaluator
    )


async def grade(
    session: Session,
    questions_by_id: Mapping[int, Question],
    evaluator: Evaluator | None,
    *,
    pass_percent: int = FULL_ANSWER_PASS_PERCENT,
    now: float | None = None,
) -> Result:
    """Grade ``session`` and build its Result."""
    questions: list[Question] = []
    for question_id in session.question_ids:
        question = questions_by_id.get(question_id)
        if question is None:
            raise InvalidConfiguration(f"Question {question_id} is missing")
        questions.append(question)

    full_answers = [q for q in questions if isinstance(q, FullAnswerQuestion)]
    evaluations = await asyncio.gather(
        *(_evaluate_cached(session, q, evaluator) for q in full_answers)
    )
    evaluation_by_id = {q.id: ev for q, ev in zip(full_answers, evaluations)}

    correct_count = 0
    outcomes: list[AnswerOutcome] = []
    incorrect_review: list[IncorrectReviewItem] = []
    full_answer_review: list[FullAnswerReviewItem] = []

    for number, question in enumerate(questions, start=1):
        answer = session.answers.get(question.id)
        if isinstance(question, FullAnswerQuestion):
            evaluation = evaluation_by_id[question.id]
            correct = evaluation.score_percent >= pass_percent
            outcomes.append(
                AnswerOutcome(
                    question_id=question.id,
                    user_answer=answer,
                    correct=correct,
                    score_percent=evaluation.score_percent,
                    comment=evaluation.comment,
                )
            )
            full_answer_review.append(
                FullAnswerReviewItem(
                    question_number=number,
                    question_text=question.prompt,
                    user_answer_text=free_text(answer),
                    score_percent=evaluation.score_percent,
                    comment=evaluation.comment,
                )
            )
        else:
            correct = grade_closed(question, answer)
            outcomes.append(
                AnswerOutcome(
                    question_id=question.id,
                    user_answer=answer,
                    correct=correct,
                    score_percent=100 if correct else 0,
                )
            )
            if not correct:
                incorrect_review.append(
                    IncorrectReviewItem(
                        question_number=number,
                        question_text=question.prompt,
                        correct_answers_text=correct_answers_text(question),
                    )
                )
        if correct:
            correct_count += 1

    total = len(questions)
    finished_at = time.time() if now is None else now
    time_spent = session.elapsed_seconds(finished_at)
    if session.time_limit_seconds:
        time_spent = min(time_spent, session.time_limit_seconds)

    threshold = session.pass_threshold
    return Result(
        test_id=session.test_id,
        total_questions=total,
        correct_answers=correct_count,
        percentage=round_half_up(100 * correct_count / total) if total else 0,
        time_spent_seconds=int(time_spent),
        passed=None if threshold is None else correct_count >= threshold,
        pass_threshold=threshold,
        incorrect_review=incorrect_review,
        full_answer_review=full_answer_review,
        answers=outcomes,
    )
