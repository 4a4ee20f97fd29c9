import asyncio

import pytest

from testix.engine.errors import EvaluatorUnavailable
from testix.engine.grading import (
    EMPTY_ANSWER_COMMENT,
    EVALUATION_UNAVAILABLE_COMMENT,
    Evaluation,
    IncorrectReviewItem,
    correct_answers_text,
    grade,
    grade_closed,
    round_half_up,
)
from testix.engine.questions import (
    CheckMode,
    FullAnswerQuestion,
    MatchingQuestion,
    MultipleChoiceQuestion,
    SingleChoiceQuestion,
)
from testix.engine.session import CachedEvaluation, Session, SessionSettings


class FakeEvaluator:
    def __init__(self, score: int = 100, comment: str = "ok", error: Exception | None = None):
        self.score = score
        self.comment = comment
        self.error = error
        self.calls = []

    async def evaluate(self, correct_answers, check_mode, user_text, *, question_text=""):
        self.calls.append((tuple(correct_answers), check_mode, user_text))
        if self.error is not None:
            raise self.error
        return Evaluation(score_percent=self.score, comment=self.comment)


SINGLE = SingleChoiceQuestion(
    id=1, prompt="Pick c", options=["a", "b", "c"], correct_answers=[2]
)
MULTIPLE = MultipleChoiceQuestion(
    id=2, prompt="Pick a and c", options=["a", "b", "c"], correct_answers=[0, 2]
)
MATCHING = MatchingQuestion(
    id=3,
    prompt="Match",
    terms=["cat", "dog"],
    meanings=["woof", "meow"],
    correct_matches={0: "B", 1: "A"},
)
FULL = FullAnswerQuestion(id=4, prompt="Explain", correct_answers=["because"])

QUESTIONS = {question.id: question for question in (SINGLE, MULTIPLE, MATCHING, FULL)}


def _session(ids, answers, **kwargs) -> Session:
    return Session(
        test_id="t1",
        question_ids=tuple(ids),
        started_at=1000.0,
        answers=answers,
        **kwargs,
    )


def _grade(session: Session, evaluator=None, **kwargs):
    return asyncio.run(grade(session, QUESTIONS, evaluator, now=1030.0, **kwargs))


def test_single_choice_correct_and_incorrect() -> None:
    right = _grade(_session([1], {1: [2]}))
    assert right.correct_answers == 1
    assert right.incorrect_review == []

    wrong = _grade(_session([1], {1: [1]}))
    assert wrong.correct_answers == 0
    assert wrong.incorrect_review == [
        IncorrectReviewItem(question_number=1, question_text="Pick c", correct_answers_text=["c"])
    ]


def test_multiple_choice_has_no_partial_credit() -> None:
    assert grade_closed(MULTIPLE, [2, 0])
    assert not grade_closed(MULTIPLE, [0])
    assert not grade_closed(MULTIPLE, [0, 1, 2])
    assert not grade_closed(MULTIPLE, None)


def test_multiple_choice_rejects_duplicate_selections() -> None:
    assert not grade_closed(MULTIPLE, [0, 0, 2])
    assert not grade_closed(MULTIPLE, [0, 2, 2])


def test_matching_requires_every_pair() -> None:
    assert grade_closed(MATCHING, {0: "B", 1: "A"})
    assert not grade_closed(MATCHING, {0: "B"})
    assert not grade_closed(MATCHING, {0: "A", 1: "B"})
    assert correct_answers_text(MATCHING) == ["B: dog -> woof", "A: cat -> meow"]


def test_unanswered_questions_count_as_incorrect() -> None:
    result = _grade(_session([1, 2, 3], {}, pass_threshold=1))
    assert result.correct_answers == 0
    assert result.wrong_answers == 3
    assert [item.question_number for item in result.incorrect_review] == [1, 2, 3]
    assert result.passed is False


def test_full_answer_score_counts_above_cutoff() -> None:
    evaluator = FakeEvaluator(score=72, comment="mostly right")
    result = _grade(_session([4], {4: ["because it is"]}), evaluator)
    assert result.correct_answers == 1
    assert result.incorrect_review == []
    review = result.full_answer_review[0]
    assert review.score_percent == 72
    assert review.comment == "mostly right"
    assert review.user_answer_text == "because it is"


def test_full_answer_review_keeps_low_scores() -> None:
    result = _grade(_session([4], {4: ["no idea"]}), FakeEvaluator(score=40))
    assert result.correct_answers == 0
    assert result.full_answer_review[0].score_percent == 40
    assert result.incorrect_review == []


def test_full_answer_cutoff_is_configurable() -> None:
    session = _session([4], {4: ["because"]})
    assert _grade(session, FakeEvaluator(score=72), pass_percent=80).correct_answers == 0
    assert _grade(session, FakeEvaluator(score=50)).correct_answers == 1


def test_empty_full_answer_skips_evaluator() -> None:
    evaluator = FakeEvaluator()
    result = _grade(_session([4], {4: ["  "]}), evaluator)
    assert evaluator.calls == []
    assert result.full_answer_review[0].score_percent == 0
    assert result.full_answer_review[0].comment == EMPTY_ANSWER_COMMENT


@pytest.mark.parametrize(
    "error",
    [EvaluatorUnavailable("down"), asyncio.TimeoutError(), RuntimeError("boom")],
)
def test_evaluator_failure_scores_zero(error: Exception) -> None:
    result = _grade(_session([1, 4], {1: [2], 4: ["because"]}), FakeEvaluator(error=error))
    assert result.correct_answers == 1
    assert result.full_answer_review[0].score_percent == 0
    assert result.full_answer_review[0].comment == EVALUATION_UNAVAILABLE_COMMENT


def test_missing_evaluator_scores_zero() -> None:
    result = _grade(_session([4], {4: ["because"]}), None)
    assert result.full_answer_review[0].comment == EVALUATION_UNAVAILABLE_COMMENT


def test_out_of_range_scores_are_clamped() -> None:
    result = _grade(_session([4], {4: ["because"]}), FakeEvaluator(score=140))
    assert result.full_answer_review[0].score_percent == 100


def test_cached_evaluation_is_reused() -> None:
    evaluator = FakeEvaluator(score=10)
    session = _session(
        [4],
        {4: ["because"]},
        evaluations={4: CachedEvaluation("because", 90, "cached")},
    )
    result = _grade(session, evaluator)
    assert evaluator.calls == []
    assert result.full_answer_review[0].score_percent == 90


def test_question_check_mode_overrides_session() -> None:
    strict = FullAnswerQuestion(
        id=5, prompt="Strict", correct_answers=["x"], check_mode=CheckMode.UNREAL
    )
    questions = {**QUESTIONS, 5: strict}
    evaluator = FakeEvaluator()
    session = _session(
        [4, 5],
        {4: ["a"], 5: ["b"]},
        settings=SessionSettings(full_answer_check_mode=CheckMode.LITE),
    )
    asyncio.run(grade(session, questions, evaluator, now=1001.0))
    assert sorted(call[1].value for call in evaluator.calls) == ["lite", "unreal"]


def test_percentage_and_pass_flag() -> None:
    session = _session(
        [1, 2, 3], {1: [2], 2: [0, 2], 3: {0: "A"}}, pass_threshold=2
    )
    result = _grade(session)
    assert result.correct_answers == 2
    assert result.percentage == 67
    assert result.passed is True
    assert result.pass_threshold == 2
    assert [outcome.correct for outcome in result.answers] == [True, True, False]


def test_no_threshold_means_no_verdict() -> None:
    result = _grade(_session([1], {1: [2]}))
    assert result.passed is None
    assert result.pass_threshold is None


def test_time_spent_is_capped_by_limit() -> None:
    assert _grade(_session([1], {})).time_spent_seconds == 30
    assert _grade(_session([1], {}, time_limit_seconds=20)).time_spent_seconds == 20


def test_grading_is_deterministic() -> None:
    session = _session([1, 2, 3, 4], {1: [2], 2: [0], 4: ["because"]}, pass_threshold=2)
    first = _grade(session, FakeEvaluator(score=60))
    second = _grade(session, FakeEvaluator(score=60))
    assert first == second


def test_round_half_up() -> None:
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(66.66) == 67
    assert round_half_up(33.33) == 33
