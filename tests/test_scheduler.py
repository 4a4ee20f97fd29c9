import random
from collections import Counter

import pytest

from testix import serialization
from testix.engine.errors import (
    InsufficientQuestions,
    InvalidConfiguration,
    InvalidThreshold,
)
from testix.engine.questions import CheckMode, SingleChoiceQuestion
from testix.engine.scheduler import (
    ExpressConfig,
    build_session,
    default_express_config,
    express_time_limit_seconds,
    fisher_yates_shuffle,
)
from testix.engine.session import SessionMode, SessionSettings


def _test(count: int, disabled: set[int] = frozenset(), **kwargs) -> serialization.TestDefinition:
    questions = [
        SingleChoiceQuestion(
            id=index,
            prompt=f"Question {index}",
            options=["a", "b"],
            correct_answers=[0],
            enabled=index not in disabled,
        )
        for index in range(1, count + 1)
    ]
    return serialization.TestDefinition(id="t1", title="Test", questions=questions, **kwargs)


def test_full_mode_keeps_authored_order() -> None:
    settings = SessionSettings(hints_enabled=True)
    plan = build_session(_test(5, disabled={2}), SessionMode.FULL, settings=settings)
    assert plan.question_ids == (1, 3, 4, 5)
    assert plan.pass_threshold == 4
    assert plan.time_limit_seconds is None
    assert plan.settings is settings


def test_full_mode_uses_test_limits() -> None:
    plan = build_session(
        _test(3, pass_threshold=10, time_limit_seconds=600), SessionMode.FULL
    )
    assert plan.pass_threshold == 3
    assert plan.time_limit_seconds == 600


def test_full_mode_without_enabled_questions() -> None:
    with pytest.raises(InsufficientQuestions):
        build_session(_test(2, disabled={1, 2}), SessionMode.FULL)


def test_express_picks_unique_enabled_questions() -> None:
    test = _test(50, disabled={7, 8})
    config = ExpressConfig(question_count=20, pass_threshold=17)
    for seed in range(20):
        plan = build_session(test, SessionMode.EXPRESS, config, rng=random.Random(seed))
        assert len(plan.question_ids) == 20
        assert len(set(plan.question_ids)) == 20
        assert not {7, 8} & set(plan.question_ids)
        assert plan.pass_threshold == 17
        assert plan.time_limit_seconds is None


def test_express_settings_are_fixed() -> None:
    config = ExpressConfig(
        question_count=2, pass_threshold=1, full_answer_check_mode=CheckMode.LITE
    )
    plan = build_session(_test(3), SessionMode.EXPRESS, config, rng=random.Random(1))
    assert plan.mode is SessionMode.EXPRESS
    assert plan.settings == SessionSettings(
        hints_enabled=False,
        check_after_answer=False,
        show_incorrect_at_end=True,
        full_answer_check_mode=CheckMode.LITE,
    )


def test_express_threshold_above_count_is_rejected() -> None:
    config = ExpressConfig(question_count=20, pass_threshold=25)
    with pytest.raises(InvalidThreshold):
        build_session(_test(50), SessionMode.EXPRESS, config)


def test_express_rejects_bad_counts() -> None:
    with pytest.raises(InsufficientQuestions):
        build_session(_test(5), SessionMode.EXPRESS, ExpressConfig(question_count=6, pass_threshold=1))
    with pytest.raises(InvalidConfiguration):
        build_session(_test(5), SessionMode.EXPRESS, ExpressConfig(question_count=0, pass_threshold=1))
    with pytest.raises(InvalidThreshold):
        build_session(_test(5), SessionMode.EXPRESS, ExpressConfig(question_count=3, pass_threshold=0))
    with pytest.raises(InvalidConfiguration):
        build_session(_test(5), SessionMode.EXPRESS)


def test_express_time_limit_has_a_floor() -> None:
    def limit(minutes: float) -> int | None:
        return express_time_limit_seconds(
            ExpressConfig(
                question_count=1,
                pass_threshold=1,
                time_limit_enabled=True,
                time_limit_minutes=minutes,
            )
        )

    assert limit(0.5) == 60
    assert limit(1.5) == 90
    assert limit(20) == 1200
    assert express_time_limit_seconds(ExpressConfig(question_count=1, pass_threshold=1)) is None
    with pytest.raises(InvalidConfiguration):
        limit(0)
    with pytest.raises(InvalidConfiguration):
        limit(1000)


def test_default_express_config() -> None:
    assert default_express_config(50) == ExpressConfig(question_count=20, pass_threshold=17)
    assert default_express_config(10) == ExpressConfig(question_count=10, pass_threshold=9)
    assert default_express_config(1) == ExpressConfig(question_count=1, pass_threshold=1)


def test_shuffle_is_uniform() -> None:
    rng = random.Random(42)
    runs = 6000
    counts = Counter(tuple(fisher_yates_shuffle([1, 2, 3], rng)) for _ in range(runs))
    assert len(counts) == 6
    expected = runs / 6
    for count in counts.values():
        assert abs(count - expected) < expected * 0.15


def test_shuffle_keeps_elements() -> None:
    items = list(range(30))
    shuffled = fisher_yates_shuffle(list(items), random.Random(3))
    assert sorted(shuffled) == items
