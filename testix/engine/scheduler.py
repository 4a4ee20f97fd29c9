"""Builds session plans for full and express attempts."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import MutableSequence, TypeVar

from testix.config import (
    DEFAULT_PASS_RATIO,
    EXPRESS_DEFAULT_QUESTION_COUNT,
    EXPRESS_DEFAULT_TIME_LIMIT_MINUTES,
    EXPRESS_MAX_TIME_LIMIT_MINUTES,
    EXPRESS_MIN_TIME_LIMIT_SECONDS,
)
from testix.engine.errors import (
    InsufficientQuestions,
    InvalidConfiguration,
    InvalidThreshold,
)
from testix.engine.questions import CheckMode
from testix.engine.session import SessionMode, SessionSettings
from testix.serialization import TestDefinition

T = TypeVar("T")

_rng = random.Random()


@dataclass(frozen=True)
class ExpressConfig:
    question_count: int
    pass_threshold: int
    time_limit_enabled: bool = False
    time_limit_minutes: float = EXPRESS_DEFAULT_TIME_LIMIT_MINUTES
    full_answer_check_mode: CheckMode = CheckMode.MEDIUM


@dataclass(frozen=True)
class SessionPlan:
    mode: SessionMode
    question_ids: tuple[int, ...]
    pass_threshold: int
    time_limit_seconds: int | None = None
    settings: SessionSettings = field(default_factory=SessionSettings)


def default_express_config(total: int) -> ExpressConfig:
    """Defaults shown in the express start form."""
    question_count = min(EXPRESS_DEFAULT_QUESTION_COUNT, max(1, total))
    return ExpressConfig(
        question_count=question_count,
        pass_threshold=min(
            question_count, max(1, math.ceil(question_count * DEFAULT_PASS_RATIO))
        ),
    )


def fisher_yates_shuffle(items: MutableSequence[T], rng: random.Random | None = None) -> MutableSequence[T]:
    """Shuffle ``items`` in place with every permutation equally likely."""
    rng = rng or _rng
    for i in range(len(items) - 1, 0, -1):
        j = rng.randrange(i + 1)
        items[i], items[j] = items[j], items[i]
    return items


def express_time_limit_seconds(config: ExpressConfig) -> int | None:
    if not config.time_limit_enabled:
        return None
    if not 0 < config.time_limit_minutes <= EXPRESS_MAX_TIME_LIMIT_MINUTES:
        raise InvalidConfiguration(
            f"Time limit must be within (0, {EXPRESS_MAX_TIME_LIMIT_MINUTES}] minutes"
        )
    return max(EXPRESS_MIN_TIME_LIMIT_SECONDS, round(config.time_limit_minutes * 60))


def build_session(
    test: TestDefinition,
    mode: SessionMode,
    config: ExpressConfig | None = None,
    *,
    settings: SessionSettings | None = None,
    rng: random.Random | None = None,
) -> SessionPlan:
    enabled_ids = [question.id for question in test.enabled_questions]

    if mode is SessionMode.FULL:
        if not enabled_ids:
            raise InsufficientQuestions(f"Test {test.id} has no enabled questions")
        total = len(enabled_ids)
        threshold = test.pass_threshold if test.pass_threshold is not None else total
        return SessionPlan(
            mode=mode,
            question_ids=tuple(enabled_ids),
            pass_threshold=min(total, max(1, int(threshold))),
            time_limit_seconds=test.time_limit_seconds or None,
            settings=settings or SessionSettings(),
        )

    if config is None:
        raise InvalidConfiguration("Express mode requires a configuration")
    if config.question_count < 1:
        raise InvalidConfiguration("questionCount must be at least 1")
    if config.question_count > len(enabled_ids):
        raise InsufficientQuestions(
            f"Requested {config.question_count} questions, "
            f"test {test.id} has {len(enabled_ids)} enabled"
        )
    if config.pass_threshold <= 0 or config.pass_threshold > config.question_count:
        raise InvalidThreshold(
            f"passThreshold must be within [1, {config.question_count}]"
        )

    shuffled = fisher_yates_shuffle(list(enabled_ids), rng)
    return SessionPlan(
        mode=mode,
        question_ids=tuple(shuffled[: config.question_count]),
        pass_threshold=min(max(1, config.pass_threshold), config.question_count),
        time_limit_seconds=express_time_limit_seconds(config),
        settings=SessionSettings(
            hints_enabled=False,
            check_after_answer=False,
            show_incorrect_at_end=True,
            full_answer_check_mode=config.full_answer_check_mode,
        ),
    )
