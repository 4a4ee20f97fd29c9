"""
Typed question model.

A test question is one of four closed variants. Consumers dispatch on the
concrete class and end with ``assert_never`` so a new variant is caught by
the type checker at every site that has to handle it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Union, assert_never


class QuestionType(str, enum.Enum):
    """Wire names of question variants."""

    SINGLE = "single"
    MULTIPLE = "multiple"
    MATCHING = "matching"
    FULL_ANSWER = "full_answer"


class CheckMode(str, enum.Enum):
    """Strictness of free-text evaluation."""

    LITE = "lite"
    MEDIUM = "medium"
    HARD = "hard"
    UNREAL = "unreal"


@dataclass(frozen=True)
class MediaFile:
    id: int
    name: str
    url: str
    mime_type: str | None = None
    size: int | None = None


@dataclass(frozen=True)
class SingleChoiceQuestion:
    id: int
    prompt: str
    options: list[str]
    correct_answers: list[int]
    media: list[MediaFile] = field(default_factory=list)
    enabled: bool = True

    type = QuestionType.SINGLE


@dataclass(frozen=True)
class MultipleChoiceQuestion:
    id: int
    prompt: str
    options: list[str]
    correct_answers: list[int]
    media: list[MediaFile] = field(default_factory=list)
    enabled: bool = True

    type = QuestionType.MULTIPLE


@dataclass(frozen=True)
class MatchingQuestion:
    id: int
    prompt: str
    terms: list[str]
    meanings: list[str]
    # meaning index -> term key ("A", "B", ...)
    correct_matches: dict[int, str]
    media: list[MediaFile] = field(default_factory=list)
    enabled: bool = True

    type = QuestionType.MATCHING

    def term_text(self, key: str) -> str:
        index = term_index(key)
        if index is None or index >= len(self.terms):
            return ""
        return self.terms[index]


@dataclass(frozen=True)
class FullAnswerQuestion:
    id: int
    prompt: str
    correct_answers: list[str]
    check_mode: CheckMode | None = None
    media: list[MediaFile] = field(default_factory=list)
    enabled: bool = True

    type = QuestionType.FULL_ANSWER


Question = Union[
    SingleChoiceQuestion,
    MultipleChoiceQuestion,
    MatchingQuestion,
    FullAnswerQuestion,
]

# Selected option indices, meaning index -> term key, or free text.
Answer = Union[list[int], dict[int, str], list[str]]


def term_key(index: int) -> str:
    """Letter key of the term at ``index`` (0 -> "A")."""
    if index < 0:
        raise ValueError("term index must be non-negative")
    key = ""
    index += 1
    while index:
        index, rem = divmod(index - 1, 26)
        key = chr(ord("A") + rem) + key
    return key


def term_index(key: str) -> int | None:
    """Inverse of :func:`term_key`; ``None`` for malformed keys."""
    if not key or not key.isalpha() or not key.isupper():
        return None
    index = 0
    for char in key:
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


def free_text(answer: Answer | None) -> str:
    """First free-text element of a full-answer answer."""
    if not isinstance(answer, list) or not answer:
        return ""
    return str(answer[0])


def is_answer_complete(question: Question, answer: Answer | None) -> bool:
    """Whether ``answer`` counts as answered for ``question``."""
    if answer is None:
        return False
    if isinstance(question, SingleChoiceQuestion):
        return isinstance(answer, list) and len(answer) == 1
    if isinstance(question, MultipleChoiceQuestion):
        return isinstance(answer, list) and len(answer) >= 1
    if isinstance(question, MatchingQuestion):
        return isinstance(answer, dict) and len(answer) >= 1
    if isinstance(question, FullAnswerQuestion):
        return bool(free_text(answer).strip())
    assert_never(question)


def is_answer_present(answer: Answer | None) -> bool:
    """Shape-only check used when the question is unknown."""
    if isinstance(answer, dict):
        return len(answer) >= 1
    if isinstance(answer, list):
        if answer and all(isinstance(item, str) for item in answer):
            return bool(answer[0].strip())
        return len(answer) >= 1
    return False
