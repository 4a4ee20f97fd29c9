from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, assert_never

from testix.engine.errors import InvalidConfiguration
from testix.engine.grading import Result
from testix.engine.questions import (
    Answer,
    CheckMode,
    FullAnswerQuestion,
    MatchingQuestion,
    MediaFile,
    MultipleChoiceQuestion,
    Question,
    QuestionType,
    SingleChoiceQuestion,
    term_index,
    term_key,
)
from testix.engine.session import (
    CachedEvaluation,
    Session,
    SessionMode,
    SessionSettings,
)


@dataclass(frozen=True)
class TestDefinition:
    id: str
    title: str
    questions: list[Question] = field(default_factory=list)
    pass_threshold: int | None = None
    time_limit_seconds: int | None = None

    @property
    def questions_by_id(self) -> dict[int, Question]:
        return {question.id: question for question in self.questions}

    @property
    def enabled_questions(self) -> list[Question]:
        return [question for question in self.questions if question.enabled]


def _media_from_payload(items: object) -> list[MediaFile]:
    if not isinstance(items, list):
        return []
    media = []
    for item in items:
        if not isinstance(item, dict):
            continue
        media.append(
            MediaFile(
                id=int(item.get("id", 0)),
                name=str(item.get("name", "")),
                url=str(item.get("url", "")),
                mime_type=item.get("mime_type"),
                size=item.get("size"),
            )
        )
    return media


def _index_list(value: object) -> list[int]:
    if not isinstance(value, list):
        return []
    return [int(item) for item in value]


def _ordered_texts(value: object) -> list[str]:
    """Accept a list or a dict keyed by letters/indices, keep key order."""
    if isinstance(value, list):
        return [str(item) for item in value]
    if isinstance(value, dict):
        def sort_key(key: str) -> int:
            index = term_index(key)
            if index is not None:
                return index
            return int(key)

        return [str(value[key]) for key in sorted(value, key=sort_key)]
    return []


def _matches_from_payload(value: object) -> dict[int, str]:
    """Parse ``{"0": "A"}`` or the ``["A0", "B1"]`` pair format."""
    if isinstance(value, dict):
        return {int(meaning): str(key) for meaning, key in value.items()}
    matches: dict[int, str] = {}
    if isinstance(value, list):
        for pair in value:
            pair = str(pair).strip()
            key = "".join(char for char in pair if char.isalpha())
            digits = pair[len(key):]
            if not key or not digits.isdigit():
                raise InvalidConfiguration(f"Malformed matching pair: {pair!r}")
            matches[int(digits)] = key
    return matches


def question_from_payload(payload: dict[str, Any]) -> Question:
    """Build a typed question from its JSON payload."""
    try:
        question_type = QuestionType(payload.get("type"))
    except ValueError as exc:
        raise InvalidConfiguration(
            f"Unknown question type: {payload.get('type')!r}"
        ) from exc

    common = {
        "id": int(payload["id"]),
        "prompt": str(payload.get("question") or payload.get("prompt") or ""),
        "media": _media_from_payload(payload.get("files") or payload.get("media")),
        "enabled": bool(payload.get("enabled", True)) and not payload.get("disabled", False),
    }
    if question_type is QuestionType.SINGLE:
        return SingleChoiceQuestion(
            options=[str(option) for option in payload.get("options", [])],
            correct_answers=_index_list(payload.get("correctAnswers")),
            **common,
        )
    if question_type is QuestionType.MULTIPLE:
        return MultipleChoiceQuestion(
            options=[str(option) for option in payload.get("options", [])],
            correct_answers=_index_list(payload.get("correctAnswers")),
            **common,
        )
    if question_type is QuestionType.MATCHING:
        return MatchingQuestion(
            terms=_ordered_texts(payload.get("terms")),
            meanings=_ordered_texts(payload.get("meanings")),
            correct_matches=_matches_from_payload(
                payload.get("correctMatches", payload.get("correctAnswers"))
            ),
            **common,
        )
    if question_type is QuestionType.FULL_ANSWER:
        check_mode = payload.get("checkMode")
        return FullAnswerQuestion(
            correct_answers=[str(item) for item in payload.get("correctAnswers", [])],
            check_mode=CheckMode(check_mode) if check_mode else None,
            **common,
        )
    assert_never(question_type)


def definition_from_payload(payload: dict[str, Any]) -> TestDefinition:
    questions = [
        question_from_payload(item)
        for item in payload.get("questions", [])
        if isinstance(item, dict)
    ]
    ids = [question.id for question in questions]
    if len(set(ids)) != len(ids):
        raise InvalidConfiguration("Question ids must be unique within a test")
    return TestDefinition(
        id=str(payload.get("id") or payload.get("uuid") or ""),
        title=str(payload.get("title") or payload.get("discipline_name") or ""),
        questions=questions,
        pass_threshold=payload.get("passThreshold"),
        time_limit_seconds=payload.get("timeLimitSeconds"),
    )


def serialize_question(question: Question) -> dict[str, Any]:
    """Question payload without its correct answers, for answering screens."""
    payload: dict[str, Any] = {
        "id": question.id,
        "type": question.type.value,
        "question": question.prompt,
        "files": [
            {
                "id": media.id,
                "name": media.name,
                "url": media.url,
                "mime_type": media.mime_type,
                "size": media.size,
            }
            for media in question.media
        ],
    }
    if isinstance(question, (SingleChoiceQuestion, MultipleChoiceQuestion)):
        payload["options"] = list(question.options)
    elif isinstance(question, MatchingQuestion):
        payload["terms"] = {
            term_key(index): term for index, term in enumerate(question.terms)
        }
        payload["meanings"] = {
            str(index): meaning for index, meaning in enumerate(question.meanings)
        }
    elif isinstance(question, FullAnswerQuestion):
        payload["checkMode"] = question.check_mode.value if question.check_mode else None
    else:
        assert_never(question)
    return payload


def answer_to_payload(answer: Answer) -> object:
    if isinstance(answer, dict):
        return {str(key): value for key, value in answer.items()}
    return list(answer)


def answer_from_payload(value: object) -> Answer:
    try:
        if isinstance(value, dict):
            return {int(key): str(item) for key, item in value.items()}
        if isinstance(value, list):
            if all(isinstance(item, str) for item in value) and value:
                return [str(item) for item in value]
            return [int(item) for item in value]
    except (TypeError, ValueError) as exc:
        raise InvalidConfiguration(f"Unsupported answer value: {value!r}") from exc
    raise InvalidConfiguration(f"Unsupported answer value: {value!r}")


def settings_to_payload(settings: SessionSettings) -> dict[str, object]:
    return {
        "hintsEnabled": settings.hints_enabled,
        "checkAfterAnswer": settings.check_after_answer,
        "showIncorrectAtEnd": settings.show_incorrect_at_end,
        "fullAnswerCheckMode": settings.full_answer_check_mode.value,
    }


def settings_from_payload(payload: object) -> SessionSettings:
    if not isinstance(payload, dict):
        return SessionSettings()
    defaults = SessionSettings()
    return SessionSettings(
        hints_enabled=bool(payload.get("hintsEnabled", defaults.hints_enabled)),
        check_after_answer=bool(
            payload.get("checkAfterAnswer", defaults.check_after_answer)
        ),
        show_incorrect_at_end=bool(
            payload.get("showIncorrectAtEnd", defaults.show_incorrect_at_end)
        ),
        full_answer_check_mode=CheckMode(
            payload.get("fullAnswerCheckMode", defaults.full_answer_check_mode.value)
        ),
    )


def session_to_payload(session: Session) -> dict[str, object]:
    return {
        "testId": session.test_id,
        "mode": session.mode.value,
        "questionIds": list(session.question_ids),
        "currentQuestionIndex": session.current_index,
        "userAnswers": {
            str(question_id): answer_to_payload(answer)
            for question_id, answer in session.answers.items()
        },
        "answerEvaluations": {
            str(question_id): {
                "userAnswerText": evaluation.user_answer_text,
                "scorePercent": evaluation.score_percent,
                "comment": evaluation.comment,
            }
            for question_id, evaluation in session.evaluations.items()
        },
        "startTime": session.started_at,
        "timeLimitSeconds": session.time_limit_seconds,
        "passThreshold": session.pass_threshold,
        "settings": settings_to_payload(session.settings),
        "token": session.token,
        "finished": session.finished,
    }


def session_from_payload(payload: dict[str, Any]) -> Session:
    question_ids = tuple(int(item) for item in payload.get("questionIds", []))
    if not question_ids:
        raise InvalidConfiguration("Stored session has no questions")
    current_index = int(payload.get("currentQuestionIndex", 0))
    current_index = min(max(0, current_index), len(question_ids) - 1)
    answers = {
        int(question_id): answer_from_payload(value)
        for question_id, value in (payload.get("userAnswers") or {}).items()
    }
    evaluations = {
        int(question_id): CachedEvaluation(
            user_answer_text=str(value.get("userAnswerText", "")),
            score_percent=int(value.get("scorePercent", 0)),
            comment=str(value.get("comment", "")),
        )
        for question_id, value in (payload.get("answerEvaluations") or {}).items()
        if isinstance(value, dict)
    }
    extra = {}
    if payload.get("token"):
        extra["token"] = str(payload["token"])
    return Session(
        test_id=str(payload["testId"]),
        question_ids=question_ids,
        started_at=float(payload["startTime"]),
        mode=SessionMode(payload.get("mode", SessionMode.FULL.value)),
        current_index=current_index,
        answers=answers,
        time_limit_seconds=payload.get("timeLimitSeconds"),
        pass_threshold=payload.get("passThreshold"),
        settings=settings_from_payload(payload.get("settings")),
        evaluations=evaluations,
        finished=bool(payload.get("finished", False)),
        **extra,
    )


def serialize_result(result: Result) -> dict[str, object]:
    payload: dict[str, object] = {
        "testId": result.test_id,
        "totalQuestions": result.total_questions,
        "correctAnswers": result.correct_answers,
        "percentage": result.percentage,
        "timeSpent": result.time_spent_seconds,
        "incorrectReview": [
            {
                "questionNumber": item.question_number,
                "questionText": item.question_text,
                "correctAnswersText": list(item.correct_answers_text),
            }
            for item in result.incorrect_review
        ],
        "fullAnswerReview": [
            {
                "questionNumber": item.question_number,
                "questionText": item.question_text,
                "userAnswerText": item.user_answer_text,
                "scorePercent": item.score_percent,
                "comment": item.comment,
            }
            for item in result.full_answer_review
        ],
        "answers": [
            {
                "questionId": outcome.question_id,
                "userAnswer": (
                    answer_to_payload(outcome.user_answer)
                    if outcome.user_answer is not None
                    else []
                ),
                "correct": outcome.correct,
                "scorePercent": outcome.score_percent,
                "comment": outcome.comment,
            }
            for outcome in result.answers
        ],
    }
    if result.pass_threshold is not None:
        payload["passThreshold"] = result.pass_threshold
        payload["passed"] = result.passed
    return payload
