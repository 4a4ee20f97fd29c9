"""Free-answer evaluation through an Ollama chat model."""
from __future__ import annotations

import asyncio
import json
import logging

import requests

from testix.config import (
    EVALUATOR_TIMEOUT_SECONDS,
    OLLAMA_BASE_URL,
    OLLAMA_MODEL,
    OLLAMA_TOKEN,
)
from testix.engine.errors import EvaluatorUnavailable
from testix.engine.grading import Evaluation, clamp_score
from testix.engine.questions import CheckMode

log = logging.getLogger(__name__)

NO_COMMENT = "No comment."

CHECK_MODE_GUIDELINES = {
    CheckMode.LITE: (
        "Lite mode: conveying the main idea is enough. Do not require exact "
        "wording; 100% is fine for a short paraphrase with fully correct meaning."
    ),
    CheckMode.MEDIUM: (
        "Medium mode: the answer must convey the idea and use the key terms and "
        "constructs of the reference answer. Missing key elements noticeably "
        "lowers the score."
    ),
    CheckMode.HARD: (
        "Hard mode: the reference answer must be reproduced almost completely. "
        "Omissions, reorderings or simplifications lower the score heavily."
    ),
    CheckMode.UNREAL: (
        "Unreal mode: the answer must match the reference almost word for word. "
        "Any difference lowers the score; 100% only for a practically exact match."
    ),
}

CHECK_ANSWER_TOOL = {
    "type": "function",
    "function": {
        "name": "check_answer",
        "description": "Scores a student's answer on a 0-100 scale with a short comment.",
        "parameters": {
            "type": "object",
            "properties": {
                "scorePercent": {
                    "type": "number",
                    "description": "Correctness percentage (0-100)",
                },
                "comment": {
                    "type": "string",
                    "description": "Short comment: what is right, what is missing, how to improve.",
                },
            },
            "required": ["scorePercent", "comment"],
        },
    },
}


def build_system_prompt(check_mode: CheckMode) -> str:
    rule = CHECK_MODE_GUIDELINES.get(check_mode, CHECK_MODE_GUIDELINES[CheckMode.MEDIUM])
    return (
        "You are the chief examiner grading written student answers. "
        "Compare the user's answer with the accepted correct answers "
        "(correctAnswers) and judge meaning and completeness. "
        f"Apply strictness according to the check mode: {rule} "
        "Keep the comment brief: what is right, what is missing and how to improve. "
        "Always call the check_answer tool with scorePercent (0-100) and comment. "
        "Do not output anything besides the tool call."
    )


def parse_evaluation(data: dict[str, object]) -> Evaluation:
    """Extract the verdict from a chat response (tool call or JSON body)."""
    message = data.get("message") if isinstance(data, dict) else None
    if not isinstance(message, dict):
        raise EvaluatorUnavailable("Evaluator response has no message")

    for call in message.get("tool_calls") or []:
        function = call.get("function", {}) if isinstance(call, dict) else {}
        if function.get("name") != "check_answer":
            continue
        arguments = function.get("arguments")
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError as exc:
                raise EvaluatorUnavailable("Malformed tool arguments") from exc
        if isinstance(arguments, dict):
            return _normalize(arguments)

    raw = str(message.get("content") or "").strip()
    if raw:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise EvaluatorUnavailable("Evaluator returned non-JSON content") from exc
        if isinstance(parsed, dict):
            return _normalize(parsed)

    raise EvaluatorUnavailable("Evaluator did not call check_answer")


def _normalize(payload: dict[str, object]) -> Evaluation:
    try:
        score = float(payload.get("scorePercent", 0))
    except (TypeError, ValueError) as exc:
        raise EvaluatorUnavailable("scorePercent is not a number") from exc
    comment = str(payload.get("comment") or "").strip() or NO_COMMENT
    return Evaluation(score_percent=clamp_score(score), comment=comment)


class OllamaEvaluator:
    """Evaluator backed by ``POST {base_url}/api/chat``."""

    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        model: str = OLLAMA_MODEL,
        token: str | None = OLLAMA_TOKEN,
        timeout: int = EVALUATOR_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.session = requests.Session()
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def build_payload(
        self,
        correct_answers: list[str],
        check_mode: CheckMode,
        user_text: str,
        question_text: str = "",
    ) -> dict[str, object]:
        return {
            "model": self.model,
            "stream": False,
            "options": {"temperature": 0},
            "messages": [
                {"role": "system", "content": build_system_prompt(check_mode)},
                {
                    "role": "user",
                    "content": json.dumps(
                        {
                            "questionText": question_text,
                            "correctAnswers": correct_answers,
                            "userAnswer": user_text,
                            "checkMode": check_mode.value,
                        },
                        ensure_ascii=False,
                        indent=2,
                    ),
                },
            ],
            "tools": [CHECK_ANSWER_TOOL],
        }

    def evaluate_sync(
        self,
        correct_answers: list[str],
        check_mode: CheckMode,
        user_text: str,
        question_text: str = "",
    ) -> Evaluation:
        payload = self.build_payload(correct_answers, check_mode, user_text, question_text)
        try:
            response = self.session.post(
                f"{self.base_url}/api/chat", json=payload, timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise EvaluatorUnavailable(f"Evaluator request failed: {exc}") from exc
        evaluation = parse_evaluation(data)
        log.debug("Evaluated answer in %s mode: %s%%", check_mode.value, evaluation.score_percent)
        return evaluation

    async def evaluate(
        self,
        correct_answers: list[str],
        check_mode: CheckMode,
        user_text: str,
        *,
        question_text: str = "",
    ) -> Evaluation:
        return await asyncio.wait_for(
            asyncio.to_thread(
                self.evaluate_sync, correct_answers, check_mode, user_text, question_text
            ),
            timeout=self.timeout + 5,
        )


class OfflineEvaluator:
    """Evaluator used when no model is configured; always unavailable."""

    async def evaluate(
        self,
        correct_answers: list[str],
        check_mode: CheckMode,
        user_text: str,
        *,
        question_text: str = "",
    ) -> Evaluation:
        raise EvaluatorUnavailable("No evaluator configured")


def build_evaluator(offline: bool = False) -> OllamaEvaluator | OfflineEvaluator:
    if offline or not OLLAMA_BASE_URL:
        log.info("Free-answer evaluation is disabled")
        return OfflineEvaluator()
    return OllamaEvaluator()
