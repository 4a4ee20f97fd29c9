"""Session endpoints: start, answer, navigate, finish, result."""
import logging
from dataclasses import replace
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from testix.dependencies import get_runtime
from testix.engine.errors import NoActiveSession
from testix.engine.lifecycle import LifecycleState
from testix.engine.scheduler import build_session, default_express_config
from testix.engine.session import SessionMode, SessionSettings
from testix.models import AnswerRequest, NavigateRequest, StartSessionRequest
from testix.serialization import answer_from_payload, serialize_result
from testix.services.runtime_service import SessionRuntime
from testix.services.test_service import load_test_definition

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sessions"])

Runtime = Annotated[SessionRuntime, Depends(get_runtime)]


def _restore(runtime: SessionRuntime) -> None:
    try:
        runtime.restore(load_test_definition)
    except HTTPException as exc:
        if exc.status_code != 404:
            raise
        log.warning("Persisted session refers to a missing test, dropping it")
        runtime.reset()


async def _graded_payload(runtime: SessionRuntime) -> dict[str, object]:
    result = await runtime.submit()
    test_id = result.test_id
    return {
        "testId": test_id,
        "state": LifecycleState.GRADED.value,
        "redirect": runtime.result_route(test_id),
        "result": serialize_result(result),
    }


@router.get("/tests/{test_id}/express-defaults")
def express_defaults(test_id: str) -> dict[str, object]:
    """Defaults for the express start form."""
    test = load_test_definition(test_id)
    total = len(test.enabled_questions)
    config = default_express_config(total)
    return {
        "availableQuestions": total,
        "questionCount": config.question_count,
        "passThreshold": config.pass_threshold,
        "timeLimitEnabled": config.time_limit_enabled,
        "timeLimitMinutes": config.time_limit_minutes,
        "fullAnswerCheckMode": config.full_answer_check_mode.value,
    }


@router.post("/tests/{test_id}/session")
async def start_session(
    test_id: str,
    payload: StartSessionRequest,
    runtime: Runtime,
) -> dict[str, object]:
    """Start a new session, replacing any previous one."""
    test = load_test_definition(test_id)

    if payload.mode is SessionMode.EXPRESS:
        config = default_express_config(len(test.enabled_questions))
        overrides: dict[str, object] = {"time_limit_enabled": payload.timeLimitEnabled}
        if payload.questionCount is not None:
            overrides["question_count"] = payload.questionCount
        if payload.passThreshold is not None:
            overrides["pass_threshold"] = payload.passThreshold
        elif payload.questionCount is not None:
            overrides["pass_threshold"] = default_express_config(
                payload.questionCount
            ).pass_threshold
        if payload.timeLimitMinutes is not None:
            overrides["time_limit_minutes"] = payload.timeLimitMinutes
        if payload.fullAnswerCheckMode is not None:
            overrides["full_answer_check_mode"] = payload.fullAnswerCheckMode
        plan = build_session(test, SessionMode.EXPRESS, replace(config, **overrides))
    else:
        settings = SessionSettings()
        if payload.settings is not None:
            settings = SessionSettings(
                hints_enabled=payload.settings.hintsEnabled,
                check_after_answer=payload.settings.checkAfterAnswer,
                show_incorrect_at_end=payload.settings.showIncorrectAtEnd,
                full_answer_check_mode=payload.settings.fullAnswerCheckMode,
            )
        plan = build_session(test, SessionMode.FULL, settings=settings)

    runtime.start(test, plan)
    return runtime.describe()


@router.get("/session")
async def get_session(runtime: Runtime) -> dict[str, object]:
    """Current attempt; an expired or finished one is graded first."""
    _restore(runtime)
    runtime.controller.tick()
    if runtime.state in (
        LifecycleState.SUBMITTED,
        LifecycleState.EXPIRED,
        LifecycleState.GRADED,
    ):
        return await _graded_payload(runtime)
    return runtime.describe()


@router.put("/session/answers/{question_id}")
async def record_answer(
    question_id: int,
    payload: AnswerRequest,
    runtime: Runtime,
) -> dict[str, object]:
    """Record or replace the answer to one question."""
    _restore(runtime)
    runtime.controller.record_answer(question_id, answer_from_payload(payload.answer))
    return runtime.describe()


@router.post("/session/navigate")
async def navigate(payload: NavigateRequest, runtime: Runtime) -> dict[str, object]:
    """Jump to an index or step to the next/previous question."""
    _restore(runtime)
    if payload.direction is not None:
        runtime.controller.step(forward=payload.direction == "next")
    elif payload.index is not None:
        runtime.controller.navigate(payload.index)
    else:
        raise HTTPException(status_code=400, detail="index or direction is required")
    return runtime.describe()


@router.post("/session/evaluate/{question_id}")
async def evaluate_answer(question_id: int, runtime: Runtime) -> dict[str, object]:
    """Immediate check of one answer (hints / check-after-answer)."""
    _restore(runtime)
    evaluation = await runtime.controller.evaluate_answer(question_id)
    return {
        "questionId": question_id,
        "scorePercent": evaluation.score_percent,
        "comment": evaluation.comment,
    }


@router.post("/session/finish")
async def finish_session(runtime: Runtime) -> dict[str, object]:
    """Submit the attempt and return its graded result."""
    _restore(runtime)
    return await _graded_payload(runtime)


@router.delete("/session")
async def reset_session(runtime: Runtime) -> dict[str, object]:
    """Abandon the current attempt."""
    runtime.reset()
    return {"status": "reset"}


@router.get("/tests/{test_id}/result")
async def get_result(test_id: str, runtime: Runtime) -> dict[str, object]:
    """Result of the latest graded attempt of a test."""
    result = runtime.result_for(test_id)
    if result is None:
        _restore(runtime)
        session = runtime.store.session
        if (
            session is not None
            and session.test_id == test_id
            and runtime.state in (LifecycleState.SUBMITTED, LifecycleState.EXPIRED)
        ):
            result = await runtime.submit()
    if result is None:
        raise NoActiveSession(f"No result for test {test_id}")
    return serialize_result(result)


@router.get("/session/guard")
def guard(
    runtime: Runtime,
    path: Annotated[str, Query(min_length=1)],
) -> dict[str, object]:
    """Where the user must be sent while a session is in progress."""
    return {"redirect": runtime.guard.redirect_for(path)}
