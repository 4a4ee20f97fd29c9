import argparse
import asyncio
import sys
from pathlib import Path

from testix.engine.errors import EngineError
from testix.engine.lifecycle import TestPassingController
from testix.engine.persistence import MemoryStorage, SessionPersistence
from testix.engine.scheduler import ExpressConfig, build_session, default_express_config
from testix.engine.session import SessionMode, SessionStore
from testix.logging_setup import setup_console_logging
from testix.serialization import (
    answer_from_payload,
    definition_from_payload,
    serialize_result,
)
from testix.services.evaluator_service import build_evaluator
from testix.utils import json_dump, json_load

setup_console_logging()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Grade a test attempt offline")
    commands = parser.add_subparsers(dest="command", required=True)

    grade = commands.add_parser("grade", help="Grade answers against a test")
    grade.add_argument("test", type=Path, help="Path to test.json")
    grade.add_argument(
        "answers",
        type=Path,
        help='Path to answers JSON: {"<questionId>": <answer>}',
    )
    grade.add_argument(
        "--express",
        type=int,
        metavar="N",
        help="Run an express session of N random questions",
    )
    grade.add_argument(
        "--threshold",
        type=int,
        help="Correct answers needed to pass (express mode)",
    )
    grade.add_argument(
        "--time-limit",
        type=float,
        metavar="MINUTES",
        help="Express time limit in minutes",
    )
    grade.add_argument(
        "--offline",
        action="store_true",
        help="Do not call the evaluator; free answers score 0",
    )
    return parser.parse_args(argv)


def express_config(args: argparse.Namespace) -> ExpressConfig:
    defaults = default_express_config(args.express)
    return ExpressConfig(
        question_count=args.express,
        pass_threshold=args.threshold or defaults.pass_threshold,
        time_limit_enabled=args.time_limit is not None,
        time_limit_minutes=args.time_limit or defaults.time_limit_minutes,
    )


async def grade_answers(args: argparse.Namespace) -> dict[str, object]:
    payload = json_load(args.test.read_text(encoding="utf-8"))
    payload.setdefault("id", args.test.parent.name or args.test.stem)
    test = definition_from_payload(payload)
    answers = json_load(args.answers.read_text(encoding="utf-8"))

    if args.express:
        plan = build_session(test, SessionMode.EXPRESS, express_config(args))
    else:
        plan = build_session(test, SessionMode.FULL)

    store = SessionStore(SessionPersistence(MemoryStorage()))
    controller = TestPassingController(store, build_evaluator(offline=args.offline))
    session = controller.start(test, plan)
    for question_id, value in answers.items():
        if int(question_id) in session.question_ids:
            controller.record_answer(int(question_id), answer_from_payload(value))
    result = await controller.submit()
    return serialize_result(result)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        result = asyncio.run(grade_answers(args))
    except EngineError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    print(json_dump(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
