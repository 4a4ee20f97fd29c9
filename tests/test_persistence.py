import json
from pathlib import Path

from testix.engine.errors import StorageError
from testix.engine.persistence import (
    CURRENT_TEST_KEY,
    FileStorage,
    MemoryStorage,
    SessionGuard,
    SessionPersistence,
    session_key,
)
from testix.engine.questions import CheckMode
from testix.engine.session import (
    CachedEvaluation,
    Session,
    SessionMode,
    SessionSettings,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenStorage:
    def get(self, key: str) -> str | None:
        raise StorageError("disk unavailable")

    def set(self, key: str, value: str) -> None:
        raise StorageError("disk unavailable")

    def remove(self, key: str) -> None:
        raise StorageError("disk unavailable")


def _session(**overrides) -> Session:
    values = dict(
        test_id="t1",
        question_ids=(3, 1, 2),
        started_at=1000.0,
        mode=SessionMode.EXPRESS,
        current_index=1,
        answers={3: [0], 1: {0: "B", 1: "A"}, 2: ["free text"]},
        time_limit_seconds=120,
        pass_threshold=2,
        settings=SessionSettings(
            hints_enabled=True,
            check_after_answer=True,
            show_incorrect_at_end=False,
            full_answer_check_mode=CheckMode.HARD,
        ),
        evaluations={2: CachedEvaluation("free text", 64, "partly right")},
    )
    values.update(overrides)
    return Session(**values)


def test_session_survives_reload() -> None:
    storage = MemoryStorage()
    session = _session()
    SessionPersistence(storage, FakeClock()).save(session)

    loaded = SessionPersistence(storage, FakeClock(1010.0)).load("t1")

    assert loaded is not None
    assert loaded.session == session
    assert not loaded.expired
    assert not loaded.needs_grading


def test_expired_session_needs_grading() -> None:
    storage = MemoryStorage()
    persistence = SessionPersistence(storage, FakeClock(1120.0))
    persistence.save(_session())

    loaded = persistence.load("t1")

    assert loaded is not None
    assert loaded.expired
    assert loaded.needs_grading


def test_unreadable_session_is_discarded() -> None:
    storage = MemoryStorage()
    storage.set(session_key("t1"), "{not json")
    storage.set(CURRENT_TEST_KEY, "t1")
    persistence = SessionPersistence(storage, FakeClock())

    assert persistence.load("t1") is None
    assert storage.get(session_key("t1")) is None
    assert persistence.active_test_id() is None


def test_out_of_range_index_is_clamped_on_load() -> None:
    storage = MemoryStorage()
    persistence = SessionPersistence(storage, FakeClock())
    persistence.save(_session())
    payload = json.loads(storage.get(session_key("t1")))
    payload["currentQuestionIndex"] = 9
    storage.set(session_key("t1"), json.dumps(payload))

    loaded = persistence.load("t1")

    assert loaded is not None
    assert loaded.session.current_index == 2


def test_dangling_pointer_is_dropped() -> None:
    storage = MemoryStorage()
    storage.set(CURRENT_TEST_KEY, "gone")
    persistence = SessionPersistence(storage, FakeClock())

    assert persistence.active_test_id() is None
    assert storage.get(CURRENT_TEST_KEY) is None
    assert persistence.load_active() is None


def test_storage_failure_falls_back_to_memory() -> None:
    persistence = SessionPersistence(BrokenStorage(), FakeClock())
    session = _session()

    persistence.save(session)

    assert persistence.ephemeral
    loaded = persistence.load_active()
    assert loaded is not None
    assert loaded.session == session


def test_file_storage_round_trip(tmp_path: Path) -> None:
    storage = FileStorage(tmp_path / "sessions")
    persistence = SessionPersistence(storage, FakeClock())
    persistence.save(_session())

    files = sorted(path.name for path in (tmp_path / "sessions").iterdir())
    assert files == ["testix_current_test_id.json", "testix_test_session_t1.json"]
    assert SessionPersistence(FileStorage(tmp_path / "sessions"), FakeClock()).load_active()

    persistence.clear("t1")
    assert list((tmp_path / "sessions").iterdir()) == []


def test_file_storage_errors_become_storage_errors(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    persistence = SessionPersistence(FileStorage(blocker / "sessions"), FakeClock())

    persistence.save(_session())

    assert persistence.ephemeral


def test_guard_redirects_outside_session_route() -> None:
    storage = MemoryStorage()
    persistence = SessionPersistence(storage, FakeClock())
    guard = SessionGuard(persistence, "/tests/{test_id}")
    assert guard.redirect_for("/") is None

    persistence.save(_session())

    assert guard.redirect_for("/") == "/tests/t1"
    assert guard.redirect_for("/tests/t2") == "/tests/t1"
    assert guard.redirect_for("/tests/t10") == "/tests/t1"
    assert guard.redirect_for("/tests/t1") is None
    assert guard.redirect_for("/tests/t1/question/2") is None

    persistence.clear("t1")
    assert guard.redirect_for("/") is None
