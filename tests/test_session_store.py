import pytest

from testix.engine.errors import (
    InvalidConfiguration,
    NoActiveSession,
    SessionAlreadyFinished,
)
from testix.engine.persistence import MemoryStorage, SessionPersistence, session_key
from testix.engine.questions import FullAnswerQuestion, SingleChoiceQuestion
from testix.engine.session import CachedEvaluation, SessionMode, SessionStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class CountingStorage(MemoryStorage):
    def __init__(self) -> None:
        super().__init__()
        self.writes = 0

    def set(self, key: str, value: str) -> None:
        self.writes += 1
        super().set(key, value)


def _questions() -> dict:
    return {
        1: SingleChoiceQuestion(id=1, prompt="One", options=["a", "b"], correct_answers=[0]),
        2: SingleChoiceQuestion(id=2, prompt="Two", options=["a", "b"], correct_answers=[1]),
        3: FullAnswerQuestion(id=3, prompt="Three", correct_answers=["text"]),
    }


def _store(storage=None, clock=None) -> SessionStore:
    clock = clock or FakeClock()
    return SessionStore(SessionPersistence(storage or MemoryStorage(), clock), clock)


def test_start_validates_configuration() -> None:
    store = _store()
    with pytest.raises(InvalidConfiguration):
        store.start("", [1])
    with pytest.raises(InvalidConfiguration):
        store.start("t1", [])
    with pytest.raises(InvalidConfiguration):
        store.start("t1", [1, 1])
    with pytest.raises(InvalidConfiguration):
        store.start("t1", [1, 2], pass_threshold=3)
    with pytest.raises(InvalidConfiguration):
        store.start("t1", [1, 2], pass_threshold=0)
    with pytest.raises(InvalidConfiguration):
        store.start("t1", [1], time_limit_seconds=0)
    with pytest.raises(InvalidConfiguration):
        store.start("t1", [1, 99], questions=_questions())
    assert store.session is None


def test_start_creates_session_at_first_question() -> None:
    clock = FakeClock(500.0)
    store = _store(clock=clock)
    session = store.start(
        "t1", [2, 1], mode=SessionMode.EXPRESS, pass_threshold=1, questions=_questions()
    )
    assert session.question_ids == (2, 1)
    assert session.current_index == 0
    assert session.current_question_id == 2
    assert session.started_at == 500.0
    assert session.answers == {}
    assert not session.finished


def test_record_answer_is_persisted_and_copied() -> None:
    storage = MemoryStorage()
    store = _store(storage)
    store.start("t1", [1, 2], questions=_questions())

    answer = [1]
    store.record_answer(1, answer)
    answer.append(0)

    assert store.require().answers[1] == [1]
    loaded = store.persistence.load("t1")
    assert loaded is not None
    assert loaded.session.answers == {1: [1]}


def test_record_answer_rejects_foreign_question() -> None:
    store = _store()
    store.start("t1", [1], questions=_questions())
    with pytest.raises(InvalidConfiguration):
        store.record_answer(2, [0])


def test_identical_answer_skips_write() -> None:
    storage = CountingStorage()
    store = _store(storage)
    store.start("t1", [1, 2], questions=_questions())
    store.record_answer(1, [0])
    writes = storage.writes

    store.record_answer(1, [0])

    assert storage.writes == writes


def test_navigate_clamps_index() -> None:
    store = _store()
    store.start("t1", [1, 2, 3], questions=_questions())
    assert store.navigate(10).current_index == 2
    assert store.navigate(-4).current_index == 0
    assert store.next().current_index == 1
    assert store.prev().current_index == 0
    assert store.prev().current_index == 0


def test_answered_flags_follow_question_type() -> None:
    store = _store()
    store.start("t1", [1, 2, 3], questions=_questions())
    store.record_answer(1, [0])
    store.record_answer(2, [])
    store.record_answer(3, ["  "])
    assert store.answered_flags() == [True, False, False]


def test_finished_session_rejects_mutation() -> None:
    store = _store()
    store.start("t1", [1, 2], questions=_questions())
    finished = store.finish()
    assert finished.finished
    with pytest.raises(SessionAlreadyFinished):
        store.record_answer(1, [0])
    with pytest.raises(SessionAlreadyFinished):
        store.navigate(1)
    with pytest.raises(SessionAlreadyFinished):
        store.store_evaluation(3, CachedEvaluation("a", 10, "ok"))


def test_reset_clears_session_and_mirror() -> None:
    storage = MemoryStorage()
    store = _store(storage)
    store.start("t1", [1], questions=_questions())
    store.reset()
    assert store.session is None
    assert storage.get(session_key("t1")) is None
    with pytest.raises(NoActiveSession):
        store.require()


def test_new_session_replaces_previous_mirror() -> None:
    storage = MemoryStorage()
    store = _store(storage)
    store.start("t1", [1], questions=_questions())
    store.start("t2", [2], questions=_questions())
    assert storage.get(session_key("t1")) is None
    assert storage.get(session_key("t2")) is not None
    assert store.persistence.active_test_id() == "t2"


def test_cached_evaluation_tracks_answer_text() -> None:
    store = _store()
    store.start("t1", [3], questions=_questions())
    store.record_answer(3, ["first"])
    store.store_evaluation(3, CachedEvaluation("first", 80, "good"))
    assert store.require().cached_evaluation(3) == CachedEvaluation("first", 80, "good")

    store.record_answer(3, ["second"])
    assert store.require().cached_evaluation(3) is None
