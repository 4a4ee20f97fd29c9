"""Access to the process-wide session runtime."""
from testix.config import SESSIONS_DIR
from testix.engine.persistence import FileStorage
from testix.services.evaluator_service import build_evaluator
from testix.services.runtime_service import SessionRuntime

_runtime: SessionRuntime | None = None


def get_runtime() -> SessionRuntime:
    """Lazily create the runtime backed by files under SESSIONS_DIR."""
    global _runtime
    if _runtime is None:
        _runtime = SessionRuntime(FileStorage(SESSIONS_DIR), build_evaluator())
    return _runtime
