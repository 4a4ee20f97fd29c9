"""Application configuration and constants."""
import os
from pathlib import Path


def _parse_int_env(name: str, default: int) -> int:
    """Parse integer from environment variable."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _parse_float_env(name: str, default: float) -> float:
    """Parse float from environment variable."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# Directories
DATA_DIR = Path(os.environ.get("TEST_DATA_DIR", Path.cwd() / "data" / "tests"))
DATA_DIR.mkdir(parents=True, exist_ok=True)

SESSIONS_DIR = Path(
    os.environ.get("SESSIONS_DIR", Path.cwd() / "data" / "sessions")
)
SESSIONS_DIR.mkdir(parents=True, exist_ok=True)

# Database
DB_DIR = Path(os.environ.get("DB_DIR", Path.cwd() / "data"))
DB_DIR.mkdir(parents=True, exist_ok=True)
DATABASE_URL = os.environ.get(
    "DATABASE_URL", f"sqlite:///{DB_DIR / 'testix.db'}"
)

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Grading
FULL_ANSWER_PASS_PERCENT = min(
    100, max(0, _parse_int_env("FULL_ANSWER_PASS_PERCENT", 50))
)

# Timer
TICK_INTERVAL_SECONDS = _parse_float_env("TICK_INTERVAL_SECONDS", 0.5)

# Express mode
EXPRESS_MIN_TIME_LIMIT_SECONDS = 60
EXPRESS_MAX_TIME_LIMIT_MINUTES = _parse_int_env("EXPRESS_MAX_TIME_LIMIT_MINUTES", 999)
EXPRESS_DEFAULT_QUESTION_COUNT = _parse_int_env("EXPRESS_DEFAULT_QUESTION_COUNT", 20)
EXPRESS_DEFAULT_TIME_LIMIT_MINUTES = 20
DEFAULT_PASS_RATIO = _parse_float_env("DEFAULT_PASS_RATIO", 0.85)

# Evaluator (Ollama chat API)
OLLAMA_BASE_URL = os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_MODEL = os.environ.get("OLLAMA_MODEL", "llama3.1")
OLLAMA_TOKEN = os.environ.get("OLLAMA_TOKEN")
EVALUATOR_TIMEOUT_SECONDS = _parse_int_env("EVALUATOR_TIMEOUT_SECONDS", 60)

# Navigation
SESSION_ROUTE_TEMPLATE = os.environ.get("SESSION_ROUTE_TEMPLATE", "/tests/{test_id}")
RESULT_ROUTE_TEMPLATE = os.environ.get(
    "RESULT_ROUTE_TEMPLATE", "/tests/{test_id}/results"
)
