"""Errors raised by the test passing engine."""


class EngineError(Exception):
    """Base class for engine errors."""


class InvalidConfiguration(EngineError):
    """Malformed session start parameters."""


class InsufficientQuestions(EngineError):
    """More questions requested than the test has enabled."""


class InvalidThreshold(EngineError):
    """Pass threshold outside [1, question count]."""


class SessionAlreadyFinished(EngineError):
    """Session was mutated after it was finished."""


class NoActiveSession(EngineError):
    """Operation requires an active session."""


class EvaluatorUnavailable(EngineError):
    """Free-answer evaluator failed or could not be reached."""


class StorageError(EngineError):
    """Persistent storage could not be read or written."""


class StaleGrading(EngineError):
    """Grading finished for a session that is no longer current."""
