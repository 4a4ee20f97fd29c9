"""API route modules."""
from testix.routes import attempts, sessions

__all__ = ["attempts", "sessions"]
