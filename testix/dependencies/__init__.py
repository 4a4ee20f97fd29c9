"""FastAPI dependencies."""
from testix.dependencies.runtime import get_runtime

__all__ = ["get_runtime"]
