"""Metric domain implementations."""

# Domains register themselves on import
from . import demographics  # noqa: F401
from . import election  # noqa: F401
from . import issues  # noqa: F401

__all__ = ["demographics", "election", "issues"]
