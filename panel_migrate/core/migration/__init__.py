"""Migration state machine, item pipelines and progress publishing."""

from .job import MigrationJob  # noqa: F401
from .progress import ProgressPublisher  # noqa: F401
from .state import AsyncRWLock, MigrationState  # noqa: F401

__all__ = ["AsyncRWLock", "MigrationJob", "MigrationState", "ProgressPublisher"]
