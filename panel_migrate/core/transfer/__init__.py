"""Transfer modules for panel migration."""

from .base import RemoteHost  # noqa: F401
from .rsync import RsyncError, RsyncTransfer  # noqa: F401

__all__ = [
    "RemoteHost",
    "RsyncError",
    "RsyncTransfer",
]
