"""
Panel migration services

Local collaborators the migration reads from.
"""

from .inventory import EntityNotFoundError, Inventory  # noqa: F401

__all__ = [
    "EntityNotFoundError",
    "Inventory",
]
