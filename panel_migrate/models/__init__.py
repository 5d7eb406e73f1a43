"""Data models for panel migration."""

from .entities import Database, Listen, Project, Website  # noqa: F401
from .enums import (  # noqa: F401
    DatabaseType,
    ItemKind,
    ItemStatus,
    MigrationAction,
    MigrationStep,
)
from .migration import (  # noqa: F401
    ConnectionInfo,
    DatabaseSelection,
    ItemSelection,
    MigrationItemResult,
    ProjectSelection,
    WebsiteSelection,
)

__all__ = [
    # Entity models
    "Database",
    "Listen",
    "Project",
    "Website",
    # Enums
    "DatabaseType",
    "ItemKind",
    "ItemStatus",
    "MigrationAction",
    "MigrationStep",
    # Migration models
    "ConnectionInfo",
    "DatabaseSelection",
    "ItemSelection",
    "MigrationItemResult",
    "ProjectSelection",
    "WebsiteSelection",
]
