"""Enum definitions for panel migration."""

from enum import Enum


class MigrationStep(Enum):
    """Coarse state of one migration attempt."""

    IDLE = "idle"
    PRECHECK = "precheck"
    SELECT = "select"
    RUNNING = "running"
    DONE = "done"


class ItemStatus(Enum):
    """Status of a single migrated item."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class ItemKind(Enum):
    """Kind of entity being migrated."""

    WEBSITE = "website"
    DATABASE = "database"
    PROJECT = "project"


class DatabaseType(Enum):
    """Database engines the migrator can dump and import."""

    MYSQL = "mysql"
    POSTGRESQL = "postgresql"


class MigrationAction(Enum):
    """Actions for the panel_migration tool."""

    PRECHECK = "precheck"
    ITEMS = "items"
    START = "start"
    RESET = "reset"
    STATUS = "status"
    RESULTS = "results"
    CANCEL = "cancel"
