"""HTTP surface of the migration service."""

from .routes import MigrationAPI, create_app  # noqa: F401

__all__ = ["MigrationAPI", "create_app"]
