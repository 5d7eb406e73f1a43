"""Local entity repositories used by the migration.

The panel's real website, database and project stores live elsewhere; the
migration only needs to enumerate them and fetch one by id. ``Inventory``
serves all three from the ``inventory`` section of the configuration file.
"""

from typing import Protocol

from ..core.exceptions import PanelMigrateError
from ..models.entities import Database, Project, Website


class EntityNotFoundError(PanelMigrateError, LookupError):
    """Requested website or project does not exist locally."""

    status_code = 404
    problem = "not-found"


class WebsiteRepository(Protocol):
    async def list(self) -> list[Website]: ...

    async def get(self, website_id: int) -> Website: ...


class DatabaseRepository(Protocol):
    async def list(self) -> list[Database]: ...


class ProjectRepository(Protocol):
    async def list(self) -> list[Project]: ...

    async def get(self, project_id: int) -> Project: ...


class StaticWebsiteRepository:
    def __init__(self, websites: list[Website]):
        self._websites = {w.id: w for w in websites}

    async def list(self) -> list[Website]:
        return list(self._websites.values())

    async def get(self, website_id: int) -> Website:
        try:
            return self._websites[website_id]
        except KeyError:
            raise EntityNotFoundError(f"website {website_id} not found") from None


class StaticDatabaseRepository:
    def __init__(self, databases: list[Database]):
        self._databases = list(databases)

    async def list(self) -> list[Database]:
        return list(self._databases)


class StaticProjectRepository:
    def __init__(self, projects: list[Project]):
        self._projects = {p.id: p for p in projects}

    async def list(self) -> list[Project]:
        return list(self._projects.values())

    async def get(self, project_id: int) -> Project:
        try:
            return self._projects[project_id]
        except KeyError:
            raise EntityNotFoundError(f"project {project_id} not found") from None


class Inventory:
    """Bundle of the three repositories handed to the orchestrator."""

    def __init__(
        self,
        websites: WebsiteRepository,
        databases: DatabaseRepository,
        projects: ProjectRepository,
    ):
        self.websites = websites
        self.databases = databases
        self.projects = projects

    @classmethod
    def from_entities(
        cls,
        websites: list[Website] | None = None,
        databases: list[Database] | None = None,
        projects: list[Project] | None = None,
    ) -> "Inventory":
        return cls(
            StaticWebsiteRepository(websites or []),
            StaticDatabaseRepository(databases or []),
            StaticProjectRepository(projects or []),
        )

    async def installed_environment(self) -> dict[str, list[str]]:
        """Database engines and project runtimes present on this host."""
        databases = await self.databases.list()
        projects = await self.projects.list()
        return {
            "database": sorted({d.type for d in databases}),
            "project": sorted({p.type for p in projects}),
        }
