"""Migration request and result models."""

from datetime import datetime
from typing import Any, Callable, TypeVar
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .enums import ItemKind, ItemStatus

T = TypeVar("T")


def _unique(items: list[T], key: Callable[[T], str]) -> list[T]:
    seen: set[str] = set()
    unique = []
    for item in items:
        if key(item) not in seen:
            seen.add(key(item))
            unique.append(item)
    return unique


class ConnectionInfo(BaseModel):
    """Remote panel address and API credentials, fixed for one attempt."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(description="Remote panel base URL, e.g. https://203.0.113.5:8888")
    token_id: int = Field(ge=0, description="Numeric API token identifier")
    token: str = Field(min_length=1, description="Shared secret of the API token")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        parts = urlsplit(v.strip())
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError("url must be an http(s) URL with a host")
        return v.strip()

    @property
    def host(self) -> str:
        """Hostname of the remote panel, used as the SSH/rsync destination."""
        return urlsplit(self.url).hostname or ""


class WebsiteSelection(BaseModel):
    id: int
    name: str = Field(min_length=1)
    path: str = ""


class DatabaseSelection(BaseModel):
    name: str = Field(min_length=1)
    type: str = Field(description="Database engine: mysql or postgresql")
    server_id: int = 0

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.type})"


class ProjectSelection(BaseModel):
    id: int
    name: str = Field(min_length=1)
    path: str = ""


class ItemSelection(BaseModel):
    """Items chosen for one migration run."""

    websites: list[WebsiteSelection] = Field(default_factory=list)
    databases: list[DatabaseSelection] = Field(default_factory=list)
    projects: list[ProjectSelection] = Field(default_factory=list)
    stop_on_error: bool = False

    @model_validator(mode="after")
    def drop_duplicates(self) -> "ItemSelection":
        # Results are keyed by (kind, name); a repeated item would collide
        self.websites = _unique(self.websites, lambda w: w.name)
        self.databases = _unique(self.databases, lambda d: d.display_name)
        self.projects = _unique(self.projects, lambda p: p.name)
        return self

    @property
    def total(self) -> int:
        return len(self.websites) + len(self.databases) + len(self.projects)


class MigrationItemResult(BaseModel):
    """Outcome record of one migrated website, database or project."""

    type: ItemKind
    name: str
    status: ItemStatus = ItemStatus.RUNNING
    error: str = ""
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration: float = 0.0

    @property
    def key(self) -> tuple[ItemKind, str]:
        return self.type, self.name

    @property
    def terminal(self) -> bool:
        return self.status is not ItemStatus.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
