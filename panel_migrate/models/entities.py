"""Local panel entities that can be migrated.

These mirror the attributes the migrators need from the panel's website,
database and project repositories; everything else the panel stores about
them is irrelevant here.
"""

from pydantic import BaseModel, Field


class Listen(BaseModel):
    address: str


class Website(BaseModel):
    id: int
    name: str
    type: str = "static"
    path: str = ""
    domains: list[str] = Field(default_factory=list)
    listens: list[Listen] = Field(default_factory=list)


class Database(BaseModel):
    name: str
    type: str
    server_id: int = 0
    server: str = "local"


class Project(BaseModel):
    id: int
    name: str
    type: str = "general"
    root_dir: str = ""
    exec_start: str = ""
    user: str = "www"
