"""SSH destination shared by every transfer to the remote panel host."""

from pydantic import BaseModel


class RemoteHost(BaseModel):
    """SSH destination of a migration."""

    hostname: str
    user: str = "root"
    port: int = 22
    identity_file: str | None = None

    @property
    def address(self) -> str:
        # IPv6 literals must be bracketed in rsync/scp style destinations
        host = f"[{self.hostname}]" if ":" in self.hostname else self.hostname
        return f"{self.user}@{host}"
