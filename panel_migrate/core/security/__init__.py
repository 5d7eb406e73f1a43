"""Security utilities for panel migration."""

from panel_migrate.core.security.ssh_keys import AuthorizedKeysStore, SSHKeyProvisioner

__all__ = [
    "AuthorizedKeysStore",
    "SSHKeyProvisioner",
]
