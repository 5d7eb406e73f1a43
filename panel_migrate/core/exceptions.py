"""Core exceptions for panel migration operations."""


class PanelMigrateError(Exception):
    """Base exception for panel migration operations."""

    status_code = 500
    problem = "migration-error"


class ConfigurationError(PanelMigrateError):
    """Configuration validation or loading failed."""

    problem = "configuration-error"


class ValidationError(PanelMigrateError):
    """Malformed request to the migration API."""

    status_code = 422
    problem = "validation-error"


class ConflictError(PanelMigrateError):
    """Operation not allowed while a migration is running."""

    status_code = 409
    problem = "conflict"


class PreconditionError(PanelMigrateError):
    """Operation attempted before its prerequisite step."""

    status_code = 400
    problem = "precondition-failed"


class RemoteConnectionError(PanelMigrateError):
    """Remote panel unreachable or rejected the request."""

    status_code = 502
    problem = "remote-connection-error"

    def __init__(self, message: str, status: int | None = None, body: bytes = b""):
        super().__init__(message)
        self.status = status
        self.body = body


class AuthenticationError(RemoteConnectionError):
    """Inbound request signature missing, stale or invalid."""

    status_code = 401
    problem = "authentication-failed"


class CommandError(PanelMigrateError):
    """External command exited non-zero or timed out."""

    problem = "command-error"


class ProvisioningError(PanelMigrateError):
    """Ephemeral SSH key setup or teardown failed."""

    problem = "provisioning-error"


class ItemError(PanelMigrateError):
    """A single website, database or project failed during its pipeline."""

    problem = "item-error"
