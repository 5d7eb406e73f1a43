"""RFC 7807 compliant error response helpers.

Standardized error bodies shared by the HTTP routes and the MCP tool.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from .exceptions import PanelMigrateError


class ErrorDetail(BaseModel):
    """RFC 7807 compliant error detail structure.

    Required fields:
    - success: Always False for error responses
    - error: Human-readable error message

    Optional RFC 7807 fields:
    - type: URI reference that identifies the problem type
    - title: Short, human-readable summary of the problem type
    - detail: Human-readable explanation specific to this occurrence
    - instance: URI reference that identifies the specific occurrence
    """

    success: bool = Field(default=False, description="Always False for errors")
    error: str = Field(description="Human-readable error message")
    type: str | None = Field(default=None, description="Problem type URI")
    title: str | None = Field(default=None, description="Problem type summary")
    detail: str | None = Field(default=None, description="Specific problem details")
    instance: str | None = Field(default=None, description="Problem occurrence URI")
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class MigrationErrorResponse:
    """Factory for creating standardized migration error responses."""

    PROBLEM_TITLES: dict[str, str] = {
        "migration-error": "Migration Failed",
        "configuration-error": "Configuration Error",
        "validation-error": "Input Validation Failed",
        "conflict": "Migration Already Running",
        "precondition-failed": "Precondition Failed",
        "remote-connection-error": "Remote Panel Unreachable",
        "authentication-failed": "Authentication Failed",
        "command-error": "Command Failed",
        "provisioning-error": "SSH Key Provisioning Failed",
        "item-error": "Item Migration Failed",
        "not-found": "Not Found",
    }

    @classmethod
    def create_error(
        cls,
        error_message: str,
        problem_type: str | None = None,
        detail: str | None = None,
        instance: str | None = None,
    ) -> dict[str, Any]:
        """Create a standardized error response.

        Args:
            error_message: Primary error message
            problem_type: Standard problem type key
            detail: Additional problem-specific details
            instance: Identifier for this specific occurrence

        Returns:
            RFC 7807 compliant error response dictionary
        """
        error_detail = ErrorDetail(error=error_message, detail=detail, instance=instance)

        if problem_type:
            error_detail.type = f"/problems/{problem_type}"
            error_detail.title = cls.PROBLEM_TITLES.get(problem_type)

        return error_detail.model_dump(exclude_none=True)

    @classmethod
    def from_exception(cls, error: PanelMigrateError, instance: str | None = None) -> dict[str, Any]:
        return cls.create_error(str(error), problem_type=error.problem, instance=instance)
