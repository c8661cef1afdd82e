"""Domain exceptions for Pairbond.

Services raise these; the API layer translates them into HTTP responses.
"""


class PairbondError(Exception):
    """Base exception for all Pairbond domain errors."""

    status_code: int = 400

    def __init__(self, message: str, details: dict | None = None):
        """Initialize exception with message and optional details.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
        """
        super().__init__(message)
        self.message = message
        self.details = details


class InteractionValidationError(PairbondError):
    """Raised when a like/reject request is malformed (e.g. self-target)."""

    status_code = 400


class TargetNotFoundError(PairbondError):
    """Raised when the target user does not exist or is inactive."""

    status_code = 404


class InteractionConflictError(PairbondError):
    """Raised on a duplicate like against an already liked or matched target."""

    status_code = 409


class AuthenticationError(PairbondError):
    """Raised when the bearer session cannot be resolved."""

    status_code = 401
