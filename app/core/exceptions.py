"""
Service-layer exception hierarchy.

Services raise these types; blueprints register handlers against them
once and get consistent HTTP status codes everywhere. Services never
import Flask response helpers.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Certification", resource_id=42)
    raise ValidationError("Title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Certification", "User").
        resource_id: The key that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint): the data
    was well-formed but violated a rule (missing required answer, orphan
    Level-1 attester, publish without questions).

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. For answer validation the
                 keys are question ids; for assignment validation the keys
                 name the rule (``orphans``, ``duplicates``, ``pending``).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when the caller lacks ownership of the mandate or an assignment.

    Maps to HTTP 403.
    """

    def __init__(self, message: str = "Not permitted") -> None:
        super().__init__(message)


class ConflictError(Exception):
    """Raised on a write-once violation or a unique constraint clash.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field (or state) that conflicts.
        value: The conflicting value.
        message: Optional override of the generated message.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = message or f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class ClosedCertificationError(Exception):
    """Raised when a mutation targets a closed certification.

    Maps to HTTP 409 with code ``CERTIFICATION_CLOSED``; kept separate from
    ValidationError so clients can tell "closed" apart from bad input.
    """

    def __init__(self, certification_id: int) -> None:
        self.certification_id = certification_id
        super().__init__(f"Certification id={certification_id} is closed")


class QuestionGenerationError(Exception):
    """Raised when the question-generation provider fails or returns garbage.

    Maps to HTTP 502.
    """


class AIUnavailableError(RuntimeError):
    """Raised when no language-model provider is configured.

    Maps to HTTP 503.
    """
