"""
Board-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere.

Every exception here is raised either before a unit of work opens
(permission, lookup, target validation) or after it has been rolled back
in full (conflict). Callers never observe a half-applied shift.

Usage:
    from reach.core.exceptions import ForbiddenError, NotFoundError

    raise NotFoundError(resource="ContentCard", resource_id=card_id)
    raise ForbiddenError(role="client", stage="research", action="write")
"""


class NotFoundError(Exception):
    """Raised when a referenced card, stage or team does not exist.

    Args:
        resource: Human-readable model name (e.g. "ContentCard", "Stage").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ForbiddenError(Exception):
    """Raised when the acting role lacks the required action on a stage.

    Distinct from NotFoundError: the target exists, the role just may not
    touch it this way. Maps to HTTP 403.
    """

    def __init__(self, role, action, stage=None) -> None:
        self.role = getattr(role, "value", role)
        self.action = getattr(action, "value", action)
        self.stage = getattr(stage, "value", stage)
        stage_msg = f" on stage '{self.stage}'" if self.stage else ""
        super().__init__(f"Role '{self.role}' may not {self.action}{stage_msg}")


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTargetError(ValidationError):
    """Raised for a position below 1 or a destination stage outside the card's team.

    Rejected before any ordering computation begins. Maps to HTTP 400.
    """


class ConflictRetryableError(Exception):
    """Raised after rollback when a unit of work lost a race on a stage partition.

    The caller should repeat the whole request against fresh state rather
    than resubmitting the same raw position. Maps to HTTP 409.
    """

    def __init__(self, message: str = "Concurrent change to the same stage, retry the request") -> None:
        super().__init__(message)
