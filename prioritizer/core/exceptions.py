"""
Engine-wide exception hierarchy.

The services raise these; the prioritization engine converts them into
``{"success": False, "error": ...}`` results at the intent boundary, and the
HTTP layer maps the results to status codes. Only PersistenceError escapes
a command.

Usage:
    from prioritizer.core.exceptions import NotFoundError, PersistenceError, ValidationError

    raise NotFoundError(resource="Item", resource_id="1700000000000-1")
    raise ValidationError("Title cannot be empty", details={"field": "title"})
    raise PersistenceError("save", "app_state")
"""


class NotFoundError(Exception):
    """Raised when a requested item (or note on an item) does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Item", "Note").
        resource_id: The id or index that was looked up. Logged, not shown.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found")


class ValidationError(Exception):
    """Raised when an intent is well-formed but violates a business rule.

    Covers bad property names, category/level out of range, missing
    prerequisite categories, unsetting a latched category and stage-gate
    violations.

    Args:
        message: Human-readable explanation, surfaced verbatim to the user.
        details: Optional field-level breakdown for structured responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class PersistenceError(Exception):
    """Raised by a persistence adapter when a save or clear cannot complete.

    Unlike validation failures this is not a user error; the HTTP layer
    reports it as 503.
    """

    def __init__(self, operation: str, key: str | None = None) -> None:
        self.operation = operation
        self.key = key
        super().__init__(f"Persistence {operation} failed" + (f" for {key}" if key else ""))
