"""
Floortrack exception hierarchy.

Services raise only these types. Blueprints register handlers against
them once (see ``floortrack.blueprints.register_error_handlers``) and get
consistent HTTP status codes everywhere.

Usage:
    from floortrack.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Item", resource_id=42)
    raise ValidationError("Missing required actions: Weigh", details={...})
"""


class NotFoundError(Exception):
    """Raised when an item, workflow, stage or location id does not resolve.

    Args:
        resource: Human-readable entity name (e.g. "Item", "Location").
        resource_id: The key that was looked up.
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
    """Raised when well-formed input violates a business rule.

    Typical causes: required stage actions incomplete on advance, an
    action payload outside its configured range, an item in the wrong
    status for the requested operation.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional structured breakdown, e.g.
                 ``{"missing_actions": ["Weigh", "QC sign-off"]}``.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class CapacityExceededError(Exception):
    """Raised when a move targets a location that is already full.

    Also raised by stage auto-assignment when no candidate location has
    room; ``location_id`` is then None and ``message`` says why.

    Maps to HTTP 409 with code ``ERR_CAPACITY_EXCEEDED``.
    """

    def __init__(
        self,
        location_id: int | None,
        capacity: int | None,
        name: str | None = None,
        message: str | None = None,
    ) -> None:
        self.location_id = location_id
        self.capacity = capacity
        label = name or f"id={location_id}"
        super().__init__(message or f"Location {label} is at capacity ({capacity} items)")


class ReferentialIntegrityError(Exception):
    """Raised when a delete is blocked by records that still reference the target.

    ``blocking_ids`` lists the referencing keys (item codes for workflows)
    so the caller can show the user what to finish first.
    """

    def __init__(self, resource: str, resource_id: int | str, blocking_ids: list) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.blocking_ids = list(blocking_ids)
        count = len(self.blocking_ids)
        super().__init__(
            f"Cannot delete {resource} id={resource_id}: "
            f"{count} active item{'s' if count != 1 else ''} still reference it"
        )


class ConcurrentModificationError(Exception):
    """Raised when a versioned write loses a race with another writer.

    The caller should re-read and resubmit. Maps to HTTP 409.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} id={resource_id} was modified concurrently; reload and retry")
