"""
Lifecycle exception hierarchy.

Services raise these; blueprints register one handler per type and map
them onto the JSON error envelope (see ``fieldops.utils.errors``). Every
error carries enough structure for a caller to correct its input and retry
without guessing: the allowed transitions, the missing evidence fields, or
the measured distance against the tolerance.

Usage:
    from fieldops.core.exceptions import InvalidTransition, NotFoundError

    raise NotFoundError(resource="Ticket", resource_id=42)
    raise InvalidTransition("open", "closed", allowed=["assigned", "cancelled"])
"""

from __future__ import annotations


class LifecycleError(Exception):
    """Base class for every error the ticket engine reports to its caller."""

    code = "ERR_LIFECYCLE"

    def to_details(self) -> dict:
        return {}


class NotFoundError(LifecycleError):
    """Raised when a ticket or location does not exist (or is retired).

    Args:
        resource: Human-readable entity name (e.g. "Ticket", "Location").
        resource_id: The PK that was looked up.
    """

    code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)

    def to_details(self) -> dict:
        return {"resource": self.resource, "resource_id": self.resource_id}


class ValidationError(LifecycleError):
    """Raised when a well-formed payload violates a field rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    code = "ERR_VALIDATION_INVALID"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)

    def to_details(self) -> dict:
        return dict(self.details)


class InvalidTransition(LifecycleError):
    """Requested status is not adjacent to the current status."""

    code = "ERR_INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, allowed: list[str] | None = None) -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = list(allowed or [])
        super().__init__(
            f"Invalid status transition from '{from_status}' to '{to_status}'"
        )

    def to_details(self) -> dict:
        return {
            "from": self.from_status,
            "to": self.to_status,
            "allowed": self.allowed,
        }


class IncompleteEvidence(LifecycleError):
    """Required completion evidence is missing from the transition payload."""

    code = "ERR_INCOMPLETE_EVIDENCE"

    def __init__(self, missing_fields: list[str]) -> None:
        self.missing_fields = list(missing_fields)
        super().__init__(
            "Missing required completion data: " + ", ".join(self.missing_fields)
        )

    def to_details(self) -> dict:
        return {"missing_fields": self.missing_fields}


class LocationVerificationFailed(LifecycleError):
    """Submitted work location is outside the site geofence."""

    code = "ERR_LOCATION_VERIFICATION"

    def __init__(
        self,
        distance_m: float | None,
        tolerance_m: float,
        reason: str | None = None,
    ) -> None:
        self.distance_m = distance_m
        self.tolerance_m = tolerance_m
        self.reason = reason
        super().__init__(f"Location verification failed: {reason or 'outside geofence'}")

    def to_details(self) -> dict:
        return {
            "distance_m": round(self.distance_m, 1) if self.distance_m is not None else None,
            "tolerance_m": self.tolerance_m,
            "reason": self.reason,
        }


class UnknownPriorityLevel(LifecycleError):
    """Priority level has no entry in the SLA matrix."""

    code = "ERR_UNKNOWN_PRIORITY"

    def __init__(self, level, known: list[int] | None = None) -> None:
        self.level = level
        self.known = sorted(known or [])
        super().__init__(f"Unknown priority level: {level!r}")

    def to_details(self) -> dict:
        return {"priority_level": self.level, "known_levels": self.known}


class ConcurrentModification(LifecycleError):
    """The ticket changed between read and write; re-read and re-submit."""

    code = "ERR_CONCURRENT_MODIFICATION"

    def __init__(self, ticket_id: int, expected_version: int | None = None,
                 current_version: int | None = None) -> None:
        self.ticket_id = ticket_id
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(f"Ticket id={ticket_id} was modified concurrently")

    def to_details(self) -> dict:
        return {
            "ticket_id": self.ticket_id,
            "expected_version": self.expected_version,
            "current_version": self.current_version,
        }


class TicketStillActive(LifecycleError):
    """Retirement refused while the ticket is in an active state."""

    code = "ERR_TICKET_ACTIVE"

    def __init__(self, ticket_id: int, status: str) -> None:
        self.ticket_id = ticket_id
        self.status = status
        super().__init__(f"Cannot retire active ticket id={ticket_id} (status={status})")

    def to_details(self) -> dict:
        return {
            "ticket_id": self.ticket_id,
            "current_status": self.status,
            "suggestion": "Cancel the ticket instead of deleting",
        }


class TicketReadOnly(LifecycleError):
    """Detail edits refused on a closed or cancelled ticket."""

    code = "ERR_TICKET_READ_ONLY"

    def __init__(self, ticket_id: int, status: str) -> None:
        self.ticket_id = ticket_id
        self.status = status
        super().__init__(f"Ticket id={ticket_id} is {status} and can no longer be edited")

    def to_details(self) -> dict:
        return {"ticket_id": self.ticket_id, "current_status": self.status}


class PersistenceError(LifecycleError):
    """Storage-layer fault. Surfaced as-is; the engine never retries."""

    code = "ERR_DATABASE"


class LedgerImmutableError(PersistenceError):
    """Raised when code attempts to update or delete a status-history row."""


class Unauthorized(LifecycleError):
    """Actor is missing or lacks the role the operation requires."""

    code = "ERR_UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized", required_role: str | None = None) -> None:
        self.required_role = required_role
        super().__init__(message)

    def to_details(self) -> dict:
        return {"required_role": self.required_role} if self.required_role else {}
