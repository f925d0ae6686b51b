"""
Ticket Workflow State Machine

Validates status changes against the declarative table in
``fieldops.models.ticket.TICKET_TRANSITIONS``. Every function here is pure:
nothing reads or writes the database, so callers may use them for UI
hinting as well as inside the lifecycle engine.

Two callers proposing different legal moves from the same status both
validate successfully here; serialising the actual application is the
engine's job (optimistic version check on commit).

Usage:
    from fieldops.services.workflow import validate_transition, allowed_transitions

    validate_transition("open", "assigned", category="cm")   # ok
    validate_transition("open", "closed")                     # raises InvalidTransition
    allowed_transitions("acknowledged")  # ['on_progress', 'rejected', 'cancelled']
"""

from __future__ import annotations

from fieldops.core.exceptions import InvalidTransition, ValidationError
from fieldops.models.ticket import (
    TERMINAL_STATUSES,
    TICKET_TRANSITIONS,
    TicketStatus,
)


def coerce_status(value) -> TicketStatus:
    """Return *value* as a TicketStatus, or raise ValidationError."""
    if isinstance(value, TicketStatus):
        return value
    try:
        return TicketStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown status '{value}'",
            details={"status": f"Must be one of: {', '.join(s.value for s in TicketStatus)}"},
        ) from None


def _table_for(category: str) -> dict:
    table = TICKET_TRANSITIONS.get(category)
    if table is None:
        raise ValidationError(
            f"Unknown category '{category}'",
            details={"category": f"Must be one of: {', '.join(sorted(TICKET_TRANSITIONS))}"},
        )
    return table


def allowed_transitions(from_status, category: str = "cm") -> list[str]:
    """List the statuses reachable in one step from *from_status*."""
    current = coerce_status(from_status)
    return [s.value for s in _table_for(category).get(current, ())]


def can_transition(from_status, to_status, category: str = "cm") -> bool:
    """Return True if ``from_status -> to_status`` is an edge of the table."""
    return coerce_status(to_status).value in allowed_transitions(from_status, category)


def validate_transition(from_status, to_status, category: str = "cm") -> None:
    """Raise InvalidTransition unless *to_status* is adjacent to *from_status*."""
    current = coerce_status(from_status)
    target = coerce_status(to_status)
    allowed = allowed_transitions(current, category)
    if target.value not in allowed:
        raise InvalidTransition(current.value, target.value, allowed=allowed)


def is_terminal(status) -> bool:
    return coerce_status(status) in TERMINAL_STATUSES


def transition_edges(category: str = "cm") -> list[tuple[str, str]]:
    """Every (from, to) edge of the category's table, for docs and tests."""
    return [
        (src.value, dst.value)
        for src, targets in _table_for(category).items()
        for dst in targets
    ]
