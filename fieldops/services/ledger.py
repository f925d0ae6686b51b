"""
Status History Ledger

Append-only record of accepted status transitions.

Entries are added inside the caller's transaction (``flush`` only, never
``commit``) so a ticket change and its history row succeed or fail
together. There is no update or delete path; the ORM listeners on
``TicketStatusHistory`` refuse both. Corrections are new entries with
``reason="correction"``.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from fieldops.core.exceptions import PersistenceError
from fieldops.models import db
from fieldops.models.ticket_history import CORRECTION_REASON, TicketStatusHistory

logger = logging.getLogger(__name__)


def append(
    *,
    ticket_id: int,
    from_status: str | None,
    to_status: str,
    actor_id: str,
    actor_name: str = "",
    reason: str | None = None,
    comment: str | None = None,
    details: dict | None = None,
    changed_at: datetime | None = None,
) -> TicketStatusHistory:
    """Add one entry to the current session and flush it.

    Raises PersistenceError when the flush fails; the caller's transaction
    is left for the caller to roll back.
    """
    entry = TicketStatusHistory(
        ticket_id=ticket_id,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor_id,
        actor_name=actor_name or "",
        reason=reason,
        comment=comment,
        details_json=json.dumps(details or {}, default=str),
        changed_at=changed_at or datetime.now(timezone.utc),
    )
    try:
        db.session.add(entry)
        db.session.flush()
    except SQLAlchemyError as exc:
        logger.error(
            "Ledger append failed for ticket_id=%s (%s -> %s)",
            ticket_id, from_status, to_status, exc_info=True,
        )
        raise PersistenceError(f"Failed to record status history: {exc}") from exc
    return entry


def append_correction(
    *,
    ticket_id: int,
    status: str,
    actor_id: str,
    actor_name: str = "",
    comment: str | None = None,
    details: dict | None = None,
) -> TicketStatusHistory:
    """Record a correction against the ticket's current status."""
    return append(
        ticket_id=ticket_id,
        from_status=status,
        to_status=status,
        actor_id=actor_id,
        actor_name=actor_name,
        reason=CORRECTION_REASON,
        comment=comment,
        details=details,
    )


def list_for_ticket(ticket_id: int, newest_first: bool = True) -> list[TicketStatusHistory]:
    """All entries for a ticket, ordered by ``changed_at`` then insertion order."""
    if newest_first:
        order = (TicketStatusHistory.changed_at.desc(), TicketStatusHistory.id.desc())
    else:
        order = (TicketStatusHistory.changed_at.asc(), TicketStatusHistory.id.asc())
    stmt = (
        select(TicketStatusHistory)
        .where(TicketStatusHistory.ticket_id == ticket_id)
        .order_by(*order)
    )
    return db.session.execute(stmt).scalars().all()
