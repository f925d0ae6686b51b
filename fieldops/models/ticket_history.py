"""
Field Maintenance Ticketing
Status history ledger model.

Models:
    - TicketStatusHistory: immutable, append-only record of accepted status transitions.

Rows are inserted by the lifecycle engine only. Corrections are new rows
with reason="correction"; the ORM refuses UPDATE and DELETE on this table.
"""

import json
from datetime import datetime, timezone

from sqlalchemy import event

from fieldops.core.exceptions import LedgerImmutableError
from fieldops.models import db


CORRECTION_REASON = "correction"


class TicketStatusHistory(db.Model):
    """
    One row per accepted transition.

    ``from_status`` is NULL for the creation entry. ``details_json`` carries
    transition context such as geofence distance or an override flag.
    """

    __tablename__ = "ticket_status_history"
    __table_args__ = (
        db.Index("idx_ticket_history_ticket_changed", "ticket_id", "changed_at"),
        db.Index("idx_ticket_history_to_status", "to_status"),
        db.Index("idx_ticket_history_actor", "actor_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(
        db.Integer, db.ForeignKey("tickets.id", ondelete="RESTRICT"),
        nullable=False,
    )

    from_status = db.Column(db.String(20), nullable=True)
    to_status = db.Column(db.String(20), nullable=False)

    actor_id = db.Column(db.String(64), nullable=False)
    actor_name = db.Column(db.String(150), nullable=False, default="")

    reason = db.Column(db.String(255), nullable=True)
    comment = db.Column(db.Text, nullable=True)
    details_json = db.Column(db.Text, default="{}")

    changed_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def details(self) -> dict:
        try:
            return json.loads(self.details_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    @property
    def is_correction(self) -> bool:
        return self.reason == CORRECTION_REASON

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "reason": self.reason,
            "comment": self.comment,
            "details": self.details,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
        }

    def __repr__(self):
        return (
            f"<TicketStatusHistory {self.id}: ticket={self.ticket_id} "
            f"{self.from_status} -> {self.to_status}>"
        )


@event.listens_for(TicketStatusHistory, "before_update")
def _refuse_update(mapper, connection, target):
    raise LedgerImmutableError(f"Status history entry id={target.id} is immutable")


@event.listens_for(TicketStatusHistory, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise LedgerImmutableError(f"Status history entry id={target.id} cannot be deleted")
