"""
Retirement Mixin

Tickets are never physically deleted. "Deleting" one flips a visibility
flag and stamps who retired it and when; the row and its status history stay
in place for audit.

Usage:
    class Ticket(RetirableMixin, db.Model):
        ...

    ticket.retire(actor_id="u-7")
    db.session.commit()

    select(Ticket).where(Ticket.is_active.is_(True))   # visible tickets only
"""

from datetime import datetime, timezone

from fieldops.models import db


class RetirableMixin:
    """Mixin that adds a reachability flag instead of physical deletion."""

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    retired_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None)
    retired_by = db.Column(db.String(64), nullable=True)

    def retire(self, actor_id=None):
        """Hide this record from default queries."""
        self.is_active = False
        self.retired_at = datetime.now(timezone.utc)
        self.retired_by = actor_id

    @property
    def is_retired(self):
        return not self.is_active
