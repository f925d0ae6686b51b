"""
Field Maintenance Ticketing
Priority / SLA matrix model.

Models:
    - PrioritySLADefinition: response / resolution budgets (hours) per priority level.

Priority levels run 1 (critical) .. 4 (low); lower is more urgent.
"""

from datetime import datetime, timezone

from fieldops.models import db


# ── Constants ────────────────────────────────────────────────────────────────

# level: (name, response_hours, resolution_hours)
DEFAULT_PRIORITY_MATRIX = {
    1: ("critical", 1, 4),
    2: ("high", 2, 8),
    3: ("medium", 4, 24),
    4: ("low", 8, 48),
}


class PrioritySLADefinition(db.Model):
    """
    SLA budget for one priority level.
    Read-only at runtime: the engine loads every row once into an immutable
    matrix (``fieldops.services.sla_clock.PriorityMatrix``).
    """

    __tablename__ = "priority_sla_definitions"

    id = db.Column(db.Integer, primary_key=True)
    level = db.Column(db.Integer, nullable=False, unique=True, comment="1=critical .. 4=low")
    name = db.Column(db.String(30), nullable=False, unique=True)
    description = db.Column(db.Text, default="")

    response_hours = db.Column(db.Float, nullable=False)
    resolution_hours = db.Column(db.Float, nullable=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("response_hours > 0", name="ck_priority_response_positive"),
        db.CheckConstraint("response_hours <= resolution_hours", name="ck_priority_response_le_resolution"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "level": self.level,
            "name": self.name,
            "description": self.description,
            "response_hours": self.response_hours,
            "resolution_hours": self.resolution_hours,
        }

    def __repr__(self):
        return f"<PrioritySLADefinition P{self.level} {self.name} {self.response_hours}h/{self.resolution_hours}h>"


def seed_default_priorities():
    """Insert the default matrix rows that are missing. Returns number created."""
    existing = {p.level for p in PrioritySLADefinition.query.all()}
    created = 0
    for level, (name, response_h, resolution_h) in DEFAULT_PRIORITY_MATRIX.items():
        if level in existing:
            continue
        db.session.add(PrioritySLADefinition(
            level=level,
            name=name,
            response_hours=response_h,
            resolution_hours=resolution_h,
        ))
        created += 1
    return created
