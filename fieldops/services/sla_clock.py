"""
SLA Clock

Deadline computation at ticket creation and health classification on every
read.

Architecture:
  Deadlines are computed once, from the priority matrix, when the ticket is
  created; later priority edits never move them. Health (``on_time`` /
  ``at_risk`` / ``breached``) is never stored: it is re-derived from the
  deadlines, the recorded checkpoint timestamps and ``now`` each time a
  ticket is read, so a ticket can change health with zero writes.

  Per checkpoint (response, resolution):
    recorded and on/before deadline          -> on_time
    recorded after deadline                  -> breached
    not recorded and now > deadline          -> breached
    not recorded and now in the final
      ``at_risk_ratio`` of the budget        -> at_risk
    otherwise                                -> on_time
  Overall health is the worse of the two checkpoints.

The priority matrix is read from ``priority_sla_definitions`` once per app
and cached as an immutable ``PriorityMatrix`` in ``app.extensions``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import MappingProxyType

from flask import current_app
from sqlalchemy import select

from fieldops.core.exceptions import UnknownPriorityLevel
from fieldops.models import db
from fieldops.models.priority import DEFAULT_PRIORITY_MATRIX, PrioritySLADefinition
from fieldops.models.ticket import TERMINAL_STATUSES, TicketStatus
from fieldops.utils.helpers import as_utc

logger = logging.getLogger(__name__)

ON_TIME = "on_time"
AT_RISK = "at_risk"
BREACHED = "breached"

DEFAULT_AT_RISK_RATIO = 0.2

_SEVERITY_ORDER = {ON_TIME: 0, AT_RISK: 1, BREACHED: 2}

_EXTENSION_KEY = "priority_matrix"


# ═════════════════════════════════════════════════════════════════════════════
# Priority matrix
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class PriorityRule:
    level: int
    name: str
    response_hours: float
    resolution_hours: float

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "name": self.name,
            "response_hours": self.response_hours,
            "resolution_hours": self.resolution_hours,
        }


class PriorityMatrix:
    """Read-only ``level -> PriorityRule`` lookup."""

    def __init__(self, rules):
        table = {}
        for rule in rules:
            if rule.response_hours <= 0 or rule.response_hours > rule.resolution_hours:
                raise ValueError(
                    f"Priority {rule.level}: response ({rule.response_hours}h) must be "
                    f"positive and not exceed resolution ({rule.resolution_hours}h)"
                )
            table[rule.level] = rule
        self._rules = MappingProxyType(table)

    @classmethod
    def defaults(cls) -> "PriorityMatrix":
        return cls(
            PriorityRule(level, name, float(resp), float(res))
            for level, (name, resp, res) in DEFAULT_PRIORITY_MATRIX.items()
        )

    @classmethod
    def from_rows(cls, rows) -> "PriorityMatrix":
        return cls(
            PriorityRule(r.level, r.name, float(r.response_hours), float(r.resolution_hours))
            for r in rows
        )

    @property
    def levels(self) -> list[int]:
        return sorted(self._rules)

    def __contains__(self, level) -> bool:
        return level in self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def get(self, level) -> PriorityRule:
        # bool is an int subclass; True must not resolve to priority 1
        if isinstance(level, bool) or not isinstance(level, int) or level not in self._rules:
            raise UnknownPriorityLevel(level, known=self.levels)
        return self._rules[level]

    def to_list(self) -> list[dict]:
        return [self._rules[level].to_dict() for level in self.levels]


def load_priority_matrix() -> PriorityMatrix:
    """Build a matrix from the database, falling back to the built-in defaults."""
    rows = db.session.execute(
        select(PrioritySLADefinition).order_by(PrioritySLADefinition.level)
    ).scalars().all()
    if not rows:
        logger.warning("No priority_sla_definitions rows found, using built-in SLA matrix")
        return PriorityMatrix.defaults()
    return PriorityMatrix.from_rows(rows)


def get_priority_matrix() -> PriorityMatrix:
    """Return the app's cached matrix, loading it on first use."""
    matrix = current_app.extensions.get(_EXTENSION_KEY)
    if matrix is None:
        matrix = load_priority_matrix()
        current_app.extensions[_EXTENSION_KEY] = matrix
        logger.info("Priority matrix loaded", extra={"levels": matrix.levels})
    return matrix


def reset_priority_matrix() -> None:
    """Drop the cached matrix so the next read reloads it (after re-seeding)."""
    current_app.extensions.pop(_EXTENSION_KEY, None)


# ═════════════════════════════════════════════════════════════════════════════
# Deadlines
# ═════════════════════════════════════════════════════════════════════════════


def compute_deadlines(priority_level: int, created_at: datetime,
                      matrix: PriorityMatrix | None = None) -> tuple[datetime, datetime]:
    """Return ``(response_deadline, resolution_deadline)`` for a new ticket."""
    rule = (matrix or PriorityMatrix.defaults()).get(priority_level)
    start = as_utc(created_at)
    return (
        start + timedelta(hours=rule.response_hours),
        start + timedelta(hours=rule.resolution_hours),
    )


# ═════════════════════════════════════════════════════════════════════════════
# Classification
# ═════════════════════════════════════════════════════════════════════════════


def classify_checkpoint(now: datetime, deadline: datetime, actual: datetime | None = None,
                        created_at: datetime | None = None,
                        at_risk_ratio: float = DEFAULT_AT_RISK_RATIO) -> str:
    """Classify one checkpoint. Without *created_at* no at-risk window applies."""
    deadline = as_utc(deadline)
    if actual is not None:
        return ON_TIME if as_utc(actual) <= deadline else BREACHED

    now = as_utc(now)
    if now > deadline:
        return BREACHED

    if created_at is not None:
        budget = (deadline - as_utc(created_at)).total_seconds()
        remaining = (deadline - now).total_seconds()
        if budget > 0 and remaining <= budget * at_risk_ratio:
            return AT_RISK
    return ON_TIME


def worst_of(*statuses: str) -> str:
    return max(statuses, key=_SEVERITY_ORDER.__getitem__, default=ON_TIME)


def classify_sla_health(now: datetime, response_deadline: datetime, resolution_deadline: datetime,
                        actual_response_at: datetime | None = None,
                        actual_resolution_at: datetime | None = None,
                        created_at: datetime | None = None,
                        at_risk_ratio: float = DEFAULT_AT_RISK_RATIO) -> str:
    """Overall SLA health: the worse of the response and resolution checkpoints."""
    return worst_of(
        classify_checkpoint(now, response_deadline, actual_response_at, created_at, at_risk_ratio),
        classify_checkpoint(now, resolution_deadline, actual_resolution_at, created_at, at_risk_ratio),
    )


def hours_remaining(deadline: datetime, actual: datetime | None, now: datetime) -> int | None:
    """Whole hours left before *deadline* (negative once overdue), None when met."""
    if actual is not None:
        return None
    seconds = (as_utc(deadline) - as_utc(now)).total_seconds()
    return math.floor(seconds / 3600)


def evaluation_time(ticket, now: datetime | None = None) -> datetime:
    """Terminal tickets are judged at the moment they became terminal."""
    if ticket.status in {s.value for s in TERMINAL_STATUSES} and ticket.status_changed_at:
        return as_utc(ticket.status_changed_at)
    return as_utc(now) if now else datetime.now(timezone.utc)


def ticket_sla_snapshot(ticket, now: datetime | None = None,
                        at_risk_ratio: float = DEFAULT_AT_RISK_RATIO) -> dict:
    """Derived SLA fields for a ticket read."""
    at = evaluation_time(ticket, now)
    created = ticket.reported_at or ticket.created_at

    response = classify_checkpoint(
        at, ticket.sla_response_deadline, ticket.actual_response_at, created, at_risk_ratio,
    )
    resolution = classify_checkpoint(
        at, ticket.sla_resolution_deadline, ticket.actual_resolution_at, created, at_risk_ratio,
    )

    open_until = at
    if ticket.status == TicketStatus.CLOSED.value and ticket.closed_at:
        open_until = as_utc(ticket.closed_at)
    total_open_hours = round((open_until - as_utc(created)).total_seconds() / 3600, 2)

    return {
        "sla_status": worst_of(response, resolution),
        "sla_response_status": response,
        "sla_resolution_status": resolution,
        "response_hours_remaining": hours_remaining(
            ticket.sla_response_deadline, ticket.actual_response_at, at,
        ),
        "resolution_hours_remaining": hours_remaining(
            ticket.sla_resolution_deadline, ticket.actual_resolution_at, at,
        ),
        "total_open_hours": total_open_hours,
    }
