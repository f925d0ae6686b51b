"""
Field Maintenance Ticketing
Ticket domain models.

Models:
    - Ticket:             PM / CM work item with SLA deadlines, geofence evidence and costs
    - ReferenceSequence:  per-day counter backing human-readable reference codes

Lifecycle states (same table for both categories):
    draft → open → assigned → acknowledged → on_progress → pending_review
    → approved → closed
    acknowledged | pending_review → rejected → acknowledged
    draft | open | assigned | acknowledged | on_progress | rejected → cancelled
"""

import enum
import json
from datetime import datetime, timezone

from fieldops.models import db
from fieldops.models.retirement import RetirableMixin


# ── Constants ────────────────────────────────────────────────────────────────


class TicketStatus(str, enum.Enum):
    DRAFT = "draft"
    OPEN = "open"
    ASSIGNED = "assigned"
    ACKNOWLEDGED = "acknowledged"
    ON_PROGRESS = "on_progress"
    PENDING_REVIEW = "pending_review"
    REJECTED = "rejected"
    APPROVED = "approved"
    CLOSED = "closed"
    CANCELLED = "cancelled"


TICKET_STATUSES = [s.value for s in TicketStatus]

TICKET_CATEGORIES = {"pm", "cm"}

SEVERITIES = {"low", "medium", "high", "critical"}

CM_INCIDENT_TYPES = {"hardware_failure", "software_issue", "network_problem", "power_issue", "other"}

SLA_STATUSES = ("on_time", "at_risk", "breached")

TERMINAL_STATUSES = frozenset({TicketStatus.CLOSED, TicketStatus.CANCELLED})

# Initial states a ticket may be created in.
INITIAL_STATUSES = frozenset({TicketStatus.DRAFT, TicketStatus.OPEN, TicketStatus.ASSIGNED})

# Retirement ("deletion") is allowed only from these states.
RETIRABLE_STATUSES = frozenset({TicketStatus.DRAFT, TicketStatus.CLOSED, TicketStatus.CANCELLED})

# Statuses in which the assignee may be changed without a transition.
REASSIGNABLE_STATUSES = frozenset({TicketStatus.DRAFT, TicketStatus.OPEN, TicketStatus.ASSIGNED})


# ── Lifecycle Transition Table ───────────────────────────────────────────────

_S = TicketStatus

_MAINTENANCE_TRANSITIONS = {
    _S.DRAFT:          (_S.OPEN, _S.CANCELLED),
    _S.OPEN:           (_S.ASSIGNED, _S.CANCELLED),
    _S.ASSIGNED:       (_S.ACKNOWLEDGED, _S.CANCELLED),
    _S.ACKNOWLEDGED:   (_S.ON_PROGRESS, _S.REJECTED, _S.CANCELLED),
    _S.ON_PROGRESS:    (_S.PENDING_REVIEW, _S.CANCELLED),
    _S.PENDING_REVIEW: (_S.APPROVED, _S.REJECTED),
    _S.REJECTED:       (_S.ACKNOWLEDGED, _S.CANCELLED),
    _S.APPROVED:       (_S.CLOSED,),
    _S.CLOSED:         (),
    _S.CANCELLED:      (),
}

# Keyed by category so a category-specific workflow is a data change.
TICKET_TRANSITIONS = {
    "pm": _MAINTENANCE_TRANSITIONS,
    "cm": _MAINTENANCE_TRANSITIONS,
}

# Evidence that must accompany the move into pending_review.
REQUIRED_COMPLETION_EVIDENCE = (
    "before_photos",
    "after_photos",
    "technician_notes",
    "technician_signature",
)


def _iso(dt):
    return dt.isoformat() if dt else None


def _money(value):
    return float(value) if value is not None else None


def _json_list(value):
    return json.loads(value) if value else []


# ═════════════════════════════════════════════════════════════════════════════
# 1. Ticket
# ═════════════════════════════════════════════════════════════════════════════


class Ticket(RetirableMixin, db.Model):
    """
    Preventive or corrective maintenance ticket.
    Reference format: CM-20261018-0007 (category + day + daily sequence).
    Mutated only through ``fieldops.services.ticket_lifecycle``.
    """

    __tablename__ = "tickets"

    id = db.Column(db.Integer, primary_key=True)
    reference_code = db.Column(db.String(30), nullable=False, unique=True)

    # Basic information
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    category = db.Column(db.String(2), nullable=False, comment="pm | cm")

    # Classification
    priority_level = db.Column(db.Integer, nullable=False, comment="1=critical .. 4=low")
    severity = db.Column(db.String(20), nullable=True, comment="low | medium | high | critical")

    # Category-specific details
    pm_due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    cm_incident_type = db.Column(
        db.String(30), nullable=True,
        comment="hardware_failure | software_issue | network_problem | power_issue | other",
    )
    cm_impact_assessment = db.Column(db.Text, nullable=True)
    cm_business_impact = db.Column(db.String(20), nullable=True, comment="low | medium | high | critical")
    tags = db.Column(db.Text, nullable=True, comment="JSON array of labels")

    # Requester
    requester_id = db.Column(db.String(64), nullable=False)
    requester_name = db.Column(db.String(150), default="")

    # Location binding
    location_id = db.Column(
        db.Integer, db.ForeignKey("locations.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    location = db.relationship("Location", lazy="joined")

    # Assignment
    assigned_to_id = db.Column(db.String(64), nullable=True, index=True)
    assigned_to_name = db.Column(db.String(150), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Status
    status = db.Column(db.String(20), nullable=False, default=TicketStatus.OPEN.value, index=True)
    previous_status = db.Column(db.String(20), nullable=True)
    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status_changed_by = db.Column(db.String(64), nullable=True)
    version = db.Column(db.Integer, nullable=False, comment="Optimistic lock counter")

    # SLA (deadlines are fixed at creation)
    sla_response_deadline = db.Column(db.DateTime(timezone=True), nullable=False)
    sla_resolution_deadline = db.Column(db.DateTime(timezone=True), nullable=False)
    actual_response_at = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_resolution_at = db.Column(db.DateTime(timezone=True), nullable=True)
    response_time_minutes = db.Column(db.Integer, nullable=True)
    resolution_time_minutes = db.Column(db.Integer, nullable=True)

    # Timing
    reported_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Location verification
    work_location_lat = db.Column(db.Float, nullable=True)
    work_location_lng = db.Column(db.Float, nullable=True)
    work_location_accuracy = db.Column(db.Float, nullable=True, comment="GPS accuracy in metres")
    location_verified = db.Column(db.Boolean, nullable=False, default=False)
    location_verification_method = db.Column(db.String(20), nullable=True, comment="gps | admin_override")
    location_distance_m = db.Column(db.Float, nullable=True)

    # Completion evidence (references; files live in external storage)
    before_photos = db.Column(db.Text, nullable=True, comment="JSON array of photo URLs")
    after_photos = db.Column(db.Text, nullable=True, comment="JSON array of photo URLs")
    additional_photos = db.Column(db.Text, nullable=True)
    technician_notes = db.Column(db.Text, nullable=True)
    technician_signature = db.Column(db.Text, nullable=True, comment="Signature image reference")
    technician_signed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    technician_findings = db.Column(db.Text, nullable=True)
    technician_recommendations = db.Column(db.Text, nullable=True)

    # Job card
    jobcard_number = db.Column(db.String(40), nullable=True, unique=True)
    jobcard_generated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Cost
    labor_cost = db.Column(db.Numeric(15, 2), nullable=True)
    material_cost = db.Column(db.Numeric(15, 2), nullable=True)
    spare_parts_cost = db.Column(db.Numeric(15, 2), nullable=True)
    total_cost = db.Column(db.Numeric(15, 2), nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="IDR")

    # Rejection bookkeeping
    rejection_count = db.Column(db.Integer, nullable=False, default=0)
    last_rejection_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_rejection_reason = db.Column(db.Text, nullable=True)

    # Metadata
    created_by = db.Column(db.String(64), nullable=False)
    updated_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.CheckConstraint("category IN ('pm','cm')", name="ck_ticket_category"),
        db.CheckConstraint("priority_level BETWEEN 1 AND 4", name="ck_ticket_priority_level"),
        db.CheckConstraint(
            "status IN ('draft','open','assigned','acknowledged','on_progress',"
            "'pending_review','rejected','approved','closed','cancelled')",
            name="ck_ticket_status",
        ),
        db.CheckConstraint(
            "sla_response_deadline <= sla_resolution_deadline",
            name="ck_ticket_sla_order",
        ),
        db.Index("ix_tickets_category_status", "category", "status"),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def status_enum(self) -> TicketStatus:
        return TicketStatus(self.status)

    def to_dict(self):
        return {
            "id": self.id,
            "reference_code": self.reference_code,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority_level": self.priority_level,
            "severity": self.severity,
            "pm_due_date": _iso(self.pm_due_date),
            "cm_incident_type": self.cm_incident_type,
            "cm_impact_assessment": self.cm_impact_assessment,
            "cm_business_impact": self.cm_business_impact,
            "tags": _json_list(self.tags),
            "requester_id": self.requester_id,
            "requester_name": self.requester_name,
            "location_id": self.location_id,
            "assigned_to_id": self.assigned_to_id,
            "assigned_to_name": self.assigned_to_name,
            "assigned_at": _iso(self.assigned_at),
            "acknowledged_at": _iso(self.acknowledged_at),
            "status": self.status,
            "previous_status": self.previous_status,
            "status_changed_at": _iso(self.status_changed_at),
            "status_changed_by": self.status_changed_by,
            "version": self.version,
            "sla_response_deadline": _iso(self.sla_response_deadline),
            "sla_resolution_deadline": _iso(self.sla_resolution_deadline),
            "actual_response_at": _iso(self.actual_response_at),
            "actual_resolution_at": _iso(self.actual_resolution_at),
            "response_time_minutes": self.response_time_minutes,
            "resolution_time_minutes": self.resolution_time_minutes,
            "reported_at": _iso(self.reported_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "closed_at": _iso(self.closed_at),
            "work_location_lat": self.work_location_lat,
            "work_location_lng": self.work_location_lng,
            "work_location_accuracy": self.work_location_accuracy,
            "location_verified": self.location_verified,
            "location_verification_method": self.location_verification_method,
            "location_distance_m": self.location_distance_m,
            "before_photos": self.before_photos,
            "after_photos": self.after_photos,
            "additional_photos": self.additional_photos,
            "technician_notes": self.technician_notes,
            "technician_signature": self.technician_signature,
            "technician_signed_at": _iso(self.technician_signed_at),
            "technician_findings": self.technician_findings,
            "technician_recommendations": self.technician_recommendations,
            "jobcard_number": self.jobcard_number,
            "jobcard_generated_at": _iso(self.jobcard_generated_at),
            "labor_cost": _money(self.labor_cost),
            "material_cost": _money(self.material_cost),
            "spare_parts_cost": _money(self.spare_parts_cost),
            "total_cost": _money(self.total_cost),
            "currency": self.currency,
            "rejection_count": self.rejection_count,
            "last_rejection_at": _iso(self.last_rejection_at),
            "last_rejection_reason": self.last_rejection_reason,
            "is_active": self.is_active,
            "retired_at": _iso(self.retired_at),
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Ticket {self.id}: {self.reference_code} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. ReferenceSequence
# ═════════════════════════════════════════════════════════════════════════════


class ReferenceSequence(db.Model):
    """
    Monotonic counter per reference scope (e.g. "CM-20261018").
    Reserved inside the transaction that creates the ticket.
    """

    __tablename__ = "reference_sequences"

    scope = db.Column(db.String(30), primary_key=True)
    last_value = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<ReferenceSequence {self.scope}={self.last_value}>"
