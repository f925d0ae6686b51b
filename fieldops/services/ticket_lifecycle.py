"""
Field Maintenance Ticketing
Ticket Lifecycle Engine.

Orchestrates the workflow state machine, the SLA clock and the geofence
verifier. Every operation is one synchronous unit of work: validate, mutate
the ticket, append to the status-history ledger, commit. A failed gate
leaves the ticket untouched.

Transition gates, in order:
  1. requested == current status       -> no-op success (no ledger entry)
  2. stale expected_version            -> ConcurrentModification
  3. not an edge of the workflow table -> InvalidTransition
  4. entering assigned without assignee -> IncompleteEvidence
  5. entering pending_review without
     before/after photos, notes and signature -> IncompleteEvidence
  6. work coordinates outside the site
     geofence and no admin override    -> LocationVerificationFailed
Then timestamps, cost totals and rejection bookkeeping are applied and the
change is committed together with its ledger entry. The ticket row is
written with ``UPDATE ... WHERE version = :validated`` (SQLAlchemy
``version_id_col``); a lost race surfaces as ConcurrentModification.
Nothing is retried inside the engine.

Notifications are dispatched after commit, fire-and-forget.
"""

from __future__ import annotations

import json
import logging
import math
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from fieldops.core.exceptions import (
    ConcurrentModification,
    IncompleteEvidence,
    InvalidTransition,
    LifecycleError,
    LocationVerificationFailed,
    NotFoundError,
    PersistenceError,
    TicketReadOnly,
    TicketStillActive,
    Unauthorized,
    ValidationError,
)
from fieldops.models import db
from fieldops.models.location import Location
from fieldops.models.ticket import (
    CM_INCIDENT_TYPES,
    INITIAL_STATUSES,
    REASSIGNABLE_STATUSES,
    REQUIRED_COMPLETION_EVIDENCE,
    RETIRABLE_STATUSES,
    SEVERITIES,
    SLA_STATUSES,
    TICKET_CATEGORIES,
    Ticket,
    TicketStatus,
)
from fieldops.services import geofence, ledger, sla_clock, workflow
from fieldops.services.notification import notify_transition
from fieldops.services.reference_codes import jobcard_number_for, next_reference_code
from fieldops.utils.helpers import as_utc, check_coordinate, parse_datetime, to_decimal, utcnow

logger = logging.getLogger(__name__)

COST_FIELDS = ("labor_cost", "material_cost", "spare_parts_cost")

SORTABLE_FIELDS = {
    "created_at": Ticket.created_at,
    "reported_at": Ticket.reported_at,
    "updated_at": Ticket.updated_at,
    "priority_level": Ticket.priority_level,
    "status": Ticket.status,
    "reference_code": Ticket.reference_code,
    "sla_response_deadline": Ticket.sla_response_deadline,
    "sla_resolution_deadline": Ticket.sla_resolution_deadline,
}

CATEGORY_FIELDS = {
    "pm": ("pm_due_date",),
    "cm": ("cm_incident_type", "cm_impact_assessment", "cm_business_impact"),
}

# Descriptive fields editable through update_details.
DETAIL_FIELDS = (
    "title",
    "description",
    "priority_level",
    "severity",
    "tags",
) + CATEGORY_FIELDS["pm"] + CATEGORY_FIELDS["cm"]

_OPTIONAL_EVIDENCE = (
    "additional_photos",
    "technician_findings",
    "technician_recommendations",
)


# ═════════════════════════════════════════════════════════════════════════════
# Internal helpers
# ═════════════════════════════════════════════════════════════════════════════


def _tolerance_for(location: Location | None) -> float:
    if location is not None and location.geofence_radius_m:
        return float(location.geofence_radius_m)
    return float(current_app.config.get("GEOFENCE_TOLERANCE_METERS", geofence.DEFAULT_TOLERANCE_M))


def _at_risk_ratio() -> float:
    return float(current_app.config.get("SLA_AT_RISK_RATIO", sla_clock.DEFAULT_AT_RISK_RATIO))


def _get_ticket(ticket_id: int) -> Ticket:
    ticket = db.session.get(Ticket, ticket_id)
    if ticket is None or ticket.is_retired:
        raise NotFoundError(resource="Ticket", resource_id=ticket_id)
    return ticket


def _get_location(location_id) -> Location:
    location = db.session.get(Location, location_id) if location_id is not None else None
    if location is None or not location.is_active:
        raise NotFoundError(resource="Location", resource_id=location_id)
    return location


def _current_version(ticket_id: int | None) -> int | None:
    if ticket_id is None:
        return None
    return db.session.execute(
        select(Ticket.version).where(Ticket.id == ticket_id)
    ).scalar_one_or_none()


@contextmanager
def _unit_of_work(ticket_id: int | None = None, expected_version: int | None = None):
    """Commit on success; roll back and translate storage faults on failure."""
    try:
        yield
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        current = _current_version(ticket_id)
        logger.warning(
            "Concurrent modification on ticket_id=%s (expected v%s, now v%s)",
            ticket_id, expected_version, current,
            extra={"ticket_id": ticket_id, "expected_version": expected_version},
        )
        raise ConcurrentModification(ticket_id, expected_version, current) from exc
    except LifecycleError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Database error on ticket_id=%s", ticket_id, exc_info=True)
        raise PersistenceError(f"Database error: {exc.__class__.__name__}") from exc


def _present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def _as_text(value):
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value)


def _string(data: dict, field: str, errors: dict, max_length: int | None = None):
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        errors[field] = "Must be a string"
        return None
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        errors[field] = f"Must be {max_length} characters or fewer"
    return value


def _choice(data: dict, field: str, choices, errors: dict):
    value = _string(data, field, errors)
    if value is None or field in errors:
        return None
    value = value.lower()
    if value not in choices:
        errors[field] = f"Must be one of: {', '.join(sorted(choices))}"
        return None
    return value


def _tags(value, errors: dict):
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
        errors["tags"] = "Must be a list of strings"
        return None
    return json.dumps([t.strip() for t in value if t.strip()])


def _parse_details(data: dict, category: str | None, errors: dict) -> dict:
    """Validate the descriptive fields present in *data*; field errors go to *errors*."""
    fields = {}
    if "title" in data:
        title = _string(data, "title", errors, max_length=255)
        if not title and "title" not in errors:
            errors["title"] = "title is required"
        fields["title"] = title
    if "description" in data:
        fields["description"] = _string(data, "description", errors) or ""
    if "severity" in data:
        fields["severity"] = _choice(data, "severity", SEVERITIES, errors)

    if "pm_due_date" in data:
        try:
            fields["pm_due_date"] = parse_datetime(data["pm_due_date"])
        except ValueError as exc:
            errors["pm_due_date"] = str(exc)
    if "cm_incident_type" in data:
        fields["cm_incident_type"] = _choice(data, "cm_incident_type", CM_INCIDENT_TYPES, errors)
    if "cm_impact_assessment" in data:
        fields["cm_impact_assessment"] = _string(data, "cm_impact_assessment", errors)
    if "cm_business_impact" in data:
        fields["cm_business_impact"] = _choice(data, "cm_business_impact", SEVERITIES, errors)
    if "tags" in data:
        fields["tags"] = _tags(data["tags"], errors)

    for owner, names in CATEGORY_FIELDS.items():
        if category is None or owner == category:
            continue
        for name in names:
            if fields.get(name) is not None:
                errors[name] = f"Only applies to {owner} tickets"
    return fields


def _currency(payload: dict) -> str | None:
    value = payload.get("currency")
    if value is None or value == "":
        return None
    if not isinstance(value, str) or len(value.strip()) != 3 or not value.strip().isalpha():
        raise ValidationError("currency must be a 3-letter code",
                              details={"currency": "Must be an ISO 4217 code"})
    return value.strip().upper()


def _check_version(ticket: Ticket, expected_version) -> None:
    if expected_version is None:
        return
    try:
        expected = int(expected_version)
    except (TypeError, ValueError):
        raise ValidationError(
            "expected_version must be an integer",
            details={"expected_version": "Must be an integer"},
        ) from None
    if expected != ticket.version:
        raise ConcurrentModification(ticket.id, expected, ticket.version)


def _parse_costs(payload: dict) -> dict:
    """Validate cost components present in *payload*; return ``{field: Decimal|None}``."""
    costs = {}
    for field in COST_FIELDS:
        if field not in payload:
            continue
        try:
            costs[field] = to_decimal(payload[field])
        except ValueError as exc:
            raise ValidationError(str(exc), details={field: str(exc)}) from None
    return costs


def compute_total_cost(labor, material, spare_parts) -> Decimal | None:
    """Sum of the set components, or None when none is set."""
    parts = [p for p in (labor, material, spare_parts) if p is not None]
    if not parts:
        return None
    return sum((Decimal(str(p)) for p in parts), Decimal("0.00")).quantize(Decimal("0.01"))


def _apply_costs(ticket: Ticket, costs: dict, currency: str | None = None) -> None:
    for field, value in costs.items():
        setattr(ticket, field, value)
    if currency:
        ticket.currency = currency
    if costs:
        total = compute_total_cost(ticket.labor_cost, ticket.material_cost, ticket.spare_parts_cost)
        try:
            ticket.total_cost = to_decimal(total)
        except ValueError as exc:
            raise ValidationError(str(exc), details={"total_cost": "Sum of costs is too large"}) from None


def _work_location(evidence: dict) -> dict | None:
    """Extract submitted work coordinates, or None when none were sent."""
    point = evidence.get("work_location")
    if isinstance(point, dict):
        return {"lat": point.get("lat"), "lng": point.get("lng"), "accuracy": point.get("accuracy")}
    if any(evidence.get(k) is not None for k in ("work_location_lat", "work_location_lng")):
        return {
            "lat": evidence.get("work_location_lat"),
            "lng": evidence.get("work_location_lng"),
            "accuracy": evidence.get("work_location_accuracy"),
        }
    return None


def _verify_location(ticket: Ticket, point: dict, actor, force_override: bool):
    """Run the geofence gate. Returns ``(result, overridden)`` or raises."""
    for axis in ("lat", "lng"):
        if point.get(axis) is not None:
            try:
                point[axis] = check_coordinate(point[axis], axis)
            except ValueError as exc:
                raise ValidationError(
                    f"Work location {exc}",
                    details={f"work_location_{axis}": str(exc)},
                ) from None

    site = ticket.location
    expected = {"lat": site.latitude, "lng": site.longitude} if site is not None and site.has_coordinates else None
    try:
        result = geofence.verify(expected, point, tolerance_m=_tolerance_for(site))
    except (TypeError, ValueError):
        raise ValidationError(
            "Work location coordinates must be numeric",
            details={"work_location": "lat, lng and accuracy must be numbers"},
        ) from None

    if result.is_valid:
        return result, False
    if force_override:
        logger.info(
            "Geofence override by admin on ticket_id=%s (%s)",
            ticket.id, result.reason,
            extra={"ticket_id": ticket.id, "actor_id": actor.id, "distance_m": result.distance_m},
        )
        return result, True
    raise LocationVerificationFailed(result.distance_m, result.tolerance_m, result.reason)


def _minutes_between(start, end) -> int | None:
    if start is None or end is None:
        return None
    return int((as_utc(end) - as_utc(start)).total_seconds() // 60)


def _stamp(ticket: Ticket, target: TicketStatus, now: datetime, evidence: dict, actor) -> None:
    """Timestamp bookkeeping for entering *target*."""
    if target is TicketStatus.ASSIGNED:
        if evidence.get("assigned_to_id"):
            ticket.assigned_to_id = str(evidence["assigned_to_id"])
            ticket.assigned_to_name = evidence.get("assigned_to_name") or ticket.assigned_to_name
        ticket.assigned_at = now

    elif target is TicketStatus.ACKNOWLEDGED:
        ticket.acknowledged_at = now
        if ticket.actual_response_at is None:
            ticket.actual_response_at = now
            ticket.response_time_minutes = _minutes_between(ticket.reported_at, now)

    elif target is TicketStatus.ON_PROGRESS:
        if ticket.started_at is None:
            ticket.started_at = now

    elif target is TicketStatus.PENDING_REVIEW:
        for field in REQUIRED_COMPLETION_EVIDENCE + _OPTIONAL_EVIDENCE:
            if field in evidence:
                setattr(ticket, field, _as_text(evidence[field]))
        ticket.technician_signed_at = now
        ticket.completed_at = now

    elif target is TicketStatus.REJECTED:
        ticket.rejection_count = (ticket.rejection_count or 0) + 1
        ticket.last_rejection_at = now
        ticket.last_rejection_reason = evidence.get("reason")

    elif target is TicketStatus.APPROVED:
        ticket.actual_resolution_at = now
        ticket.resolution_time_minutes = _minutes_between(ticket.reported_at, now)

    elif target is TicketStatus.CLOSED:
        ticket.closed_at = now
        if not ticket.jobcard_number:
            ticket.jobcard_number = jobcard_number_for(ticket.reference_code)
            ticket.jobcard_generated_at = now


# ═════════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════════


def _priority_from(value) -> int:
    matrix = sla_clock.get_priority_matrix()
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value)
    matrix.get(value)
    return value


def create_ticket(data: dict, requester) -> Ticket:
    """Create a ticket with SLA deadlines fixed from the priority matrix.

    Initial status is ``open``; ``assigned`` when an assignee is supplied,
    ``draft`` when requested explicitly.
    """
    errors = {}
    category = _choice(data, "category", TICKET_CATEGORIES, errors)
    if category is None and "category" not in errors:
        errors["category"] = f"Must be one of: {', '.join(sorted(TICKET_CATEGORIES))}"
    details = _parse_details(dict(data, title=data.get("title")), category, errors)
    assignee_name = _string(data, "assigned_to_name", errors, max_length=150)
    if isinstance(data.get("assigned_to_id"), (bool, list, dict, float)):
        errors["assigned_to_id"] = "Must be a string or integer"

    if data.get("priority_level") is None:
        errors["priority_level"] = "priority_level is required"
    location_id = data.get("location_id")
    if location_id is None:
        errors["location_id"] = "location_id is required"
    elif isinstance(location_id, bool) or not isinstance(location_id, (int, str)) or not str(location_id).isdigit():
        errors["location_id"] = "Must be an integer"
    if errors:
        raise ValidationError("Invalid ticket payload", details=errors)

    priority_level = _priority_from(data["priority_level"])
    location = _get_location(int(location_id))
    costs = _parse_costs(data)
    currency = _currency(data) or current_app.config.get("DEFAULT_CURRENCY", "IDR").upper()

    assignee_id = data.get("assigned_to_id")
    requested = data.get("status")
    if requested is None:
        status = TicketStatus.ASSIGNED if assignee_id else TicketStatus.OPEN
    else:
        status = workflow.coerce_status(requested)
        if status not in INITIAL_STATUSES:
            raise ValidationError(
                f"Tickets cannot be created in status '{status.value}'",
                details={"status": f"Must be one of: {', '.join(sorted(s.value for s in INITIAL_STATUSES))}"},
            )
        if status is TicketStatus.OPEN and assignee_id:
            status = TicketStatus.ASSIGNED
    if status is TicketStatus.ASSIGNED and not assignee_id:
        raise IncompleteEvidence(["assigned_to_id"])

    now = utcnow()
    response_deadline, resolution_deadline = sla_clock.compute_deadlines(
        priority_level, now, matrix=sla_clock.get_priority_matrix(),
    )

    with _unit_of_work():
        ticket = Ticket(
            reference_code=next_reference_code(category, now),
            category=category,
            priority_level=priority_level,
            requester_id=requester.id,
            requester_name=requester.name or "",
            location_id=location.id,
            location=location,
            assigned_to_id=str(assignee_id) if assignee_id else None,
            assigned_to_name=assignee_name if assignee_id else None,
            assigned_at=now if assignee_id else None,
            status=status.value,
            status_changed_at=now,
            status_changed_by=requester.id,
            sla_response_deadline=response_deadline,
            sla_resolution_deadline=resolution_deadline,
            reported_at=now,
            currency=currency,
            created_by=requester.id,
            created_at=now,
        )
        for field, value in details.items():
            setattr(ticket, field, value)
        if ticket.description is None:
            ticket.description = ""
        _apply_costs(ticket, costs)
        db.session.add(ticket)
        db.session.flush()
        ledger.append(
            ticket_id=ticket.id,
            from_status=None,
            to_status=status.value,
            actor_id=requester.id,
            actor_name=requester.name,
            reason="created",
            comment=data.get("comment"),
            details={"priority_level": priority_level},
            changed_at=now,
        )

    logger.info(
        "Ticket created: %s [%s] P%s",
        ticket.reference_code, ticket.status, priority_level,
        extra={"ticket_id": ticket.id, "reference_code": ticket.reference_code,
               "to_status": ticket.status, "actor_id": requester.id},
    )
    notify_transition(ticket, None, ticket.status, requester)
    return ticket


# ═════════════════════════════════════════════════════════════════════════════
# Transition
# ═════════════════════════════════════════════════════════════════════════════


def transition(ticket_id: int, requested_status, actor, evidence: dict | None = None,
               expected_version: int | None = None) -> Ticket:
    """Move a ticket to *requested_status*. See the module docstring for the gates."""
    evidence = evidence or {}
    ticket = _get_ticket(ticket_id)
    target = workflow.coerce_status(requested_status)
    current = ticket.status_enum

    # 1. Idempotent
    if target is current:
        logger.debug(
            "Transition no-op: %s already %s", ticket.reference_code, current.value,
            extra={"ticket_id": ticket.id},
        )
        return ticket

    # 2. Optimistic version
    _check_version(ticket, expected_version)
    validated_version = ticket.version

    # 3. Workflow table
    workflow.validate_transition(current, target, ticket.category)

    # 4. Assignee
    if target is TicketStatus.ASSIGNED and not (evidence.get("assigned_to_id") or ticket.assigned_to_id):
        raise IncompleteEvidence(["assigned_to_id"])

    # 5. Completion evidence
    if target is TicketStatus.PENDING_REVIEW:
        missing = [f for f in REQUIRED_COMPLETION_EVIDENCE if not _present(evidence.get(f))]
        if missing:
            raise IncompleteEvidence(missing)

    # 6. Geofence
    force_override = bool(evidence.get("force_location_override"))
    if force_override and not actor.is_admin:
        raise Unauthorized("Only administrators may override location verification",
                           required_role="admin")
    point = _work_location(evidence)
    geo_result, overridden = (None, False)
    if point is not None:
        geo_result, overridden = _verify_location(ticket, point, actor, force_override)

    costs = _parse_costs(evidence)
    currency = _currency(evidence)

    now = utcnow()
    with _unit_of_work(ticket.id, validated_version):
        if point is not None:
            ticket.work_location_lat = point.get("lat")
            ticket.work_location_lng = point.get("lng")
            ticket.work_location_accuracy = point.get("accuracy")
            ticket.location_distance_m = geo_result.distance_m
            ticket.location_verified = True
            ticket.location_verification_method = "admin_override" if overridden else "gps"

        _stamp(ticket, target, now, evidence, actor)
        _apply_costs(ticket, costs, currency)

        ticket.previous_status = current.value
        ticket.status = target.value
        ticket.status_changed_at = now
        ticket.status_changed_by = actor.id
        ticket.updated_by = actor.id
        db.session.flush()

        details = {"version": ticket.version}
        if geo_result is not None:
            details["geofence"] = geo_result.to_dict()
            details["location_override"] = overridden
        if costs:
            details["total_cost"] = float(ticket.total_cost) if ticket.total_cost is not None else None
        ledger.append(
            ticket_id=ticket.id,
            from_status=current.value,
            to_status=target.value,
            actor_id=actor.id,
            actor_name=actor.name,
            reason=evidence.get("reason"),
            comment=evidence.get("comment"),
            details=details,
            changed_at=now,
        )

    logger.info(
        "Ticket %s: %s -> %s", ticket.reference_code, current.value, target.value,
        extra={"ticket_id": ticket.id, "reference_code": ticket.reference_code,
               "from_status": current.value, "to_status": target.value, "actor_id": actor.id},
    )
    notify_transition(ticket, current.value, target.value, actor)
    return ticket


# ═════════════════════════════════════════════════════════════════════════════
# Non-transition updates
# ═════════════════════════════════════════════════════════════════════════════


def assign(ticket_id: int, assignee_id, assignee_name, actor,
           expected_version: int | None = None) -> Ticket:
    """(Re)assign a ticket. An ``open`` ticket is promoted to ``assigned``."""
    if not assignee_id:
        raise ValidationError("assigned_to_id is required",
                              details={"assigned_to_id": "assigned_to_id is required"})
    ticket = _get_ticket(ticket_id)
    current = ticket.status_enum

    if current is TicketStatus.OPEN:
        return transition(
            ticket_id, TicketStatus.ASSIGNED, actor,
            evidence={"assigned_to_id": assignee_id, "assigned_to_name": assignee_name},
            expected_version=expected_version,
        )
    if current not in REASSIGNABLE_STATUSES:
        raise InvalidTransition(
            current.value, TicketStatus.ASSIGNED.value,
            allowed=workflow.allowed_transitions(current, ticket.category),
        )

    _check_version(ticket, expected_version)
    previous = ticket.assigned_to_id
    with _unit_of_work(ticket.id, ticket.version):
        ticket.assigned_to_id = str(assignee_id)
        ticket.assigned_to_name = assignee_name
        ticket.assigned_at = utcnow()
        ticket.updated_by = actor.id

    logger.info(
        "Ticket %s reassigned: %s -> %s", ticket.reference_code, previous, assignee_id,
        extra={"ticket_id": ticket.id, "reference_code": ticket.reference_code, "actor_id": actor.id},
    )
    return ticket


def record_costs(ticket_id: int, costs: dict, actor, expected_version: int | None = None) -> Ticket:
    """Update cost components without a status change; total is recomputed."""
    ticket = _get_ticket(ticket_id)
    _check_version(ticket, expected_version)
    parsed = _parse_costs(costs)
    currency = _currency(costs)
    if not parsed and not currency:
        raise ValidationError(
            "No cost fields supplied",
            details={"costs": f"Provide one of: {', '.join(COST_FIELDS)}"},
        )

    with _unit_of_work(ticket.id, ticket.version):
        _apply_costs(ticket, parsed, currency)
        ticket.updated_by = actor.id

    logger.info(
        "Ticket %s costs updated: total=%s", ticket.reference_code, ticket.total_cost,
        extra={"ticket_id": ticket.id, "reference_code": ticket.reference_code, "actor_id": actor.id},
    )
    return ticket


def update_details(ticket_id: int, data: dict, actor,
                   expected_version: int | None = None) -> Ticket:
    """Edit descriptive fields (see ``DETAIL_FIELDS``) without a status change.

    SLA deadlines stay as fixed at creation, including when priority_level
    changes. Closed and cancelled tickets are read-only. Edits are not
    status changes and write no ledger entry.
    """
    ticket = _get_ticket(ticket_id)
    unknown = sorted(set(data) - set(DETAIL_FIELDS))
    if unknown:
        raise ValidationError(
            "Fields cannot be edited here: " + ", ".join(unknown),
            details={field: "Not editable" for field in unknown},
        )
    if not data:
        raise ValidationError(
            "No editable fields supplied",
            details={"fields": f"Provide one of: {', '.join(DETAIL_FIELDS)}"},
        )
    if workflow.is_terminal(ticket.status):
        raise TicketReadOnly(ticket.id, ticket.status)
    _check_version(ticket, expected_version)

    errors = {}
    fields = _parse_details(data, ticket.category, errors)
    if "priority_level" in data and data["priority_level"] is None:
        errors["priority_level"] = "priority_level is required"
    if errors:
        raise ValidationError("Invalid ticket details", details=errors)
    if "priority_level" in data:
        fields["priority_level"] = _priority_from(data["priority_level"])
    if "description" in fields and fields["description"] is None:
        fields["description"] = ""

    changed = {f: v for f, v in fields.items() if getattr(ticket, f) != v}
    if not changed:
        return ticket

    with _unit_of_work(ticket.id, ticket.version):
        for field, value in changed.items():
            setattr(ticket, field, value)
        ticket.updated_by = actor.id

    logger.info(
        "Ticket %s details updated: %s", ticket.reference_code, ", ".join(sorted(changed)),
        extra={"ticket_id": ticket.id, "reference_code": ticket.reference_code, "actor_id": actor.id},
    )
    return ticket


def override_location(ticket_id: int, actor, reason: str,
                      expected_version: int | None = None) -> Ticket:
    """Administrative override of location verification, recorded in the ledger."""
    if not actor.is_admin:
        raise Unauthorized("Only administrators may override location verification",
                           required_role="admin")
    if not _present(reason):
        raise ValidationError("reason is required", details={"reason": "reason is required"})

    ticket = _get_ticket(ticket_id)
    _check_version(ticket, expected_version)

    with _unit_of_work(ticket.id, ticket.version):
        previous = {
            "location_verified": ticket.location_verified,
            "location_verification_method": ticket.location_verification_method,
        }
        ticket.location_verified = True
        ticket.location_verification_method = "admin_override"
        ticket.updated_by = actor.id
        db.session.flush()
        ledger.append_correction(
            ticket_id=ticket.id,
            status=ticket.status,
            actor_id=actor.id,
            actor_name=actor.name,
            comment=reason,
            details={
                "location_override": True,
                "previous": previous,
                "distance_m": ticket.location_distance_m,
            },
        )

    logger.warning(
        "Location verification overridden on %s by %s", ticket.reference_code, actor.id,
        extra={"ticket_id": ticket.id, "reference_code": ticket.reference_code, "actor_id": actor.id},
    )
    return ticket


def retire(ticket_id: int, actor) -> Ticket:
    """Hide a ticket from default reads. Refused while the ticket is active."""
    ticket = _get_ticket(ticket_id)
    if ticket.status_enum not in RETIRABLE_STATUSES:
        raise TicketStillActive(ticket.id, ticket.status)

    with _unit_of_work(ticket.id, ticket.version):
        ticket.retire(actor_id=actor.id)
        ticket.updated_by = actor.id

    logger.info(
        "Ticket %s retired", ticket.reference_code,
        extra={"ticket_id": ticket.id, "reference_code": ticket.reference_code, "actor_id": actor.id},
    )
    return ticket


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def ticket_view(ticket: Ticket, now: datetime | None = None) -> dict:
    """Serialise a ticket with derived SLA and workflow fields."""
    data = ticket.to_dict()
    data.update(sla_clock.ticket_sla_snapshot(ticket, now=now, at_risk_ratio=_at_risk_ratio()))
    allowed = workflow.allowed_transitions(ticket.status, ticket.category)
    data["allowed_transitions"] = allowed
    data["can_reopen"] = workflow.is_terminal(ticket.status)
    data["can_close"] = TicketStatus.CLOSED.value in allowed
    data["requires_approval"] = ticket.status == TicketStatus.PENDING_REVIEW.value
    data["location"] = ticket.location.to_dict() if ticket.location else None
    return data


def get_ticket(ticket_id: int, include_history: bool = False, now: datetime | None = None) -> dict:
    ticket = _get_ticket(ticket_id)
    data = ticket_view(ticket, now=now)
    if include_history:
        data["history"] = [e.to_dict() for e in ledger.list_for_ticket(ticket.id)]
    return data


def get_history(ticket_id: int) -> list[dict]:
    ticket = _get_ticket(ticket_id)
    return [e.to_dict() for e in ledger.list_for_ticket(ticket.id)]


def _filtered_query(filters: dict):
    stmt = select(Ticket).where(Ticket.is_active.is_(True))
    for field in ("category", "status", "assigned_to_id", "requester_id"):
        value = filters.get(field)
        if value:
            stmt = stmt.where(getattr(Ticket, field) == value)
    for field in ("priority_level", "location_id"):
        value = filters.get(field)
        if value is not None:
            stmt = stmt.where(getattr(Ticket, field) == value)
    if filters.get("date_from") is not None:
        stmt = stmt.where(Ticket.reported_at >= filters["date_from"])
    if filters.get("date_to") is not None:
        stmt = stmt.where(Ticket.reported_at <= filters["date_to"])
    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        stmt = stmt.where(or_(
            Ticket.reference_code.ilike(like),
            Ticket.title.ilike(like),
            Ticket.description.ilike(like),
        ))
    return stmt


def _pagination(total: int, page: int, per_page: int) -> dict:
    total_pages = math.ceil(total / per_page) if per_page else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total_count": total,
        "per_page": per_page,
        "has_next_page": page < total_pages,
        "has_previous_page": page > 1,
    }


def list_tickets(filters: dict | None = None, page: int = 1, per_page: int | None = None,
                 sort_by: str = "created_at", sort_order: str = "desc",
                 now: datetime | None = None) -> tuple[list[dict], dict]:
    """Active tickets with derived fields, plus a pagination summary.

    The ``sla_status`` filter is applied after health is recomputed, so
    paging for that filter happens in memory.
    """
    filters = filters or {}
    max_size = int(current_app.config.get("MAX_PAGE_SIZE", 100))
    per_page = per_page or int(current_app.config.get("DEFAULT_PAGE_SIZE", 20))
    per_page = max(1, min(int(per_page), max_size))
    page = max(1, int(page))

    if sort_by not in SORTABLE_FIELDS:
        raise ValidationError(
            f"Cannot sort by '{sort_by}'",
            details={"sort_by": f"Must be one of: {', '.join(sorted(SORTABLE_FIELDS))}"},
        )
    column = SORTABLE_FIELDS[sort_by]
    order = column.asc() if str(sort_order).lower() == "asc" else column.desc()

    sla_filter = filters.get("sla_status")
    if sla_filter and sla_filter not in SLA_STATUSES:
        raise ValidationError(
            f"Unknown sla_status '{sla_filter}'",
            details={"sla_status": f"Must be one of: {', '.join(SLA_STATUSES)}"},
        )

    stmt = _filtered_query(filters).order_by(order, Ticket.id.desc())

    if sla_filter:
        views = [ticket_view(t, now=now) for t in db.session.execute(stmt).unique().scalars()]
        views = [v for v in views if v["sla_status"] == sla_filter]
        start = (page - 1) * per_page
        return views[start:start + per_page], _pagination(len(views), page, per_page)

    total = db.session.execute(
        select(func.count()).select_from(_filtered_query(filters).subquery())
    ).scalar()
    rows = db.session.execute(
        stmt.offset((page - 1) * per_page).limit(per_page)
    ).unique().scalars().all()
    return [ticket_view(t, now=now) for t in rows], _pagination(total, page, per_page)
