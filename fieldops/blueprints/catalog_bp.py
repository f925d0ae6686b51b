"""
Catalog blueprint: SLA priority matrix and site master data.

Endpoints:
    GET  /api/v1/priorities            - SLA matrix in effect
    POST /api/v1/locations             - register a site
    GET  /api/v1/locations             - list active sites
    GET  /api/v1/locations/<id>        - one site
"""

import logging

from flask import Blueprint, jsonify
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from fieldops.auth import require_role
from fieldops.blueprints import json_body, register_error_handlers
from fieldops.core.exceptions import NotFoundError, ValidationError
from fieldops.models import db
from fieldops.models.location import Location
from fieldops.services.sla_clock import get_priority_matrix
from fieldops.utils.errors import E, api_error
from fieldops.utils.helpers import check_coordinate

logger = logging.getLogger(__name__)

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/v1")
register_error_handlers(catalog_bp)


@catalog_bp.route("/priorities", methods=["GET"])
def list_priorities():
    return jsonify({"items": get_priority_matrix().to_list()})


def _coordinate(data, field, axis):
    value = data.get(field)
    if value is None:
        return None
    try:
        return check_coordinate(value, axis)
    except ValueError as exc:
        raise ValidationError(f"Invalid {field}", details={field: str(exc)}) from None


def _text(data, field):
    value = data.get(field)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={field: "Must be a string"})
    return value.strip()


@catalog_bp.route("/locations", methods=["POST"])
@require_role("supervisor")
def create_location():
    data = json_body()
    code = _text(data, "code")
    name = _text(data, "name")
    missing = {f: f"{f} is required" for f, v in (("code", code), ("name", name)) if not v}
    if missing:
        raise ValidationError("Invalid location payload", details=missing)

    radius = data.get("geofence_radius_m")
    if radius is not None:
        try:
            radius = float(radius)
        except (TypeError, ValueError):
            radius = -1
        if radius <= 0:
            raise ValidationError("geofence_radius_m must be positive",
                                  details={"geofence_radius_m": "Must be a positive number"})

    location = Location(
        code=code,
        name=name,
        address=_text(data, "address"),
        latitude=_coordinate(data, "latitude", "lat"),
        longitude=_coordinate(data, "longitude", "lng"),
        geofence_radius_m=radius,
    )
    db.session.add(location)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, f"Location code '{code}' already exists")

    logger.info("Location registered: %s", location.code)
    return jsonify(location.to_dict()), 201


@catalog_bp.route("/locations", methods=["GET"])
def list_locations():
    rows = db.session.execute(
        select(Location).where(Location.is_active.is_(True)).order_by(Location.code)
    ).scalars().all()
    return jsonify({"items": [loc.to_dict() for loc in rows], "total": len(rows)})


@catalog_bp.route("/locations/<int:location_id>", methods=["GET"])
def get_location(location_id):
    location = db.session.get(Location, location_id)
    if location is None:
        raise NotFoundError(resource="Location", resource_id=location_id)
    return jsonify(location.to_dict())
