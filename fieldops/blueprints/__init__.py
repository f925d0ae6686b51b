"""
Field Maintenance Ticketing
Blueprint registry and shared request helpers.
"""

import logging
import re
from datetime import timedelta

from flask import current_app, request
from werkzeug.exceptions import HTTPException

from fieldops.core.exceptions import (
    ConcurrentModification,
    IncompleteEvidence,
    InvalidTransition,
    LocationVerificationFailed,
    NotFoundError,
    PersistenceError,
    TicketReadOnly,
    TicketStillActive,
    Unauthorized,
    UnknownPriorityLevel,
    ValidationError,
)
from fieldops.utils.errors import E, api_error, lifecycle_error_response
from fieldops.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake(key: str) -> str:
    """``workLocationLat`` -> ``work_location_lat``; snake_case passes through."""
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def json_body() -> dict:
    """Request JSON with camelCase keys folded to snake_case (one level deep for dicts)."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    normalised = {}
    for key, value in data.items():
        if isinstance(value, dict):
            value = {to_snake(k): v for k, v in value.items()}
        normalised[to_snake(key)] = value
    return normalised


def int_arg(name, default=None):
    """Integer query parameter or *default*; a malformed value is a 400."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(
            f"Query parameter '{name}' must be an integer",
            details={name: "Must be an integer"},
        ) from None


def datetime_arg(name, end_of_day=False):
    """ISO-8601 query parameter as a UTC datetime, or None; a malformed value is a 400.

    A bare date (``2026-10-18``) with *end_of_day* set covers the whole day.
    """
    raw = request.args.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        value = parse_datetime(raw)
    except ValueError:
        raise ValidationError(
            f"Query parameter '{name}' must be an ISO-8601 date or datetime",
            details={name: "Must be an ISO-8601 date or datetime"},
        ) from None
    if end_of_day and len(raw.strip()) == 10:
        value += timedelta(days=1, microseconds=-1)
    return value


def page_args():
    """``(page, per_page)`` from the query string, capped at MAX_PAGE_SIZE."""
    default_size = int(current_app.config.get("DEFAULT_PAGE_SIZE", 20))
    max_size = int(current_app.config.get("MAX_PAGE_SIZE", 100))
    page = max(int_arg("page", 1), 1)
    per_page = int_arg("per_page", None) or int_arg("limit", default_size)
    return page, min(max(per_page, 1), max_size)


def apply_pagination_headers(response, pagination: dict):
    response.headers["X-Total-Count"] = str(pagination["total_count"])
    response.headers["X-Total-Pages"] = str(pagination["total_pages"])
    response.headers["X-Current-Page"] = str(pagination["current_page"])
    response.headers["X-Per-Page"] = str(pagination["per_page"])
    return response


def register_error_handlers(bp):
    """Map every lifecycle exception type onto the JSON error envelope."""

    for exc_type in (
        InvalidTransition,
        IncompleteEvidence,
        LocationVerificationFailed,
        UnknownPriorityLevel,
        ConcurrentModification,
        TicketReadOnly,
        TicketStillActive,
        NotFoundError,
        Unauthorized,
        ValidationError,
    ):
        bp.register_error_handler(exc_type, lifecycle_error_response)

    @bp.errorhandler(PersistenceError)
    def _handle_persistence(error: PersistenceError):
        logger.error("Persistence failure on %s: %s", request.endpoint, error)
        return api_error(error.code, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
