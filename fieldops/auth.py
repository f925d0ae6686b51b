"""
Field Maintenance Ticketing
Authentication & actor resolution.

Identity is owned by an upstream gateway; this module only turns request
headers into an ``Actor`` the lifecycle engine can stamp on tickets and
ledger entries.

Provides:
    - API key authentication via X-API-Key header
    - Actor resolution from X-Actor-Id / X-Actor-Name (and X-Actor-Role when
      auth is disabled)
    - Role-based access control decorator
    - Content-Type enforcement for state-changing requests

Configuration (env vars):
    API_KEYS          - comma-separated "<key>:<role>" pairs
                        e.g. "k1:admin,k2:supervisor,k3:technician"
                        role is admin|supervisor|technician|viewer
    API_AUTH_ENABLED  - set to "false" to trust actor headers (development/tests)
"""

import functools
import logging
import os
from dataclasses import dataclass
from typing import Optional

from flask import current_app, g, request

from fieldops.core.exceptions import Unauthorized
from fieldops.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── Roles ────────────────────────────────────────────────────────────────────

ROLES = {"admin", "supervisor", "technician", "viewer"}

# Role hierarchy: admin > supervisor > technician > viewer
ROLE_HIERARCHY = {
    "admin": {"admin", "supervisor", "technician", "viewer"},
    "supervisor": {"supervisor", "technician", "viewer"},
    "technician": {"technician", "viewer"},
    "viewer": {"viewer"},
}

_DEV_ROLE = "admin"


@dataclass(frozen=True)
class Actor:
    """Who is performing a lifecycle operation."""

    id: str
    name: str = ""
    role: str = "viewer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def has_role(self, minimum_role: str) -> bool:
        return minimum_role in ROLE_HIERARCHY.get(self.role, set())


def _parse_api_keys() -> dict[str, str]:
    """
    Parse API_KEYS env var into {key: role} mapping.

    Keys without a role default to 'viewer'.
    """
    raw = os.getenv("API_KEYS", "")
    if not raw.strip():
        return {}

    keys = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if ":" in entry:
            key, role = entry.rsplit(":", 1)
            role = role.strip().lower()
            if role not in ROLES:
                logger.warning("Unknown role '%s' for API key, defaulting to 'viewer'", role)
                role = "viewer"
            keys[key.strip()] = role
        else:
            keys[entry] = "viewer"
    return keys


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    try:
        return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in ("false", "0", "no", "off")
    except RuntimeError:
        # Outside app context
        return True


def _actor_from_headers(role: str) -> Optional[Actor]:
    actor_id = request.headers.get("X-Actor-Id", "").strip()
    if not actor_id:
        return None
    return Actor(
        id=actor_id,
        name=request.headers.get("X-Actor-Name", "").strip(),
        role=role,
    )


def current_actor() -> Optional[Actor]:
    return getattr(g, "actor", None)


def require_actor() -> Actor:
    """Return the request's actor or raise Unauthorized."""
    actor = current_actor()
    if actor is None:
        raise Unauthorized("Actor identity required. Provide X-Actor-Id header.")
    return actor


# ── Authorization decorator ──────────────────────────────────────────────────

def require_role(minimum_role: str):
    """
    Decorator: require a resolved actor with at least *minimum_role*.

    Usage:
        @bp.route("/tickets/<int:ticket_id>/location-override", methods=["POST"])
        @require_role("admin")
        def override(ticket_id): ...
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            actor = require_actor()
            if not actor.has_role(minimum_role):
                logger.warning(
                    "Access denied: role '%s' tried to access '%s'-level endpoint %s",
                    actor.role, minimum_role, request.path,
                )
                raise Unauthorized("Insufficient permissions", required_role=minimum_role)
            return f(*args, **kwargs)
        return decorated
    return decorator


# ── Content-Type enforcement ─────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests with a body, require Content-Type:
    application/json. HTML forms cannot send it, which doubles as a
    lightweight CSRF mitigation.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return api_error(
                E.VALIDATION_INVALID,
                "Content-Type must be application/json for state-changing requests",
                status=415,
            )
    return None


# ── App-level before_request hook installer ──────────────────────────────────

def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    Sets ``g.actor`` (possibly None) for every /api/v1 request except health
    probes. A missing actor is only an error for operations that need one.
    """
    @app.before_request
    def _before_request_auth():
        g.actor = None
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path.startswith("/api/v1/health"):
            return None
        if request.method == "OPTIONS":
            return None

        ct_error = _check_content_type()
        if ct_error:
            return ct_error

        if not _is_auth_enabled():
            role = request.headers.get("X-Actor-Role", _DEV_ROLE).strip().lower()
            g.actor = _actor_from_headers(role if role in ROLES else _DEV_ROLE)
            return None

        api_key = request.headers.get("X-API-Key", "").strip()
        if not api_key:
            return api_error(E.UNAUTHORIZED, "Authentication required. Provide X-API-Key header.")

        api_keys = _parse_api_keys()
        if not api_keys:
            logger.error("API_KEYS env var is not configured but API_AUTH_ENABLED=true")
            return api_error(E.INTERNAL, "Server authentication not configured")

        role = api_keys.get(api_key)
        if role is None:
            logger.warning("Invalid API key attempt: %s...", api_key[:8])
            return api_error(E.UNAUTHORIZED, "Invalid API key")

        g.actor = _actor_from_headers(role)
        return None

    logger.info("Auth middleware installed (enabled=%s)", _is_auth_enabled())
