"""
Shared pytest fixtures for the field maintenance ticketing test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate, seeded SLA matrix (autouse)
    - client: Flask test client (function-scoped)
    - site: Pre-created Location at Jakarta (-6.2, 106.8)
    - admin / supervisor / technician: Actor instances
    - make_ticket: ORM factory that places a ticket in any status (bypasses guards)
"""

from datetime import datetime, timedelta, timezone

import pytest

from fieldops import create_app
from fieldops.auth import Actor
from fieldops.models import db as _db
from fieldops.models.location import Location
from fieldops.models.priority import seed_default_priorities
from fieldops.models.ticket import Ticket
from fieldops.services.reference_codes import next_reference_code
from fieldops.services.sla_clock import reset_priority_matrix

SITE_LAT = -6.2
SITE_LNG = 106.8


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, seed the SLA matrix, rollback and recreate after."""
    with app.app_context():
        seed_default_priorities()
        _db.session.commit()
        reset_priority_matrix()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Actors ───────────────────────────────────────────────────────────────


@pytest.fixture()
def admin():
    return Actor(id="u-admin", name="Ayu Admin", role="admin")


@pytest.fixture()
def supervisor():
    return Actor(id="u-super", name="Sari Supervisor", role="supervisor")


@pytest.fixture()
def technician():
    return Actor(id="u-tech", name="Tono Technician", role="technician")


def headers_for(actor):
    """Request headers for an actor when API auth is disabled."""
    return {"X-Actor-Id": actor.id, "X-Actor-Name": actor.name, "X-Actor-Role": actor.role}


# ── Domain fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def site():
    loc = Location(code="JKT-01", name="Jakarta Substation", latitude=SITE_LAT, longitude=SITE_LNG)
    _db.session.add(loc)
    _db.session.commit()
    return loc


@pytest.fixture()
def make_ticket(site):
    """Return a factory creating a ticket at an arbitrary status (bypasses lifecycle guards)."""

    def _make(status="open", category="cm", priority_level=1, created_at=None,
              assigned_to_id=None, location=None, **overrides):
        created = created_at or datetime.now(timezone.utc)
        hours = {1: (1, 4), 2: (2, 8), 3: (4, 24), 4: (8, 48)}[priority_level]
        fields = dict(
            reference_code=next_reference_code(category, created),
            title=f"{category.upper()} ticket",
            category=category,
            priority_level=priority_level,
            requester_id="u-req",
            requester_name="Rina Requester",
            location_id=(location or site).id,
            assigned_to_id=assigned_to_id,
            status=status,
            status_changed_at=created,
            sla_response_deadline=created + timedelta(hours=hours[0]),
            sla_resolution_deadline=created + timedelta(hours=hours[1]),
            reported_at=created,
            created_at=created,
            created_by="u-req",
        )
        fields.update(overrides)
        ticket = Ticket(**fields)
        _db.session.add(ticket)
        _db.session.commit()
        return ticket

    return _make


@pytest.fixture()
def completion_evidence():
    """Complete evidence payload for entering pending_review at the site."""
    return {
        "before_photos": ["https://files.example/before-1.jpg"],
        "after_photos": ["https://files.example/after-1.jpg"],
        "technician_notes": "Replaced breaker, tested under load.",
        "technician_signature": "https://files.example/sig-77.png",
        "work_location_lat": SITE_LAT,
        "work_location_lng": SITE_LNG,
        "work_location_accuracy": 5,
    }
