"""
Tests: HTTP surface for tickets, catalog and health probes.

Covers:
    - create / read / list with pagination headers and reported_at date range
    - detail edits through PUT /tickets/<id>
    - JSON error envelope {error, code, details} and status mapping
    - camelCase request aliases
    - role checks on admin-only and supervisor-only endpoints
    - retirement guard
"""

from datetime import datetime, timezone

import pytest

from conftest import SITE_LAT, SITE_LNG, headers_for

pytestmark = pytest.mark.integration


def _create(client, actor, site, **body):
    payload = {"title": "Pump leaking", "category": "cm", "priority_level": 2, "location_id": site.id}
    payload.update(body)
    return client.post("/api/v1/tickets", json=payload, headers=headers_for(actor))


def _move(client, actor, ticket_id, status, **body):
    return client.post(
        f"/api/v1/tickets/{ticket_id}/transition",
        json={"status": status, **body},
        headers=headers_for(actor),
    )


# ── Create & read ────────────────────────────────────────────────────────────


class TestCreateAndRead:

    def test_create_returns_201_with_derived_fields(self, client, site, supervisor):
        res = _create(client, supervisor, site)
        assert res.status_code == 201
        data = res.get_json()
        assert data["status"] == "open"
        assert data["reference_code"].startswith("CM-")
        assert data["sla_status"] == "on_time"
        assert data["allowed_transitions"] == ["assigned", "cancelled"]
        assert data["location"]["code"] == "JKT-01"
        assert res.headers.get("X-Request-ID")

    def test_camel_case_payload(self, client, site, supervisor):
        res = client.post(
            "/api/v1/tickets",
            json={"title": "Fan noise", "category": "pm", "priorityLevel": 3,
                  "locationId": site.id, "assignedToId": "u-tech", "assignedToName": "Tono"},
            headers=headers_for(supervisor),
        )
        assert res.status_code == 201
        data = res.get_json()
        assert data["status"] == "assigned"
        assert data["assigned_to_id"] == "u-tech"

    def test_missing_actor_is_401(self, client, site):
        res = client.post("/api/v1/tickets", json={"title": "x"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_validation_error_lists_fields(self, client, supervisor):
        res = client.post("/api/v1/tickets", json={}, headers=headers_for(supervisor))
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert "title" in body["details"]

    def test_unknown_priority_is_422(self, client, site, supervisor):
        res = _create(client, supervisor, site, priority_level=9)
        assert res.status_code == 422
        assert res.get_json()["details"]["known_levels"] == [1, 2, 3, 4]

    @pytest.mark.parametrize("body,field", [
        ({"title": 123}, "title"),
        ({"severity": ["high"]}, "severity"),
        ({"category": {"code": "cm"}}, "category"),
        ({"locationId": "JKT-01"}, "location_id"),
    ])
    def test_wrongly_typed_fields_are_400(self, client, site, supervisor, body, field):
        res = _create(client, supervisor, site, **body)
        assert res.status_code == 400
        envelope = res.get_json()
        assert envelope["code"] == "ERR_VALIDATION_INVALID"
        assert field in envelope["details"]

    def test_get_unknown_ticket_is_404(self, client):
        res = client.get("/api/v1/tickets/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_detail_with_history(self, client, site, supervisor):
        ticket_id = _create(client, supervisor, site).get_json()["id"]
        res = client.get(f"/api/v1/tickets/{ticket_id}?include_history=true")
        assert res.status_code == 200
        history = res.get_json()["history"]
        assert history[0]["from_status"] is None
        assert history[0]["to_status"] == "open"

    def test_transitions_endpoint(self, client, make_ticket):
        ticket = make_ticket(status="pending_review")
        res = client.get(f"/api/v1/tickets/{ticket.id}/transitions")
        assert res.get_json()["allowed_transitions"] == ["approved", "rejected"]


class TestList:

    def test_pagination_envelope_and_headers(self, client, make_ticket):
        for _ in range(5):
            make_ticket(status="open")

        res = client.get("/api/v1/tickets?page=2&per_page=2")

        assert res.status_code == 200
        body = res.get_json()
        assert len(body["items"]) == 2
        assert body["pagination"]["total_count"] == 5
        assert body["pagination"]["has_previous_page"] is True
        assert res.headers["X-Total-Count"] == "5"
        assert res.headers["X-Total-Pages"] == "3"
        assert res.headers["X-Current-Page"] == "2"
        assert res.headers["X-Per-Page"] == "2"

    def test_filter_by_status(self, client, make_ticket):
        make_ticket(status="open")
        make_ticket(status="approved")
        res = client.get("/api/v1/tickets?status=approved")
        assert [t["status"] for t in res.get_json()["items"]] == ["approved"]

    def test_bad_sort_field_is_400(self, client):
        res = client.get("/api/v1/tickets?sort_by=secret")
        assert res.status_code == 400

    def test_reported_at_date_range(self, client, make_ticket):
        early = make_ticket(status="open", created_at=datetime(2026, 10, 1, 9, tzinfo=timezone.utc))
        same_day = make_ticket(status="open", created_at=datetime(2026, 10, 18, 23, tzinfo=timezone.utc))
        make_ticket(status="open", created_at=datetime(2026, 10, 20, 9, tzinfo=timezone.utc))

        res = client.get("/api/v1/tickets?date_from=2026-10-10&date_to=2026-10-18")
        assert [t["id"] for t in res.get_json()["items"]] == [same_day.id]

        res = client.get("/api/v1/tickets?date_to=2026-10-02T00:00:00Z")
        assert [t["id"] for t in res.get_json()["items"]] == [early.id]

    def test_malformed_date_is_400(self, client):
        res = client.get("/api/v1/tickets?date_from=last-week")
        assert res.status_code == 400
        assert "date_from" in res.get_json()["details"]

    def test_non_integer_query_param_is_400(self, client):
        res = client.get("/api/v1/tickets?priority_level=high")
        assert res.status_code == 400
        assert "priority_level" in res.get_json()["details"]


# ── Transitions ──────────────────────────────────────────────────────────────


class TestTransitionEndpoint:

    def test_invalid_transition_is_409_with_allowed(self, client, make_ticket, admin):
        ticket = make_ticket(status="open")
        res = _move(client, admin, ticket.id, "closed")

        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_TRANSITION"
        assert body["details"]["allowed"] == ["assigned", "cancelled"]

    def test_status_required(self, client, make_ticket, admin):
        ticket = make_ticket(status="open")
        res = client.post(f"/api/v1/tickets/{ticket.id}/transition", json={}, headers=headers_for(admin))
        assert res.status_code == 400

    def test_incomplete_evidence_is_422(self, client, make_ticket, technician):
        ticket = make_ticket(status="on_progress", assigned_to_id="u-tech")
        res = _move(client, technician, ticket.id, "pending_review", technicianNotes="done")

        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_INCOMPLETE_EVIDENCE"
        assert body["details"]["missing_fields"] == [
            "before_photos", "after_photos", "technician_signature",
        ]

    def test_location_failure_is_422(self, client, make_ticket, technician, completion_evidence):
        ticket = make_ticket(status="on_progress", assigned_to_id="u-tech")
        evidence = dict(completion_evidence, work_location_lat=SITE_LAT - 0.1)
        res = _move(client, technician, ticket.id, "pending_review", **evidence)

        assert res.status_code == 422
        details = res.get_json()["details"]
        assert details["tolerance_m"] == 50
        assert details["distance_m"] > 11_000

    def test_nested_camel_case_work_location(self, client, make_ticket, technician):
        ticket = make_ticket(status="acknowledged", assigned_to_id="u-tech")
        res = _move(client, technician, ticket.id, "on_progress",
                    workLocation={"lat": SITE_LAT, "lng": SITE_LNG, "accuracy": 8})
        assert res.status_code == 200
        assert res.get_json()["location_verified"] is True

    def test_impossible_work_coordinates_are_400(self, client, make_ticket, admin, completion_evidence):
        ticket = make_ticket(status="on_progress", assigned_to_id="u-tech")
        evidence = dict(completion_evidence, work_location_lat=500, force_location_override=True)
        res = _move(client, admin, ticket.id, "pending_review", **evidence)

        assert res.status_code == 400
        assert "work_location_lat" in res.get_json()["details"]
        assert client.get(f"/api/v1/tickets/{ticket.id}").get_json()["work_location_lat"] is None

    def test_stale_version_is_409(self, client, make_ticket, technician):
        ticket = make_ticket(status="assigned", assigned_to_id="u-tech")
        res = _move(client, technician, ticket.id, "acknowledged", expectedVersion=5)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONCURRENT_MODIFICATION"

    def test_successful_transition_bumps_version(self, client, make_ticket, technician):
        ticket = make_ticket(status="assigned", assigned_to_id="u-tech")
        res = _move(client, technician, ticket.id, "acknowledged", expected_version=1)
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "acknowledged"
        assert data["version"] == 2

        history = client.get(f"/api/v1/tickets/{ticket.id}/history").get_json()
        assert history["total"] == 1
        assert history["items"][0]["actor_id"] == "u-tech"


# ── Other mutations ──────────────────────────────────────────────────────────


class TestOtherMutations:

    def test_assignment_promotes_open_ticket(self, client, make_ticket, supervisor):
        ticket = make_ticket(status="open")
        res = client.put(
            f"/api/v1/tickets/{ticket.id}/assignment",
            json={"assignedToId": "u-tech", "assignedToName": "Tono"},
            headers=headers_for(supervisor),
        )
        assert res.status_code == 200
        assert res.get_json()["status"] == "assigned"

    def test_costs_endpoint(self, client, make_ticket, supervisor):
        ticket = make_ticket(status="on_progress")
        res = client.put(
            f"/api/v1/tickets/{ticket.id}/costs",
            json={"laborCost": 100, "materialCost": 50, "sparePartsCost": 25},
            headers=headers_for(supervisor),
        )
        assert res.status_code == 200
        assert res.get_json()["total_cost"] == 175.0

    @pytest.mark.parametrize("amount", [1e30, "99999999999999"])
    def test_oversized_cost_is_400(self, client, make_ticket, supervisor, amount):
        ticket = make_ticket(status="on_progress")
        res = client.put(
            f"/api/v1/tickets/{ticket.id}/costs",
            json={"labor_cost": amount},
            headers=headers_for(supervisor),
        )
        assert res.status_code == 400
        assert "labor_cost" in res.get_json()["details"]

    def test_edit_details_keeps_sla_deadlines(self, client, make_ticket, supervisor):
        ticket = make_ticket(status="acknowledged", priority_level=1)
        before = client.get(f"/api/v1/tickets/{ticket.id}").get_json()

        res = client.put(
            f"/api/v1/tickets/{ticket.id}",
            json={"priorityLevel": 3, "title": "Breaker trips at night", "cmBusinessImpact": "high",
                  "tags": ["night"], "expectedVersion": 1},
            headers=headers_for(supervisor),
        )

        assert res.status_code == 200
        data = res.get_json()
        assert data["priority_level"] == 3
        assert data["title"] == "Breaker trips at night"
        assert data["cm_business_impact"] == "high"
        assert data["tags"] == ["night"]
        assert data["version"] == 2
        assert data["sla_response_deadline"] == before["sla_response_deadline"]
        assert data["sla_resolution_deadline"] == before["sla_resolution_deadline"]

    def test_edit_status_through_details_is_400(self, client, make_ticket, supervisor):
        ticket = make_ticket(status="open")
        res = client.put(f"/api/v1/tickets/{ticket.id}", json={"status": "closed"}, headers=headers_for(supervisor))
        assert res.status_code == 400
        assert res.get_json()["details"] == {"status": "Not editable"}

    def test_edit_closed_ticket_is_409(self, client, make_ticket, supervisor):
        ticket = make_ticket(status="closed")
        res = client.put(f"/api/v1/tickets/{ticket.id}", json={"title": "x"}, headers=headers_for(supervisor))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_TICKET_READ_ONLY"

    def test_location_override_requires_admin(self, client, make_ticket, supervisor):
        ticket = make_ticket(status="on_progress")
        res = client.post(
            f"/api/v1/tickets/{ticket.id}/location-override",
            json={"reason": "GPS down"},
            headers=headers_for(supervisor),
        )
        assert res.status_code == 401
        assert res.get_json()["details"]["required_role"] == "admin"

    def test_location_override_by_admin(self, client, make_ticket, admin):
        ticket = make_ticket(status="on_progress")
        res = client.post(
            f"/api/v1/tickets/{ticket.id}/location-override",
            json={"reason": "GPS down"},
            headers=headers_for(admin),
        )
        assert res.status_code == 200
        assert res.get_json()["location_verification_method"] == "admin_override"

    def test_delete_active_ticket_is_409(self, client, make_ticket, admin):
        ticket = make_ticket(status="on_progress")
        res = client.delete(f"/api/v1/tickets/{ticket.id}", headers=headers_for(admin))
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_TICKET_ACTIVE"
        assert body["details"]["current_status"] == "on_progress"

    def test_delete_cancelled_ticket_hides_it(self, client, make_ticket, admin):
        ticket = make_ticket(status="cancelled")
        res = client.delete(f"/api/v1/tickets/{ticket.id}", headers=headers_for(admin))
        assert res.status_code == 200
        assert client.get(f"/api/v1/tickets/{ticket.id}").status_code == 404

    def test_form_encoded_body_is_415(self, client, make_ticket, admin):
        ticket = make_ticket(status="open")
        res = client.post(
            f"/api/v1/tickets/{ticket.id}/transition",
            data="status=cancelled",
            content_type="application/x-www-form-urlencoded",
            headers=headers_for(admin),
        )
        assert res.status_code == 415


# ── Catalog & health ─────────────────────────────────────────────────────────


class TestCatalog:

    def test_priorities(self, client):
        items = client.get("/api/v1/priorities").get_json()["items"]
        assert [p["level"] for p in items] == [1, 2, 3, 4]
        assert items[0]["response_hours"] == 1.0

    def test_register_location(self, client, supervisor):
        res = client.post(
            "/api/v1/locations",
            json={"code": "BDG-02", "name": "Bandung Depot", "latitude": -6.9, "longitude": 107.6,
                  "geofenceRadiusM": 120},
            headers=headers_for(supervisor),
        )
        assert res.status_code == 201
        assert res.get_json()["geofence_radius_m"] == 120

    def test_duplicate_location_code_is_409(self, client, site, supervisor):
        res = client.post(
            "/api/v1/locations", json={"code": "JKT-01", "name": "Dup"}, headers=headers_for(supervisor),
        )
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_technician_cannot_register_location(self, client, technician):
        res = client.post(
            "/api/v1/locations", json={"code": "X", "name": "X"}, headers=headers_for(technician),
        )
        assert res.status_code == 401

    def test_out_of_range_latitude(self, client, supervisor):
        res = client.post(
            "/api/v1/locations", json={"code": "X", "name": "X", "latitude": 91},
            headers=headers_for(supervisor),
        )
        assert res.status_code == 400

    @pytest.mark.parametrize("body,field", [
        ({"code": 5, "name": "X"}, "code"),
        ({"code": "X", "name": ["Depot"]}, "name"),
        ({"code": "X", "name": "X", "address": 12}, "address"),
        ({"code": "X", "name": "X", "longitude": "east"}, "longitude"),
    ])
    def test_wrongly_typed_location_fields_are_400(self, client, supervisor, body, field):
        res = client.post("/api/v1/locations", json=body, headers=headers_for(supervisor))
        assert res.status_code == 400
        assert field in res.get_json()["details"]

    def test_list_and_get_locations(self, client, site):
        listing = client.get("/api/v1/locations").get_json()
        assert listing["total"] == 1
        assert client.get(f"/api/v1/locations/{site.id}").get_json()["code"] == "JKT-01"
        assert client.get("/api/v1/locations/999").status_code == 404


class TestHealth:

    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_live_reports_database(self, client):
        body = client.get("/api/v1/health/live").get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["redis"]["status"] == "skipped"
