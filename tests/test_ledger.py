"""
Tests: status-history ledger.

    - entries read back newest first, ties broken by insertion order
    - existing rows refuse UPDATE and DELETE
    - corrections are new rows with from == to and reason "correction"
"""

from datetime import datetime, timedelta, timezone

import pytest

from fieldops.core.exceptions import LedgerImmutableError
from fieldops.models import db as _db
from fieldops.services import ledger


@pytest.fixture()
def ticket(make_ticket):
    return make_ticket(status="open")


def _append(ticket_id, from_status, to_status, at):
    return ledger.append(
        ticket_id=ticket_id,
        from_status=from_status,
        to_status=to_status,
        actor_id="u-super",
        actor_name="Sari",
        changed_at=at,
    )


def test_newest_first_ordering(ticket):
    t0 = datetime(2026, 10, 18, 8, 0, tzinfo=timezone.utc)
    _append(ticket.id, None, "open", t0)
    _append(ticket.id, "open", "assigned", t0 + timedelta(minutes=5))
    _append(ticket.id, "assigned", "acknowledged", t0 + timedelta(minutes=9))
    _db.session.commit()

    newest = [e.to_status for e in ledger.list_for_ticket(ticket.id)]
    oldest = [e.to_status for e in ledger.list_for_ticket(ticket.id, newest_first=False)]

    assert newest == ["acknowledged", "assigned", "open"]
    assert oldest == list(reversed(newest))


def test_same_timestamp_falls_back_to_insertion_order(ticket):
    at = datetime(2026, 10, 18, 8, 0, tzinfo=timezone.utc)
    first = _append(ticket.id, None, "open", at)
    second = _append(ticket.id, "open", "cancelled", at)
    _db.session.commit()

    ids = [e.id for e in ledger.list_for_ticket(ticket.id)]
    assert ids == [second.id, first.id]


def test_entries_are_scoped_to_ticket(make_ticket):
    a = make_ticket(status="open")
    b = make_ticket(status="open")
    _append(a.id, None, "open", None)
    _db.session.commit()

    assert ledger.list_for_ticket(b.id) == []
    assert len(ledger.list_for_ticket(a.id)) == 1


def test_update_is_refused(ticket):
    entry = _append(ticket.id, None, "open", None)
    _db.session.commit()

    entry.comment = "rewritten"
    with pytest.raises(LedgerImmutableError):
        _db.session.flush()
    _db.session.rollback()


def test_delete_is_refused(ticket):
    entry = _append(ticket.id, None, "open", None)
    _db.session.commit()

    _db.session.delete(entry)
    with pytest.raises(LedgerImmutableError):
        _db.session.flush()
    _db.session.rollback()
    assert len(ledger.list_for_ticket(ticket.id)) == 1


def test_correction_is_a_new_entry(ticket):
    _append(ticket.id, None, "open", None)
    correction = ledger.append_correction(
        ticket_id=ticket.id,
        status="open",
        actor_id="u-admin",
        comment="Requester name was misspelled",
        details={"field": "requester_name"},
    )
    _db.session.commit()

    assert correction.is_correction
    assert correction.from_status == correction.to_status == "open"
    data = correction.to_dict()
    assert data["reason"] == "correction"
    assert data["details"] == {"field": "requester_name"}
    assert len(ledger.list_for_ticket(ticket.id)) == 2


def test_details_round_trip_as_json(ticket):
    entry = ledger.append(
        ticket_id=ticket.id,
        from_status="open",
        to_status="assigned",
        actor_id="u-super",
        details={"geofence": {"distance_m": 12.5}, "location_override": False},
    )
    _db.session.commit()
    assert entry.details["geofence"]["distance_m"] == 12.5
    assert entry.actor_name == ""
