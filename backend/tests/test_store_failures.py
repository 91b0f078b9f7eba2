from datetime import date, time

import pytest
from conftest import booking_payload
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.core.exceptions import StoreUnavailableError
from app.models.booking import Booking, BookingStatus, RentalType
from app.models.conflict_record import ConflictDecision, ConflictRecord, ConflictStatus
from app.schemas.booking import BookingFields, BookingSnapshot
from app.schemas.conflict import ActorIdentity
from app.services import booking_workflow, conflict_resolution
from app.services.edit_conflicts import apply_edit

RECEPTION = ActorIdentity(name="Omar", rank="reception")
MANAGER = ActorIdentity(name="Layla", rank="manager")


def _locked(*args, **kwargs):
    raise OperationalError("COMMIT", {}, Exception("database is locked"))


def _assert_retryable(response, operation: str) -> None:
    assert response.status_code == 503, response.text
    body = response.json()
    assert body["details"] == {"operation": operation, "retryable": True}
    assert "retry" in body["message"]


def test_submission_is_retryable_when_commit_fails(client, reception_headers, monkeypatch):
    monkeypatch.setattr(Session, "commit", _locked)
    response = client.post("/api/bookings", json=booking_payload(), headers=reception_headers)
    _assert_retryable(response, "booking submission")

    monkeypatch.undo()
    assert client.get("/api/bookings", headers=reception_headers).json() == []


def test_failed_edit_leaves_booking_and_queue_untouched(client, reception_headers, manager_headers, monkeypatch):
    booking = client.post("/api/bookings", json=booking_payload(), headers=reception_headers).json()["booking"]

    monkeypatch.setattr(Session, "commit", _locked)
    response = client.put(
        f"/api/bookings/{booking['id']}",
        json={"base_version": 1, "fields": booking_payload(notes="lost")},
        headers=reception_headers,
    )
    _assert_retryable(response, "booking edit")

    monkeypatch.undo()
    current = client.get(f"/api/bookings/{booking['id']}", headers=reception_headers).json()
    assert current["version"] == 1
    assert current["notes"] is None
    assert client.get("/api/conflicts", params={"include_queued": "true"}, headers=manager_headers).json() == []


def test_failed_conflict_store_writes_nothing(
    client, reception_headers, second_reception_headers, manager_headers, monkeypatch
):
    booking = client.post("/api/bookings", json=booking_payload(), headers=reception_headers).json()["booking"]
    client.put(
        f"/api/bookings/{booking['id']}",
        json={"base_version": 1, "fields": booking_payload(notes="Reception A")},
        headers=reception_headers,
    )

    monkeypatch.setattr(Session, "commit", _locked)
    response = client.put(
        f"/api/bookings/{booking['id']}",
        json={"base_version": 1, "fields": booking_payload(notes="Reception B")},
        headers=second_reception_headers,
    )
    _assert_retryable(response, "booking edit")

    monkeypatch.undo()
    count = client.get("/api/conflicts/count", headers=manager_headers).json()
    assert (count["pending"], count["queued"]) == (0, 0)


def test_failed_resolution_keeps_conflict_pending(
    client, reception_headers, second_reception_headers, manager_headers, monkeypatch
):
    booking = client.post("/api/bookings", json=booking_payload(), headers=reception_headers).json()["booking"]
    client.put(
        f"/api/bookings/{booking['id']}",
        json={"base_version": 1, "fields": booking_payload(notes="Reception A")},
        headers=reception_headers,
    )
    conflict_id = client.put(
        f"/api/bookings/{booking['id']}",
        json={"base_version": 1, "fields": booking_payload(notes="Reception B")},
        headers=second_reception_headers,
    ).json()["conflict_id"]

    monkeypatch.setattr(Session, "commit", _locked)
    response = client.post(
        f"/api/conflicts/{conflict_id}/resolve",
        json={"decision": "accept"},
        headers=manager_headers,
    )
    _assert_retryable(response, "conflict resolution")

    monkeypatch.undo()
    record = client.get(f"/api/conflicts/{conflict_id}", headers=manager_headers).json()
    assert record["status"] == "pending"
    assert record["resolved_by"] is None
    current = client.get(f"/api/bookings/{booking['id']}", headers=reception_headers).json()
    assert current["notes"] == "Reception A"
    assert current["version"] == 2


def test_failed_approval_and_delete_are_retryable(client, reception_headers, manager_headers, monkeypatch):
    client.post("/api/bookings", json=booking_payload(rental_type="full"), headers=reception_headers)
    inquiry = client.post(
        "/api/bookings",
        json=booking_payload(client_name="Ali", start_time="11:00", end_time="13:00"),
        params={"force_pending": "true"},
        headers=reception_headers,
    ).json()["booking"]

    monkeypatch.setattr(Session, "commit", _locked)
    approve = client.post(f"/api/bookings/{inquiry['id']}/approve", headers=manager_headers)
    _assert_retryable(approve, "booking approval")
    delete = client.delete(f"/api/bookings/{inquiry['id']}", headers=manager_headers)
    _assert_retryable(delete, "booking delete")

    monkeypatch.undo()
    current = client.get(f"/api/bookings/{inquiry['id']}", headers=reception_headers).json()
    assert current["status"] == "inquiry"
    assert current["approval_status"] == "pending"
    assert current["version"] == 1


def test_lookups_report_store_unavailable(db, monkeypatch):
    monkeypatch.setattr(db, "get", _locked)

    with pytest.raises(StoreUnavailableError) as booking_error:
        booking_workflow.get_booking(db, "any-booking")
    assert booking_error.value.status_code == 503

    with pytest.raises(StoreUnavailableError):
        conflict_resolution.get_conflict(db, "any-conflict")

    with pytest.raises(StoreUnavailableError) as resolve_error:
        conflict_resolution.resolve(db, "any-conflict", ConflictDecision.accept, MANAGER)
    assert resolve_error.value.details["operation"] == "conflict lookup"


def test_queries_report_store_unavailable(db, monkeypatch):
    monkeypatch.setattr(db, "execute", _locked)

    with pytest.raises(StoreUnavailableError):
        booking_workflow.list_bookings(db)
    with pytest.raises(StoreUnavailableError):
        booking_workflow.list_pending_approvals(db)
    with pytest.raises(StoreUnavailableError):
        conflict_resolution.pending_count(db)
    with pytest.raises(StoreUnavailableError):
        conflict_resolution.list_pending(db)


def _seed(db) -> Booking:
    booking = Booking(
        client_name="Noor Studio",
        title="wedding - Noor Studio",
        category="wedding",
        shoot_date=date(2026, 11, 2),
        start_time=time(10, 0),
        end_time=time(12, 0),
        rental_type=RentalType.zone,
        status=BookingStatus.confirmed,
        version=1,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


def _snapshot(**changes) -> BookingSnapshot:
    data = {
        "client_name": "Noor Studio",
        "category": "wedding",
        "shoot_date": date(2026, 11, 2),
        "start_time": time(10, 0),
        "end_time": time(12, 0),
    }
    data.update(changes)
    return BookingSnapshot(**data)


def _editable(snapshot: BookingSnapshot) -> dict:
    return snapshot.model_dump(include=set(BookingFields.model_fields))


def _current(db, booking_id: str) -> Booking:
    db.expire_all()
    return db.get(Booking, booking_id)


@pytest.mark.parametrize("accept_first", [True, False])
def test_accept_and_edit_never_mix_snapshots(db, accept_first):
    booking = _seed(db)
    writer_a = _snapshot(notes="A")
    writer_b = _snapshot(paid_amount=100000, client_phone="07800000000")
    writer_c = _snapshot(notes="C", end_time=time(12, 30))

    assert apply_edit(db, booking.id, 1, writer_a, RECEPTION).applied
    conflict = apply_edit(db, booking.id, 1, writer_b, RECEPTION).conflict
    versions = [_current(db, booking.id).version]

    if accept_first:
        conflict_resolution.resolve(db, conflict.id, ConflictDecision.accept, MANAGER)
        versions.append(_current(db, booking.id).version)
        late = apply_edit(db, booking.id, 2, writer_c, RECEPTION)
        assert late.applied is False
        assert late.conflict.status is ConflictStatus.pending
    else:
        assert apply_edit(db, booking.id, 2, writer_c, RECEPTION).applied
        versions.append(_current(db, booking.id).version)
        conflict_resolution.resolve(db, conflict.id, ConflictDecision.accept, MANAGER)
    versions.append(_current(db, booking.id).version)

    final = booking_workflow.snapshot_of(_current(db, booking.id))
    assert _editable(final) == _editable(writer_b)
    assert all(later >= earlier for earlier, later in zip(versions, versions[1:]))
    assert versions[-1] == (3 if accept_first else 4)
    assert db.get(ConflictRecord, conflict.id).status is ConflictStatus.accepted
