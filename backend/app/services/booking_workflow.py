"""Turns conflict verdicts into a booking state.

Submission is two-phase: `evaluate()` only reports a verdict, `submit_booking()`
writes. A conflicting submission without `force_pending` writes nothing and hands
the verdict back so the operator can decide; with `force_pending` the booking is
stored as an inquiry awaiting supervisor approval.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import InvalidStateError, ResourceNotFoundError, StoreUnavailableError
from app.models.booking import ApprovalStatus, Booking, BookingStatus, RentalType
from app.models.user import User
from app.schemas.booking import BookingCreate, BookingFields, BookingSnapshot
from app.services.audit import log_activity
from app.services.availability import bookings_for_date
from app.services.scheduling import NO_CONFLICT, ConflictVerdict, TimeRange, detect_conflict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingConflictDecision:
    details: str
    forced: bool


@dataclass
class SubmissionResult:
    verdict: ConflictVerdict
    booking: Booking | None = None
    deduplicated: bool = False

    @property
    def created(self) -> bool:
        return self.booking is not None and not self.deduplicated

    @property
    def status(self) -> BookingStatus | None:
        return self.booking.status if self.booking is not None else None


def evaluate(
    db: Session,
    *,
    shoot_date: date,
    start_time: str | time,
    end_time: str | time,
    rental_type: RentalType,
    exclude_id: str | None = None,
) -> ConflictVerdict:
    candidate = TimeRange.build(shoot_date, start_time, end_time)
    existing = bookings_for_date(db, candidate.date, exclude_id=exclude_id)
    return detect_conflict(candidate, rental_type, existing)


def evaluate_fields(db: Session, fields: BookingFields, *, exclude_id: str | None = None) -> ConflictVerdict:
    return evaluate(
        db,
        shoot_date=fields.shoot_date,
        start_time=fields.start_time,
        end_time=fields.end_time,
        rental_type=fields.rental_type,
        exclude_id=exclude_id,
    )


def pending_decision(verdict: ConflictVerdict, force_pending: bool) -> PendingConflictDecision | None:
    if not verdict.has_conflict:
        return None
    return PendingConflictDecision(details=verdict.message, forced=force_pending)


def build_snapshot(fields: BookingFields, decision: PendingConflictDecision | None) -> BookingSnapshot:
    """Full write snapshot for `fields`; a forced conflict lands as a pending inquiry."""
    data = fields.model_dump(include=set(BookingFields.model_fields))
    if decision is not None and decision.forced:
        return BookingSnapshot(
            **data,
            status=BookingStatus.inquiry,
            approval_status=ApprovalStatus.pending,
            conflict_details=decision.details,
        )
    return BookingSnapshot(**data, status=BookingStatus.confirmed)


def ensure_editable(booking: Booking) -> None:
    if booking.status is BookingStatus.cancelled:
        raise InvalidStateError(
            "Cancelled bookings cannot be edited",
            details={"booking_id": booking.id, "status": booking.status.value},
        )


def build_edit_snapshot(
    booking: Booking,
    fields: BookingFields,
    decision: PendingConflictDecision | None,
) -> BookingSnapshot:
    """Edit snapshot for `booking`.

    Approval state belongs to supervisors: an edit carries the booking's current
    status over unchanged, except that a forced conflict demotes it to a pending
    inquiry.
    """
    if decision is not None and decision.forced:
        return build_snapshot(fields, decision)
    data = fields.model_dump(include=set(BookingFields.model_fields))
    return BookingSnapshot(
        **data,
        status=booking.status,
        approval_status=booking.approval_status,
        conflict_details=booking.conflict_details,
    )


def snapshot_of(booking: Booking) -> BookingSnapshot:
    return BookingSnapshot.model_validate(booking, from_attributes=True)


def _find_by_request_id(db: Session, client_request_id: str | None) -> Booking | None:
    if not client_request_id:
        return None
    return db.execute(
        select(Booking).where(Booking.client_request_id == client_request_id)
    ).scalar_one_or_none()


def submit_booking(
    db: Session,
    fields: BookingCreate,
    *,
    force_pending: bool,
    actor: User,
) -> SubmissionResult:
    try:
        existing = _find_by_request_id(db, fields.client_request_id)
    except DBAPIError as exc:
        db.rollback()
        raise StoreUnavailableError("booking submission") from exc
    if existing is not None:
        logger.info("Submission %s already stored as booking %s", fields.client_request_id, existing.id)
        return SubmissionResult(verdict=NO_CONFLICT, booking=existing, deduplicated=True)

    verdict = evaluate_fields(db, fields)
    decision = pending_decision(verdict, force_pending)
    if decision is not None and not decision.forced:
        return SubmissionResult(verdict=verdict)

    snapshot = build_snapshot(fields, decision)
    booking = Booking(
        **snapshot.model_dump(),
        client_request_id=fields.client_request_id,
        version=1,
        created_by_id=actor.id,
        updated_by_name=actor.name,
    )
    db.add(booking)
    try:
        db.flush()
        log_activity(
            db,
            user=actor,
            action="booking.create",
            entity_type="booking",
            entity_id=booking.id,
            details={
                "status": booking.status.value,
                "severity": verdict.severity.value,
                "forced": bool(decision and decision.forced),
            },
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        # A concurrent retry with the same dedup key won the insert.
        duplicate = _find_by_request_id(db, fields.client_request_id)
        if duplicate is None:
            raise
        return SubmissionResult(verdict=verdict, booking=duplicate, deduplicated=True)
    except DBAPIError as exc:
        db.rollback()
        logger.warning("Booking submission failed to persist", exc_info=True)
        raise StoreUnavailableError("booking submission") from exc

    db.refresh(booking)
    logger.info(
        "Booking %s stored as %s (severity=%s)",
        booking.id,
        booking.status.value,
        verdict.severity.value,
    )
    return SubmissionResult(verdict=verdict, booking=booking)


def get_booking(db: Session, booking_id: str, *, include_deleted: bool = False) -> Booking:
    try:
        booking = db.get(Booking, booking_id)
    except DBAPIError as exc:
        db.rollback()
        raise StoreUnavailableError("booking lookup") from exc
    if booking is None or (booking.deleted_at is not None and not include_deleted):
        raise ResourceNotFoundError("Booking", booking_id)
    return booking


def list_bookings(db: Session, *, shoot_date: date | None = None) -> list[Booking]:
    query = select(Booking).where(Booking.deleted_at.is_(None))
    if shoot_date is not None:
        query = query.where(Booking.shoot_date == shoot_date)
    try:
        return list(db.execute(query.order_by(Booking.shoot_date, Booking.start_time)).scalars())
    except DBAPIError as exc:
        db.rollback()
        raise StoreUnavailableError("booking listing") from exc


def list_pending_approvals(db: Session) -> list[Booking]:
    query = (
        select(Booking)
        .where(
            Booking.approval_status == ApprovalStatus.pending,
            Booking.deleted_at.is_(None),
        )
        .order_by(Booking.created_at)
    )
    try:
        return list(db.execute(query).scalars())
    except DBAPIError as exc:
        db.rollback()
        raise StoreUnavailableError("approval listing") from exc


def _decide_inquiry(db: Session, booking_id: str, actor: User, *, approve: bool) -> Booking:
    booking = get_booking(db, booking_id)
    if booking.approval_status != ApprovalStatus.pending:
        raise InvalidStateError(
            "Booking is not awaiting approval",
            details={"booking_id": booking_id, "status": booking.status.value},
        )

    try:
        result = db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.approval_status == ApprovalStatus.pending,
                Booking.deleted_at.is_(None),
            )
            .values(
                status=BookingStatus.confirmed if approve else BookingStatus.cancelled,
                approval_status=ApprovalStatus.approved if approve else ApprovalStatus.rejected,
                decided_by_name=actor.name,
                decided_by_rank=actor.role.value,
                decided_at=datetime.now(timezone.utc),
                updated_by_name=actor.name,
                version=Booking.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise InvalidStateError("Booking approval was already decided", details={"booking_id": booking_id})

        log_activity(
            db,
            user=actor,
            action="booking.approve" if approve else "booking.reject",
            entity_type="booking",
            entity_id=booking_id,
            details={"conflict_details": booking.conflict_details},
        )
        db.commit()
        db.refresh(booking)
    except DBAPIError as exc:
        db.rollback()
        logger.warning("Approval decision on booking %s failed against the store", booking_id, exc_info=True)
        raise StoreUnavailableError("booking approval") from exc
    return booking


def approve_booking(db: Session, booking_id: str, actor: User) -> Booking:
    return _decide_inquiry(db, booking_id, actor, approve=True)


def reject_booking(db: Session, booking_id: str, actor: User) -> Booking:
    return _decide_inquiry(db, booking_id, actor, approve=False)


def delete_booking(db: Session, booking_id: str, actor: User) -> None:
    get_booking(db, booking_id)
    try:
        db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.deleted_at.is_(None))
            .values(
                deleted_at=datetime.now(timezone.utc),
                updated_by_name=actor.name,
                version=Booking.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        log_activity(db, user=actor, action="booking.delete", entity_type="booking", entity_id=booking_id)
        db.commit()
    except DBAPIError as exc:
        db.rollback()
        logger.warning("Delete of booking %s failed against the store", booking_id, exc_info=True)
        raise StoreUnavailableError("booking delete") from exc
