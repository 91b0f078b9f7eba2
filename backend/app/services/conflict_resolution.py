from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    InvalidStateError,
    ResourceNotFoundError,
    StaleTargetError,
    StoreUnavailableError,
)
from app.db.session import SessionLocal
from app.models.booking import Booking, BookingStatus
from app.models.conflict_record import (
    OPEN_CONFLICT_STATUSES,
    ConflictDecision,
    ConflictRecord,
    ConflictStatus,
)
from app.schemas.booking import BookingSnapshot
from app.schemas.conflict import ActorIdentity
from app.services.audit import log_activity
from app.services.booking_workflow import snapshot_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictCounts:
    pending: int
    queued: int


@dataclass
class ResolutionResult:
    conflict: ConflictRecord
    outcome: str
    changes: list[dict]
    booking_version: int | None = None

    @property
    def message(self) -> str:
        if self.outcome == "already_resolved":
            return f"Conflict was already resolved ({self.conflict.status.value})"
        if self.outcome == "accepted":
            return "Proposed edit applied to the booking"
        return "Proposed edit discarded; booking left unchanged"


def diff_snapshot(current: dict, proposed: dict) -> list[dict]:
    """Fields whose proposed value differs from the current row. Display only."""
    changes = []
    for field, proposed_value in proposed.items():
        current_value = current.get(field)
        if current_value != proposed_value:
            changes.append({"field": field, "current": current_value, "proposed": proposed_value})
    return changes


def _live_booking(db: Session, booking_id: str) -> Booking | None:
    return db.execute(
        select(Booking).where(Booking.id == booking_id, Booking.deleted_at.is_(None))
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def proposed_snapshot(booking: Booking, record: ConflictRecord) -> BookingSnapshot:
    """What accepting `record` writes over `booking`.

    Only a forced proposal carries its own approval state; any other proposal
    leaves the status decided on the live row untouched.
    """
    proposed = BookingSnapshot.model_validate(record.proposed_data)
    if record.forced_pending:
        return proposed
    return proposed.model_copy(
        update={
            "status": booking.status,
            "approval_status": booking.approval_status,
            "conflict_details": booking.conflict_details,
        }
    )


def changes_against_current(db: Session, record: ConflictRecord) -> tuple[Booking | None, list[dict]]:
    try:
        booking = _live_booking(db, record.booking_id)
    except DBAPIError as exc:
        db.rollback()
        raise StoreUnavailableError("conflict lookup") from exc
    if booking is None:
        return None, []
    current = snapshot_of(booking).model_dump(mode="json")
    proposed = proposed_snapshot(booking, record).model_dump(mode="json")
    return booking, diff_snapshot(current, proposed)


def list_pending(db: Session, *, include_queued: bool = False) -> list[ConflictRecord]:
    statuses = OPEN_CONFLICT_STATUSES if include_queued else (ConflictStatus.pending,)
    query = (
        select(ConflictRecord)
        .where(ConflictRecord.status.in_(statuses))
        .order_by(ConflictRecord.created_at, ConflictRecord.id)
    )
    try:
        return list(db.execute(query).scalars())
    except DBAPIError as exc:
        db.rollback()
        raise StoreUnavailableError("conflict listing") from exc


def get_conflict(db: Session, conflict_id: str) -> ConflictRecord:
    try:
        record = db.get(ConflictRecord, conflict_id)
    except DBAPIError as exc:
        db.rollback()
        raise StoreUnavailableError("conflict lookup") from exc
    if record is None:
        raise ResourceNotFoundError("Conflict", conflict_id)
    return record


def pending_count(db: Session) -> ConflictCounts:
    try:
        rows = db.execute(
            select(ConflictRecord.status, func.count(ConflictRecord.id))
            .where(ConflictRecord.status.in_(OPEN_CONFLICT_STATUSES))
            .group_by(ConflictRecord.status)
        ).all()
    except DBAPIError as exc:
        db.rollback()
        raise StoreUnavailableError("conflict count") from exc
    counts = {status: total for status, total in rows}
    return ConflictCounts(
        pending=counts.get(ConflictStatus.pending, 0),
        queued=counts.get(ConflictStatus.queued, 0),
    )


def read_conflict_counts() -> ConflictCounts:
    with SessionLocal() as db:
        return pending_count(db)


def _promote_next_queued(db: Session, booking_id: str) -> str | None:
    next_id = db.execute(
        select(ConflictRecord.id)
        .where(
            ConflictRecord.booking_id == booking_id,
            ConflictRecord.status == ConflictStatus.queued,
        )
        .order_by(ConflictRecord.created_at, ConflictRecord.id)
        .limit(1)
    ).scalar_one_or_none()
    if next_id is None:
        return None
    db.execute(
        update(ConflictRecord)
        .where(ConflictRecord.id == next_id, ConflictRecord.status == ConflictStatus.queued)
        .values(status=ConflictStatus.pending)
        .execution_options(synchronize_session=False)
    )
    return next_id


def _already_resolved(db: Session, record: ConflictRecord) -> ResolutionResult:
    db.refresh(record)
    return ResolutionResult(conflict=record, outcome="already_resolved", changes=[])


def resolve(
    db: Session,
    conflict_id: str,
    decision: ConflictDecision,
    resolved_by: ActorIdentity,
    *,
    note: str | None = None,
) -> ResolutionResult:
    """Apply one supervisor decision. Booking overwrite and status change commit together."""
    record = get_conflict(db, conflict_id)
    if record.status not in OPEN_CONFLICT_STATUSES:
        return ResolutionResult(conflict=record, outcome="already_resolved", changes=[])

    previous_status = record.status
    booking_id = record.booking_id
    accepting = decision is ConflictDecision.accept
    new_status = ConflictStatus.accepted if accepting else ConflictStatus.rejected

    try:
        # Claim the record first so a concurrent supervisor sees it as resolved.
        claimed = db.execute(
            update(ConflictRecord)
            .where(
                ConflictRecord.id == conflict_id,
                ConflictRecord.status.in_(OPEN_CONFLICT_STATUSES),
            )
            .values(
                status=new_status,
                resolved_by_name=resolved_by.name,
                resolved_by_rank=resolved_by.rank,
                resolved_at=datetime.now(timezone.utc),
                resolution_note=note,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            db.rollback()
            return _already_resolved(db, record)

        booking, changes = changes_against_current(db, record)
        booking_version = booking.version if booking is not None else None

        if accepting:
            if booking is None:
                db.rollback()
                logger.warning("Conflict %s targets vanished booking %s", conflict_id, booking_id)
                raise StaleTargetError(conflict_id, booking_id)
            if booking.status is BookingStatus.cancelled:
                db.rollback()
                raise InvalidStateError(
                    "Cancelled bookings cannot take a proposed edit",
                    details={"conflict_id": conflict_id, "booking_id": booking_id},
                )
            proposed = proposed_snapshot(booking, record)
            overwritten = db.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.version == booking.version,
                    Booking.deleted_at.is_(None),
                    Booking.status != BookingStatus.cancelled,
                )
                .values(
                    **proposed.model_dump(),
                    updated_by_name=f"{record.proposed_by_name} (approved by {resolved_by.name})",
                    version=Booking.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if overwritten.rowcount != 1:
                db.rollback()
                raise InvalidStateError(
                    "Booking changed while the conflict was being resolved; conflict stays pending",
                    details={"conflict_id": conflict_id, "booking_id": booking_id},
                )
            booking_version = db.execute(
                select(Booking.version).where(Booking.id == booking_id)
            ).scalar_one()

        promoted_id = None
        if previous_status is ConflictStatus.pending:
            promoted_id = _promote_next_queued(db, booking_id)

        log_activity(
            db,
            user=None,
            actor_name=resolved_by.name,
            action=f"conflict.{new_status.value}",
            entity_type="conflict",
            entity_id=conflict_id,
            details={
                "booking_id": booking_id,
                "changed_fields": [item["field"] for item in changes],
                "promoted_conflict_id": promoted_id,
            },
        )
        db.commit()
    except DBAPIError as exc:
        db.rollback()
        logger.warning("Resolution of conflict %s failed against the store", conflict_id, exc_info=True)
        raise StoreUnavailableError("conflict resolution") from exc

    db.refresh(record)
    logger.info(
        "Conflict %s on booking %s %s by %s (%d field(s) differ)",
        conflict_id,
        booking_id,
        new_status.value,
        resolved_by.name,
        len(changes),
    )
    return ResolutionResult(
        conflict=record,
        outcome=new_status.value,
        changes=changes,
        booking_version=booking_version,
    )
