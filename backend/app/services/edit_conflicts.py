"""Optimistic edits against the booking store.

An edit carries the version the operator last read. It is applied with one
conditional UPDATE; when the row has moved on, the edit is kept as a
`ConflictRecord` for a supervisor instead of overwriting the newer data.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import ResourceNotFoundError, StoreUnavailableError
from app.models.booking import Booking, BookingStatus
from app.models.conflict_record import ConflictRecord, ConflictStatus
from app.schemas.booking import BookingSnapshot
from app.schemas.conflict import ActorIdentity
from app.services.audit import log_activity

logger = logging.getLogger(__name__)


@dataclass
class EditOutcome:
    applied: bool
    booking: Booking | None = None
    conflict: ConflictRecord | None = None

    @property
    def message(self) -> str:
        if self.applied:
            return "Edit applied"
        return "Booking changed since it was read; edit stored as a pending conflict for supervisor review"


def compare_and_write(
    db: Session,
    booking_id: str,
    expected_version: int,
    snapshot: BookingSnapshot,
    *,
    updated_by_name: str,
) -> bool:
    """Write `snapshot` only if the row is still at `expected_version`.

    Cancelled and deleted rows never match. Caller commits.
    """
    result = db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.version == expected_version,
            Booking.deleted_at.is_(None),
            Booking.status != BookingStatus.cancelled,
        )
        .values(
            **snapshot.model_dump(),
            updated_by_name=updated_by_name,
            version=Booking.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _has_pending_conflict(db: Session, booking_id: str) -> bool:
    row = db.execute(
        select(ConflictRecord.id)
        .where(
            ConflictRecord.booking_id == booking_id,
            ConflictRecord.status == ConflictStatus.pending,
        )
        .limit(1)
    ).first()
    return row is not None


def _new_record(
    booking_id: str,
    base_version: int,
    server_version: int,
    snapshot: BookingSnapshot,
    proposed_by: ActorIdentity,
    forced_pending: bool,
    *,
    status: ConflictStatus,
) -> ConflictRecord:
    return ConflictRecord(
        booking_id=booking_id,
        proposed_data=snapshot.model_dump(mode="json"),
        proposed_by_name=proposed_by.name,
        proposed_by_rank=proposed_by.rank,
        base_version=base_version,
        server_version=server_version,
        status=status,
        forced_pending=forced_pending,
    )


def store_conflict(
    db: Session,
    booking_id: str,
    base_version: int,
    server_version: int,
    snapshot: BookingSnapshot,
    proposed_by: ActorIdentity,
    *,
    forced_pending: bool = False,
) -> ConflictRecord:
    """Persist a losing write. Queued behind an existing pending record, never merged into it."""
    fields = (booking_id, base_version, server_version, snapshot, proposed_by, forced_pending)
    if _has_pending_conflict(db, booking_id):
        record = _new_record(*fields, status=ConflictStatus.queued)
        db.add(record)
        db.flush()
        return record

    record = _new_record(*fields, status=ConflictStatus.pending)
    try:
        with db.begin_nested():
            db.add(record)
    except IntegrityError:
        # Another writer claimed the pending slot between the check and the insert.
        record = _new_record(*fields, status=ConflictStatus.queued)
        db.add(record)
    db.flush()
    return record


def apply_edit(
    db: Session,
    booking_id: str,
    base_version: int,
    proposed_data: BookingSnapshot,
    proposed_by: ActorIdentity,
    *,
    forced_pending: bool = False,
) -> EditOutcome:
    """Apply `proposed_data` at `base_version` or keep it as a conflict.

    `forced_pending` marks a proposal that deliberately demotes the booking to a
    pending inquiry; accepting it later writes its approval state as proposed.
    """
    try:
        if compare_and_write(db, booking_id, base_version, proposed_data, updated_by_name=proposed_by.name):
            log_activity(
                db,
                user=None,
                actor_name=proposed_by.name,
                action="booking.update",
                entity_type="booking",
                entity_id=booking_id,
                details={"base_version": base_version},
            )
            db.commit()
            booking = db.get(Booking, booking_id)
            db.refresh(booking)
            logger.info("Edit applied to booking %s (v%d -> v%d)", booking_id, base_version, booking.version)
            return EditOutcome(applied=True, booking=booking)

        server_version = db.execute(
            select(Booking.version).where(Booking.id == booking_id)
        ).scalar_one_or_none()
        if server_version is None:
            db.rollback()
            raise ResourceNotFoundError("Booking", booking_id)

        record = store_conflict(
            db,
            booking_id,
            base_version,
            server_version,
            proposed_data,
            proposed_by,
            forced_pending=forced_pending,
        )
        log_activity(
            db,
            user=None,
            actor_name=proposed_by.name,
            action="conflict.create",
            entity_type="conflict",
            entity_id=record.id,
            details={
                "booking_id": booking_id,
                "base_version": base_version,
                "server_version": server_version,
                "status": record.status.value,
            },
        )
        db.commit()
    except DBAPIError as exc:
        db.rollback()
        logger.warning("Edit of booking %s failed against the store", booking_id, exc_info=True)
        raise StoreUnavailableError("booking edit") from exc

    db.refresh(record)
    logger.info(
        "Edit of booking %s by %s stored as %s conflict %s (base v%d, server v%d)",
        booking_id,
        proposed_by.name,
        record.status.value,
        record.id,
        base_version,
        server_version,
    )
    return EditOutcome(applied=False, conflict=record)
