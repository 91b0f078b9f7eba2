from __future__ import annotations

from datetime import date
import logging

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from app.core.exceptions import StoreUnavailableError
from app.models.booking import Booking, BookingStatus
from app.services.scheduling import ScheduledBooking, TimeRange

logger = logging.getLogger(__name__)


def to_scheduled_booking(booking: Booking) -> ScheduledBooking:
    return ScheduledBooking(
        id=booking.id,
        range=TimeRange(date=booking.shoot_date, start=booking.start_time, end=booking.end_time),
        exclusivity=booking.rental_type,
        title=booking.title,
    )


def bookings_for_date(db: Session, day: date, exclude_id: str | None = None) -> list[ScheduledBooking]:
    """Bookings that occupy the venue on `day`, minus the one being edited."""
    query = (
        select(Booking)
        .where(
            Booking.shoot_date == day,
            Booking.deleted_at.is_(None),
            Booking.status != BookingStatus.cancelled,
        )
        .order_by(Booking.start_time)
    )
    if exclude_id:
        query = query.where(Booking.id != exclude_id)
    try:
        rows = list(db.execute(query).scalars())
    except DBAPIError as exc:
        logger.warning("Availability lookup failed for %s", day.isoformat(), exc_info=True)
        raise StoreUnavailableError("availability lookup") from exc
    return [to_scheduled_booking(row) for row in rows]
