"""Slot collision checks for studio bookings.

A booking occupies either the whole venue (`full`) or one partition of it
(`zone`). Any overlap that involves a whole-venue booking is a hard conflict;
two overlapping zone bookings only produce a soft conflict the operator may
override into a pending-approval booking.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from enum import Enum
from typing import Iterable

from app.core.exceptions import BookingValidationError
from app.models.booking import RentalType

WHOLE_VENUE_MESSAGE = "الاستوديو محجوز بالكامل"
PARTIAL_MESSAGE = "يوجد حجز آخر في نفس التوقيت"
INVALID_TIME_MESSAGE = "وقت غير صالح"


def parse_time(value: str | time) -> time:
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(value.strip())
    except (AttributeError, ValueError) as exc:
        raise BookingValidationError(INVALID_TIME_MESSAGE, details={"value": str(value)}) from exc


@dataclass(frozen=True)
class TimeRange:
    date: date
    start: time
    end: time

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise BookingValidationError(
                INVALID_TIME_MESSAGE,
                details={"start": self.start.isoformat(), "end": self.end.isoformat()},
            )

    @classmethod
    def build(cls, day: date, start: str | time, end: str | time) -> "TimeRange":
        return cls(date=day, start=parse_time(start), end=parse_time(end))

    def overlaps(self, other: "TimeRange") -> bool:
        # Strict comparison: back-to-back bookings share a boundary, not a slot.
        return self.date == other.date and self.start < other.end and self.end > other.start


@dataclass(frozen=True)
class ScheduledBooking:
    id: str
    range: TimeRange
    exclusivity: RentalType
    title: str = ""


class ConflictSeverity(str, Enum):
    none = "none"
    soft = "soft"
    hard = "hard"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    ConflictSeverity.none: 0,
    ConflictSeverity.soft: 1,
    ConflictSeverity.hard: 2,
}


@dataclass(frozen=True)
class ConflictVerdict:
    severity: ConflictSeverity
    message: str = ""
    conflicting_booking_id: str | None = None

    @property
    def has_conflict(self) -> bool:
        return self.severity is not ConflictSeverity.none

    def to_payload(self) -> dict:
        return {
            "severity": self.severity.value,
            "message": self.message,
            "conflicting_booking_id": self.conflicting_booking_id,
            "can_force": self.has_conflict,
        }


NO_CONFLICT = ConflictVerdict(severity=ConflictSeverity.none)


def classify_overlap(new_exclusivity: RentalType, existing_exclusivity: RentalType) -> ConflictSeverity:
    if RentalType.full in (new_exclusivity, existing_exclusivity):
        return ConflictSeverity.hard
    return ConflictSeverity.soft


def detect_conflict(
    candidate: TimeRange,
    exclusivity: RentalType,
    existing: Iterable[ScheduledBooking],
) -> ConflictVerdict:
    """Return the worst conflict `candidate` has with `existing`, with one representative booking."""
    worst = NO_CONFLICT
    for booking in existing:
        if not candidate.overlaps(booking.range):
            continue
        severity = classify_overlap(exclusivity, booking.exclusivity)
        if severity is ConflictSeverity.hard:
            return ConflictVerdict(
                severity=ConflictSeverity.hard,
                message=WHOLE_VENUE_MESSAGE,
                conflicting_booking_id=booking.id,
            )
        if severity.rank > worst.severity.rank:
            worst = ConflictVerdict(
                severity=severity,
                message=PARTIAL_MESSAGE,
                conflicting_booking_id=booking.id,
            )
    return worst
