import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, Index, Integer, JSON, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class ConflictStatus(str, Enum):
    pending = "pending"
    queued = "queued"
    accepted = "accepted"
    rejected = "rejected"


OPEN_CONFLICT_STATUSES = (ConflictStatus.pending, ConflictStatus.queued)


class ConflictDecision(str, Enum):
    accept = "accept"
    reject = "reject"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConflictRecord(Base):
    __tablename__ = "conflict_records"
    __table_args__ = (
        # One pending record per booking; later divergent writes wait as `queued`.
        Index(
            "uq_conflict_records_pending_booking",
            "booking_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    proposed_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    proposed_by_name: Mapped[str] = mapped_column(String(200), nullable=False)
    proposed_by_rank: Mapped[str] = mapped_column(String(50), nullable=False, default="reception")
    base_version: Mapped[int] = mapped_column(Integer, nullable=False)
    server_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Proposal deliberately demotes the booking to a pending inquiry.
    forced_pending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[ConflictStatus] = mapped_column(
        SAEnum(ConflictStatus, name="conflict_status"),
        nullable=False,
        default=ConflictStatus.pending,
        index=True,
    )
    resolved_by_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    resolved_by_rank: Mapped[str | None] = mapped_column(String(50), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        index=True,
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())
