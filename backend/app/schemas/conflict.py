from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from app.models.conflict_record import ConflictDecision, ConflictStatus


class ActorIdentity(BaseModel):
    name: str
    rank: str


class ConflictVerdictOut(BaseModel):
    severity: Literal["none", "soft", "hard"]
    message: str
    conflicting_booking_id: str | None = None
    can_force: bool


class FieldChange(BaseModel):
    field: str
    current: Any = None
    proposed: Any = None


class BookingSummary(BaseModel):
    client_name: str
    shoot_date: date
    title: str
    version: int


class ConflictRecordOut(BaseModel):
    id: str
    booking_id: str
    status: ConflictStatus
    proposed_data: dict
    proposed_by: ActorIdentity
    base_version: int
    server_version: int | None = None
    forced_pending: bool = False
    created_at: datetime | None = None
    resolved_by: ActorIdentity | None = None
    resolved_at: datetime | None = None
    resolution_note: str | None = None
    booking: BookingSummary | None = None
    changes: list[FieldChange] = Field(default_factory=list)


class ResolveConflictRequest(BaseModel):
    decision: ConflictDecision
    note: str | None = Field(default=None, max_length=2000)


class ResolutionOut(BaseModel):
    conflict_id: str
    outcome: Literal["accepted", "rejected", "already_resolved"]
    status: ConflictStatus
    message: str
    booking_version: int | None = None
    changes: list[FieldChange] = Field(default_factory=list)


class ConflictCountOut(BaseModel):
    pending: int
    queued: int
    observed_at: datetime
