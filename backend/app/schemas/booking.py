from datetime import date, datetime, time
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.booking import ApprovalStatus, BookingStatus, RentalType
from app.schemas.conflict import ConflictVerdictOut


class BookingFields(BaseModel):
    """Operator-editable booking fields, as submitted from the booking form."""

    client_name: str = Field(min_length=1, max_length=200)
    client_phone: str | None = Field(default=None, max_length=40)
    title: str | None = Field(default=None, max_length=255)
    category: str = Field(default="general", min_length=1, max_length=50)
    shoot_date: date
    start_time: time
    end_time: time
    rental_type: RentalType = RentalType.zone
    total_amount: float = Field(default=0, ge=0)
    paid_amount: float = Field(default=0, ge=0)
    currency: Literal["IQD", "USD"] = "IQD"
    notes: str | None = None

    @field_validator("client_name")
    @classmethod
    def normalize_client_name(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Client name cannot be empty")
        return trimmed

    @field_validator("client_phone", "notes")
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        trimmed = value.strip()
        return trimmed or None

    @model_validator(mode="after")
    def default_title(self) -> "BookingFields":
        if not self.title or not self.title.strip():
            self.title = f"{self.category} - {self.client_name}"
        return self


class BookingSnapshot(BookingFields):
    """Full write snapshot. Stored verbatim as `ConflictRecord.proposed_data`."""

    status: BookingStatus = BookingStatus.confirmed
    approval_status: ApprovalStatus | None = None
    conflict_details: str | None = None


class BookingCreate(BookingFields):
    client_request_id: str | None = Field(default=None, min_length=1, max_length=64)


class BookingEdit(BaseModel):
    base_version: int = Field(ge=1)
    force_pending: bool = False
    fields: BookingFields


class BookingEvaluate(BaseModel):
    shoot_date: date
    start_time: time
    end_time: time
    rental_type: RentalType = RentalType.zone
    exclude_booking_id: str | None = None


class BookingOut(BaseModel):
    id: str
    client_request_id: str | None = None
    client_name: str
    client_phone: str | None = None
    title: str
    category: str
    shoot_date: date
    start_time: time
    end_time: time
    rental_type: RentalType
    total_amount: float
    paid_amount: float
    currency: str
    notes: str | None = None
    status: BookingStatus
    approval_status: ApprovalStatus | None = None
    conflict_details: str | None = None
    decided_by_name: str | None = None
    decided_by_rank: str | None = None
    decided_at: datetime | None = None
    version: int
    updated_by_name: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class SubmissionOut(BaseModel):
    created: bool
    deduplicated: bool = False
    status: BookingStatus | None = None
    booking: BookingOut | None = None
    conflict: ConflictVerdictOut | None = None


class EditOut(BaseModel):
    outcome: Literal["applied", "stored_as_conflict", "conflict"]
    booking: BookingOut | None = None
    conflict_id: str | None = None
    conflict: ConflictVerdictOut | None = None
    message: str
