from app.models.activity_log import ActivityLog  # noqa: F401
from app.models.booking import ApprovalStatus, Booking, BookingStatus, RentalType  # noqa: F401
from app.models.conflict_record import (  # noqa: F401
    ConflictDecision,
    ConflictRecord,
    ConflictStatus,
)
from app.models.user import User, UserRole  # noqa: F401
