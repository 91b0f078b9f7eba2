class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class BookingValidationError(AppError):
    """Raised when booking fields are rejected before conflict detection runs."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=422, details=details)

class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)

class StaleTargetError(AppError):
    """Raised when a conflict is accepted but the booking it targets no longer exists."""
    def __init__(self, conflict_id: str, booking_id: str):
        super().__init__(
            f"Booking {booking_id} no longer exists; conflict {conflict_id} stays pending for manual follow-up",
            status_code=409,
            details={"conflict_id": conflict_id, "booking_id": booking_id},
        )

class InvalidStateError(AppError):
    """Raised when an operation is not allowed from the record's current state."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=409, details=details)

class StoreUnavailableError(AppError):
    """Raised when the booking store times out or cannot be reached. Safe to retry."""
    def __init__(self, operation: str):
        super().__init__(
            f"Booking store unavailable during {operation}; retry the request",
            status_code=503,
            details={"operation": operation, "retryable": True},
        )

class ConfigurationError(AppError):
    """Raised when system configuration is invalid."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)
