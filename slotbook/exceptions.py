from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ValidationError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ForbiddenError(HTTPException):
    def __init__(self, detail: str = "Not authorized to perform this action"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class ConflictError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class InternalError(HTTPException):
    def __init__(self, detail: str = "Internal server error"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


# Not found

class BookingNotFound(NotFoundError):
    def __init__(self):
        super().__init__("Booking not found")


class ServiceNotFound(NotFoundError):
    def __init__(self):
        super().__init__("Service not found or is inactive")


class UserNotFound(NotFoundError):
    def __init__(self):
        super().__init__("User not found")


class PolicyNotFound(NotFoundError):
    def __init__(self):
        super().__init__("Cancellation policy not found or not applicable to this booking")


class ConversationNotFound(NotFoundError):
    def __init__(self):
        super().__init__("Conversation not found")


class RescheduleRequestNotFound(NotFoundError):
    def __init__(self):
        super().__init__("Reschedule request not found")


# Validation

class InvalidStatus(ValidationError):
    def __init__(self, value):
        super().__init__(f"Invalid booking status: {value!r}")
        self.value = value


class ExplanationRequired(ValidationError):
    def __init__(self):
        super().__init__("An explanation is required for this type of cancellation")


class EmptyMessage(ValidationError):
    def __init__(self):
        super().__init__("Message content cannot be empty")


class InvalidReschedule(ValidationError):
    pass


# Conflict

class InvalidTransition(ConflictError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot transition from {current} to {target}")
        self.current = current
        self.target = target


class DuplicatePendingReschedule(ConflictError):
    def __init__(self):
        super().__init__("A reschedule request is already pending for this booking")
