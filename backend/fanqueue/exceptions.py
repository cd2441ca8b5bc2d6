class APIError(Exception):
    """
    Base exception for all API-related errors.
    The message is what the caller sees; it must never carry internal state.
    """
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


# --- Precondition errors (surfaced to the caller, no retry) ---

class EventNotFoundError(APIError):
    def __init__(self, message: str = "Event not found.", status_code: int = 404):
        super().__init__(message, status_code)

class EventInactiveError(APIError):
    def __init__(self, message: str = "This event is not accepting queue entries.", status_code: int = 409):
        super().__init__(message, status_code)

class EntryNotFoundError(APIError):
    def __init__(self, message: str = "Queue entry not found.", status_code: int = 404):
        super().__init__(message, status_code)

class NotificationNotFoundError(APIError):
    def __init__(self, message: str = "Notification not found.", status_code: int = 404):
        super().__init__(message, status_code)

class AlreadyInQueueError(APIError):
    def __init__(self, message: str = "You are already in this queue.", status_code: int = 409):
        super().__init__(message, status_code)

class CapacityExceededError(APIError):
    def __init__(self, message: str = "Queue is full.", status_code: int = 409):
        super().__init__(message, status_code)

class QueueEmptyError(APIError):
    def __init__(self, message: str = "No one in queue.", status_code: int = 409):
        super().__init__(message, status_code)

class PaymentRequiredError(APIError):
    def __init__(self, message: str = "Payment is required for this event.", status_code: int = 402):
        super().__init__(message, status_code)

class PaymentIntentInUseError(APIError):
    def __init__(self, message: str = "This payment has already been used for a queue entry.", status_code: int = 409):
        super().__init__(message, status_code)

class PaymentNotRefundableError(APIError):
    def __init__(self, message: str = "This queue entry cannot be refunded.", status_code: int = 409):
        super().__init__(message, status_code)

class InvalidWebhookSignatureError(APIError):
    def __init__(self, message: str = "Invalid webhook signature.", status_code: int = 400):
        super().__init__(message, status_code)

class UnauthorizedActionError(APIError):
    """
    The actor is authenticated but not allowed to perform the action
    (e.g. cancelling another fan's entry, calling the next fan of someone else's event).
    """
    def __init__(self, message: str = "You are not allowed to perform this action.", status_code: int = 403):
        super().__init__(message, status_code)

class InvalidTransitionError(APIError):
    def __init__(self, message: str = "This action is not possible for the queue entry in its current state.", status_code: int = 409):
        super().__init__(message, status_code)


# --- Collaborator errors (caller may retry; operations are atomic) ---

class PaymentGatewayError(APIError):
    def __init__(self, message: str = "Payment service is unavailable. Please try again.", status_code: int = 502):
        super().__init__(message, status_code)

class PaymentConfigurationError(APIError):
    """
    Payments cannot be taken for this event (no connected organizer account,
    missing gateway credentials, ...).
    """
    def __init__(self, message: str = "Payments are not available for this event.", status_code: int = 503):
        super().__init__(message, status_code)

class QueueBusyError(APIError):
    def __init__(self, message: str = "The queue is busy. Please try again.", status_code: int = 503):
        super().__init__(message, status_code)


# --- Consistency violations (programming-invariant failures) ---

class QueueConsistencyError(APIError):
    def __init__(self, message: str = "Something went wrong. Please try again.", status_code: int = 500):
        super().__init__(message, status_code)
