from enum import Enum
from typing import Iterable, Optional


class ValidationKind(str, Enum):
    missing_fields = "MissingFields"
    unresolved_address = "UnresolvedAddress"
    no_pricing_configured = "NoPricingConfigured"
    incomplete_passenger_info = "IncompletePassengerInfo"
    vehicle_not_selected = "VehicleNotSelected"


_DEFAULT_MESSAGES = {
    ValidationKind.missing_fields: "Please fill in all required fields.",
    ValidationKind.unresolved_address: "Please select valid addresses from the suggestions.",
    ValidationKind.no_pricing_configured: "No pricing rules configured. Please contact support.",
    ValidationKind.incomplete_passenger_info: "Please provide the passenger's name, phone and email.",
    ValidationKind.vehicle_not_selected: "Please select a vehicle to continue.",
}


class WorkflowError(Exception):
    """Base class for every error the booking workflow surfaces to the customer."""

    retryable: bool = False


class BookingValidationError(WorkflowError):
    def __init__(self, kind: ValidationKind, message: Optional[str] = None, fields: Iterable[str] = ()):
        self.kind = kind
        self.fields = tuple(fields)
        super().__init__(message or _DEFAULT_MESSAGES[kind])


class TripValidationError(BookingValidationError):
    pass


class PassengerValidationError(BookingValidationError):
    pass


class InvalidTransition(WorkflowError):
    def __init__(self, operation: str, step):
        self.operation = operation
        self.step = step
        super().__init__(f"Cannot {operation} while at step {step}")


class CollaboratorError(WorkflowError):
    """An external service (routing, catalog, identity) failed or returned garbage."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class QuoteError(WorkflowError):
    retryable = True


class PricingFailureReason(str, Enum):
    no_rule = "NO_RULE"
    invalid_input = "INVALID_INPUT"
    service_error = "SERVICE_ERROR"
    network_error = "NETWORK_ERROR"
    bad_response = "BAD_RESPONSE"


class PricingFailure(WorkflowError):
    def __init__(self, vehicle_class: str, reason: PricingFailureReason, detail: str = ""):
        self.vehicle_class = vehicle_class
        self.reason = reason
        self.detail = detail
        super().__init__(f"Pricing failed for {vehicle_class}: {reason.value} {detail}".strip())


class AuthenticationRequired(WorkflowError):
    """Control-flow signal: the operation needs a signed-in customer."""

    def __init__(self, message: str = "Please sign in to complete your booking"):
        super().__init__(message)


class BookingError(WorkflowError):
    retryable = True

    def __init__(self, message: str = "Failed to create booking", status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
