from .domain import (
    AddressCandidate,
    AddressField,
    AddressFieldKind,
    AuthRedirect,
    BookingFor,
    BookingPayload,
    BookingReceipt,
    Coordinates,
    DraftBooking,
    DraftStore,
    Identity,
    Location,
    OfferedVehicle,
    PassengerDetails,
    PaymentHandoff,
    PriceBreakdown,
    PriceQuote,
    PriceRequest,
    QuoteResult,
    RouteEstimate,
    ServiceKind,
    SubmissionOutcome,
    TripSpecification,
    VehicleType,
    WorkflowStep,
)
from .in_memory_state import InMemoryDraftStore
from .redis_state import RedisDraftStore

__all__ = [
    "AddressCandidate", "AddressField", "AddressFieldKind", "AuthRedirect", "BookingFor",
    "BookingPayload", "BookingReceipt", "Coordinates", "DraftBooking", "DraftStore", "Identity",
    "Location", "OfferedVehicle", "PassengerDetails", "PaymentHandoff", "PriceBreakdown",
    "PriceQuote", "PriceRequest", "QuoteResult", "RouteEstimate", "ServiceKind",
    "SubmissionOutcome", "TripSpecification", "VehicleType", "WorkflowStep",
    "InMemoryDraftStore", "RedisDraftStore",
]
