"""
Pure transition functions over ``DraftBooking``.

Every function takes the current draft and returns the next one; nothing here
performs I/O. Step checks raise ``InvalidTransition`` and leave the input
untouched, so callers can keep the old value on error.
"""
from datetime import date, time
from typing import Any, Iterable, Optional, Tuple

from pydantic import BaseModel

from ._state.domain import (
    MAX_VIA_POINTS,
    AddressCandidate,
    AddressField,
    AddressFieldKind,
    BookingFor,
    DraftBooking,
    Identity,
    Location,
    OfferedVehicle,
    QuoteResult,
    ServiceKind,
    TripSpecification,
    WorkflowStep,
)
from .errors import (
    BookingValidationError,
    InvalidTransition,
    PassengerValidationError,
    TripValidationError,
    ValidationKind,
)

PASSENGER_FIELDS = frozenset(
    {
        "booking_for",
        "passenger_name",
        "passenger_phone",
        "passenger_email",
        "flight_number",
        "flight_name",
        "no_flight_info",
        "passenger_count",
        "luggage_count",
        "baby_seat",
        "special_instructions",
    }
)


def _evolve(model: BaseModel, **changes: Any):
    # model_copy(update=...) skips validation; rebuild so field constraints still hold
    data = {name: getattr(model, name) for name in type(model).model_fields}
    data.update(changes)
    return type(model).model_validate(data)


def _require_step(draft: DraftBooking, operation: str, *steps: WorkflowStep):
    if draft.step not in steps:
        raise InvalidTransition(operation, draft.step)


def _with_trip(draft: DraftBooking, operation: str, **changes: Any) -> DraftBooking:
    _require_step(draft, operation, WorkflowStep.trip_input)
    return _evolve(draft, trip=_evolve(draft.trip, **changes))


def _slot(field: AddressField) -> str:
    if field.kind is AddressFieldKind.destination:
        return "destination"
    # hourly pickup shares the origin slot
    return "origin"


def get_location(trip: TripSpecification, field: AddressField) -> Optional[Location]:
    if field.kind is AddressFieldKind.via:
        if field.index >= len(trip.via_points):
            return None
        return trip.via_points[field.index]
    return getattr(trip, _slot(field))


def _set_location(draft: DraftBooking, field: AddressField, location: Location, operation: str) -> DraftBooking:
    if field.kind is AddressFieldKind.via:
        via_points = list(draft.trip.via_points)
        if field.index >= len(via_points):
            raise IndexError(f"No via point at index {field.index}")
        via_points[field.index] = location
        return _with_trip(draft, operation, via_points=tuple(via_points))
    return _with_trip(draft, operation, **{_slot(field): location})


# ---- Step 1: trip input ----

def set_service_kind(draft: DraftBooking, service_kind: ServiceKind) -> DraftBooking:
    return _with_trip(draft, "change service type", service_kind=service_kind)


def type_address(draft: DraftBooking, field: AddressField, text: str) -> DraftBooking:
    """Free-typed text never carries coordinates, so typing un-resolves the field."""
    return _set_location(draft, field, Location(display_address=text), "edit address")


def resolve_address(draft: DraftBooking, field: AddressField, candidate: AddressCandidate) -> DraftBooking:
    return _set_location(draft, field, candidate.to_location(), "select address")


def add_via_point(draft: DraftBooking) -> DraftBooking:
    if len(draft.trip.via_points) >= MAX_VIA_POINTS:
        return draft
    return _with_trip(draft, "add via point", via_points=draft.trip.via_points + (Location(),))


def remove_via_point(draft: DraftBooking, index: int) -> DraftBooking:
    via_points = draft.trip.via_points
    if not 0 <= index < len(via_points):
        raise IndexError(f"No via point at index {index}")
    remaining = via_points[:index] + via_points[index + 1:]
    return _with_trip(draft, "remove via point", via_points=remaining)


def set_schedule(draft: DraftBooking, scheduled_date: Optional[date], scheduled_time: Optional[time]) -> DraftBooking:
    return _with_trip(draft, "change schedule", scheduled_date=scheduled_date, scheduled_time=scheduled_time)


def set_duration(draft: DraftBooking, hours: Optional[int]) -> DraftBooking:
    return _with_trip(draft, "change duration", duration_hours=hours)


def with_quote(draft: DraftBooking, quote: QuoteResult, offered: Iterable[OfferedVehicle]) -> DraftBooking:
    """Store a fresh quote and move to vehicle selection."""
    _require_step(draft, "apply quote", WorkflowStep.trip_input)
    offered = tuple(offered)
    selected = draft.selected_vehicle_class
    if selected not in {offer.vehicle_class for offer in offered}:
        selected = None
    return _evolve(
        draft,
        quote=quote,
        offered=offered,
        selected_vehicle_class=selected,
        step=WorkflowStep.vehicle_selection,
    )


# ---- Step 2: vehicle selection ----

def select_vehicle(draft: DraftBooking, vehicle_class: str) -> DraftBooking:
    _require_step(draft, "select vehicle", WorkflowStep.vehicle_selection)
    if vehicle_class not in {offer.vehicle_class for offer in draft.offered}:
        raise ValueError(f"Vehicle class {vehicle_class} is not offered for this trip")
    return _evolve(draft, selected_vehicle_class=vehicle_class)


def prefill_passenger(draft: DraftBooking, identity: Identity) -> DraftBooking:
    passenger = draft.passenger
    if not identity.is_authenticated or passenger.booking_for is not BookingFor.myself:
        return draft
    if not passenger.contact_is_blank:
        return draft
    return _evolve(
        draft,
        passenger=_evolve(
            passenger,
            passenger_name=identity.full_name,
            passenger_phone=identity.phone or "",
            passenger_email=identity.email or "",
        ),
    )


def advance_to_details(draft: DraftBooking, identity: Identity) -> DraftBooking:
    _require_step(draft, "continue", WorkflowStep.vehicle_selection)
    if draft.selected_offer() is None:
        raise BookingValidationError(ValidationKind.vehicle_not_selected)
    return prefill_passenger(_evolve(draft, step=WorkflowStep.passenger_details), identity)


def normalized_for_resume(draft: DraftBooking) -> DraftBooking:
    """Passenger entry is never trusted across sign-in; resume from vehicle selection."""
    return _evolve(draft, step=WorkflowStep.vehicle_selection)


# ---- Step 3: passenger details ----

def update_passenger(draft: DraftBooking, **changes: Any) -> DraftBooking:
    _require_step(draft, "edit passenger details", WorkflowStep.passenger_details)
    unknown = set(changes) - PASSENGER_FIELDS
    if unknown:
        raise ValueError(f"Unknown passenger fields: {', '.join(sorted(unknown))}")

    if changes.get("flight_number") or changes.get("flight_name"):
        changes.setdefault("no_flight_info", False)
    return _evolve(draft, passenger=_evolve(draft.passenger, **changes))


def set_no_flight_info(draft: DraftBooking, enabled: bool) -> DraftBooking:
    return update_passenger(draft, no_flight_info=enabled)


def validate_passenger(draft: DraftBooking):
    passenger = draft.passenger
    if passenger.booking_for is BookingFor.someone_else and not passenger.has_contact:
        missing = [
            name
            for name in ("passenger_name", "passenger_phone", "passenger_email")
            if not (getattr(passenger, name) or "").strip()
        ]
        raise PassengerValidationError(ValidationKind.incomplete_passenger_info, fields=missing)


def mark_submitted(draft: DraftBooking) -> DraftBooking:
    _require_step(draft, "submit", WorkflowStep.passenger_details)
    return _evolve(draft, step=WorkflowStep.submitted)


# ---- Back ----

_PREVIOUS_STEP = {
    WorkflowStep.vehicle_selection: WorkflowStep.trip_input,
    WorkflowStep.passenger_details: WorkflowStep.vehicle_selection,
}


def go_back(draft: DraftBooking) -> DraftBooking:
    _require_step(draft, "go back", *_PREVIOUS_STEP)
    return _evolve(draft, step=_PREVIOUS_STEP[draft.step])


def required_locations(trip: TripSpecification) -> Tuple[Tuple[str, Optional[Location]], ...]:
    if trip.service_kind is ServiceKind.hourly:
        return (("pickup", trip.origin),)
    return (("origin", trip.origin), ("destination", trip.destination))


def validate_trip(trip: TripSpecification):
    """Presence first, then resolution; both run before any collaborator is called."""
    missing = [name for name, location in required_locations(trip) if location is None or not location.has_text]
    if trip.scheduled_date is None:
        missing.append("date")
    if trip.scheduled_time is None:
        missing.append("time")
    if trip.service_kind is ServiceKind.hourly and trip.duration_hours is None:
        missing.append("duration")
    if missing:
        raise TripValidationError(ValidationKind.missing_fields, fields=missing)

    unresolved = [name for name, location in required_locations(trip) if not location.resolved]
    if trip.service_kind is ServiceKind.transfer:
        unresolved.extend(
            f"via-{index}"
            for index, via in enumerate(trip.via_points)
            if via.has_text and not via.resolved
        )
    if unresolved:
        raise TripValidationError(ValidationKind.unresolved_address, fields=unresolved)
