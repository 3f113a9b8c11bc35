from datetime import date, time
from typing import List, Optional

from pydantic import BaseModel, Field

from limoapp.workflow._state.domain import AddressCandidate, BookingFor, ServiceKind


class ServiceKindRequest(BaseModel):
    service_kind: ServiceKind


class AddressTextRequest(BaseModel):
    field: str = Field(description="origin, destination, pickup or via-<n>")
    text: str


class SuggestionSelectRequest(BaseModel):
    field: str
    candidate: AddressCandidate


class ScheduleRequest(BaseModel):
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None


class DurationRequest(BaseModel):
    hours: Optional[int] = None


class VehicleSelectRequest(BaseModel):
    vehicle_class: str


class PassengerUpdateRequest(BaseModel):
    passenger_name: Optional[str] = None
    passenger_phone: Optional[str] = None
    passenger_email: Optional[str] = None
    flight_number: Optional[str] = None
    flight_name: Optional[str] = None
    passenger_count: Optional[int] = None
    luggage_count: Optional[int] = None
    baby_seat: Optional[bool] = None
    special_instructions: Optional[str] = None


class BookingForRequest(BaseModel):
    booking_for: BookingFor


class FlightInfoRequest(BaseModel):
    no_flight_info: bool


class SuggestionsResponse(BaseModel):
    field: str
    suggestions: List[AddressCandidate]


class SessionResponse(BaseModel):
    session_id: str
