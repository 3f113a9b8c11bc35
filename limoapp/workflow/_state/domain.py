from datetime import date, datetime, time, timezone, tzinfo
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

MAX_VIA_POINTS = 3
KM_TO_MILES = 0.621371


class ServiceKind(str, Enum):
    transfer = "transfer"
    hourly = "hourly"


class WorkflowStep(IntEnum):
    trip_input = 1
    vehicle_selection = 2
    passenger_details = 3
    submitted = 4


class BookingFor(str, Enum):
    myself = "self"
    someone_else = "someone_else"


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)


class Location(BaseModel):
    """An address as typed or selected. Only a selected address carries coordinates."""

    model_config = ConfigDict(frozen=True)

    display_address: str = ""
    coordinates: Optional[Coordinates] = None

    @property
    def resolved(self) -> bool:
        return self.coordinates is not None

    @property
    def has_text(self) -> bool:
        return bool(self.display_address.strip())


class AddressFieldKind(str, Enum):
    origin = "origin"
    destination = "destination"
    pickup = "pickup"
    via = "via"


class AddressField(BaseModel):
    """Identifies one address input of the form: origin, destination, pickup or via(index)."""

    model_config = ConfigDict(frozen=True)

    kind: AddressFieldKind
    index: Optional[int] = Field(default=None, ge=0, lt=MAX_VIA_POINTS)

    @model_validator(mode="after")
    def _index_only_for_via(self) -> "AddressField":
        if (self.kind is AddressFieldKind.via) != (self.index is not None):
            raise ValueError("index is required for via points and forbidden otherwise")
        return self

    @classmethod
    def origin(cls) -> "AddressField":
        return cls(kind=AddressFieldKind.origin)

    @classmethod
    def destination(cls) -> "AddressField":
        return cls(kind=AddressFieldKind.destination)

    @classmethod
    def pickup(cls) -> "AddressField":
        return cls(kind=AddressFieldKind.pickup)

    @classmethod
    def via(cls, index: int) -> "AddressField":
        return cls(kind=AddressFieldKind.via, index=index)

    @classmethod
    def parse(cls, value: str) -> "AddressField":
        """Accepts the wire form: ``origin``, ``destination``, ``pickup`` or ``via-<n>``."""
        if value.startswith("via-"):
            try:
                return cls.via(int(value[4:]))
            except ValueError:
                raise ValueError(f"Invalid address field: {value}")
        try:
            return cls(kind=AddressFieldKind(value))
        except ValueError:
            raise ValueError(f"Invalid address field: {value}")

    def __str__(self) -> str:
        if self.kind is AddressFieldKind.via:
            return f"via-{self.index}"
        return self.kind.value


class TripSpecification(BaseModel):
    """What the customer asked for. For hourly charters the pickup lives in ``origin``."""

    model_config = ConfigDict(frozen=True)

    service_kind: ServiceKind = ServiceKind.transfer
    origin: Optional[Location] = None
    destination: Optional[Location] = None
    via_points: Tuple[Location, ...] = Field(default=(), max_length=MAX_VIA_POINTS)
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    duration_hours: Optional[int] = Field(default=None, ge=2, le=24)

    def scheduled_at(self, service_timezone: tzinfo = timezone.utc) -> Optional[datetime]:
        """The pickup as a UTC instant; date and time are wall-clock values in ``service_timezone``."""
        if self.scheduled_date is None or self.scheduled_time is None:
            return None
        local = datetime.combine(self.scheduled_date, self.scheduled_time, tzinfo=service_timezone)
        return local.astimezone(timezone.utc)


class PriceBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    regular_price: str
    discount_amount: str = "0"
    final_price: str


class QuoteResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    service_kind: ServiceKind
    distance_km: float = 0.0
    duration_minutes: int = 0
    prices_by_vehicle_class: Dict[str, str] = Field(default_factory=dict)
    price_breakdowns: Dict[str, PriceBreakdown] = Field(default_factory=dict)


class VehicleType(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    passenger_capacity: int = Field(default=0, alias="passengerCapacity")
    luggage_capacity: Optional[str] = Field(default=None, alias="luggageCapacity")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    is_active: bool = Field(default=True, alias="isActive")


class OfferedVehicle(BaseModel):
    """A vehicle the customer can pick at step 2, with the price quoted for its class."""

    model_config = ConfigDict(frozen=True)

    vehicle_type_id: str
    name: str
    vehicle_class: str
    price: str
    passenger_capacity: int = 0
    luggage_capacity: Optional[str] = None
    image_url: Optional[str] = None


class PassengerDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    booking_for: BookingFor = BookingFor.myself
    passenger_name: Optional[str] = None
    passenger_phone: Optional[str] = None
    passenger_email: Optional[str] = None
    flight_number: Optional[str] = None
    flight_name: Optional[str] = None
    no_flight_info: bool = False
    passenger_count: int = Field(default=1, ge=1)
    luggage_count: int = Field(default=0, ge=0)
    baby_seat: bool = False
    special_instructions: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _no_flight_info_clears_flight(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("no_flight_info"):
            data = {**data, "flight_number": None, "flight_name": None}
        return data

    @property
    def has_contact(self) -> bool:
        return all(
            (value or "").strip()
            for value in (self.passenger_name, self.passenger_phone, self.passenger_email)
        )

    @property
    def contact_is_blank(self) -> bool:
        return not any(
            (value or "").strip()
            for value in (self.passenger_name, self.passenger_phone, self.passenger_email)
        )


class DraftBooking(BaseModel):
    """The whole in-progress booking; this exact value is what the draft store persists."""

    model_config = ConfigDict(frozen=True)

    trip: TripSpecification = Field(default_factory=TripSpecification)
    step: WorkflowStep = WorkflowStep.trip_input
    quote: Optional[QuoteResult] = None
    offered: Tuple[OfferedVehicle, ...] = ()
    passenger: PassengerDetails = Field(default_factory=PassengerDetails)
    selected_vehicle_class: Optional[str] = None

    def selected_offer(self) -> Optional[OfferedVehicle]:
        for offer in self.offered:
            if offer.vehicle_class == self.selected_vehicle_class:
                return offer
        return None


class Identity(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_authenticated: bool = False
    user_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    deferred_payment: bool = False

    @classmethod
    def anonymous(cls) -> "Identity":
        return cls()

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class AddressCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    label: str
    position: Coordinates

    def to_location(self) -> Location:
        return Location(display_address=self.label, coordinates=self.position)


class RouteEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)

    distance_km: float = Field(ge=0)
    duration_minutes: int = Field(ge=0)

    @property
    def distance_miles(self) -> float:
        return round(self.distance_km * KM_TO_MILES, 2)


class PriceRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    vehicle_class: str
    service_kind: ServiceKind
    distance_miles: Optional[float] = None
    hours: Optional[int] = None
    scheduled_date: date
    scheduled_time: time
    user_id: Optional[str] = None


class PriceQuote(BaseModel):
    model_config = ConfigDict(frozen=True)

    vehicle_class: str
    price: str
    breakdown: Optional[PriceBreakdown] = None


class BookingPayload(BaseModel):
    """The booking-creation request, serialized with the platform's camelCase keys."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    vehicle_type_id: str = Field(alias="vehicleTypeId")
    vehicle_class: str = Field(alias="vehicleClass")
    booking_type: ServiceKind = Field(alias="bookingType")
    scheduled_date_time: datetime = Field(alias="scheduledDateTime")
    total_amount: str = Field(alias="totalAmount")
    pickup_address: str = Field(alias="pickupAddress")
    pickup_lat: str = Field(alias="pickupLat")
    pickup_lon: str = Field(alias="pickupLon")
    destination_address: Optional[str] = Field(default=None, alias="destinationAddress")
    destination_lat: Optional[str] = Field(default=None, alias="destinationLat")
    destination_lon: Optional[str] = Field(default=None, alias="destinationLon")
    via_points: Optional[List[str]] = Field(default=None, alias="viaPoints")
    via_coordinates: Optional[List[Coordinates]] = Field(default=None, alias="viaCoordinates")
    requested_hours: Optional[int] = Field(default=None, alias="requestedHours")
    booking_for: BookingFor = Field(alias="bookingFor")
    passenger_name: Optional[str] = Field(default=None, alias="passengerName")
    passenger_phone: Optional[str] = Field(default=None, alias="passengerPhone")
    passenger_email: Optional[str] = Field(default=None, alias="passengerEmail")
    passenger_count: int = Field(alias="passengerCount")
    luggage_count: int = Field(alias="luggageCount")
    baby_seat: bool = Field(alias="babySeat")
    special_instructions: Optional[str] = Field(default=None, alias="specialInstructions")
    flight_number: Optional[str] = Field(default=None, alias="flightNumber")
    flight_airline: Optional[str] = Field(default=None, alias="flightAirline")
    no_flight_info: bool = Field(default=False, alias="noFlightInfo")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BookingReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    booking_id: str


class PaymentHandoff(BaseModel):
    model_config = ConfigDict(frozen=True)

    booking_id: str
    amount: str
    checkout_url: str


class AuthRedirect(BaseModel):
    model_config = ConfigDict(frozen=True)

    login_url: str
    draft: DraftBooking


class SubmissionOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    booking_id: str
    total_amount: str
    confirmed: bool = False
    payment: Optional[PaymentHandoff] = None


# ---- Collaborator protocols ----

class GeocodingProvider(Protocol):

    async def search(self, query: str, limit: int) -> List[AddressCandidate]:
        ...


class RoutingProvider(Protocol):

    async def calculate_distance(self, origin: Coordinates, destination: Coordinates) -> RouteEstimate:
        ...


class PriceCalculator(Protocol):

    async def calculate_price(self, request: PriceRequest) -> PriceQuote:
        ...


class PricingRuleCatalog(Protocol):

    async def available_rules(self, service_kind: ServiceKind) -> Dict[str, bool]:
        ...


class VehicleCatalog(Protocol):

    async def list_vehicle_types(self) -> List[VehicleType]:
        ...


class BookingGateway(Protocol):

    async def create_booking(self, payload: BookingPayload) -> BookingReceipt:
        ...


class IdentityProvider(Protocol):

    async def current_identity(self) -> Identity:
        ...

    def login_url(self, return_to: str) -> str:
        ...


class PaymentGateway(Protocol):

    async def start_checkout(self, booking_id: str, amount: str) -> PaymentHandoff:
        ...


class DraftStore(Protocol):

    async def save(self, draft: DraftBooking) -> bool:
        ...

    async def load(self) -> Optional[DraftBooking]:
        ...

    async def clear(self) -> bool:
        ...
