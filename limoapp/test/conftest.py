import asyncio
from datetime import date, time
from typing import Dict, List, Optional, Union

import pytest

from limoapp.services.payment_service import CheckoutLinkBuilder
from limoapp.workflow._state import (
    AddressCandidate,
    AddressField,
    BookingPayload,
    BookingReceipt,
    Coordinates,
    Identity,
    InMemoryDraftStore,
    PriceQuote,
    PriceRequest,
    RouteEstimate,
    ServiceKind,
    VehicleType,
)
from limoapp.workflow.address import AddressResolutionAdapter
from limoapp.workflow.pricing import PricingResolver
from limoapp.workflow.workflow import BookingWorkflow

PICKUP_DATE = date(2030, 5, 12)
PICKUP_TIME = time(18, 30)

JFK = AddressCandidate(id="jfk", label="JFK Airport, Queens, NY", position=Coordinates(lat=40.6413, lon=-73.7781))
MIDTOWN = AddressCandidate(id="mid", label="350 5th Ave, New York, NY", position=Coordinates(lat=40.7484, lon=-73.9857))
NEWARK = AddressCandidate(id="ewr", label="Newark Airport, NJ", position=Coordinates(lat=40.6895, lon=-74.1745))


class FakeGeocoder:
    def __init__(self, results: Optional[Dict[str, List[AddressCandidate]]] = None, delay: float = 0.0, error: Optional[Exception] = None):
        self.results = results or {}
        self.delay = delay
        self.error = error
        self.queries: List[str] = []

    async def search(self, query: str, limit: int = 5) -> List[AddressCandidate]:
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.results.get(query, [])[:limit]


class FakeRouting:
    def __init__(self, distance_km: float = 20.0, duration_minutes: int = 25, error: Optional[Exception] = None):
        self.estimate = RouteEstimate(distance_km=distance_km, duration_minutes=duration_minutes)
        self.error = error
        self.calls = []
        self.gate: Optional[asyncio.Event] = None

    async def calculate_distance(self, origin: Coordinates, destination: Coordinates) -> RouteEstimate:
        self.calls.append((origin, destination))
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise self.error
        return self.estimate


class FakeRuleCatalog:
    def __init__(self, rules: Optional[Dict[str, bool]] = None):
        self.rules = rules if rules is not None else {"business_sedan": True, "first_class_sedan": True, "suv": True}
        self.calls: List[ServiceKind] = []

    async def available_rules(self, service_kind: ServiceKind) -> Dict[str, bool]:
        self.calls.append(service_kind)
        return dict(self.rules)


class FakeVehicleCatalog:
    def __init__(self, vehicle_types: Optional[List[VehicleType]] = None):
        self.vehicle_types = vehicle_types if vehicle_types is not None else [
            VehicleType(id="vt-1", name="First-Class Sedan", passenger_capacity=3),
            VehicleType(id="vt-2", name="Business Sedan", passenger_capacity=3),
            VehicleType(id="vt-3", name="Sprinter Van", passenger_capacity=12),
        ]

    async def list_vehicle_types(self) -> List[VehicleType]:
        return list(self.vehicle_types)


class FakeCalculator:
    def __init__(self, prices: Optional[Dict[str, Union[str, Exception]]] = None):
        self.prices = prices if prices is not None else {"business_sedan": "85.00", "first_class_sedan": "120.50"}
        self.requests: List[PriceRequest] = []

    async def calculate_price(self, request: PriceRequest) -> PriceQuote:
        self.requests.append(request)
        price = self.prices.get(request.vehicle_class)
        if isinstance(price, Exception):
            raise price
        if price is None:
            raise RuntimeError(f"no price for {request.vehicle_class}")
        return PriceQuote(vehicle_class=request.vehicle_class, price=price)


class FakeBookings:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.payloads: List[BookingPayload] = []

    async def create_booking(self, payload: BookingPayload) -> BookingReceipt:
        self.payloads.append(payload)
        if self.error:
            raise self.error
        return BookingReceipt(booking_id="bk-1001")


class FakeIdentityProvider:
    def __init__(self, identity: Optional[Identity] = None):
        self.identity = identity or Identity.anonymous()

    async def current_identity(self) -> Identity:
        return self.identity

    def login_url(self, return_to: str) -> str:
        return f"https://limo.test/mobile-login?role=passenger&returnTo={return_to}"


SIGNED_IN = Identity(
    is_authenticated=True,
    user_id="user-7",
    first_name="Ada",
    last_name="Lovelace",
    phone="+1 555 0100",
    email="ada@example.com",
)


@pytest.fixture
def signed_in_identity() -> Identity:
    return SIGNED_IN


@pytest.fixture
def draft_store():
    return InMemoryDraftStore()


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def routing():
    return FakeRouting()


@pytest.fixture
def rule_catalog():
    return FakeRuleCatalog()


@pytest.fixture
def vehicle_catalog():
    return FakeVehicleCatalog()


@pytest.fixture
def calculator():
    return FakeCalculator()


@pytest.fixture
def bookings():
    return FakeBookings()


@pytest.fixture
def identity_provider():
    return FakeIdentityProvider()


@pytest.fixture
def make_workflow(draft_store, geocoder, routing, rule_catalog, vehicle_catalog, calculator, bookings, identity_provider):
    def _make(**overrides) -> BookingWorkflow:
        collaborators = dict(
            store=draft_store,
            address=AddressResolutionAdapter(geocoder, debounce_seconds=0),
            routing=routing,
            pricing=PricingResolver(calculator),
            rule_catalog=rule_catalog,
            vehicle_catalog=vehicle_catalog,
            bookings=bookings,
            identity_provider=identity_provider,
            payments=CheckoutLinkBuilder(base_url="https://limo.test", checkout_path="/checkout"),
        )
        collaborators.update(overrides)
        return BookingWorkflow(**collaborators)

    return _make


@pytest.fixture
def workflow(make_workflow) -> BookingWorkflow:
    return make_workflow()


@pytest.fixture
async def trip_ready(workflow) -> BookingWorkflow:
    """A transfer JFK -> Midtown with both addresses selected and a schedule set."""
    await workflow.select_suggestion(AddressField.origin(), JFK)
    await workflow.select_suggestion(AddressField.destination(), MIDTOWN)
    await workflow.set_schedule(PICKUP_DATE, PICKUP_TIME)
    return workflow


@pytest.fixture
def places() -> Dict[str, AddressCandidate]:
    return {"jfk": JFK, "midtown": MIDTOWN, "newark": NEWARK}


@pytest.fixture
def pickup_at():
    return PICKUP_DATE, PICKUP_TIME
