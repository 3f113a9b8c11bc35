import json
from datetime import date, time

import httpx
import pytest

from limoapp.services.booking_service import PlatformBookingClient
from limoapp.services.geolocation_service import TomTomService
from limoapp.services.identity_service import PlatformIdentityClient
from limoapp.services.payment_service import CheckoutLinkBuilder
from limoapp.services.pricing_service import PlatformPricingClient
from limoapp.workflow._state import (
    BookingFor,
    BookingPayload,
    Coordinates,
    PriceRequest,
    ServiceKind,
)
from limoapp.workflow.errors import (
    AuthenticationRequired,
    BookingError,
    CollaboratorError,
    PricingFailure,
    PricingFailureReason,
)

BASE_URL = "https://platform.test"


def mock_transport(status_code=200, body=None, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=body)

    return httpx.MockTransport(handler)


def price_request(**overrides) -> PriceRequest:
    fields = dict(
        vehicle_class="business_sedan",
        service_kind=ServiceKind.transfer,
        distance_miles=12.43,
        scheduled_date=date(2030, 5, 12),
        scheduled_time=time(18, 30),
        user_id="user-7",
    )
    fields.update(overrides)
    return PriceRequest(**fields)


def booking_payload() -> BookingPayload:
    return BookingPayload(
        vehicle_type_id="vt-2",
        vehicle_class="business_sedan",
        booking_type=ServiceKind.transfer,
        scheduled_date_time="2030-05-12T18:30:00",
        total_amount="85.00",
        pickup_address="JFK Airport",
        pickup_lat="40.6413",
        pickup_lon="-73.7781",
        booking_for=BookingFor.myself,
        passenger_count=1,
        luggage_count=0,
        baby_seat=False,
    )


class TestTomTomService:

    @pytest.mark.asyncio
    async def test_search_builds_candidates(self):
        seen = []
        body = {
            "results": [
                {
                    "id": "poi-1",
                    "poi": {"name": "JFK Airport"},
                    "address": {"freeformAddress": "Queens, NY 11430"},
                    "position": {"lat": 40.6413, "lon": -73.7781},
                },
                {"id": "addr-1", "address": {"freeformAddress": "350 5th Ave, New York, NY"}, "position": {"lat": 40.7484, "lon": -73.9857}},
                {"id": "broken", "address": {"freeformAddress": "No position"}},
            ]
        }
        service = TomTomService(api_key="k", base_url="https://tomtom.test", transport=mock_transport(body=body, seen=seen))

        candidates = await service.search("JFK", limit=5)

        assert [c.label for c in candidates] == ["JFK Airport, Queens, NY 11430", "350 5th Ave, New York, NY"]
        assert candidates[0].position == Coordinates(lat=40.6413, lon=-73.7781)
        params = seen[0].url.params
        assert params["key"] == "k" and params["limit"] == "5" and params["typeahead"] == "true"
        assert seen[0].url.path == "/search/2/search/JFK.json"

    @pytest.mark.asyncio
    async def test_route_converts_units(self):
        body = {"routes": [{"summary": {"lengthInMeters": 20000, "travelTimeInSeconds": 1501}}]}
        service = TomTomService(api_key="k", base_url="https://tomtom.test", transport=mock_transport(body=body))

        route = await service.calculate_distance(Coordinates(lat=40.64, lon=-73.77), Coordinates(lat=40.74, lon=-73.98))

        assert route.distance_km == 20.0
        assert route.duration_minutes == 26

    @pytest.mark.asyncio
    async def test_errors_become_collaborator_errors(self):
        service = TomTomService(api_key="k", base_url="https://tomtom.test", transport=mock_transport(status_code=500, body={}))

        with pytest.raises(CollaboratorError) as exc_info:
            await service.search("JFK")
        assert exc_info.value.status_code == 500

        with pytest.raises(CollaboratorError):
            await TomTomService(api_key="", transport=mock_transport(body={})).search("JFK")

    @pytest.mark.asyncio
    async def test_unreadable_route_body(self):
        html = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>Gateway hiccup</html>"))
        service = TomTomService(api_key="k", base_url="https://tomtom.test", transport=html)

        with pytest.raises(CollaboratorError):
            await service.calculate_distance(Coordinates(lat=1, lon=1), Coordinates(lat=2, lon=2))

    @pytest.mark.asyncio
    async def test_list_body_is_rejected(self):
        service = TomTomService(api_key="k", base_url="https://tomtom.test", transport=mock_transport(body=[]))

        with pytest.raises(CollaboratorError):
            await service.search("JFK")

    @pytest.mark.asyncio
    async def test_no_route(self):
        service = TomTomService(api_key="k", base_url="https://tomtom.test", transport=mock_transport(body={"routes": []}))

        with pytest.raises(CollaboratorError):
            await service.calculate_distance(Coordinates(lat=1, lon=1), Coordinates(lat=2, lon=2))


class TestPlatformPricingClient:

    @pytest.mark.asyncio
    async def test_available_rules_are_flags(self):
        seen = []
        body = {"business_sedan": {"baseRate": "50"}, "suv": None}
        client = PlatformPricingClient(base_url=BASE_URL, transport=mock_transport(body=body, seen=seen))

        assert await client.available_rules(ServiceKind.transfer) == {"business_sedan": True, "suv": False}
        assert seen[0].url.params["serviceType"] == "transfer"

    @pytest.mark.asyncio
    async def test_calculate_price_request_and_breakdown(self):
        seen = []
        body = {"price": "101.83", "breakdown": {"total": 113.15, "discount": 11.32, "finalTotal": 101.83}}
        client = PlatformPricingClient(base_url=BASE_URL, transport=mock_transport(body=body, seen=seen))

        quote = await client.calculate_price(price_request())

        sent = json.loads(seen[0].content)
        assert sent == {
            "vehicleType": "business_sedan",
            "serviceType": "transfer",
            "date": "2030-05-12",
            "time": "18:30",
            "distance": 12.43,
            "userId": "user-7",
        }
        assert quote.price == "101.83"
        assert quote.breakdown.regular_price == "113.15"
        assert quote.breakdown.discount_amount == "11.32"

    @pytest.mark.asyncio
    async def test_hourly_sends_hours(self):
        seen = []
        client = PlatformPricingClient(base_url=BASE_URL, transport=mock_transport(body={"price": "300.00"}, seen=seen))

        await client.calculate_price(price_request(service_kind=ServiceKind.hourly, distance_miles=None, hours=4, user_id=None))

        sent = json.loads(seen[0].content)
        assert sent["hours"] == 4
        assert "distance" not in sent and "userId" not in sent

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code, reason",
        [
            (404, PricingFailureReason.no_rule),
            (400, PricingFailureReason.invalid_input),
            (500, PricingFailureReason.service_error),
        ],
    )
    async def test_failures_carry_reason(self, status_code, reason):
        client = PlatformPricingClient(base_url=BASE_URL, transport=mock_transport(status_code=status_code, body={"message": "nope"}))

        with pytest.raises(PricingFailure) as exc_info:
            await client.calculate_price(price_request())

        assert exc_info.value.reason is reason

    @pytest.mark.asyncio
    async def test_missing_price_is_bad_response(self):
        client = PlatformPricingClient(base_url=BASE_URL, transport=mock_transport(body={"breakdown": {}}))

        with pytest.raises(PricingFailure) as exc_info:
            await client.calculate_price(price_request())

        assert exc_info.value.reason is PricingFailureReason.bad_response


class TestPlatformBookingClient:

    @pytest.mark.asyncio
    async def test_create_booking(self):
        seen = []
        client = PlatformBookingClient(
            base_url=BASE_URL,
            auth_headers={"cookie": "connect.sid=abc"},
            transport=mock_transport(status_code=201, body={"id": 42}, seen=seen),
        )

        receipt = await client.create_booking(booking_payload())

        assert receipt.booking_id == "42"
        assert seen[0].headers["cookie"] == "connect.sid=abc"
        sent = json.loads(seen[0].content)
        assert sent["vehicleTypeId"] == "vt-2"
        assert "destinationAddress" not in sent

    @pytest.mark.asyncio
    async def test_unauthorized_booking(self):
        client = PlatformBookingClient(base_url=BASE_URL, transport=mock_transport(status_code=401, body={}))

        with pytest.raises(AuthenticationRequired):
            await client.create_booking(booking_payload())

    @pytest.mark.asyncio
    async def test_rejected_booking_keeps_message(self):
        client = PlatformBookingClient(
            base_url=BASE_URL, transport=mock_transport(status_code=409, body={"message": "Vehicle unavailable"})
        )

        with pytest.raises(BookingError) as exc_info:
            await client.create_booking(booking_payload())

        assert str(exc_info.value) == "Vehicle unavailable"
        assert exc_info.value.status_code == 409
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_vehicle_types(self):
        body = [
            {"id": "vt-1", "name": "Business Sedan", "passengerCapacity": 3, "luggageCapacity": "2 large", "isActive": True},
            {"id": "vt-2", "name": "SUV", "passengerCapacity": 6},
        ]
        client = PlatformBookingClient(base_url=BASE_URL, transport=mock_transport(body=body))

        vehicles = await client.list_vehicle_types()

        assert [v.name for v in vehicles] == ["Business Sedan", "SUV"]
        assert vehicles[0].luggage_capacity == "2 large"

    @pytest.mark.asyncio
    async def test_vehicle_types_unavailable(self):
        client = PlatformBookingClient(base_url=BASE_URL, transport=mock_transport(status_code=503, body={}))

        with pytest.raises(CollaboratorError):
            await client.list_vehicle_types()


class TestPlatformIdentityClient:

    @pytest.mark.asyncio
    async def test_no_credentials_is_anonymous(self):
        seen = []
        client = PlatformIdentityClient(base_url=BASE_URL, transport=mock_transport(body={}, seen=seen))

        identity = await client.current_identity()

        assert not identity.is_authenticated
        assert seen == []

    @pytest.mark.asyncio
    async def test_expired_session_is_anonymous(self):
        client = PlatformIdentityClient(
            base_url=BASE_URL, auth_headers={"cookie": "old"}, transport=mock_transport(status_code=401, body={})
        )

        assert not (await client.current_identity()).is_authenticated

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role, deferred", [("passenger", True), ("admin", False)])
    async def test_signed_in_user(self, role, deferred):
        body = {
            "id": 7,
            "firstName": "Ada",
            "lastName": "Lovelace",
            "email": "ada@example.com",
            "phone": "+1 555 0100",
            "payLaterEnabled": True,
            "role": role,
        }
        client = PlatformIdentityClient(base_url=BASE_URL, auth_headers={"cookie": "ok"}, transport=mock_transport(body=body))

        identity = await client.current_identity()

        assert identity.is_authenticated
        assert identity.user_id == "7"
        assert identity.full_name == "Ada Lovelace"
        assert identity.deferred_payment is deferred

    def test_login_url_carries_return_path(self):
        client = PlatformIdentityClient(base_url=BASE_URL, login_path="/mobile-login?role=passenger")

        assert client.login_url("/booking") == f"{BASE_URL}/mobile-login?role=passenger&returnTo=%2Fbooking"


@pytest.mark.asyncio
async def test_checkout_link():
    handoff = await CheckoutLinkBuilder(base_url=BASE_URL, checkout_path="/checkout").start_checkout("42", "85.00")

    assert handoff.checkout_url == f"{BASE_URL}/checkout?bookingId=42&amount=85.00"
    assert handoff.amount == "85.00"
