import logging
from datetime import date, time, timezone, tzinfo
from typing import List, Optional, Tuple, Union

from ._state.domain import (
    AddressCandidate,
    AddressField,
    AuthRedirect,
    BookingFor,
    BookingGateway,
    BookingPayload,
    DraftBooking,
    DraftStore,
    Identity,
    IdentityProvider,
    OfferedVehicle,
    PaymentGateway,
    PricingRuleCatalog,
    QuoteResult,
    RoutingProvider,
    ServiceKind,
    SubmissionOutcome,
    TripSpecification,
    VehicleCatalog,
    VehicleType,
    WorkflowStep,
)
from . import transitions
from .address import AddressResolutionAdapter
from .auth_interrupt import AuthInterruptHandler
from .errors import (
    AuthenticationRequired,
    BookingError,
    CollaboratorError,
    QuoteError,
    TripValidationError,
    ValidationKind,
    WorkflowError,
)
from .pricing import PricingResolver, eligible_classes, find_slug_collisions, rank_offers

logger = logging.getLogger(__name__)

# Drafts are autosaved only before the sign-in checkpoint
_AUTOSAVE_STEPS = (WorkflowStep.trip_input, WorkflowStep.vehicle_selection)


def build_booking_payload(
    draft: DraftBooking, identity: Identity, service_timezone: tzinfo = timezone.utc
) -> BookingPayload:
    trip = draft.trip
    offer = draft.selected_offer()
    passenger = draft.passenger

    if passenger.booking_for is BookingFor.myself:
        name = passenger.passenger_name or identity.full_name
        phone = passenger.passenger_phone or identity.phone
        email = passenger.passenger_email or identity.email
    else:
        name, phone, email = passenger.passenger_name, passenger.passenger_phone, passenger.passenger_email

    fields = dict(
        vehicle_type_id=offer.vehicle_type_id,
        vehicle_class=offer.vehicle_class,
        booking_type=trip.service_kind,
        scheduled_date_time=trip.scheduled_at(service_timezone),
        total_amount=offer.price,
        pickup_address=trip.origin.display_address,
        pickup_lat=str(trip.origin.coordinates.lat),
        pickup_lon=str(trip.origin.coordinates.lon),
        booking_for=passenger.booking_for,
        passenger_name=name or None,
        passenger_phone=phone or None,
        passenger_email=email or None,
        passenger_count=passenger.passenger_count,
        luggage_count=passenger.luggage_count,
        baby_seat=passenger.baby_seat,
        special_instructions=passenger.special_instructions or None,
        flight_number=passenger.flight_number or None,
        flight_airline=passenger.flight_name or None,
        no_flight_info=passenger.no_flight_info,
    )

    if trip.service_kind is ServiceKind.transfer:
        fields.update(
            destination_address=trip.destination.display_address,
            destination_lat=str(trip.destination.coordinates.lat),
            destination_lon=str(trip.destination.coordinates.lon),
        )
        vias = [via for via in trip.via_points if via.has_text]
        if vias:
            fields.update(
                via_points=[via.display_address for via in vias],
                via_coordinates=[via.coordinates for via in vias],
            )
    else:
        fields["requested_hours"] = trip.duration_hours

    return BookingPayload(**fields)


class BookingWorkflow:
    """
    Drives one customer's booking from trip input to submission.

    The current ``DraftBooking`` is replaced, never mutated, by each operation;
    an operation that raises leaves the previous draft in place.
    """

    def __init__(
        self,
        store: DraftStore,
        address: AddressResolutionAdapter,
        routing: RoutingProvider,
        pricing: PricingResolver,
        rule_catalog: PricingRuleCatalog,
        vehicle_catalog: VehicleCatalog,
        bookings: BookingGateway,
        identity_provider: IdentityProvider,
        payments: PaymentGateway,
        auth_handler: Optional[AuthInterruptHandler] = None,
        service_timezone: tzinfo = timezone.utc,
    ):
        self.store = store
        self.address = address
        self.routing = routing
        self.pricing = pricing
        self.rule_catalog = rule_catalog
        self.vehicle_catalog = vehicle_catalog
        self.bookings = bookings
        self.identity_provider = identity_provider
        self.payments = payments
        self.auth_handler = auth_handler or AuthInterruptHandler(store, identity_provider)
        self.service_timezone = service_timezone

        self._draft = DraftBooking()
        self._draft_started = False
        self._quote_sequence = 0

    @property
    def draft(self) -> DraftBooking:
        return self._draft

    @property
    def step(self) -> WorkflowStep:
        return self._draft.step

    @property
    def quote(self) -> Optional[QuoteResult]:
        return self._draft.quote

    def offered_vehicles(self) -> Tuple[OfferedVehicle, ...]:
        return self._draft.offered

    # ---- persistence ----

    async def _autosave(self):
        if self._draft_started and self._draft.step in _AUTOSAVE_STEPS:
            await self.store.save(self._draft)

    async def _apply(self, draft: DraftBooking, invalidates_quote: bool = False) -> DraftBooking:
        if invalidates_quote:
            # An edit makes any quote still in flight describe the wrong trip
            self._quote_sequence += 1
        self._draft = draft
        await self._autosave()
        return draft

    async def restore(self) -> Optional[DraftBooking]:
        """Reload the saved draft, e.g. on page load or when returning from sign-in."""
        identity = await self._current_identity()
        draft = await self.auth_handler.resume(identity)
        if draft is None:
            return None
        # Anything still pricing belongs to the draft being replaced
        self._quote_sequence += 1
        self._draft = draft
        self._draft_started = True
        logger.info(f"Restored draft at step {draft.step.name}")
        return draft

    async def _current_identity(self) -> Identity:
        try:
            return await self.identity_provider.current_identity()
        except CollaboratorError as e:
            logger.warning(f"Identity lookup failed, treating customer as signed out: {e}")
            return Identity.anonymous()

    # ---- step 1: trip input ----

    async def set_service_kind(self, service_kind: ServiceKind) -> DraftBooking:
        return await self._apply(transitions.set_service_kind(self._draft, service_kind), invalidates_quote=True)

    async def type_address(self, field: AddressField, text: str) -> List[AddressCandidate]:
        await self._apply(transitions.type_address(self._draft, field, text), invalidates_quote=True)
        return await self.address.suggest(field, text)

    async def select_suggestion(self, field: AddressField, candidate: AddressCandidate) -> DraftBooking:
        draft = transitions.resolve_address(self._draft, field, candidate)
        self.address.select(field, candidate)
        return await self._apply(draft, invalidates_quote=True)

    async def add_via_point(self) -> DraftBooking:
        return await self._apply(transitions.add_via_point(self._draft), invalidates_quote=True)

    async def remove_via_point(self, index: int) -> DraftBooking:
        draft = transitions.remove_via_point(self._draft, index)
        self.address.forget_via_points()
        return await self._apply(draft, invalidates_quote=True)

    async def update_via_point(self, index: int, text: str) -> List[AddressCandidate]:
        return await self.type_address(AddressField.via(index), text)

    async def set_schedule(self, scheduled_date: Optional[date], scheduled_time: Optional[time]) -> DraftBooking:
        return await self._apply(
            transitions.set_schedule(self._draft, scheduled_date, scheduled_time), invalidates_quote=True
        )

    async def set_duration(self, hours: Optional[int]) -> DraftBooking:
        return await self._apply(transitions.set_duration(self._draft, hours), invalidates_quote=True)

    async def get_quote(self) -> DraftBooking:
        """
        Validate the trip, price every eligible vehicle class and move to step 2.

        Each call takes a new sequence number; if another quote request (or a trip
        edit) happens while this one is in flight, this result is discarded and
        the current draft is returned unchanged.
        """
        transitions._require_step(self._draft, "get quote", WorkflowStep.trip_input)
        trip = self._draft.trip
        transitions.validate_trip(trip)

        self._quote_sequence += 1
        sequence = self._quote_sequence
        if not self._draft_started:
            self._draft_started = True
            await self._autosave()

        try:
            quote, offered = await self._compute_quote(trip)
        except WorkflowError:
            if self._is_stale(sequence):
                return self._draft
            raise

        if self._is_stale(sequence):
            return self._draft

        draft = await self._apply(transitions.with_quote(self._draft, quote, offered))
        logger.info(f"Quote #{sequence} offers {len(offered)} vehicle classes")
        return draft

    def _is_stale(self, sequence: int) -> bool:
        if sequence == self._quote_sequence:
            return False
        logger.info(f"Discarding superseded quote #{sequence} (latest is #{self._quote_sequence})")
        return True

    async def _compute_quote(self, trip: TripSpecification) -> Tuple[QuoteResult, List[OfferedVehicle]]:
        kind = trip.service_kind
        try:
            if kind is ServiceKind.transfer:
                route = await self.routing.calculate_distance(trip.origin.coordinates, trip.destination.coordinates)
                distance_km, duration_minutes = route.distance_km, route.duration_minutes
                distance_or_duration = route.distance_miles
            else:
                distance_km, duration_minutes = 0.0, trip.duration_hours * 60
                distance_or_duration = trip.duration_hours

            active_rules = await self.rule_catalog.available_rules(kind)
            vehicle_types = await self._load_vehicle_types()
        except CollaboratorError as e:
            logger.error(f"Quote failed: {e}")
            raise QuoteError(str(e)) from e

        if not any(active_rules.values()):
            raise TripValidationError(ValidationKind.no_pricing_configured)

        classes = eligible_classes(vehicle_types, active_rules)
        if not classes:
            logger.warning(f"No catalog vehicle matches an active {kind.value} pricing rule: {sorted(active_rules)}")
            raise TripValidationError(
                ValidationKind.no_pricing_configured, "No vehicles are available for this trip."
            )

        identity = await self._current_identity()
        outcome = await self.pricing.price_all(
            classes, kind, distance_or_duration, trip.scheduled_date, trip.scheduled_time, identity.user_id
        )
        if not outcome.prices:
            raise TripValidationError(
                ValidationKind.no_pricing_configured, "No vehicles are available for this trip."
            )

        quote = QuoteResult(
            service_kind=kind,
            distance_km=distance_km,
            duration_minutes=duration_minutes,
            prices_by_vehicle_class=outcome.prices,
            price_breakdowns=outcome.breakdowns,
        )
        return quote, rank_offers(vehicle_types, outcome.prices)

    async def _load_vehicle_types(self) -> List[VehicleType]:
        vehicle_types = await self.vehicle_catalog.list_vehicle_types()
        for slug, names in find_slug_collisions(vehicle_types).items():
            logger.warning(f"Vehicle names {names} share pricing key {slug!r}")
        return vehicle_types

    # ---- step 2: vehicle selection ----

    async def select_vehicle(self, vehicle_class: str) -> DraftBooking:
        return await self._apply(transitions.select_vehicle(self._draft, vehicle_class))

    async def continue_to_details(self) -> Union[DraftBooking, AuthRedirect]:
        transitions._require_step(self._draft, "continue", WorkflowStep.vehicle_selection)
        identity = await self._current_identity()
        if not identity.is_authenticated:
            return await self.auth_handler.interrupt(self._draft)
        self._draft = transitions.advance_to_details(self._draft, identity)
        return self._draft

    # ---- step 3: passenger details ----

    async def update_passenger(self, **changes) -> DraftBooking:
        self._draft = transitions.update_passenger(self._draft, **changes)
        return self._draft

    async def set_booking_for(self, booking_for: BookingFor) -> DraftBooking:
        if booking_for is BookingFor.someone_else:
            draft = transitions.update_passenger(
                self._draft, booking_for=booking_for, passenger_name=None, passenger_phone=None, passenger_email=None
            )
        else:
            draft = transitions.update_passenger(self._draft, booking_for=booking_for)
            draft = transitions.prefill_passenger(draft, await self._current_identity())
        self._draft = draft
        return draft

    async def set_no_flight_info(self, enabled: bool) -> DraftBooking:
        self._draft = transitions.set_no_flight_info(self._draft, enabled)
        return self._draft

    async def submit(self) -> Union[SubmissionOutcome, AuthRedirect]:
        transitions._require_step(self._draft, "submit", WorkflowStep.passenger_details)
        identity = await self._current_identity()
        if not identity.is_authenticated:
            return await self.auth_handler.interrupt(self._draft)

        transitions.validate_passenger(self._draft)
        payload = build_booking_payload(self._draft, identity, self.service_timezone)

        try:
            receipt = await self.bookings.create_booking(payload)
        except AuthenticationRequired:
            return await self.auth_handler.interrupt(self._draft)
        except BookingError as e:
            logger.warning(f"Booking submission failed: {e}")
            raise

        # Never leave a submitted booking behind as a resumable draft
        self._draft = transitions.mark_submitted(self._draft)
        if not await self.store.clear():
            logger.error(f"Draft not cleared after booking {receipt.booking_id}, marking it submitted")
            await self.store.save(self._draft)
        self._draft_started = False
        logger.info(f"Booking {receipt.booking_id} created for {payload.total_amount}")

        if identity.deferred_payment:
            return SubmissionOutcome(booking_id=receipt.booking_id, total_amount=payload.total_amount, confirmed=True)

        handoff = await self.payments.start_checkout(receipt.booking_id, payload.total_amount)
        return SubmissionOutcome(booking_id=receipt.booking_id, total_amount=payload.total_amount, payment=handoff)

    # ---- navigation ----

    async def back(self) -> DraftBooking:
        return await self._apply(transitions.go_back(self._draft))
