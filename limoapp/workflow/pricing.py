import asyncio
import logging
import re
from collections import defaultdict
from datetime import date, time
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Mapping, Optional, Union

import httpx
from pydantic import BaseModel, Field

from ._state.domain import (
    OfferedVehicle,
    PriceBreakdown,
    PriceCalculator,
    PriceQuote,
    PriceRequest,
    ServiceKind,
    VehicleType,
)
from .errors import PricingFailure, PricingFailureReason

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[\s\-]+")
_DISALLOWED = re.compile(r"[^a-z0-9_]")


def get_vehicle_slug(vehicle_name: str) -> str:
    """
    Convert a vehicle display name to its pricing-rule key.

    "Business Sedan" -> "business_sedan", "First-Class Sedan" -> "first_class_sedan".
    This is the only join between the vehicle catalog and the pricing rules, so
    every call site must go through here.
    """
    collapsed = _SEPARATORS.sub("_", vehicle_name.strip().lower())
    return _DISALLOWED.sub("", collapsed)


def find_slug_collisions(vehicle_types: Iterable[VehicleType]) -> Dict[str, List[str]]:
    names_by_slug: Dict[str, List[str]] = defaultdict(list)
    for vehicle in vehicle_types:
        names_by_slug[get_vehicle_slug(vehicle.name)].append(vehicle.name)
    return {slug: names for slug, names in names_by_slug.items() if len(set(names)) > 1}


def eligible_classes(vehicle_types: Iterable[VehicleType], active_rules: Mapping[str, bool]) -> List[str]:
    """Classes known to the catalog that also have an active rule; nothing else is priced."""
    known = {get_vehicle_slug(vehicle.name) for vehicle in vehicle_types if vehicle.is_active}
    return sorted(slug for slug in known if active_rules.get(slug))


def parse_price(value) -> Optional[Decimal]:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price


def rank_offers(vehicle_types: Iterable[VehicleType], prices: Mapping[str, str]) -> List[OfferedVehicle]:
    """Vehicles whose class was priced, cheapest first."""
    offers = []
    for vehicle in vehicle_types:
        if not vehicle.is_active:
            continue
        slug = get_vehicle_slug(vehicle.name)
        if slug not in prices:
            continue
        offers.append(
            OfferedVehicle(
                vehicle_type_id=vehicle.id,
                name=vehicle.name,
                vehicle_class=slug,
                price=prices[slug],
                passenger_capacity=vehicle.passenger_capacity,
                luggage_capacity=vehicle.luggage_capacity,
                image_url=vehicle.image_url,
            )
        )
    return sorted(offers, key=lambda offer: (Decimal(offer.price), offer.name))


class PricingOutcome(BaseModel):
    prices: Dict[str, str] = Field(default_factory=dict)
    breakdowns: Dict[str, PriceBreakdown] = Field(default_factory=dict)
    failures: Dict[str, PricingFailureReason] = Field(default_factory=dict)


class PricingResolver:
    """Prices every requested vehicle class concurrently and drops the ones that fail."""

    def __init__(self, calculator: PriceCalculator):
        self.calculator = calculator

    async def price_all(
        self,
        vehicle_classes: Iterable[str],
        service_kind: ServiceKind,
        distance_or_duration: Union[float, int],
        scheduled_date: date,
        scheduled_time: time,
        user_id: Optional[str] = None,
    ) -> PricingOutcome:
        requests = [
            self._build_request(vehicle_class, service_kind, distance_or_duration, scheduled_date, scheduled_time, user_id)
            for vehicle_class in sorted(set(vehicle_classes))
        ]

        # Wait for every class; a failure only removes that class
        results = await asyncio.gather(*(self._price_one(request) for request in requests))

        outcome = PricingOutcome()
        for result in results:
            if isinstance(result, PricingFailure):
                outcome.failures[result.vehicle_class] = result.reason
                continue
            outcome.prices[result.vehicle_class] = result.price
            outcome.breakdowns[result.vehicle_class] = result.breakdown or PriceBreakdown(
                regular_price=result.price, final_price=result.price
            )

        if outcome.failures:
            logger.warning(
                f"Pricing omitted {len(outcome.failures)} of {len(requests)} vehicle classes: "
                + ", ".join(f"{cls}={reason.value}" for cls, reason in sorted(outcome.failures.items()))
            )
        return outcome

    def _build_request(self, vehicle_class, service_kind, distance_or_duration, scheduled_date, scheduled_time, user_id) -> PriceRequest:
        if service_kind is ServiceKind.transfer:
            return PriceRequest(
                vehicle_class=vehicle_class,
                service_kind=service_kind,
                distance_miles=float(distance_or_duration),
                scheduled_date=scheduled_date,
                scheduled_time=scheduled_time,
                user_id=user_id,
            )
        return PriceRequest(
            vehicle_class=vehicle_class,
            service_kind=service_kind,
            hours=int(distance_or_duration),
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
            user_id=user_id,
        )

    async def _price_one(self, request: PriceRequest) -> Union[PriceQuote, PricingFailure]:
        vehicle_class = request.vehicle_class
        try:
            quote = await self.calculator.calculate_price(request)
        except PricingFailure as failure:
            logger.warning(f"Failed to calculate price for {vehicle_class}: {failure}")
            return failure
        except httpx.TransportError as e:
            logger.warning(f"Network error pricing {vehicle_class}: {e}")
            return PricingFailure(vehicle_class, PricingFailureReason.network_error, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error pricing {vehicle_class}: {e}")
            return PricingFailure(vehicle_class, PricingFailureReason.service_error, str(e))

        if parse_price(quote.price) is None:
            logger.warning(f"Discarding unusable price {quote.price!r} for {vehicle_class}")
            return PricingFailure(vehicle_class, PricingFailureReason.bad_response, repr(quote.price))
        return quote.model_copy(update={"vehicle_class": vehicle_class})
