import json
import logging
from datetime import date, time
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Dict, List, Literal, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from limoapp.workflow._state.domain import PriceBreakdown, PriceQuote, PriceRequest, ServiceKind
from limoapp.workflow.errors import CollaboratorError, PricingFailure, PricingFailureReason

from .platform_client import PlatformClient, error_message

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def to_money(value: Decimal) -> str:
    return str(value.quantize(CENTS, rounding=ROUND_HALF_UP))


class PlatformPricingClient(PlatformClient):
    """Pricing rules and price calculation served by the platform API."""

    async def available_rules(self, service_kind: ServiceKind) -> Dict[str, bool]:
        try:
            response = await self._request("GET", "/api/pricing-rules/available", params={"serviceType": service_kind.value})
            response.raise_for_status()
            rules = response.json()
        except httpx.HTTPStatusError as e:
            raise CollaboratorError(
                error_message(e.response, "Failed to fetch pricing rules"), e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Pricing rules unavailable: {e}") from e
        except ValueError as e:
            raise CollaboratorError(f"Malformed pricing rules response: {e}") from e

        if not isinstance(rules, dict):
            raise CollaboratorError("Malformed pricing rules response")
        return {vehicle_class: bool(rule) for vehicle_class, rule in rules.items()}

    async def calculate_price(self, request: PriceRequest) -> PriceQuote:
        body = {
            "vehicleType": request.vehicle_class,
            "serviceType": request.service_kind.value,
            "date": request.scheduled_date.isoformat(),
            "time": request.scheduled_time.strftime("%H:%M"),
        }
        if request.service_kind is ServiceKind.transfer:
            body["distance"] = request.distance_miles
        else:
            body["hours"] = request.hours
        if request.user_id:
            body["userId"] = request.user_id

        try:
            response = await self._request("POST", "/api/calculate-price", json=body)
        except httpx.TransportError as e:
            raise PricingFailure(request.vehicle_class, PricingFailureReason.network_error, str(e)) from e

        if response.status_code == 404:
            raise PricingFailure(request.vehicle_class, PricingFailureReason.no_rule)
        if response.status_code == 400:
            raise PricingFailure(
                request.vehicle_class, PricingFailureReason.invalid_input, error_message(response, "")
            )
        if response.is_error:
            raise PricingFailure(
                request.vehicle_class, PricingFailureReason.service_error, f"HTTP {response.status_code}"
            )

        try:
            data = response.json()
            price = data["price"]
        except (ValueError, KeyError, TypeError) as e:
            raise PricingFailure(request.vehicle_class, PricingFailureReason.bad_response, str(e)) from e

        return PriceQuote(
            vehicle_class=request.vehicle_class,
            price=str(price),
            breakdown=self._breakdown(data.get("breakdown"), str(price)),
        )

    @staticmethod
    def _breakdown(raw, price: str) -> Optional[PriceBreakdown]:
        if not isinstance(raw, dict):
            return None
        try:
            regular = Decimal(str(raw.get("total", price)))
            discount = Decimal(str(raw.get("discount", 0) or 0))
        except ArithmeticError:
            return None
        return PriceBreakdown(regular_price=to_money(regular), discount_amount=to_money(discount), final_price=price)


# ---- In-process rule evaluation ----

class DistanceTier(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    miles: Decimal = Decimal(0)
    rate_per_mile: Decimal = Field(alias="ratePerMile")
    is_remaining: bool = Field(default=False, alias="isRemaining")


class SurgeWindow(BaseModel):
    """``day_of_week`` counts from Sunday = 0."""

    model_config = ConfigDict(populate_by_name=True)

    day_of_week: int = Field(alias="dayOfWeek", ge=0, le=6)
    start_time: time = Field(alias="startTime")
    end_time: time = Field(alias="endTime")
    multiplier: Decimal = Field(gt=0)

    def applies(self, scheduled_date: date, scheduled_time: time) -> bool:
        day = (scheduled_date.weekday() + 1) % 7
        at = scheduled_time.replace(second=0, microsecond=0)
        return day == self.day_of_week and self.start_time <= at <= self.end_time


class MeetAndGreet(BaseModel):
    enabled: bool = False
    charge: Decimal = Decimal(0)


class PricingRule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    vehicle_type: str = Field(alias="vehicleType")
    service_type: ServiceKind = Field(alias="serviceType")
    is_active: bool = Field(default=True, alias="isActive")
    base_rate: Decimal = Field(default=Decimal(0), alias="baseRate")
    per_mile_rate: Optional[Decimal] = Field(default=None, alias="perMileRate")
    hourly_rate: Decimal = Field(default=Decimal(0), alias="hourlyRate")
    minimum_hours: int = Field(default=0, alias="minimumHours")
    minimum_fare: Optional[Decimal] = Field(default=None, alias="minimumFare")
    gratuity_percent: Optional[Decimal] = Field(default=None, alias="gratuityPercent")
    distance_tiers: List[DistanceTier] = Field(default_factory=list, alias="distanceTiers")
    meet_and_greet: Optional[MeetAndGreet] = Field(default=None, alias="meetAndGreet")
    surge_pricing: List[SurgeWindow] = Field(default_factory=list, alias="surgePricing")
    effective_start: Optional[date] = Field(default=None, alias="effectiveStart")
    effective_end: Optional[date] = Field(default=None, alias="effectiveEnd")

    def in_effect(self, today: date) -> bool:
        if not self.is_active:
            return False
        if self.effective_start and self.effective_start > today:
            return False
        if self.effective_end and self.effective_end < today:
            return False
        return True


class CustomerDiscount(BaseModel):
    type: Literal["percentage", "fixed"]
    value: Decimal = Field(ge=0)


class PricingRuleSet(BaseModel):
    rules: List[PricingRule] = Field(default_factory=list)
    discounts: Dict[str, CustomerDiscount] = Field(default_factory=dict)


def load_pricing_rules(path: Path) -> PricingRuleSet:
    with open(path, "r") as f:
        data = json.load(f)
    rule_set = PricingRuleSet.model_validate(data)
    logger.info(f"Loaded {len(rule_set.rules)} pricing rules from {path}")
    return rule_set


class RuleBasedPriceCalculator:
    """
    Evaluates pricing rules locally; serves as both rule catalog and price calculator.

    Transfer: base rate plus distance fare (progressive tiers, else per-mile
    rate), floored at the minimum fare. Hourly: hourly rate times
    max(requested, minimum) hours. Then gratuity and meet-and-greet are added,
    the surge multiplier for the pickup weekday/time is applied, and the
    customer's discount is taken off, capped at the total.
    """

    def __init__(self, rule_set: PricingRuleSet, today=date.today):
        self.rule_set = rule_set
        self._today = today

    def _rule_for(self, vehicle_class: str, service_kind: ServiceKind) -> Optional[PricingRule]:
        today = self._today()
        for rule in self.rule_set.rules:
            if rule.vehicle_type == vehicle_class and rule.service_type is service_kind and rule.in_effect(today):
                return rule
        return None

    async def available_rules(self, service_kind: ServiceKind) -> Dict[str, bool]:
        today = self._today()
        return {
            rule.vehicle_type: True
            for rule in self.rule_set.rules
            if rule.service_type is service_kind and rule.in_effect(today)
        }

    async def calculate_price(self, request: PriceRequest) -> PriceQuote:
        rule = self._rule_for(request.vehicle_class, request.service_kind)
        if rule is None:
            raise PricingFailure(request.vehicle_class, PricingFailureReason.no_rule)

        if request.service_kind is ServiceKind.transfer:
            if request.distance_miles is None:
                raise PricingFailure(request.vehicle_class, PricingFailureReason.invalid_input, "distance is required")
            subtotal = self._transfer_fare(rule, Decimal(str(request.distance_miles)))
        else:
            if not request.hours:
                raise PricingFailure(request.vehicle_class, PricingFailureReason.invalid_input, "hours is required")
            subtotal = max(request.hours, rule.minimum_hours) * rule.hourly_rate

        gratuity = subtotal * rule.gratuity_percent / 100 if rule.gratuity_percent else Decimal(0)
        meet_and_greet = rule.meet_and_greet.charge if rule.meet_and_greet and rule.meet_and_greet.enabled else Decimal(0)

        multiplier = Decimal(1)
        for surge in rule.surge_pricing:
            if surge.applies(request.scheduled_date, request.scheduled_time):
                multiplier = surge.multiplier
                break

        total = (subtotal + gratuity + meet_and_greet) * multiplier
        discount = self._discount(request.user_id, total)

        # Round once, at the end; breakdown figures are rounded only for display
        final = total - discount
        return PriceQuote(
            vehicle_class=request.vehicle_class,
            price=to_money(final),
            breakdown=PriceBreakdown(
                regular_price=to_money(total), discount_amount=to_money(discount), final_price=to_money(final)
            ),
        )

    @staticmethod
    def _transfer_fare(rule: PricingRule, miles: Decimal) -> Decimal:
        distance_fare = Decimal(0)
        if rule.distance_tiers:
            remaining = miles
            for tier in rule.distance_tiers:
                if tier.is_remaining:
                    distance_fare += remaining * tier.rate_per_mile
                    break
                used = min(remaining, tier.miles)
                distance_fare += used * tier.rate_per_mile
                remaining -= used
                if remaining <= 0:
                    break
        elif rule.per_mile_rate:
            distance_fare = miles * rule.per_mile_rate

        subtotal = rule.base_rate + distance_fare
        if rule.minimum_fare and subtotal < rule.minimum_fare:
            subtotal = rule.minimum_fare
        return subtotal

    def _discount(self, user_id: Optional[str], total: Decimal) -> Decimal:
        discount = self.rule_set.discounts.get(user_id) if user_id else None
        if discount is None or discount.value <= 0:
            return Decimal(0)
        if discount.type == "percentage":
            amount = total * discount.value / 100
        else:
            amount = discount.value
        return min(amount, total)
