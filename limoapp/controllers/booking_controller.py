import logging
import time
from collections import OrderedDict
from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo

from fastapi import HTTPException, Request
from pydantic import BaseModel

from limoapp.config.settings import settings
from limoapp.dtos.dtos import SuggestionsResponse
from limoapp.services.booking_service import PlatformBookingClient
from limoapp.services.geolocation_service import TomTomService
from limoapp.services.identity_service import PlatformIdentityClient
from limoapp.services.payment_service import CheckoutLinkBuilder
from limoapp.services.pricing_service import PlatformPricingClient, RuleBasedPriceCalculator, load_pricing_rules
from limoapp.workflow._state import AddressField, AuthRedirect, DraftBooking, RedisDraftStore
from limoapp.workflow.address import AddressResolutionAdapter
from limoapp.workflow.auth_interrupt import AuthInterruptHandler
from limoapp.workflow.errors import (
    BookingError,
    BookingValidationError,
    CollaboratorError,
    InvalidTransition,
    QuoteError,
    WorkflowError,
)
from limoapp.workflow.pricing import PricingResolver
from limoapp.workflow.workflow import BookingWorkflow

logger = logging.getLogger(__name__)

FORWARDED_AUTH_HEADERS = ("authorization", "cookie")


class BookingSession:
    """One customer's workflow plus the credentials its platform clients send."""

    def __init__(self, session_id: str, workflow: BookingWorkflow, auth_headers: Dict[str, str]):
        self.session_id = session_id
        self.workflow = workflow
        self.auth_headers = auth_headers
        self.last_used = 0.0

    def authenticate(self, request: Request):
        # Platform clients hold this same dict, so updating it re-authenticates all of them
        self.auth_headers.clear()
        for name in FORWARDED_AUTH_HEADERS:
            value = request.headers.get(name)
            if value:
                self.auth_headers[name] = value


def build_session(session_id: str) -> BookingSession:
    auth_headers: Dict[str, str] = {}
    bookings = PlatformBookingClient(auth_headers=auth_headers)
    identity = PlatformIdentityClient(auth_headers=auth_headers)

    if settings.PRICING_RULES_FILE:
        calculator = rule_catalog = RuleBasedPriceCalculator(load_pricing_rules(settings.PRICING_RULES_FILE))
    else:
        calculator = rule_catalog = PlatformPricingClient(auth_headers=auth_headers)

    store = RedisDraftStore(session_id, ttl=settings.DRAFT_TTL_SECONDS)
    tomtom = TomTomService()
    workflow = BookingWorkflow(
        store=store,
        address=AddressResolutionAdapter(
            tomtom, debounce_seconds=settings.SUGGESTION_DEBOUNCE_SECONDS, limit=settings.SUGGESTION_LIMIT
        ),
        routing=tomtom,
        pricing=PricingResolver(calculator),
        rule_catalog=rule_catalog,
        vehicle_catalog=bookings,
        bookings=bookings,
        identity_provider=identity,
        payments=CheckoutLinkBuilder(),
        auth_handler=AuthInterruptHandler(store, identity, return_path=settings.BOOKING_RETURN_PATH),
        service_timezone=ZoneInfo(settings.SERVICE_TIMEZONE),
    )
    return BookingSession(session_id, workflow, auth_headers)


def render(result: Any) -> Dict[str, Any]:
    if isinstance(result, AuthRedirect):
        return {"auth_required": True, "login_url": result.login_url, "draft": result.draft.model_dump(mode="json")}
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    return result


@contextmanager
def domain_errors():
    """Translate workflow errors to HTTP errors; the session's draft is untouched either way."""
    try:
        yield
    except BookingValidationError as e:
        raise HTTPException(
            status_code=422, detail={"kind": e.kind.value, "message": str(e), "fields": list(e.fields)}
        )
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail={"message": str(e), "step": e.step.name})
    except (QuoteError, CollaboratorError) as e:
        raise HTTPException(status_code=503, detail={"message": str(e), "retryable": e.retryable})
    except BookingError as e:
        raise HTTPException(status_code=502, detail={"message": str(e), "retryable": e.retryable})
    except WorkflowError as e:
        logger.exception(f"Unhandled workflow error: {e}")
        raise HTTPException(status_code=500, detail={"message": str(e), "retryable": e.retryable})
    except IndexError as e:
        raise HTTPException(status_code=404, detail={"message": str(e)})
    except ValueError as e:
        raise HTTPException(status_code=422, detail={"message": str(e)})


class BookingController:
    """
    Keeps one ``BookingSession`` per session id, least recently used first.

    Sessions idle longer than ``idle_seconds``, or beyond ``max_sessions``, are
    dropped. Their drafts stay in the draft store, so a later request rebuilds
    the session and ``restore()`` picks the draft back up.
    """

    def __init__(
        self,
        session_factory: Callable[[str], BookingSession] = build_session,
        max_sessions: int = settings.MAX_SESSIONS,
        idle_seconds: float = settings.SESSION_IDLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.max_sessions = max_sessions
        self.idle_seconds = idle_seconds
        self.clock = clock
        self._sessions: "OrderedDict[str, BookingSession]" = OrderedDict()

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def _remember(self, session: BookingSession) -> BookingSession:
        now = self.clock()
        session.last_used = now
        self._sessions[session.session_id] = session
        self._sessions.move_to_end(session.session_id)

        while self._sessions:
            oldest_id, oldest = next(iter(self._sessions.items()))
            idle = now - oldest.last_used > self.idle_seconds
            if not idle and len(self._sessions) <= self.max_sessions:
                break
            self._evict(oldest_id)
        return session

    def _evict(self, session_id: str):
        session = self._sessions.pop(session_id)
        session.workflow.address.cancel_all()
        logger.info(f"Booking session {session_id} evicted from memory")

    def create_session(self) -> str:
        session_id = uuid4().hex
        self._remember(self.session_factory(session_id))
        logger.info(f"Booking session {session_id} started")
        return session_id

    def workflow(self, session_id: str, request: Request) -> BookingWorkflow:
        session = self._sessions.get(session_id)
        if session is None:
            try:
                session = self.session_factory(session_id)
            except ValueError as e:
                raise HTTPException(status_code=400, detail={"message": str(e)})
        self._remember(session)
        session.authenticate(request)
        return session.workflow

    def shutdown(self):
        for session in self._sessions.values():
            session.workflow.address.cancel_all()
        self._sessions.clear()

    # ---- endpoints ----

    async def get_draft(self, session_id: str, request: Request) -> Dict[str, Any]:
        return render(self.workflow(session_id, request).draft)

    async def restore(self, session_id: str, request: Request) -> Dict[str, Any]:
        with domain_errors():
            draft: Optional[DraftBooking] = await self.workflow(session_id, request).restore()
        if draft is None:
            raise HTTPException(status_code=404, detail={"message": "No saved booking draft"})
        return render(draft)

    async def call(self, session_id: str, request: Request, operation: str, *args, **kwargs) -> Dict[str, Any]:
        workflow = self.workflow(session_id, request)
        with domain_errors():
            result = await getattr(workflow, operation)(*args, **kwargs)
        return render(result)

    async def type_address(self, session_id: str, request: Request, field: str, text: str) -> Dict[str, Any]:
        workflow = self.workflow(session_id, request)
        with domain_errors():
            address_field = AddressField.parse(field)
            suggestions = await workflow.type_address(address_field, text)
        return render(SuggestionsResponse(field=str(address_field), suggestions=suggestions))

    async def select_suggestion(self, session_id: str, request: Request, field: str, candidate) -> Dict[str, Any]:
        workflow = self.workflow(session_id, request)
        with domain_errors():
            draft = await workflow.select_suggestion(AddressField.parse(field), candidate)
        return render(draft)
