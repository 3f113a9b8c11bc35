import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request

from limoapp.config.settings import settings
from limoapp.controllers.booking_controller import BookingController
from limoapp.db.redis_db import check_redis_connection, close_redis_connection
from limoapp.dtos.dtos import (
    AddressTextRequest,
    BookingForRequest,
    DurationRequest,
    FlightInfoRequest,
    PassengerUpdateRequest,
    ScheduleRequest,
    ServiceKindRequest,
    SessionResponse,
    SuggestionSelectRequest,
    VehicleSelectRequest,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(controller: Optional[BookingController] = None) -> FastAPI:
    uses_redis = controller is None
    controller = controller or BookingController()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if uses_redis:
            await check_redis_connection()
        app.state.booking_controller = controller

        yield

        controller.shutdown()
        if uses_redis:
            await close_redis_connection()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

    @app.get("/health")
    async def health():
        return {"Health": "OK"}

    @app.post("/sessions", response_model=SessionResponse)
    async def create_session():
        return SessionResponse(session_id=controller.create_session())

    @app.get("/sessions/{session_id}/draft")
    async def get_draft(session_id: str, request: Request):
        return await controller.get_draft(session_id, request)

    @app.post("/sessions/{session_id}/restore")
    async def restore(session_id: str, request: Request):
        return await controller.restore(session_id, request)

    # Step 1: trip input

    @app.put("/sessions/{session_id}/service-kind")
    async def set_service_kind(session_id: str, body: ServiceKindRequest, request: Request):
        return await controller.call(session_id, request, "set_service_kind", body.service_kind)

    @app.post("/sessions/{session_id}/addresses/type")
    async def type_address(session_id: str, body: AddressTextRequest, request: Request):
        return await controller.type_address(session_id, request, body.field, body.text)

    @app.post("/sessions/{session_id}/addresses/select")
    async def select_suggestion(session_id: str, body: SuggestionSelectRequest, request: Request):
        return await controller.select_suggestion(session_id, request, body.field, body.candidate)

    @app.post("/sessions/{session_id}/via-points")
    async def add_via_point(session_id: str, request: Request):
        return await controller.call(session_id, request, "add_via_point")

    @app.delete("/sessions/{session_id}/via-points/{index}")
    async def remove_via_point(session_id: str, index: int, request: Request):
        return await controller.call(session_id, request, "remove_via_point", index)

    @app.put("/sessions/{session_id}/schedule")
    async def set_schedule(session_id: str, body: ScheduleRequest, request: Request):
        return await controller.call(session_id, request, "set_schedule", body.scheduled_date, body.scheduled_time)

    @app.put("/sessions/{session_id}/duration")
    async def set_duration(session_id: str, body: DurationRequest, request: Request):
        return await controller.call(session_id, request, "set_duration", body.hours)

    @app.post("/sessions/{session_id}/quote")
    async def get_quote(session_id: str, request: Request):
        return await controller.call(session_id, request, "get_quote")

    # Step 2: vehicle selection

    @app.put("/sessions/{session_id}/vehicle")
    async def select_vehicle(session_id: str, body: VehicleSelectRequest, request: Request):
        return await controller.call(session_id, request, "select_vehicle", body.vehicle_class)

    @app.post("/sessions/{session_id}/continue")
    async def continue_to_details(session_id: str, request: Request):
        return await controller.call(session_id, request, "continue_to_details")

    # Step 3: passenger details

    @app.patch("/sessions/{session_id}/passenger")
    async def update_passenger(session_id: str, body: PassengerUpdateRequest, request: Request):
        changes = body.model_dump(exclude_unset=True)
        return await controller.call(session_id, request, "update_passenger", **changes)

    @app.put("/sessions/{session_id}/booking-for")
    async def set_booking_for(session_id: str, body: BookingForRequest, request: Request):
        return await controller.call(session_id, request, "set_booking_for", body.booking_for)

    @app.put("/sessions/{session_id}/no-flight-info")
    async def set_no_flight_info(session_id: str, body: FlightInfoRequest, request: Request):
        return await controller.call(session_id, request, "set_no_flight_info", body.no_flight_info)

    @app.post("/sessions/{session_id}/submit")
    async def submit(session_id: str, request: Request):
        return await controller.call(session_id, request, "submit")

    @app.post("/sessions/{session_id}/back")
    async def back(session_id: str, request: Request):
        return await controller.call(session_id, request, "back")

    return app


app = create_app()


# define main
if __name__ == "__main__":
    port = int(os.getenv("PORT", 3000))
    uvicorn.run(app, host="0.0.0.0", port=port)
