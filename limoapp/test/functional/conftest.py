import pytest
from fastapi.testclient import TestClient

from limoapp.app import create_app
from limoapp.controllers.booking_controller import BookingController, BookingSession


@pytest.fixture
def booking_controller(make_workflow):
    return BookingController(session_factory=lambda session_id: BookingSession(session_id, make_workflow(), {}))


@pytest.fixture
def api(booking_controller):
    with TestClient(create_app(booking_controller)) as client:
        yield client


@pytest.fixture
def session_id(api) -> str:
    response = api.post("/sessions")
    assert response.status_code == 200
    return response.json()["session_id"]
