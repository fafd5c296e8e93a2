from fastapi.testclient import TestClient

from booking_backend.main import app, log_booking_event, root
from booking_backend.scheduling.coordinator import BookingEvent


def test_root_reports_running() -> None:
    assert root() == {'status': 'Booking Engine API Running'}


def test_root_is_served_over_http() -> None:
    response = TestClient(app).get('/')

    assert response.status_code == 200
    assert response.json() == {'status': 'Booking Engine API Running'}


def test_routers_are_mounted() -> None:
    paths = {route.path for route in app.routes}

    assert {'/auth/me', '/availability/slots/{provider_id}', '/appointments', '/sync/reconcile'} <= paths


def test_booking_events_are_logged(caplog) -> None:
    caplog.set_level('INFO', logger='booking_backend.main')

    log_booking_event(BookingEvent(provider_id=3, action='booked', appointment_ids=[11], revision=4))

    assert 'Provider 3 calendar changed (booked, revision 4)' in caplog.text
