from datetime import timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from booking_backend.models.user import CLIENT_ROLE, User
from booking_backend.routes.appointment_routes import (
    CancelAppointmentRequest,
    CancelSeriesRequest,
    CreateAppointmentRequest,
    RescheduleAppointmentRequest,
    UpdateStatusRequest,
    ValidateAppointmentRequest,
    cancel,
    cancel_whole_series,
    change_status,
    create_appointment,
    list_my_appointments,
    reschedule,
    validate_appointment,
)
from booking_backend.scheduling.booking import RecurrenceRequest

from conftest import at, upcoming_monday

DAY = upcoming_monday()


@pytest.fixture(autouse=True)
def database_ready(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('booking_backend.routes.appointment_routes.ensure_database_ready', lambda: None)


@pytest.fixture
def other_client(db) -> User:
    user = User(email='other@example.com', hashed_password='', full_name='other', role=CLIENT_ROLE)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _book(db, coordinator, current_user, provider, hour: int, **overrides):
    values = {'provider_id': provider.id, 'start_time': at(DAY, hour), 'duration_minutes': 60}
    values.update(overrides)
    return create_appointment(
        data=CreateAppointmentRequest(**values),
        current_user=current_user,
        db=db,
        coordinator=coordinator,
    )


@pytest.mark.parametrize('duration_minutes', [0, 10, 481])
def test_create_appointment_request_enforces_duration_bounds(duration_minutes: int) -> None:
    with pytest.raises(ValidationError):
        CreateAppointmentRequest(provider_id=1, start_time=at(DAY, 10), duration_minutes=duration_minutes)


def test_create_appointment_request_normalizes_notes() -> None:
    request = CreateAppointmentRequest(provider_id=1, start_time=at(DAY, 10), duration_minutes=30, notes='   ')

    assert request.notes is None


def test_client_books_for_themselves(db, provider, client_user, template, coordinator) -> None:
    response = _book(db, coordinator, client_user, provider, 10, client_id=provider.id)

    assert response.series_id is None
    assert len(response.appointments) == 1
    appointment = response.appointments[0]
    assert appointment.client_id == client_user.id
    assert appointment.status == 'pending'
    assert appointment.end_time == at(DAY, 11)
    assert appointment.duration_minutes == 60


def test_client_cannot_choose_initial_status(db, provider, client_user, template, coordinator) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _book(db, coordinator, client_user, provider, 10, initial_status='confirmed')

    assert exception_info.value.status_code == 403


def test_provider_can_book_confirmed_for_a_client(db, provider, client_user, template, coordinator) -> None:
    response = _book(db, coordinator, provider, provider, 10, client_id=client_user.id, initial_status='confirmed')

    assert response.appointments[0].status == 'confirmed'
    assert response.appointments[0].client_id == client_user.id


def test_conflicting_booking_returns_structured_conflict(db, provider, client_user, template, coordinator) -> None:
    _book(db, coordinator, client_user, provider, 10)

    with pytest.raises(HTTPException) as exception_info:
        _book(db, coordinator, client_user, provider, 10, start_time=at(DAY, 11, 5))

    assert exception_info.value.status_code == 409
    occurrence = exception_info.value.detail['occurrences'][0]
    assert occurrence['ok'] is False
    assert occurrence['conflicts'][0]['kind'] == 'overlap'


def test_recurring_booking_returns_series(db, provider, client_user, template, coordinator) -> None:
    recurrence = RecurrenceRequest(frequency='weekly', end_date=at(DAY, 0) + timedelta(days=21))

    response = _book(db, coordinator, client_user, provider, 10, recurrence=recurrence)

    assert response.series_id is not None
    assert [appointment.start_time for appointment in response.appointments] == [
        at(DAY, 10),
        at(DAY, 10) + timedelta(days=7),
        at(DAY, 10) + timedelta(days=14),
    ]


def test_validate_appointment_reports_reasons(db, provider, client_user, template) -> None:
    data = ValidateAppointmentRequest(provider_id=provider.id, start_time=at(DAY, 18), duration_minutes=30)

    result = validate_appointment(data=data, current_user=client_user, db=db)

    assert not result.ok
    assert result.reasons == ['Appointment is outside working hours.']


def test_clients_only_see_their_own_appointments(db, provider, client_user, other_client, template, coordinator) -> None:
    _book(db, coordinator, client_user, provider, 10)
    _book(db, coordinator, other_client, provider, 13)

    mine = list_my_appointments(
        start=None,
        end=None,
        include_cancelled=True,
        provider_id=None,
        current_user=client_user,
        db=db,
    )
    providers_view = list_my_appointments(
        start=None,
        end=None,
        include_cancelled=True,
        provider_id=None,
        current_user=provider,
        db=db,
    )

    assert [appointment.client_id for appointment in mine] == [client_user.id]
    assert len(providers_view) == 2


def test_other_client_cannot_cancel(db, provider, client_user, other_client, template, coordinator) -> None:
    appointment = _book(db, coordinator, client_user, provider, 10).appointments[0]

    with pytest.raises(HTTPException) as exception_info:
        cancel(
            appointment_id=appointment.id,
            data=CancelAppointmentRequest(),
            current_user=other_client,
            db=db,
            coordinator=coordinator,
        )

    assert exception_info.value.status_code == 403


def test_owner_cancels_with_reason(db, provider, client_user, template, coordinator) -> None:
    appointment = _book(db, coordinator, client_user, provider, 10).appointments[0]

    response = cancel(
        appointment_id=appointment.id,
        data=CancelAppointmentRequest(reason=' Feeling better '),
        current_user=client_user,
        db=db,
        coordinator=coordinator,
    )

    assert response.status == 'cancelled'
    assert response.cancellation_reason == 'Feeling better'


def test_cancel_missing_appointment_returns_not_found(db, client_user, coordinator) -> None:
    with pytest.raises(HTTPException) as exception_info:
        cancel(
            appointment_id=999,
            data=CancelAppointmentRequest(),
            current_user=client_user,
            db=db,
            coordinator=coordinator,
        )

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Appointment not found.'


def test_invalid_status_transition_returns_conflict(db, provider, client_user, template, coordinator) -> None:
    appointment = _book(db, coordinator, client_user, provider, 10).appointments[0]

    with pytest.raises(HTTPException) as exception_info:
        change_status(
            appointment_id=appointment.id,
            data=UpdateStatusRequest(status='completed'),
            current_user=provider,
            db=db,
            coordinator=coordinator,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'Cannot change appointment status from pending to completed.'


def test_provider_confirms_appointment(db, provider, client_user, template, coordinator) -> None:
    appointment = _book(db, coordinator, client_user, provider, 10).appointments[0]

    response = change_status(
        appointment_id=appointment.id,
        data=UpdateStatusRequest(status='confirmed'),
        current_user=provider,
        db=db,
        coordinator=coordinator,
    )

    assert response.status == 'confirmed'


def test_reschedule_keeps_duration_unless_given(db, provider, client_user, template, coordinator) -> None:
    appointment = _book(db, coordinator, client_user, provider, 10).appointments[0]

    moved = reschedule(
        appointment_id=appointment.id,
        data=RescheduleAppointmentRequest(start_time=at(DAY, 14)),
        current_user=client_user,
        db=db,
        coordinator=coordinator,
    )
    shortened = reschedule(
        appointment_id=appointment.id,
        data=RescheduleAppointmentRequest(start_time=at(DAY, 14), duration_minutes=30),
        current_user=client_user,
        db=db,
        coordinator=coordinator,
    )

    assert (moved.start_time, moved.end_time) == (at(DAY, 14), at(DAY, 15))
    assert (shortened.start_time, shortened.end_time) == (at(DAY, 14), at(DAY, 14, 30))


def test_provider_cancels_rest_of_series(db, provider, client_user, template, coordinator) -> None:
    recurrence = RecurrenceRequest(frequency='weekly', end_date=at(DAY, 0) + timedelta(days=21))
    booked = _book(db, coordinator, client_user, provider, 10, recurrence=recurrence)

    cancelled = cancel_whole_series(
        series_id=booked.series_id,
        data=CancelSeriesRequest(from_time=at(DAY, 0) + timedelta(days=1)),
        provider_id=None,
        current_user=provider,
        db=db,
        coordinator=coordinator,
    )

    assert [appointment.id for appointment in cancelled] == [appointment.id for appointment in booked.appointments[1:]]
    assert all(appointment.status == 'cancelled' for appointment in cancelled)
