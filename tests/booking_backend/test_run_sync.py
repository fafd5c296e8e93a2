from booking_backend.core.errors import ExternalCalendarError
from booking_backend.run_sync import reconcile_all
from booking_backend.scheduling.booking import request_booking
from booking_backend.scheduling.calendar_client import InMemoryCalendarClient
from booking_backend.scheduling.sync import ExternalSyncReconciler, get_sync_settings, update_sync_settings

from conftest import MONDAY, NOW, at


class _BrokenReconciler:
    def reconcile(self, db, provider_id):
        raise ExternalCalendarError('calendar unreachable')


def test_reconcile_all_visits_enabled_providers(db, provider, admin, client_user, template, coordinator, capsys) -> None:
    calendar = InMemoryCalendarClient()
    request_booking(db, coordinator, provider.id, client_user.id, at(MONDAY, 10), at(MONDAY, 11), now=NOW)
    get_sync_settings(db, provider.id)
    update_sync_settings(db, admin.id, sync_enabled=False)

    failures = reconcile_all(db, ExternalSyncReconciler(calendar, coordinator))

    assert failures == 0
    assert f'provider {provider.id}: created=1' in capsys.readouterr().out
    assert admin.id not in calendar.events


def test_reconcile_all_counts_failures(db, provider) -> None:
    get_sync_settings(db, provider.id)

    assert reconcile_all(db, _BrokenReconciler()) == 1
