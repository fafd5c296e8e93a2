"""Reconcile every provider that has external calendar sync enabled.

Meant to be run periodically (cron, systemd timer).

Usage:
    python -m booking_backend.run_sync
"""
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from booking_backend.core import config
from booking_backend.core.errors import SchedulingError
from booking_backend.database import SessionLocal
from booking_backend.models.sync import CalendarSyncSettings
from booking_backend.scheduling.calendar_client import get_calendar_client
from booking_backend.scheduling.coordinator import booking_coordinator
from booking_backend.scheduling.sync import ExternalSyncReconciler

logger = logging.getLogger(__name__)


def reconcile_all(db, reconciler: ExternalSyncReconciler) -> int:
    """Return the number of providers whose reconciliation failed."""
    provider_ids = [
        row.provider_id
        for row in db.query(CalendarSyncSettings.provider_id).filter(
            CalendarSyncSettings.sync_enabled.is_(True),
        ).all()
    ]

    failures = 0
    for provider_id in provider_ids:
        try:
            report = reconciler.reconcile(db, provider_id)
        except (SchedulingError, SQLAlchemyError):
            db.rollback()
            logger.exception('Reconciliation failed for provider %s', provider_id)
            failures += 1
            continue
        print(
            f"provider {provider_id}: created={len(report.created)} updated={len(report.updated)} "
            f"deleted={len(report.deleted)} conflicted={len(report.conflicted)} failed={len(report.failed)}"
        )
    return failures


def main() -> None:
    logging.basicConfig(level=config.LOG_LEVEL)
    reconciler = ExternalSyncReconciler(get_calendar_client(), booking_coordinator)
    db = SessionLocal()
    try:
        failures = reconcile_all(db, reconciler)
    finally:
        db.close()
    if failures:
        print(f"{failures} provider(s) failed to reconcile", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
