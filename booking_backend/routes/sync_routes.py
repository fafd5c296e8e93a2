from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_backend.auth.dependencies import get_current_provider
from booking_backend.core.errors import SchedulingError
from booking_backend.models.sync import PrivacyLevel, SyncDirection
from booking_backend.models.user import User
from booking_backend.routes.deps import (
    database_unavailable,
    ensure_database_ready,
    get_db,
    get_reconciler,
    resolve_provider_id,
    scheduling_http_error,
)
from booking_backend.scheduling.booking import get_appointment
from booking_backend.scheduling.sync import (
    ExternalSyncReconciler,
    SyncReport,
    SyncStatus,
    get_sync_status,
    update_sync_settings,
)

router = APIRouter(tags=['sync'])


class UpdateSyncSettingsRequest(BaseModel):
    sync_enabled: bool | None = None
    sync_direction: SyncDirection | None = None
    privacy_level: PrivacyLevel | None = None


class SyncSettingsResponse(BaseModel):
    provider_id: int
    sync_enabled: bool
    sync_direction: SyncDirection
    privacy_level: PrivacyLevel
    last_synced_at: datetime | None = None

    class Config:
        from_attributes = True


@router.post('/reconcile', response_model=SyncReport)
def reconcile(
    provider_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
    reconciler: ExternalSyncReconciler = Depends(get_reconciler),
):
    provider_id = resolve_provider_id(current_user, provider_id)
    ensure_database_ready()

    try:
        return reconciler.reconcile(db, provider_id)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.post('/appointments/{appointment_id}/retry', response_model=SyncReport)
def retry_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
    reconciler: ExternalSyncReconciler = Depends(get_reconciler),
):
    ensure_database_ready()

    try:
        appointment = get_appointment(db, appointment_id)
        resolve_provider_id(current_user, appointment.provider_id)
        return reconciler.retry(db, appointment_id)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/status', response_model=SyncStatus)
def read_status(
    provider_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    provider_id = resolve_provider_id(current_user, provider_id)
    ensure_database_ready()

    try:
        return get_sync_status(db, provider_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.put('/settings', response_model=SyncSettingsResponse)
def update_settings(
    data: UpdateSyncSettingsRequest,
    provider_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_provider),
    db: Session = Depends(get_db),
):
    provider_id = resolve_provider_id(current_user, provider_id)
    ensure_database_ready()

    try:
        settings = update_sync_settings(
            db,
            provider_id,
            sync_enabled=data.sync_enabled,
            sync_direction=data.sync_direction,
            privacy_level=data.privacy_level,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return SyncSettingsResponse.model_validate(settings)
