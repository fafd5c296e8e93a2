"""External calendar client interface.

The reconciler only depends on ``ExternalCalendarClient``. Concrete adapters
are picked by name through ``get_calendar_client``.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from functools import lru_cache

from pydantic import BaseModel

from booking_backend.core import config
from booking_backend.core.errors import ExternalCalendarError
from booking_backend.scheduling.intervals import utc_now


class ChangeAction(str, Enum):
    CREATED = 'created'
    UPDATED = 'updated'
    DELETED = 'deleted'


class ExternalEventPayload(BaseModel):
    title: str
    start: datetime
    end: datetime
    description: str | None = None


class ExternalChange(BaseModel):
    event_id: str
    action: ChangeAction
    start: datetime | None = None
    end: datetime | None = None
    updated_at: datetime
    cancelled: bool = False


class ChangeBatch(BaseModel):
    changes: list[ExternalChange]
    cursor: str | None = None


class ExternalCalendarClient(ABC):
    """Interface every external calendar adapter implements.

    Implementations raise ``ExternalCalendarError`` for any provider failure.
    """

    @abstractmethod
    def create_event(self, provider_id: int, payload: ExternalEventPayload) -> str:
        """Create an event and return its opaque id."""

    @abstractmethod
    def update_event(self, provider_id: int, event_id: str, payload: ExternalEventPayload) -> None:
        pass

    @abstractmethod
    def delete_event(self, provider_id: int, event_id: str) -> None:
        pass

    @abstractmethod
    def pull_changes(self, provider_id: int, cursor: str | None) -> ChangeBatch:
        """Changes made on the external side since ``cursor`` (None = from the beginning)."""


class InMemoryCalendarClient(ExternalCalendarClient):
    """Process-local calendar used for development and tests.

    Writes made through the client are not echoed back by ``pull_changes``;
    the ``external_*`` methods stand in for edits made directly in the
    external calendar.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: dict[int, dict[str, ExternalEventPayload]] = {}
        self._changes: dict[int, list[ExternalChange]] = {}
        self.fail_writes = False

    def _check_writable(self) -> None:
        if self.fail_writes:
            raise ExternalCalendarError('External calendar is unavailable.')

    def create_event(self, provider_id: int, payload: ExternalEventPayload) -> str:
        self._check_writable()
        event_id = f'evt-{uuid.uuid4().hex[:12]}'
        with self._lock:
            self.events.setdefault(provider_id, {})[event_id] = payload
        return event_id

    def update_event(self, provider_id: int, event_id: str, payload: ExternalEventPayload) -> None:
        self._check_writable()
        with self._lock:
            provider_events = self.events.setdefault(provider_id, {})
            if event_id not in provider_events:
                raise ExternalCalendarError(f'External event {event_id} does not exist.')
            provider_events[event_id] = payload

    def delete_event(self, provider_id: int, event_id: str) -> None:
        self._check_writable()
        with self._lock:
            self.events.get(provider_id, {}).pop(event_id, None)

    def pull_changes(self, provider_id: int, cursor: str | None) -> ChangeBatch:
        with self._lock:
            changes = self._changes.get(provider_id, [])
            position = int(cursor) if cursor else 0
            return ChangeBatch(changes=list(changes[position:]), cursor=str(len(changes)))

    def _record(self, provider_id: int, change: ExternalChange) -> None:
        self._changes.setdefault(provider_id, []).append(change)

    def external_create(self, provider_id: int, title: str, start: datetime, end: datetime, updated_at: datetime | None = None) -> str:
        event_id = f'ext-{uuid.uuid4().hex[:12]}'
        with self._lock:
            self.events.setdefault(provider_id, {})[event_id] = ExternalEventPayload(title=title, start=start, end=end)
            self._record(provider_id, ExternalChange(
                event_id=event_id,
                action=ChangeAction.CREATED,
                start=start,
                end=end,
                updated_at=updated_at or utc_now(),
            ))
        return event_id

    def external_move(self, provider_id: int, event_id: str, start: datetime, end: datetime, updated_at: datetime | None = None) -> None:
        with self._lock:
            existing = self.events.setdefault(provider_id, {}).get(event_id)
            title = existing.title if existing is not None else 'Busy'
            self.events[provider_id][event_id] = ExternalEventPayload(title=title, start=start, end=end)
            self._record(provider_id, ExternalChange(
                event_id=event_id,
                action=ChangeAction.UPDATED,
                start=start,
                end=end,
                updated_at=updated_at or utc_now(),
            ))

    def external_delete(self, provider_id: int, event_id: str, updated_at: datetime | None = None) -> None:
        with self._lock:
            self.events.get(provider_id, {}).pop(event_id, None)
            self._record(provider_id, ExternalChange(
                event_id=event_id,
                action=ChangeAction.DELETED,
                updated_at=updated_at or utc_now(),
            ))


@lru_cache(maxsize=None)
def get_calendar_client(provider: str | None = None) -> ExternalCalendarClient:
    """Return the adapter for a calendar provider name (one instance per name)."""
    provider = provider or config.EXTERNAL_CALENDAR_PROVIDER
    if provider == 'memory':
        return InMemoryCalendarClient()
    raise ValueError(f'Unsupported calendar provider: {provider}')
