"""Errors raised by the scheduling engine.

Route handlers translate these into HTTP responses; nothing below this layer
knows about HTTP.
"""

from datetime import datetime
from typing import Any


class SchedulingError(Exception):
    """Base class for every scheduling engine error."""


class InvalidInterval(SchedulingError):
    def __init__(self, start: datetime, end: datetime):
        self.start = start
        self.end = end
        super().__init__(f'Interval end {end.isoformat()} must be after start {start.isoformat()}.')


class InvalidTemplate(SchedulingError):
    """Raised with every violated day/field of a rejected availability template."""

    def __init__(self, violations: list[dict[str, str]]):
        self.violations = violations
        summary = '; '.join(f"{item['field']}: {item['message']}" for item in violations)
        super().__init__(f'Invalid availability template: {summary}')


class InvalidRecurrence(SchedulingError):
    pass


class RecurrenceTooLong(SchedulingError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f'Recurrence expands to more than {limit} occurrences.')


class BookingConflict(SchedulingError):
    """A candidate (or at least one occurrence of a series) failed validation.

    ``results`` holds one validation result per occurrence, in request order,
    so callers can show exactly which dates are blocked.
    """

    def __init__(self, provider_id: int, results: list[Any]):
        self.provider_id = provider_id
        self.results = results
        failed = sum(1 for result in results if not result.ok)
        super().__init__(f'{failed} of {len(results)} requested occurrence(s) conflict.')

    @property
    def conflicts(self) -> list[Any]:
        return [conflict for result in self.results for conflict in result.conflicts]

    def to_detail(self) -> dict[str, Any]:
        return {
            'message': str(self),
            'occurrences': [result.model_dump(mode='json') for result in self.results],
        }


class SyncConflict(SchedulingError):
    """An inbound external change could not be applied without manual resolution."""

    def __init__(
        self,
        appointment_id: int,
        field: str,
        old_value: str | None,
        new_value: str | None,
        source: str,
        message: str,
    ):
        self.appointment_id = appointment_id
        self.field = field
        self.old_value = old_value
        self.new_value = new_value
        self.source = source
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            'appointment_id': self.appointment_id,
            'field': self.field,
            'old_value': self.old_value,
            'new_value': self.new_value,
            'source': self.source,
            'message': self.message,
        }


class ReservationTimeout(SchedulingError):
    def __init__(self, provider_id: int, seconds: float, reason: str = 'wait'):
        self.provider_id = provider_id
        self.seconds = seconds
        self.reason = reason
        if reason == 'lease':
            message = f'Reservation for provider {provider_id} exceeded its {seconds:g}s lease and was released.'
        else:
            message = f'Timed out after {seconds:g}s waiting for provider {provider_id} booking section.'
        super().__init__(message)


class NotFound(SchedulingError):
    pass


class InvalidStatusTransition(SchedulingError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f'Cannot change appointment status from {current} to {requested}.')


class ExternalCalendarError(SchedulingError):
    pass
