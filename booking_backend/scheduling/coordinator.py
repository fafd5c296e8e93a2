"""Booking transaction coordinator.

Appointment writes for one provider go through a serialized section: the
conflict validator runs again inside it against the latest committed state,
and only then are the staged rows committed. Sections are per provider, so
bookings for different providers never wait on each other.

Each held section has a lease. A holder that overruns it is force-released by
the next waiter and fails at commit time with ``ReservationTimeout``; it must
re-validate before retrying. The lease is checked when the commit starts;
from then on the holder keeps the section until it releases it.
"""

import logging
import threading
import time
import uuid
from collections import defaultdict, deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterator

from sqlalchemy.orm import Session

from booking_backend.core import config
from booking_backend.core.errors import BookingConflict, ReservationTimeout
from booking_backend.scheduling.intervals import Interval, utc_now
from booking_backend.scheduling.validator import validate_occurrences

logger = logging.getLogger(__name__)


class ReservationState(str, Enum):
    RESERVED = 'reserved'
    COMMITTING = 'committing'
    COMMITTED = 'committed'
    RELEASED = 'released'
    EXPIRED = 'expired'


class Reservation:
    def __init__(self, provider_id: int, lease_seconds: float):
        self.provider_id = provider_id
        self.token = uuid.uuid4().hex
        self.lease_seconds = lease_seconds
        self.state = ReservationState.RESERVED
        self.acquired_at: float | None = None

    def remaining(self) -> float:
        if self.acquired_at is None:
            return self.lease_seconds
        return self.acquired_at + self.lease_seconds - time.monotonic()

    def expired(self) -> bool:
        if self.state is ReservationState.EXPIRED:
            return True
        return self.state is ReservationState.RESERVED and self.remaining() <= 0


@dataclass
class BookingEvent:
    provider_id: int
    action: str
    appointment_ids: list[int]
    revision: int
    occurred_at: datetime = field(default_factory=utc_now)


class _ProviderGate:
    def __init__(self) -> None:
        self.condition = threading.Condition()
        self.waiting: deque[str] = deque()
        self.holder: Reservation | None = None


class BookingCoordinator:
    def __init__(self, lease_seconds: float | None = None, wait_seconds: float | None = None):
        self.lease_seconds = lease_seconds or config.RESERVATION_LEASE_SECONDS
        self.wait_seconds = wait_seconds or config.RESERVATION_WAIT_SECONDS
        self._gates: dict[int, _ProviderGate] = {}
        self._gates_lock = threading.Lock()
        self._subscribers: list[Callable[[BookingEvent], None]] = []
        self._subscribers_lock = threading.Lock()
        self._revisions: defaultdict[int, int] = defaultdict(int)

    def _gate(self, provider_id: int) -> _ProviderGate:
        with self._gates_lock:
            gate = self._gates.get(provider_id)
            if gate is None:
                gate = self._gates[provider_id] = _ProviderGate()
            return gate

    def acquire(self, provider_id: int) -> Reservation:
        """Wait (FIFO) for the provider's section and take it."""
        gate = self._gate(provider_id)
        reservation = Reservation(provider_id, self.lease_seconds)
        deadline = time.monotonic() + self.wait_seconds

        with gate.condition:
            gate.waiting.append(reservation.token)
            try:
                while True:
                    holder = gate.holder
                    at_head = gate.waiting[0] == reservation.token
                    if at_head and (holder is None or holder.expired()):
                        break

                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise ReservationTimeout(provider_id, self.wait_seconds)
                    if at_head and holder is not None and holder.state is ReservationState.RESERVED:
                        remaining = min(remaining, max(holder.remaining(), 0.001))
                    gate.condition.wait(remaining)
            except ReservationTimeout:
                gate.waiting.remove(reservation.token)
                gate.condition.notify_all()
                raise

            gate.waiting.popleft()
            if gate.holder is not None:
                logger.warning(
                    'Force-releasing reservation %s for provider %s after its %ss lease',
                    gate.holder.token,
                    provider_id,
                    gate.holder.lease_seconds,
                )
                gate.holder.state = ReservationState.EXPIRED

            reservation.acquired_at = time.monotonic()
            gate.holder = reservation
            gate.condition.notify_all()

        return reservation

    def release(self, reservation: Reservation) -> None:
        gate = self._gate(reservation.provider_id)
        with gate.condition:
            if reservation.state in (ReservationState.RESERVED, ReservationState.COMMITTING):
                reservation.state = ReservationState.RELEASED
            if gate.holder is reservation:
                gate.holder = None
            gate.condition.notify_all()

    @contextmanager
    def serialized(self, provider_id: int) -> Iterator[Reservation]:
        reservation = self.acquire(provider_id)
        try:
            yield reservation
        finally:
            self.release(reservation)

    def ensure_held(self, reservation: Reservation) -> None:
        gate = self._gate(reservation.provider_id)
        with gate.condition:
            self._check_lease(reservation)

    def begin_commit(self, reservation: Reservation) -> None:
        """Check the lease and pin the section until ``release``.

        A committing holder is never force-released, so the next waiter only
        validates once this holder's rows are committed or rolled back.
        """
        gate = self._gate(reservation.provider_id)
        with gate.condition:
            self._check_lease(reservation)
            reservation.state = ReservationState.COMMITTING

    def _check_lease(self, reservation: Reservation) -> None:
        if reservation.expired():
            reservation.state = ReservationState.EXPIRED
            raise ReservationTimeout(reservation.provider_id, reservation.lease_seconds, reason='lease')

    def reserve_and_commit(
        self,
        db: Session,
        provider_id: int,
        intervals: list[Interval],
        commit_fn: Callable[[Session], list[Any]],
        exclude_appointment_id: int | None = None,
        now: datetime | None = None,
        action: str = 'booked',
    ) -> list[Any]:
        """Validate against fresh state and commit, all inside the provider's section.

        ``commit_fn`` stages rows on the session and returns them; the commit
        itself happens here once the lease is known to still be held.
        """
        with self.serialized(provider_id) as reservation:
            results = validate_occurrences(
                db,
                provider_id,
                intervals,
                exclude_appointment_id=exclude_appointment_id,
                now=now,
            )
            if not all(result.ok for result in results):
                logger.info(
                    'Rejected %s for provider %s: %s',
                    action,
                    provider_id,
                    [reason for result in results for reason in result.reasons],
                )
                raise BookingConflict(provider_id, results)

            try:
                staged = commit_fn(db)
                db.flush()
                self.begin_commit(reservation)
                db.commit()
            except Exception:
                db.rollback()
                raise

            for row in staged:
                db.refresh(row)
            reservation.state = ReservationState.COMMITTED
            revision = self._bump_revision(provider_id)

        self.publish(BookingEvent(
            provider_id=provider_id,
            action=action,
            appointment_ids=[row.id for row in staged],
            revision=revision,
        ))
        return staged

    def _bump_revision(self, provider_id: int) -> int:
        with self._gates_lock:
            self._revisions[provider_id] += 1
            return self._revisions[provider_id]

    def revision(self, provider_id: int) -> int:
        """Monotonic change counter for observers that poll instead of subscribing."""
        with self._gates_lock:
            return self._revisions[provider_id]

    def record_change(self, provider_id: int, action: str, appointment_ids: list[int]) -> None:
        """Announce a committed change that did not go through ``reserve_and_commit``."""
        self.publish(BookingEvent(
            provider_id=provider_id,
            action=action,
            appointment_ids=appointment_ids,
            revision=self._bump_revision(provider_id),
        ))

    def subscribe(self, callback: Callable[[BookingEvent], None]) -> Callable[[], None]:
        with self._subscribers_lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: BookingEvent) -> None:
        with self._subscribers_lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception('Booking event subscriber failed for provider %s', event.provider_id)


booking_coordinator = BookingCoordinator()
