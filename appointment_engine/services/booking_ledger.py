"""Committed appointments per clinician, conflict checks and atomic reserve."""
from contextlib import contextmanager
from datetime import date, time
from typing import Dict, Iterator, List, Optional, Sequence, Tuple
import logging
import threading

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ConflictError, PersistenceError
from ..models.appointment import Appointment, ACTIVE_STATUSES
from .slot_generator import to_minutes

logger = logging.getLogger(__name__)

Interval = Tuple[int, int]

_registry_lock = threading.Lock()
_clinician_locks: Dict[int, threading.Lock] = {}


def intervals_overlap(first: Interval, second: Interval) -> bool:
    """Half-open intersection test; touching endpoints do not overlap."""
    return first[0] < second[1] and second[0] < first[1]


def interval_for(start: time, duration_minutes: int) -> Interval:
    begin = to_minutes(start)
    return begin, begin + duration_minutes


def make_slot_key(doctor_id: int, appointment_date: date, start: time) -> str:
    return f"{doctor_id}:{appointment_date.isoformat()}:{start.strftime('%H:%M')}"


def filter_free_slots(
    candidates: Sequence[time],
    duration_minutes: int,
    booked: Sequence[Interval],
) -> List[time]:
    return [
        start for start in candidates
        if not any(intervals_overlap(interval_for(start, duration_minutes), taken) for taken in booked)
    ]


@contextmanager
def clinician_lock(doctor_id: int, timeout: Optional[float] = None) -> Iterator[None]:
    """Serialize mutations of one clinician's timeline within this process."""
    timeout = settings.BOOKING_LOCK_TIMEOUT_SECONDS if timeout is None else timeout
    with _registry_lock:
        lock = _clinician_locks.setdefault(doctor_id, threading.Lock())

    if not lock.acquire(timeout=timeout):
        logger.warning(f"Timed out waiting for booking lock of doctor {doctor_id}")
        raise PersistenceError(
            "Another booking for this clinician is in progress, please retry",
            code="BOOKING_BUSY",
        )
    try:
        yield
    finally:
        lock.release()


class BookingLedger:
    def __init__(self, db: Session):
        self.db = db

    def active_intervals(self, doctor_id: int, appointment_date: date) -> List[Interval]:
        """Intervals held by the clinician's active appointments on a date."""
        rows = self.db.query(Appointment.start_time, Appointment.duration_minutes).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date == appointment_date,
            Appointment.status.in_(ACTIVE_STATUSES),
        ).all()
        return sorted(interval_for(start, duration) for start, duration in rows)

    def is_slot_free(
        self,
        doctor_id: int,
        appointment_date: date,
        start: time,
        duration_minutes: int,
    ) -> bool:
        requested = interval_for(start, duration_minutes)
        return not any(
            intervals_overlap(requested, taken)
            for taken in self.active_intervals(doctor_id, appointment_date)
        )

    def free_slots(
        self,
        doctor_id: int,
        appointment_date: date,
        candidates: Sequence[time],
        duration_minutes: int,
    ) -> List[time]:
        """Advisory read path: may be stale by the time a booking commits."""
        booked = self.active_intervals(doctor_id, appointment_date)
        return filter_free_slots(candidates, duration_minutes, booked)

    def reserve(self, appointment: Appointment) -> Appointment:
        """Check the slot and commit ``appointment`` as one atomic step.

        Raises ``ConflictError`` (``SLOT_TAKEN``) when another active
        appointment overlaps, and ``PersistenceError`` on storage faults.
        Nothing is persisted in either case.
        """
        doctor_id = appointment.doctor_id
        appointment.slot_key = make_slot_key(doctor_id, appointment.appointment_date, appointment.start_time)

        with clinician_lock(doctor_id):
            try:
                self._lock_timeline(doctor_id)

                if not self.is_slot_free(
                    doctor_id,
                    appointment.appointment_date,
                    appointment.start_time,
                    appointment.duration_minutes,
                ):
                    self.db.rollback()
                    logger.info(
                        f"Slot taken for doctor {doctor_id} on "
                        f"{appointment.appointment_date} at {appointment.start_time}"
                    )
                    raise ConflictError()

                self.db.add(appointment)
                self.db.flush()
                appointment.appointment_code = (
                    f"{settings.APPOINTMENT_CODE_PREFIX}{appointment.id:06d}"
                )
                self.db.commit()
            except IntegrityError as exc:
                # Unique slot_key hit by a booking from another process
                self.db.rollback()
                logger.info(f"Slot key collision for {appointment.slot_key}: {exc.orig}")
                raise ConflictError() from exc
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.error(f"Failed to reserve slot {appointment.slot_key}: {exc}")
                raise PersistenceError() from exc

        self.db.refresh(appointment)
        return appointment

    def _lock_timeline(self, doctor_id: int) -> None:
        # Cross-process serialization, released at commit/rollback
        if self.db.get_bind().dialect.name == "postgresql":
            self.db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": doctor_id})
