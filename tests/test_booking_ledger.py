from datetime import time
from decimal import Decimal
import threading

import pytest

from appointment_engine.core.database import SessionLocal
from appointment_engine.core.exceptions import ConflictError, PersistenceError
from appointment_engine.core.security import Actor, UserRole
from appointment_engine.models.appointment import Appointment, AppointmentStatus
from appointment_engine.models.doctor import ConsultationKind
from appointment_engine.schemas.appointment import AppointmentCreate
from appointment_engine.services.appointment_service import AppointmentService
from appointment_engine.services.booking_ledger import (
    BookingLedger, clinician_lock, filter_free_slots, intervals_overlap, make_slot_key
)


def _booking(doctor_id, on_date, start="10:00", kind=ConsultationKind.VIDEO):
    return AppointmentCreate(
        doctor_id=doctor_id,
        appointment_date=on_date,
        appointment_time=start,
        consultation_type=kind,
        reason="Follow-up",
    )


class TestIntervals:

    def test_overlapping_intervals(self):
        assert intervals_overlap((600, 630), (615, 645))
        assert intervals_overlap((600, 660), (610, 620))

    def test_touching_endpoints_do_not_overlap(self):
        assert not intervals_overlap((600, 630), (630, 660))
        assert not intervals_overlap((630, 660), (600, 630))

    def test_filter_free_slots_removes_overlaps(self):
        candidates = [time(9, 0), time(9, 30), time(10, 0), time(10, 30)]
        # A 60 minute booking at 09:30 blocks 09:30 and 10:00
        free = filter_free_slots(candidates, 30, [(570, 630)])

        assert free == [time(9, 0), time(10, 30)]

    def test_slot_key_format(self, monday):
        assert make_slot_key(7, monday, time(9, 5)) == f"7:{monday.isoformat()}:09:05"


class TestReserve:

    def test_booking_assigns_code_and_slot_key(self, db, doctor, patient, monday):
        actor = Actor(user_id=patient.user_id, role=UserRole.PATIENT)
        appointment = AppointmentService(db).book_appointment(_booking(doctor.id, monday), actor)

        assert appointment.status == AppointmentStatus.SCHEDULED
        assert appointment.appointment_code == f"APT{appointment.id:06d}"
        assert appointment.slot_key == make_slot_key(doctor.id, monday, time(10, 0))
        assert appointment.payment_amount == Decimal("80.00")

    def test_overlapping_booking_is_rejected(self, db, doctor, patient, monday):
        actor = Actor(user_id=patient.user_id, role=UserRole.PATIENT)
        service = AppointmentService(db)
        # Phone consultations last 60 minutes
        service.book_appointment(_booking(doctor.id, monday, "09:00", ConsultationKind.PHONE), actor)

        with pytest.raises(ConflictError) as exc_info:
            service.book_appointment(_booking(doctor.id, monday, "09:30"), actor)

        assert exc_info.value.code == "SLOT_TAKEN"
        assert db.query(Appointment).count() == 1

    def test_adjacent_booking_is_accepted(self, db, doctor, patient, monday):
        actor = Actor(user_id=patient.user_id, role=UserRole.PATIENT)
        service = AppointmentService(db)
        service.book_appointment(_booking(doctor.id, monday, "09:00"), actor)
        service.book_appointment(_booking(doctor.id, monday, "09:30"), actor)

        assert BookingLedger(db).active_intervals(doctor.id, monday) == [(540, 570), (570, 600)]

    def test_cancelled_appointment_frees_its_slot(self, db, doctor, patient, monday):
        actor = Actor(user_id=patient.user_id, role=UserRole.PATIENT)
        service = AppointmentService(db)
        first = service.book_appointment(_booking(doctor.id, monday), actor)
        service.cancel_appointment(first.id, actor, "Feeling better")

        assert first.slot_key is None
        second = service.book_appointment(_booking(doctor.id, monday), actor)
        assert second.status == AppointmentStatus.SCHEDULED

    def test_slot_key_collision_is_reported_as_taken(self, db, doctor, patient, monday):
        # A row another process left holding the key while no longer active
        db.add(Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id,
            appointment_date=monday,
            start_time=time(10, 0),
            end_time=time(10, 30),
            duration_minutes=30,
            consultation_type=ConsultationKind.VIDEO,
            status=AppointmentStatus.CANCELLED,
            reason="Stale",
            payment_amount=Decimal("80.00"),
            slot_key=make_slot_key(doctor.id, monday, time(10, 0)),
        ))
        db.commit()

        actor = Actor(user_id=patient.user_id, role=UserRole.PATIENT)
        with pytest.raises(ConflictError):
            AppointmentService(db).book_appointment(_booking(doctor.id, monday), actor)

        assert db.query(Appointment).count() == 1

    def test_lock_timeout_raises_busy(self):
        with clinician_lock(999):
            with pytest.raises(PersistenceError) as exc_info:
                with clinician_lock(999, timeout=0.01):
                    pass

        assert exc_info.value.code == "BOOKING_BUSY"
        assert exc_info.value.to_dict()["retryable"] is True


class TestConcurrentBooking:

    def test_exactly_one_concurrent_booking_wins(self, db, doctor, patient, monday):
        attempts = 5
        actor = Actor(user_id=patient.user_id, role=UserRole.PATIENT)
        doctor_id = doctor.id
        barrier = threading.Barrier(attempts)
        results = []
        results_lock = threading.Lock()

        def book():
            session = SessionLocal()
            try:
                barrier.wait()
                AppointmentService(session).book_appointment(_booking(doctor_id, monday), actor)
                outcome = "booked"
            except ConflictError as exc:
                outcome = exc.code
            finally:
                session.close()
            with results_lock:
                results.append(outcome)

        threads = [threading.Thread(target=book) for _ in range(attempts)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count("booked") == 1
        assert results.count("SLOT_TAKEN") == attempts - 1
        assert db.query(Appointment).filter(Appointment.doctor_id == doctor_id).count() == 1
