from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    AccessDeniedError, NotFoundError, PersistenceError, ValidationError
)
from ..core.security import Actor, UserRole
from ..models.doctor import (
    ConsultationKind, ConsultationType, Doctor, DoctorAvailability, DoctorHoliday
)
from ..schemas.availability import ConsultationTypeIn, HolidayCreate, WeeklyWindowIn
from .booking_ledger import BookingLedger
from .slot_generator import (
    HOLIDAY, NOT_AVAILABLE, HolidayRule, SlotPlan, WeeklyWindow, find_holiday, find_window, generate_slots
)

logger = logging.getLogger(__name__)

class AvailabilityService:
    """Read and maintain a clinician's weekly windows, holidays and consultation types."""

    def __init__(self, db: Session):
        self.db = db

    def get_doctor(self, doctor_id: int, require_verified: bool = False) -> Doctor:
        doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).first()
        if not doctor or (require_verified and not doctor.is_verified):
            raise NotFoundError("Doctor not found or not verified", code="DOCTOR_NOT_FOUND")
        return doctor

    def get_owned_doctor(self, doctor_id: int, actor: Actor) -> Doctor:
        """Load a doctor the actor may edit: the doctor themself or an admin."""
        doctor = self.get_doctor(doctor_id)
        if actor.is_admin:
            return doctor
        if actor.role != UserRole.DOCTOR or doctor.user_id != actor.user_id:
            raise AccessDeniedError("Only the doctor or an administrator can change this schedule")
        return doctor

    # Weekly windows

    def replace_schedule(self, doctor_id: int, windows: List[WeeklyWindowIn], actor: Actor) -> List[DoctorAvailability]:
        doctor = self.get_owned_doctor(doctor_id, actor)

        seen = set()
        for window in windows:
            if window.day_of_week in seen:
                raise ValidationError(
                    f"More than one window given for {window.day_of_week.value}",
                    code="DUPLICATE_SCHEDULE_DAY",
                )
            seen.add(window.day_of_week)

        doctor.availability = [
            DoctorAvailability(
                day_of_week=window.day_of_week,
                start_time=window.start_time,
                end_time=window.end_time,
                is_available=window.is_available,
            )
            for window in windows
        ]
        self._commit(f"update schedule of doctor {doctor.id}")
        logger.info(f"Doctor {doctor.id} schedule replaced with {len(windows)} window(s)")
        return doctor.availability

    # Holidays

    def add_holiday(self, doctor_id: int, data: HolidayCreate, actor: Actor) -> DoctorHoliday:
        doctor = self.get_owned_doctor(doctor_id, actor)
        holiday = DoctorHoliday(
            doctor_id=doctor.id,
            date=data.date,
            reason=data.reason,
            is_recurring=data.is_recurring,
        )
        self.db.add(holiday)
        self._commit(f"add holiday for doctor {doctor.id}")
        self.db.refresh(holiday)
        return holiday

    def remove_holiday(self, doctor_id: int, holiday_id: int, actor: Actor) -> None:
        doctor = self.get_owned_doctor(doctor_id, actor)
        holiday = self.db.query(DoctorHoliday).filter(
            DoctorHoliday.id == holiday_id,
            DoctorHoliday.doctor_id == doctor.id,
        ).first()
        if not holiday:
            raise NotFoundError("Holiday not found", code="HOLIDAY_NOT_FOUND")
        self.db.delete(holiday)
        self._commit(f"remove holiday {holiday_id}")

    # Consultation types

    def replace_consultation_types(
        self, doctor_id: int, types: List[ConsultationTypeIn], actor: Actor
    ) -> List[ConsultationType]:
        doctor = self.get_owned_doctor(doctor_id, actor)

        kinds = [item.type for item in types]
        if len(kinds) != len(set(kinds)):
            raise ValidationError("Each consultation type may be listed once", code="DUPLICATE_CONSULTATION_TYPE")

        # Flush the removals first so the unique (doctor, type) pair is free again
        doctor.consultation_types = []
        try:
            self.db.flush()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError() from exc

        doctor.consultation_types = [
            ConsultationType(type=item.type, fee=item.fee, duration_minutes=item.duration_minutes)
            for item in types
        ]
        self._commit(f"update consultation types of doctor {doctor.id}")
        return doctor.consultation_types

    def resolve_consultation(self, doctor: Doctor, kind: ConsultationKind) -> Tuple[Decimal, int]:
        """Fee and duration for ``kind``, read at call time.

        Doctors without configured types offer every kind at their base fee
        and the default duration.
        """
        if not doctor.consultation_types:
            return Decimal(doctor.consultation_fee or 0), settings.DEFAULT_SLOT_DURATION_MINUTES

        for consultation in doctor.consultation_types:
            if consultation.type == kind:
                return Decimal(consultation.fee), consultation.duration_minutes

        raise ValidationError(
            f"Doctor does not offer {kind.value} consultations",
            code="CONSULTATION_TYPE_UNAVAILABLE",
        )

    # Read paths

    def plan_for(self, doctor: Doctor, target_date: date, duration_minutes: int, today: Optional[date] = None) -> SlotPlan:
        return generate_slots(
            target_date,
            [WeeklyWindow.from_row(row) for row in doctor.availability],
            [HolidayRule.from_row(row) for row in doctor.holidays],
            duration_minutes,
            today=today,
        )

    def available_slots(
        self,
        doctor_id: int,
        target_date: date,
        kind: ConsultationKind,
        today: Optional[date] = None,
    ) -> Tuple[SlotPlan, list]:
        """Candidate slots for the day with already-booked ones removed."""
        doctor = self.get_doctor(doctor_id, require_verified=True)
        _, duration = self.resolve_consultation(doctor, kind)
        plan = self.plan_for(doctor, target_date, duration, today=today)
        if not plan.slots:
            return plan, []

        try:
            free = BookingLedger(self.db).free_slots(doctor.id, target_date, plan.slots, duration)
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc
        return plan, free

    def day_summary(self, doctor_id: int, target_date: date) -> dict:
        doctor = self.get_doctor(doctor_id, require_verified=True)
        windows = [WeeklyWindow.from_row(row) for row in doctor.availability]
        window = find_window(target_date, windows)
        summary = {
            "doctor_id": doctor.id,
            "date": target_date,
            "consultation_types": doctor.consultation_types,
        }

        if window is None:
            return {**summary, "available": False, "reason": NOT_AVAILABLE,
                    "message": "Doctor is not available on this day"}

        holidays = [HolidayRule.from_row(row) for row in doctor.holidays]
        if find_holiday(target_date, holidays) is not None:
            return {**summary, "available": False, "reason": HOLIDAY,
                    "message": "Doctor is on holiday on this day"}

        return {**summary, "available": True, "start_time": window.start_time, "end_time": window.end_time}

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Failed to {action}: {exc}")
            raise PersistenceError() from exc
