from datetime import date, datetime
from typing import List, Optional, Tuple
import logging
import math

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    AccessDeniedError, InvalidTransitionError, NotFoundError, PersistenceError, ValidationError
)
from ..core.security import Actor, UserRole
from ..models.appointment import (
    Appointment, AppointmentStatus, PaymentStatus, TERMINAL_STATUSES
)
from ..models.doctor import Doctor
from ..models.patient import Patient
from ..models.review import Review  # noqa: F401  registers Appointment.review target
from ..schemas.appointment import AppointmentCreate
from .availability_service import AvailabilityService
from .booking_ledger import BookingLedger
from .lifecycle import check_transition
from .notification_service import NotificationService, booking_events, transition_events
from .payment import PaymentCollaborator
from .slot_generator import from_minutes, to_minutes

logger = logging.getLogger(__name__)

class AppointmentService:
    def __init__(
        self,
        db: Session,
        notifications: Optional[NotificationService] = None,
        payments: Optional[PaymentCollaborator] = None,
    ):
        self.db = db
        self.notifications = notifications or NotificationService(db)
        self.payments = payments or PaymentCollaborator()

    def book_appointment(
        self,
        data: AppointmentCreate,
        actor: Actor,
        now: Optional[datetime] = None,
    ) -> Appointment:
        """Book a slot for the calling patient.

        Validation happens before the ledger is touched; the ledger then
        re-checks the slot and commits atomically.
        """
        if actor.role != UserRole.PATIENT:
            raise AccessDeniedError("Only patients can book appointments")

        patient = self._patient_for(actor)
        availability = AvailabilityService(self.db)
        doctor = availability.get_doctor(data.doctor_id, require_verified=True)

        now = now or datetime.now()
        starts_at = datetime.combine(data.appointment_date, data.appointment_time)
        if starts_at <= now:
            raise ValidationError(
                "Appointment date must be in the future",
                code="INVALID_APPOINTMENT_DATE",
            )

        fee, duration = availability.resolve_consultation(doctor, data.consultation_type)

        plan = availability.plan_for(doctor, data.appointment_date, duration, today=now.date())
        if data.appointment_time not in plan.slots:
            raise ValidationError(
                "Requested time is not an offered slot for this doctor",
                code="SLOT_NOT_OFFERED",
                extra={"reason": plan.reason} if plan.reason else None,
            )

        start_minutes = to_minutes(data.appointment_time)
        appointment = Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id,
            appointment_date=data.appointment_date,
            start_time=data.appointment_time,
            end_time=from_minutes(start_minutes + duration),
            duration_minutes=duration,
            consultation_type=data.consultation_type,
            status=AppointmentStatus.SCHEDULED,
            reason=data.reason,
            symptoms=list(data.symptoms),
            payment_amount=fee,
            payment_status=PaymentStatus.PENDING,
            payment_method=data.payment_method,
        )

        appointment = BookingLedger(self.db).reserve(appointment)
        logger.info(
            f"Appointment {appointment.appointment_code} booked: doctor {doctor.id}, "
            f"patient {patient.id}, {appointment.appointment_date} {appointment.start_time}"
        )

        self.notifications.dispatch(booking_events(appointment, doctor, patient))
        return appointment

    def get_appointment(self, appointment_id: int, actor: Actor) -> Appointment:
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if not appointment:
            raise NotFoundError("Appointment not found", code="APPOINTMENT_NOT_FOUND")

        if not self._can_access(appointment, actor):
            raise AccessDeniedError()
        return appointment

    def list_appointments(
        self,
        actor: Actor,
        status: Optional[AppointmentStatus] = None,
        on_date: Optional[date] = None,
        doctor_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Appointment], int]:
        """Appointments visible to ``actor``, newest first."""
        query = self.db.query(Appointment)

        if actor.role == UserRole.PATIENT:
            query = query.filter(Appointment.patient_id == self._patient_for(actor).id)
        elif actor.role == UserRole.DOCTOR:
            query = query.filter(Appointment.doctor_id == self._doctor_for(actor).id)

        if status:
            query = query.filter(Appointment.status == status)
        if on_date:
            query = query.filter(Appointment.appointment_date == on_date)
        if doctor_id:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if patient_id:
            query = query.filter(Appointment.patient_id == patient_id)

        limit = max(1, min(limit, settings.MAX_PAGE_SIZE))
        page = max(1, page)
        try:
            total = query.count()
            appointments = query.order_by(
                Appointment.appointment_date.desc(),
                Appointment.start_time.desc(),
            ).offset((page - 1) * limit).limit(limit).all()
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc
        return appointments, total

    @staticmethod
    def page_count(total: int, limit: int) -> int:
        return math.ceil(total / limit) if limit else 0

    def update_status(
        self,
        appointment_id: int,
        actor: Actor,
        target: AppointmentStatus,
        notes: Optional[str] = None,
        follow_up_required: Optional[bool] = None,
        follow_up_date: Optional[date] = None,
        reason: Optional[str] = None,
    ) -> Appointment:
        """Move an appointment along the lifecycle on behalf of ``actor``.

        The write is a single conditional UPDATE keyed on the status that
        was validated, so a concurrent change makes this call fail instead
        of overwriting it.
        """
        appointment = self.get_appointment(appointment_id, actor)
        previous = appointment.status
        check_transition(actor.role, previous, target)

        values = {"status": target}
        if notes is not None:
            values["notes"] = notes
        if follow_up_required is not None:
            values["follow_up_required"] = follow_up_required
        if follow_up_date is not None:
            values["follow_up_date"] = follow_up_date
        if target in TERMINAL_STATUSES:
            # Frees the slot for new bookings
            values["slot_key"] = None
        if target == AppointmentStatus.CANCELLED:
            values.update(self._cancellation_values(appointment, actor.role, reason))

        try:
            updated = self.db.query(Appointment).filter(
                Appointment.id == appointment.id,
                Appointment.status == previous,
            ).update(values, synchronize_session=False)

            if updated != 1:
                self.db.rollback()
                self.db.refresh(appointment)
                logger.info(
                    f"Appointment {appointment.id} changed from {previous.value} to "
                    f"{appointment.status.value} before this update"
                )
                check_transition(actor.role, appointment.status, target)
                raise InvalidTransitionError(
                    "Appointment was modified concurrently, please retry",
                    code="CONCURRENT_MODIFICATION",
                )

            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Failed to update appointment {appointment.id}: {exc}")
            raise PersistenceError() from exc

        self.db.refresh(appointment)
        logger.info(
            f"Appointment {appointment.appointment_code} moved {previous.value} -> "
            f"{target.value} by {actor.role.value} {actor.user_id}"
        )

        events = transition_events(
            appointment, appointment.doctor, appointment.patient, previous, actor.role
        )
        self.notifications.dispatch(events)
        return appointment

    def cancel_appointment(self, appointment_id: int, actor: Actor, reason: Optional[str] = None) -> Appointment:
        return self.update_status(appointment_id, actor, AppointmentStatus.CANCELLED, reason=reason)

    def _cancellation_values(self, appointment: Appointment, role: UserRole, reason: Optional[str]) -> dict:
        values = {
            "cancelled_by": role,
            "cancellation_reason": (reason or "").strip() or f"Cancelled by {role.value}",
            "cancelled_at": datetime.utcnow(),
        }
        refund = self.payments.refund_amount(appointment, role)
        if refund is not None:
            values["refund_amount"] = refund
            if refund > 0 and appointment.payment_status == PaymentStatus.PAID:
                values["payment_status"] = PaymentStatus.REFUNDED
        return values

    def _can_access(self, appointment: Appointment, actor: Actor) -> bool:
        if actor.is_admin:
            return True
        if actor.role == UserRole.DOCTOR:
            return appointment.doctor is not None and appointment.doctor.user_id == actor.user_id
        if actor.role == UserRole.PATIENT:
            return appointment.patient is not None and appointment.patient.user_id == actor.user_id
        return False

    def _patient_for(self, actor: Actor) -> Patient:
        patient = self.db.query(Patient).filter(Patient.user_id == actor.user_id).first()
        if not patient:
            raise NotFoundError("Patient profile not found", code="PATIENT_NOT_FOUND")
        return patient

    def _doctor_for(self, actor: Actor) -> Doctor:
        doctor = self.db.query(Doctor).filter(Doctor.user_id == actor.user_id).first()
        if not doctor:
            raise NotFoundError("Doctor profile not found", code="DOCTOR_NOT_FOUND")
        return doctor
