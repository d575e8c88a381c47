import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import AccessDeniedError, ConflictError, PersistenceError, ValidationError
from ..core.security import Actor, UserRole
from ..models.appointment import AppointmentStatus
from ..models.doctor import Doctor
from ..models.review import Review
from ..schemas.review import ReviewCreate
from .appointment_service import AppointmentService

logger = logging.getLogger(__name__)

class ReviewService:
    """Accepts the single review a patient may leave on a completed appointment."""

    def __init__(self, db: Session):
        self.db = db

    def submit_review(self, appointment_id: int, actor: Actor, data: ReviewCreate) -> Review:
        if actor.role != UserRole.PATIENT:
            raise AccessDeniedError("Only patients can review appointments")

        appointment = AppointmentService(self.db).get_appointment(appointment_id, actor)
        if appointment.status != AppointmentStatus.COMPLETED:
            raise ValidationError(
                "Only completed appointments can be reviewed",
                code="APPOINTMENT_NOT_COMPLETED",
            )
        if not appointment.is_review_eligible:
            raise ConflictError("This appointment has already been reviewed", code="REVIEW_EXISTS")

        review = Review(
            appointment_id=appointment.id,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            rating=data.rating,
            comment=data.comment,
        )
        try:
            self.db.add(review)
            self.db.flush()
            self._update_doctor_rating(appointment.doctor_id)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError("This appointment has already been reviewed", code="REVIEW_EXISTS") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Failed to store review for appointment {appointment_id}: {exc}")
            raise PersistenceError() from exc

        self.db.refresh(review)
        return review

    def _update_doctor_rating(self, doctor_id: int) -> None:
        average, count = self.db.query(func.avg(Review.rating), func.count(Review.id)).filter(
            Review.doctor_id == doctor_id
        ).one()
        doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).one()
        doctor.rating_average = round(float(average), 1) if count else 0
        doctor.rating_count = count
