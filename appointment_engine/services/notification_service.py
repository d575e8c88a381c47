from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

import httpx
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.security import UserRole
from ..models.appointment import Appointment, AppointmentStatus
from ..models.doctor import Doctor
from ..models.notification import Notification
from ..models.patient import Patient

logger = logging.getLogger(__name__)

class NotificationEvent(BaseModel):
    """Payload handed to the notification dispatcher."""
    type: str = "appointment"
    recipient_id: int
    title: str = Field(max_length=100)
    message: str = Field(max_length=500)
    data: Dict[str, Any] = Field(default_factory=dict)

def _when(appointment: Appointment) -> str:
    return f"{appointment.appointment_date.isoformat()} at {appointment.start_time.strftime('%H:%M')}"

def _data(appointment: Appointment, **extra) -> Dict[str, Any]:
    data = {
        "appointment_id": appointment.id,
        "appointment_code": appointment.appointment_code,
        "date": appointment.appointment_date.isoformat(),
        "time": appointment.start_time.strftime("%H:%M"),
    }
    data.update(extra)
    return data

def booking_events(appointment: Appointment, doctor: Doctor, patient: Patient) -> List[NotificationEvent]:
    """Events for a freshly booked appointment: one for each party."""
    return [
        NotificationEvent(
            recipient_id=doctor.user_id,
            title="New Appointment Booked",
            message=f"New appointment with {patient.full_name} on {_when(appointment)}",
            data=_data(appointment, patient_id=patient.id),
        ),
        NotificationEvent(
            recipient_id=patient.user_id,
            title="Appointment Booked",
            message=f"Your appointment with {doctor.full_name} is booked for {_when(appointment)}",
            data=_data(appointment, doctor_id=doctor.id, amount=float(appointment.payment_amount)),
        ),
    ]

def transition_events(
    appointment: Appointment,
    doctor: Doctor,
    patient: Patient,
    previous: AppointmentStatus,
    actor_role: UserRole,
) -> List[NotificationEvent]:
    """Events for a committed status change; empty when nobody needs telling."""
    status = appointment.status
    data = _data(appointment, previous_status=previous.value, status=status.value)

    if status == AppointmentStatus.CANCELLED:
        reason = appointment.cancellation_reason or f"Cancelled by {actor_role.value}"
        return [
            NotificationEvent(
                recipient_id=recipient,
                title="Appointment Cancelled",
                message=f"The appointment on {_when(appointment)} was cancelled: {reason}"[:500],
                data={**data, "cancelled_by": actor_role.value},
            )
            for recipient in (doctor.user_id, patient.user_id)
        ]

    if status == AppointmentStatus.CONFIRMED:
        title = "Appointment Confirmed"
        message = f"{doctor.full_name} confirmed your appointment on {_when(appointment)}"
    elif status == AppointmentStatus.COMPLETED:
        title = "Appointment Completed"
        message = f"Your appointment with {doctor.full_name} is complete. You can now leave a review."
    elif status == AppointmentStatus.NO_SHOW:
        title = "Missed Appointment"
        message = f"You were marked as absent for your appointment on {_when(appointment)}"
    else:
        return []

    return [NotificationEvent(recipient_id=patient.user_id, title=title, message=message, data=data)]

class NotificationService:
    """Persist notification events and forward them to the dispatcher webhook."""

    def __init__(
        self,
        db: Session,
        client: Optional[httpx.Client] = None,
        webhook_url: Optional[str] = None,
    ):
        self.db = db
        self.client = client
        self.webhook_url = webhook_url if webhook_url is not None else settings.NOTIFICATION_WEBHOOK_URL

    def dispatch(self, events: List[NotificationEvent]) -> List[Notification]:
        """Store and forward ``events``.

        Runs after the appointment change has been committed, so failures
        are logged and never undo the booking or transition.
        """
        if not events:
            return []

        try:
            rows = [Notification(**event.model_dump()) for event in events]
            self.db.add_all(rows)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Failed to store {len(events)} notification(s): {exc}")
            return []

        if self.webhook_url:
            self._forward(rows)
        return rows

    def _forward(self, rows: List[Notification]) -> None:
        client = self.client or httpx.Client(timeout=settings.NOTIFICATION_WEBHOOK_TIMEOUT_SECONDS)
        try:
            for row in rows:
                payload = {
                    "id": row.id,
                    "type": row.type,
                    "recipient_id": row.recipient_id,
                    "title": row.title,
                    "message": row.message,
                    "data": row.data,
                }
                try:
                    response = client.post(self.webhook_url, json=payload)
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    logger.warning(f"Notification {row.id} was not delivered: {exc}")
                    continue
                row.delivered_at = datetime.utcnow()
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Failed to record notification delivery: {exc}")
        finally:
            if self.client is None:
                client.close()
