from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.security import UserRole
from ..models.appointment import Appointment, AppointmentStatus, PaymentMethod, PaymentStatus
from ..models.doctor import ConsultationKind


class AppointmentCreate(BaseModel):
    doctor_id: int
    appointment_date: date
    appointment_time: time
    consultation_type: ConsultationKind
    reason: str = Field(min_length=1, max_length=1000)
    symptoms: List[str] = []
    payment_method: Optional[PaymentMethod] = None

    class Config:
        # Duration always comes from the consultation type
        extra = "forbid"

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Reason is required.")
        return normalized

    @field_validator("symptoms")
    @classmethod
    def validate_symptoms(cls, value: List[str]) -> List[str]:
        return [symptom.strip() for symptom in value if symptom and symptom.strip()]

    @field_validator("appointment_time")
    @classmethod
    def validate_time(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0)


class StatusUpdate(BaseModel):
    status: AppointmentStatus
    notes: Optional[str] = Field(default=None, max_length=2000)
    follow_up_required: Optional[bool] = None
    follow_up_date: Optional[date] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class PaymentInfo(BaseModel):
    amount: float
    status: PaymentStatus
    method: Optional[PaymentMethod] = None


class CancellationInfo(BaseModel):
    cancelled_by: UserRole
    reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    refund_amount: Optional[float] = None


class AppointmentResponse(BaseModel):
    id: int
    appointment_code: Optional[str] = None
    patient_id: int
    doctor_id: int
    appointment_date: date
    appointment_time: str
    end_time: str
    duration_minutes: int
    consultation_type: ConsultationKind
    status: AppointmentStatus
    reason: str
    symptoms: List[str] = []
    notes: Optional[str] = None
    follow_up_required: bool = False
    follow_up_date: Optional[date] = None
    payment: PaymentInfo
    cancellation: Optional[CancellationInfo] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, appointment: Appointment) -> "AppointmentResponse":
        cancellation = None
        if appointment.cancelled_by is not None:
            cancellation = CancellationInfo(
                cancelled_by=appointment.cancelled_by,
                reason=appointment.cancellation_reason,
                cancelled_at=appointment.cancelled_at,
                refund_amount=(
                    float(appointment.refund_amount) if appointment.refund_amount is not None else None
                ),
            )

        return cls(
            id=appointment.id,
            appointment_code=appointment.appointment_code,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            appointment_date=appointment.appointment_date,
            appointment_time=appointment.start_time.strftime("%H:%M"),
            end_time=appointment.end_time.strftime("%H:%M"),
            duration_minutes=appointment.duration_minutes,
            consultation_type=appointment.consultation_type,
            status=appointment.status,
            reason=appointment.reason,
            symptoms=appointment.symptoms or [],
            notes=appointment.notes,
            follow_up_required=bool(appointment.follow_up_required),
            follow_up_date=appointment.follow_up_date,
            payment=PaymentInfo(
                amount=float(appointment.payment_amount),
                status=appointment.payment_status,
                method=appointment.payment_method,
            ),
            cancellation=cancellation,
            created_at=appointment.created_at,
        )


class Pagination(BaseModel):
    current: int
    pages: int
    total: int


class AppointmentListResponse(BaseModel):
    appointments: List[AppointmentResponse]
    pagination: Pagination
