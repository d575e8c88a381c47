from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ...api.deps import booking_rate_limit, get_current_actor, get_patient_actor
from ...core.config import settings
from ...core.database import get_db
from ...core.security import Actor
from ...models.appointment import AppointmentStatus
from ...schemas.appointment import (
    AppointmentCreate, AppointmentListResponse, AppointmentResponse,
    CancelRequest, Pagination, StatusUpdate
)
from ...schemas.review import ReviewCreate, ReviewResponse
from ...services.appointment_service import AppointmentService
from ...services.review_service import ReviewService

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.post(
    "",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limit)],
)
def book_appointment(
    data: AppointmentCreate,
    actor: Actor = Depends(get_patient_actor),
    db: Session = Depends(get_db),
):
    """
    Book an appointment for the calling patient.

    - **doctor_id**: verified doctor to book with
    - **appointment_date** / **appointment_time**: must be an offered, free slot in the future
    - **consultation_type**: in_person, video or phone
    - **reason**: why the patient is booking
    """
    appointment = AppointmentService(db).book_appointment(data, actor)
    return AppointmentResponse.from_model(appointment)

@router.get("", response_model=AppointmentListResponse)
def list_appointments(
    status: Optional[AppointmentStatus] = Query(None),
    date: Optional[date] = Query(None),
    doctor_id: Optional[int] = Query(None),
    patient_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=settings.MAX_PAGE_SIZE),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Appointments visible to the caller, newest first."""
    service = AppointmentService(db)
    appointments, total = service.list_appointments(
        actor,
        status=status,
        on_date=date,
        doctor_id=doctor_id,
        patient_id=patient_id,
        page=page,
        limit=limit,
    )
    return AppointmentListResponse(
        appointments=[AppointmentResponse.from_model(item) for item in appointments],
        pagination=Pagination(current=page, pages=service.page_count(total, limit), total=total),
    )

@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    appointment = AppointmentService(db).get_appointment(appointment_id, actor)
    return AppointmentResponse.from_model(appointment)

@router.put("/{appointment_id}/status", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: StatusUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    appointment = AppointmentService(db).update_status(
        appointment_id,
        actor,
        data.status,
        notes=data.notes,
        follow_up_required=data.follow_up_required,
        follow_up_date=data.follow_up_date,
    )
    return AppointmentResponse.from_model(appointment)

@router.put("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: Optional[CancelRequest] = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    reason = data.reason if data else None
    appointment = AppointmentService(db).cancel_appointment(appointment_id, actor, reason)
    return AppointmentResponse.from_model(appointment)

@router.post(
    "/{appointment_id}/review",
    response_model=ReviewResponse,
    status_code=status.HTTP_201_CREATED,
)
def review_appointment(
    appointment_id: int,
    data: ReviewCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Leave the single review allowed for a completed appointment."""
    review = ReviewService(db).submit_review(appointment_id, actor, data)
    return ReviewResponse.model_validate(review)
