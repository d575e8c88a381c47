from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ...api.deps import get_current_actor
from ...core.database import get_db
from ...core.security import Actor
from ...schemas.availability import (
    ConsultationTypeResponse, ConsultationTypesUpdate, DayAvailabilityResponse,
    HolidayCreate, HolidayResponse, ScheduleUpdate, WeeklyWindowResponse
)
from ...services.availability_service import AvailabilityService

router = APIRouter(prefix="/doctors", tags=["Doctor availability"])

@router.get("/{doctor_id}/availability", response_model=DayAvailabilityResponse)
def get_day_availability(
    doctor_id: int,
    date: date = Query(...),
    db: Session = Depends(get_db),
):
    """Whether the doctor works on a date, and their hours and consultation types."""
    summary = AvailabilityService(db).day_summary(doctor_id, date)
    summary["consultation_types"] = [
        ConsultationTypeResponse.model_validate(item) for item in summary["consultation_types"]
    ]
    return DayAvailabilityResponse(**summary)

@router.get("/{doctor_id}/schedule", response_model=List[WeeklyWindowResponse])
def get_schedule(doctor_id: int, db: Session = Depends(get_db)):
    doctor = AvailabilityService(db).get_doctor(doctor_id)
    return [WeeklyWindowResponse.model_validate(window) for window in doctor.availability]

@router.put("/{doctor_id}/schedule", response_model=List[WeeklyWindowResponse])
def replace_schedule(
    doctor_id: int,
    data: ScheduleUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Replace the doctor's weekly windows (doctor themself or admin)."""
    windows = AvailabilityService(db).replace_schedule(doctor_id, data.windows, actor)
    return [WeeklyWindowResponse.model_validate(window) for window in windows]

@router.get("/{doctor_id}/holidays", response_model=List[HolidayResponse])
def list_holidays(doctor_id: int, db: Session = Depends(get_db)):
    doctor = AvailabilityService(db).get_doctor(doctor_id)
    return [HolidayResponse.model_validate(holiday) for holiday in doctor.holidays]

@router.post("/{doctor_id}/holidays", response_model=HolidayResponse, status_code=status.HTTP_201_CREATED)
def add_holiday(
    doctor_id: int,
    data: HolidayCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    holiday = AvailabilityService(db).add_holiday(doctor_id, data, actor)
    return HolidayResponse.model_validate(holiday)

@router.delete("/{doctor_id}/holidays/{holiday_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_holiday(
    doctor_id: int,
    holiday_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    AvailabilityService(db).remove_holiday(doctor_id, holiday_id, actor)

@router.get("/{doctor_id}/consultation-types", response_model=List[ConsultationTypeResponse])
def list_consultation_types(doctor_id: int, db: Session = Depends(get_db)):
    doctor = AvailabilityService(db).get_doctor(doctor_id)
    return [ConsultationTypeResponse.model_validate(item) for item in doctor.consultation_types]

@router.put("/{doctor_id}/consultation-types", response_model=List[ConsultationTypeResponse])
def replace_consultation_types(
    doctor_id: int,
    data: ConsultationTypesUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Replace the consultation types; existing bookings keep the fee they were booked at."""
    types = AvailabilityService(db).replace_consultation_types(doctor_id, data.consultation_types, actor)
    return [ConsultationTypeResponse.model_validate(item) for item in types]
