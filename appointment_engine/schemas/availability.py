from datetime import date, time
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..core.config import settings
from ..models.doctor import ConsultationKind, DayOfWeek


class WeeklyWindowIn(BaseModel):
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    is_available: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def truncate_seconds(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0)

    @model_validator(mode="after")
    def check_range(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class ScheduleUpdate(BaseModel):
    windows: List[WeeklyWindowIn]


class WeeklyWindowResponse(BaseModel):
    id: int
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    is_available: bool

    class Config:
        from_attributes = True


class HolidayCreate(BaseModel):
    date: date
    reason: Optional[str] = Field(default=None, max_length=255)
    is_recurring: bool = False


class HolidayResponse(BaseModel):
    id: int
    date: date
    reason: Optional[str] = None
    is_recurring: bool

    class Config:
        from_attributes = True


class ConsultationTypeIn(BaseModel):
    type: ConsultationKind
    fee: Decimal = Field(ge=0)
    duration_minutes: int = Field(
        default=settings.DEFAULT_SLOT_DURATION_MINUTES,
        ge=settings.MIN_APPOINTMENT_DURATION_MINUTES,
        le=settings.MAX_APPOINTMENT_DURATION_MINUTES,
    )


class ConsultationTypesUpdate(BaseModel):
    consultation_types: List[ConsultationTypeIn]


class ConsultationTypeResponse(BaseModel):
    id: int
    type: ConsultationKind
    fee: float
    duration_minutes: int

    class Config:
        from_attributes = True


class DayAvailabilityResponse(BaseModel):
    doctor_id: int
    date: date
    available: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    consultation_types: List[ConsultationTypeResponse] = []


class SlotResponse(BaseModel):
    time: str
    available: bool = True


class SlotListResponse(BaseModel):
    doctor_id: int
    date: date
    consultation_type: ConsultationKind
    duration_minutes: int
    available_slots: List[SlotResponse]
    reason: Optional[str] = None
