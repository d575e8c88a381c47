from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Date, Time, Boolean, Text,
    Numeric, Float, Enum as SQLEnum, UniqueConstraint
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class DayOfWeek(str, enum.Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def from_date(cls, value) -> "DayOfWeek":
        return list(cls)[value.weekday()]

class ConsultationKind(str, enum.Enum):
    IN_PERSON = "in_person"
    VIDEO = "video"
    PHONE = "phone"

class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    # Personal information
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    specialization = Column(String(100), nullable=False)
    license_number = Column(String(50), nullable=False, unique=True)
    bio = Column(Text, nullable=True)

    # Fee used when no consultation types are configured
    consultation_fee = Column(Numeric(10, 2), nullable=False, default=0)
    is_verified = Column(Boolean, default=False)

    # Rating, recomputed when a review is submitted
    rating_average = Column(Float, default=0)
    rating_count = Column(Integer, default=0)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="doctor")
    appointments = relationship("Appointment", back_populates="doctor")
    availability = relationship(
        "DoctorAvailability",
        back_populates="doctor",
        order_by="DoctorAvailability.id",
        cascade="all, delete-orphan",
    )
    holidays = relationship(
        "DoctorHoliday",
        back_populates="doctor",
        order_by="DoctorHoliday.date",
        cascade="all, delete-orphan",
    )
    consultation_types = relationship(
        "ConsultationType",
        back_populates="doctor",
        order_by="ConsultationType.id",
        cascade="all, delete-orphan",
    )

    @property
    def full_name(self) -> str:
        return f"Dr. {self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<Doctor(id={self.id}, name='{self.first_name} {self.last_name}', specialization='{self.specialization}')>"

class DoctorAvailability(Base):
    """One recurring weekly window. Duplicate days are rejected on write."""
    __tablename__ = "doctor_availability"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    day_of_week = Column(SQLEnum(DayOfWeek), nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    doctor = relationship("Doctor", back_populates="availability")

    def __repr__(self):
        return f"<DoctorAvailability(doctor_id={self.doctor_id}, day='{self.day_of_week}', {self.start_time}-{self.end_time})>"

class DoctorHoliday(Base):
    __tablename__ = "doctor_holidays"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    reason = Column(String(255), nullable=True)
    is_recurring = Column(Boolean, default=False, nullable=False)

    doctor = relationship("Doctor", back_populates="holidays")

    def __repr__(self):
        return f"<DoctorHoliday(doctor_id={self.doctor_id}, date='{self.date}', recurring={self.is_recurring})>"

class ConsultationType(Base):
    __tablename__ = "consultation_types"
    __table_args__ = (
        UniqueConstraint("doctor_id", "type", name="uq_consultation_types_doctor_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    type = Column(SQLEnum(ConsultationKind), nullable=False)
    fee = Column(Numeric(10, 2), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)

    doctor = relationship("Doctor", back_populates="consultation_types")

    def __repr__(self):
        return f"<ConsultationType(doctor_id={self.doctor_id}, type='{self.type}', duration={self.duration_minutes})>"
