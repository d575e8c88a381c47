import os
import tempfile
from datetime import date, time, timedelta
from decimal import Decimal
from pathlib import Path

import pytest

# Set testing environment before the application reads its settings
os.environ["TESTING"] = "1"
_db_path = Path(tempfile.gettempdir()) / "appointment_engine_test.db"
os.environ["TEST_DATABASE_URL"] = f"sqlite:///{_db_path}"

from fastapi.testclient import TestClient

from appointment_engine.main import app
from appointment_engine.core.database import Base, SessionLocal, engine, get_redis
from appointment_engine.core.security import UserRole, create_actor_token
from appointment_engine.models.doctor import (
    ConsultationKind, ConsultationType, DayOfWeek, Doctor, DoctorAvailability
)
from appointment_engine.models.patient import Patient
from appointment_engine.models.user import User


class FakeRedis:
    """In-memory stand-in for the few Redis commands the rate limiter uses."""

    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, seconds, value):
        self.store[key] = str(value)

    def incr(self, key):
        self.store[key] = str(int(self.store.get(key, 0)) + 1)
        return int(self.store[key])


def next_weekday(weekday: int, weeks_ahead: int = 0) -> date:
    """The first date strictly after today falling on ``weekday`` (Monday is 0)."""
    today = date.today()
    days = (weekday - today.weekday()) % 7 or 7
    return today + timedelta(days=days + 7 * weeks_ahead)


def auth_headers(user: User) -> dict:
    token = create_actor_token(user.id, UserRole(user.role), email=user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def fake_redis():
    redis_double = FakeRedis()
    app.dependency_overrides[get_redis] = lambda: redis_double
    yield redis_double
    app.dependency_overrides.pop(get_redis, None)


@pytest.fixture(scope="function")
def test_db():
    # Create tables
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(test_db):
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def client(test_db, fake_redis):
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client


def _make_user(db, email: str, role: UserRole, first_name: str, last_name: str) -> User:
    user = User(email=email, first_name=first_name, last_name=last_name, role=role)
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def admin_user(db):
    user = _make_user(db, "admin@example.com", UserRole.ADMIN, "Ada", "Admin")
    db.commit()
    return user


@pytest.fixture
def doctor(db):
    """Verified doctor working Mondays 09:00-12:00 with two consultation types."""
    user = _make_user(db, "doctor@example.com", UserRole.DOCTOR, "Grace", "Hopper")
    doctor = Doctor(
        user_id=user.id,
        first_name="Grace",
        last_name="Hopper",
        specialization="Cardiology",
        license_number="LIC-0001",
        consultation_fee=Decimal("50.00"),
        is_verified=True,
    )
    doctor.availability = [
        DoctorAvailability(day_of_week=DayOfWeek.MONDAY, start_time=time(9, 0), end_time=time(12, 0)),
    ]
    doctor.consultation_types = [
        ConsultationType(type=ConsultationKind.IN_PERSON, fee=Decimal("100.00"), duration_minutes=30),
        ConsultationType(type=ConsultationKind.VIDEO, fee=Decimal("80.00"), duration_minutes=30),
        ConsultationType(type=ConsultationKind.PHONE, fee=Decimal("40.00"), duration_minutes=60),
    ]
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


@pytest.fixture
def doctor_user(db, doctor):
    return db.query(User).filter(User.id == doctor.user_id).one()


@pytest.fixture
def other_doctor(db):
    user = _make_user(db, "other.doctor@example.com", UserRole.DOCTOR, "Alan", "Turing")
    doctor = Doctor(
        user_id=user.id,
        first_name="Alan",
        last_name="Turing",
        specialization="Neurology",
        license_number="LIC-0002",
        consultation_fee=Decimal("70.00"),
        is_verified=True,
    )
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


@pytest.fixture
def patient(db):
    user = _make_user(db, "patient@example.com", UserRole.PATIENT, "Test", "Patient")
    patient = Patient(user_id=user.id, first_name="Test", last_name="Patient")
    db.add(patient)
    db.commit()
    db.refresh(patient)
    return patient


@pytest.fixture
def patient_user(db, patient):
    return db.query(User).filter(User.id == patient.user_id).one()


@pytest.fixture
def other_patient_user(db):
    user = _make_user(db, "other.patient@example.com", UserRole.PATIENT, "Other", "Patient")
    db.add(Patient(user_id=user.id, first_name="Other", last_name="Patient"))
    db.commit()
    return user


@pytest.fixture
def monday():
    return next_weekday(0)


@pytest.fixture
def booking_payload(doctor, monday):
    return {
        "doctor_id": doctor.id,
        "appointment_date": monday.isoformat(),
        "appointment_time": "10:00",
        "consultation_type": "in_person",
        "reason": "Annual check-up",
        "symptoms": ["fatigue", "  "],
    }
