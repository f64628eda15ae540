import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Set testing environment before the app reads its settings
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test.db"

from app.main import app  # noqa: E402
from app.core.database import get_db, get_redis, Base  # noqa: E402
from app.core.security import UserRole, create_user_token  # noqa: E402
from app.models.user import User  # noqa: E402
from app.models.appointment import Appointment, AppointmentStatus  # noqa: E402

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
SeedSessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db

@pytest.fixture(scope="function")
def test_db():
    Base.metadata.create_all(bind=engine)
    get_redis().flushdb()
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture
def client(test_db):
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client

@pytest.fixture
def db_session(test_db):
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

def create_user(name: str, email: str, role: UserRole) -> User:
    db = SeedSessionLocal()
    try:
        user = User(name=name, email=email, role=role)
        db.add(user)
        db.commit()
        return user
    finally:
        db.close()

def create_appointment(patient: User, doctor: User, appointment_date, start_time, end_time,
                       status=AppointmentStatus.SCHEDULED) -> Appointment:
    db = SeedSessionLocal()
    try:
        appointment = Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id,
            appointment_date=appointment_date,
            start_time=start_time,
            end_time=end_time,
            status=status,
        )
        db.add(appointment)
        db.commit()
        return appointment
    finally:
        db.close()

def auth_headers(user: User) -> dict:
    token = create_user_token(user.id, user.email, user.role)
    return {"Authorization": f"Bearer {token}"}

@pytest.fixture
def patient(test_db):
    return create_user("Alice Patient", "alice@example.com", UserRole.PATIENT)

@pytest.fixture
def doctor(test_db):
    return create_user("Dr. Bob House", "bob@hospital.example.com", UserRole.DOCTOR)

@pytest.fixture
def other_doctor(test_db):
    return create_user("Dr. Carol Grey", "carol@hospital.example.com", UserRole.DOCTOR)

@pytest.fixture
def admin(test_db):
    return create_user("Dana Admin", "dana@hospital.example.com", UserRole.ADMIN)
