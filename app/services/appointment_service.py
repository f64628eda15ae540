from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, aliased
from fastapi import HTTPException, status
from datetime import date, datetime, time
from typing import Any, List, Optional
import logging
import re
import uuid

from ..models.user import User
from ..models.appointment import Appointment, AppointmentStatus
from ..core.security import UserRole, AuthorizationError
from ..schemas.appointment import (
    AppointmentCreate, AppointmentUpdate, AppointmentResponse
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("patient_id", "doctor_id", "appointment_date", "start_time", "end_time")

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE
)
DATE_PATTERN = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")
TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9](:[0-5][0-9])?$")

# Any fixed day works; only the time-of-day parts are compared
REFERENCE_DATE = date(2000, 1, 1)

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: {AppointmentStatus.SCHEDULED, AppointmentStatus.CANCELLED},
    AppointmentStatus.SCHEDULED: {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
}

PatientUser = aliased(User, name="patient")
DoctorUser = aliased(User, name="doctor")

def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

def _is_blank(value) -> bool:
    return value is None or value == ""

def _matches(pattern: re.Pattern, value: Any) -> bool:
    # JSON numbers, booleans and objects never match a string format
    return isinstance(value, str) and pattern.fullmatch(value) is not None

# Field validators. Each raises a 400 naming the offending field.
def find_missing_fields(data: dict) -> List[str]:
    """Return the mandatory booking fields that are absent or empty, in field order."""
    return [field for field in REQUIRED_FIELDS if _is_blank(data.get(field))]

def parse_uuid(value: Any, field: str) -> uuid.UUID:
    if not _matches(UUID_PATTERN, value):
        raise _bad_request(f"Invalid {field} format")
    return uuid.UUID(value)

def parse_date(value: Any) -> date:
    if not _matches(DATE_PATTERN, value):
        raise _bad_request("Invalid appointment_date format. Use YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError:
        # Pattern matched but the day does not exist, e.g. 2024-02-30
        raise _bad_request("Invalid appointment_date format. Use YYYY-MM-DD")

def parse_time(value: Any, field: str) -> time:
    if not _matches(TIME_PATTERN, value):
        raise _bad_request(f"Invalid {field} format. Use HH:MM or HH:MM:SS")
    return time(*(int(part) for part in value.split(":")))

def validate_time_range(start_time: time, end_time: time) -> None:
    start = datetime.combine(REFERENCE_DATE, start_time)
    end = datetime.combine(REFERENCE_DATE, end_time)
    if end <= start:
        raise _bad_request("end_time must be after start_time")

def parse_status(value: Any) -> AppointmentStatus:
    allowed = [s.value for s in AppointmentStatus]
    if not isinstance(value, str) or value not in allowed:
        raise _bad_request(f"Invalid status. Must be one of: {', '.join(allowed)}")
    return AppointmentStatus(value)

class AppointmentService:
    def __init__(self, db: Session):
        self.db = db

    def list_appointments(self) -> List[AppointmentResponse]:
        """All appointments, newest date first, earliest slot first within a day."""
        rows = self._enriched_query().order_by(
            Appointment.appointment_date.desc(),
            Appointment.start_time.asc()
        ).all()
        return [self._to_response(row) for row in rows]

    def get_appointment(self, appointment_id: uuid.UUID) -> AppointmentResponse:
        row = self._enriched_query().filter(Appointment.id == appointment_id).first()
        if not row:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Appointment not found"
            )
        return self._to_response(row)

    def create_appointment(self, data: AppointmentCreate) -> AppointmentResponse:
        """Validate, check for a conflicting booking and insert a new appointment.

        Checks run in a fixed order and stop at the first failure. The doctor's
        row is locked before the conflict query. On PostgreSQL that serialises
        concurrent bookings for the same doctor until this transaction commits;
        SQLite ignores the lock.
        """
        missing = find_missing_fields(data.model_dump())
        if missing:
            raise _bad_request(f"Missing required fields: {', '.join(missing)}")

        patient_id = parse_uuid(data.patient_id, "patient_id")
        doctor_id = parse_uuid(data.doctor_id, "doctor_id")
        appointment_date = parse_date(data.appointment_date)
        start_time = parse_time(data.start_time, "start_time")
        end_time = parse_time(data.end_time, "end_time")
        validate_time_range(start_time, end_time)

        appointment_status = AppointmentStatus.SCHEDULED
        if not _is_blank(data.status):
            appointment_status = parse_status(data.status)

        self._require_user(
            patient_id, UserRole.PATIENT,
            "Patient not found or user is not a patient"
        )
        self._require_user(
            doctor_id, UserRole.DOCTOR,
            "Doctor not found or user is not a doctor",
            lock=True
        )

        self._ensure_slot_free(doctor_id, appointment_date, start_time, end_time)

        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            appointment_date=appointment_date,
            start_time=start_time,
            end_time=end_time,
            status=appointment_status,
            location=None if _is_blank(data.location) else data.location,
            notes=None if _is_blank(data.notes) else data.notes,
        )
        self.db.add(appointment)
        self.db.commit()

        logger.info(
            f"Created appointment {appointment.id} for doctor {doctor_id} "
            f"on {appointment_date} {start_time}-{end_time}"
        )
        return self.get_appointment(appointment.id)

    def update_appointment(
        self,
        appointment_id: uuid.UUID,
        data: AppointmentUpdate,
        current_user: User
    ) -> AppointmentResponse:
        """Reschedule or annotate an appointment (doctor of record or admin)."""
        appointment = self._get_for_staff(appointment_id, current_user)

        new_date = appointment.appointment_date
        new_start = appointment.start_time
        new_end = appointment.end_time
        if data.appointment_date is not None:
            new_date = parse_date(data.appointment_date)
        if data.start_time is not None:
            new_start = parse_time(data.start_time, "start_time")
        if data.end_time is not None:
            new_end = parse_time(data.end_time, "end_time")
        validate_time_range(new_start, new_end)

        slot_changed = (
            (new_date, new_start, new_end)
            != (appointment.appointment_date, appointment.start_time, appointment.end_time)
        )
        if slot_changed and appointment.status != AppointmentStatus.CANCELLED:
            self._lock_doctor(appointment.doctor_id)
            self._ensure_slot_free(
                appointment.doctor_id, new_date, new_start, new_end,
                exclude_id=appointment.id
            )

        appointment.appointment_date = new_date
        appointment.start_time = new_start
        appointment.end_time = new_end
        fields_set = data.model_fields_set
        if "location" in fields_set:
            appointment.location = None if _is_blank(data.location) else data.location
        if "notes" in fields_set:
            appointment.notes = None if _is_blank(data.notes) else data.notes

        self.db.commit()
        logger.info(f"Appointment {appointment.id} updated by user {current_user.id}")
        return self.get_appointment(appointment.id)

    def change_status(
        self,
        appointment_id: uuid.UUID,
        new_status: Any,
        current_user: User
    ) -> AppointmentResponse:
        """Move an appointment along its lifecycle."""
        if _is_blank(new_status):
            raise _bad_request("Missing required fields: status")
        target = parse_status(new_status)

        appointment = self._get_for_staff(appointment_id, current_user)
        current = AppointmentStatus(appointment.status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise _bad_request(
                f"Cannot change status from {current.value} to {target.value}"
            )

        if target == AppointmentStatus.SCHEDULED:
            # A pending request is becoming a real booking
            self._lock_doctor(appointment.doctor_id)
            self._ensure_slot_free(
                appointment.doctor_id,
                appointment.appointment_date,
                appointment.start_time,
                appointment.end_time,
                exclude_id=appointment.id
            )

        appointment.status = target
        self.db.commit()
        logger.info(
            f"Appointment {appointment.id} status {current.value} -> {target.value} "
            f"by user {current_user.id}"
        )
        return self.get_appointment(appointment.id)

    def _enriched_query(self):
        return self.db.query(
            Appointment,
            PatientUser.name,
            PatientUser.email,
            DoctorUser.name,
            DoctorUser.email,
        ).join(
            PatientUser, Appointment.patient_id == PatientUser.id
        ).join(
            DoctorUser, Appointment.doctor_id == DoctorUser.id
        )

    @staticmethod
    def _to_response(row) -> AppointmentResponse:
        appointment, patient_name, patient_email, doctor_name, doctor_email = row
        return AppointmentResponse(
            id=appointment.id,
            patient_id=appointment.patient_id,
            patient_name=patient_name,
            patient_email=patient_email,
            doctor_id=appointment.doctor_id,
            doctor_name=doctor_name,
            doctor_email=doctor_email,
            appointment_date=appointment.appointment_date,
            start_time=appointment.start_time,
            end_time=appointment.end_time,
            status=appointment.status,
            location=appointment.location,
            notes=appointment.notes,
            created_at=appointment.created_at,
        )

    def _require_user(
        self,
        user_id: uuid.UUID,
        role: UserRole,
        detail: str,
        lock: bool = False
    ) -> User:
        query = self.db.query(User).filter(User.id == user_id, User.role == role)
        if lock:
            query = query.with_for_update()
        users = query.all()
        if len(users) != 1:
            raise _bad_request(detail)
        return users[0]

    def _lock_doctor(self, doctor_id: uuid.UUID) -> None:
        self.db.query(User).filter(User.id == doctor_id).with_for_update().first()

    def _ensure_slot_free(
        self,
        doctor_id: uuid.UUID,
        appointment_date: date,
        start_time: time,
        end_time: time,
        exclude_id: Optional[uuid.UUID] = None
    ) -> None:
        query = self.db.query(Appointment.id).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date == appointment_date,
            Appointment.status != AppointmentStatus.CANCELLED,
            or_(
                and_(Appointment.start_time <= start_time, Appointment.end_time > start_time),
                and_(Appointment.start_time < end_time, Appointment.end_time >= end_time),
                and_(Appointment.start_time >= start_time, Appointment.end_time <= end_time),
            )
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)

        if query.first():
            logger.info(
                f"Scheduling conflict for doctor {doctor_id} on {appointment_date} "
                f"{start_time}-{end_time}"
            )
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Doctor already has an appointment scheduled during this time"
            )

    def _get_for_staff(self, appointment_id: uuid.UUID, current_user: User) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).first()
        if not appointment:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Appointment not found"
            )

        if current_user.role == UserRole.ADMIN:
            return appointment
        if current_user.role == UserRole.DOCTOR:
            if appointment.doctor_id != current_user.id:
                raise AuthorizationError("Doctors can only modify their own appointments")
            return appointment
        if current_user.role == UserRole.PATIENT:
            raise AuthorizationError("Patients cannot modify appointments")
        raise AuthorizationError()
