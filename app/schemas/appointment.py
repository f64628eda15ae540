"""Request and response bodies for the appointment endpoints.

Booking fields are accepted untyped so that the service layer can report each
malformed value, including non-string JSON, with its own 400 message instead
of a generic 422.
"""
from datetime import date, datetime, time
from typing import Any, Optional
import uuid

from pydantic import BaseModel

from ..models.appointment import AppointmentStatus

class AppointmentCreate(BaseModel):
    patient_id: Any = None
    doctor_id: Any = None
    appointment_date: Any = None
    start_time: Any = None
    end_time: Any = None
    status: Any = None
    location: Optional[str] = None
    notes: Optional[str] = None

class AppointmentUpdate(BaseModel):
    appointment_date: Any = None
    start_time: Any = None
    end_time: Any = None
    location: Optional[str] = None
    notes: Optional[str] = None

class AppointmentStatusUpdate(BaseModel):
    status: Any = None

class AppointmentResponse(BaseModel):
    """An appointment joined with its patient's and doctor's name and email."""
    id: uuid.UUID
    patient_id: uuid.UUID
    patient_name: str
    patient_email: str
    doctor_id: uuid.UUID
    doctor_name: str
    doctor_email: str
    appointment_date: date
    start_time: time
    end_time: time
    status: AppointmentStatus
    location: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class AppointmentEnvelope(BaseModel):
    message: str
    appointment: AppointmentResponse
