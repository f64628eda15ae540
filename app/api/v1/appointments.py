from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List
import uuid

from ...core.database import get_db
from ...api.deps import get_staff_user
from ...services.appointment_service import AppointmentService
from ...schemas.appointment import (
    AppointmentCreate, AppointmentUpdate, AppointmentStatusUpdate,
    AppointmentResponse, AppointmentEnvelope
)
from ...models.user import User

# Database failures surface through the app-level SQLAlchemyError handler
router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.get("", response_model=List[AppointmentResponse])
async def list_appointments(db: Session = Depends(get_db)):
    """List every appointment with patient and doctor contact details."""
    return AppointmentService(db).list_appointments()

@router.post("", response_model=AppointmentEnvelope, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    appointment_data: AppointmentCreate,
    db: Session = Depends(get_db)
):
    """Book an appointment after validation and a conflict check."""
    appointment = AppointmentService(db).create_appointment(appointment_data)
    return AppointmentEnvelope(
        message="Appointment created successfully",
        appointment=appointment
    )

@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: uuid.UUID,
    db: Session = Depends(get_db)
):
    """Get a single appointment."""
    return AppointmentService(db).get_appointment(appointment_id)

@router.patch("/{appointment_id}", response_model=AppointmentEnvelope)
async def update_appointment(
    appointment_id: uuid.UUID,
    update_data: AppointmentUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_staff_user)
):
    """Reschedule or edit an appointment (doctor of record or admin)."""
    appointment = AppointmentService(db).update_appointment(
        appointment_id, update_data, current_user
    )
    return AppointmentEnvelope(
        message="Appointment updated successfully",
        appointment=appointment
    )

@router.patch("/{appointment_id}/status", response_model=AppointmentEnvelope)
async def change_appointment_status(
    appointment_id: uuid.UUID,
    status_data: AppointmentStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_staff_user)
):
    """Complete, cancel or confirm an appointment (doctor of record or admin)."""
    appointment = AppointmentService(db).change_status(
        appointment_id, status_data.status, current_user
    )
    return AppointmentEnvelope(
        message=f"Appointment marked as {appointment.status.value}",
        appointment=appointment
    )
