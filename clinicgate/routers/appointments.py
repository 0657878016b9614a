# clinicgate/routers/appointments.py
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..database import get_db
from ..errors import InvalidScheduleError, NotFoundError, SchedulingConflictError
from ..roles import Role
from ..security import AuthenticatedUser, can_access_patient, require_user
from ..services import appointment_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/appointments",
    tags=["Appointments"],
    responses={404: {"model": schemas.ErrorResponse}},
)

# Reading is open to every member; changing the schedule is front-desk and clinical work
require_reader = require_user(
    Role.ADMIN, Role.HEALTHCARE_PROVIDER, Role.RECEPTIONIST, Role.PATIENT,
    require_email_verification=True,
)
require_scheduler = require_user(
    Role.ADMIN, Role.HEALTHCARE_PROVIDER, Role.RECEPTIONIST,
    require_email_verification=True,
)

CONFLICT_RESPONSE = {400: {"model": schemas.ErrorResponse, "description": "Scheduling conflict"}}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _load_visible_appointment(db: Session, appointment_id: int, user: AuthenticatedUser) -> Optional[models.Appointment]:
    """The appointment if it exists and the caller may see it, else None."""
    db_appointment = crud.get_appointment(db, appointment_id)
    if db_appointment is None:
        return None
    if not can_access_patient(user, db_appointment.patient.user_id if db_appointment.patient else None):
        # Other patients' appointments are indistinguishable from missing ones
        return None
    return db_appointment


@router.get("", response_model=schemas.PaginatedAppointments)
def list_appointments(
    patient_id: Optional[int] = None,
    status_filter: Optional[models.AppointmentStatus] = Query(None, alias="status"),
    type_filter: Optional[models.AppointmentType] = Query(None, alias="type"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_reader),
):
    """Paginated appointment listing. Patients only ever see their own appointments."""
    if current_user.role == Role.PATIENT:
        own_record = crud.get_patient_for_user(db, current_user.id)
        if own_record is None:
            return {"data": [], "pagination": {"total": 0, "page": page, "limit": limit, "total_pages": 0}}
        patient_id = own_record.id

    try:
        return crud.get_appointments(
            db,
            patient_id=patient_id,
            status=status_filter,
            appointment_type=type_filter,
            start_date=start_date,
            end_date=end_date,
            search=search,
            page=page,
            limit=limit,
        )
    except SQLAlchemyError as e:
        logger.error(f"Error fetching appointments: {e}", exc_info=True)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch appointments")


@router.post("", response_model=schemas.AppointmentResponse, status_code=status.HTTP_201_CREATED, responses=CONFLICT_RESPONSE)
async def create_appointment(
    appointment: schemas.AppointmentCreate,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_scheduler),
):
    """Book an appointment after checking the patient's schedule for overlaps."""
    try:
        return await appointment_service.schedule_appointment(db, appointment, created_by=current_user.id)
    except SchedulingConflictError as e:
        return _error(status.HTTP_400_BAD_REQUEST, e.message)
    except NotFoundError as e:
        return _error(status.HTTP_404_NOT_FOUND, str(e))
    except SQLAlchemyError as e:
        logger.error(f"Error creating appointment: {e}", exc_info=True)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to create appointment")


@router.get("/{appointment_id}", response_model=schemas.AppointmentResponse)
def read_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_reader),
):
    db_appointment = _load_visible_appointment(db, appointment_id, current_user)
    if db_appointment is None:
        return _error(status.HTTP_404_NOT_FOUND, "Appointment not found")
    return db_appointment


@router.patch("/{appointment_id}", response_model=schemas.AppointmentResponse, responses=CONFLICT_RESPONSE)
async def update_appointment(
    appointment_id: int,
    appointment_update: schemas.AppointmentUpdate,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_scheduler),
):
    """Partial update; moving the appointment re-runs the conflict check."""
    try:
        return await appointment_service.reschedule_appointment(db, appointment_id, appointment_update)
    except SchedulingConflictError as e:
        return _error(status.HTTP_400_BAD_REQUEST, e.message)
    except InvalidScheduleError as e:
        return _error(status.HTTP_400_BAD_REQUEST, str(e))
    except NotFoundError as e:
        return _error(status.HTTP_404_NOT_FOUND, str(e))
    except SQLAlchemyError as e:
        logger.error(f"Error updating appointment {appointment_id}: {e}", exc_info=True)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to update appointment")


@router.delete("/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_scheduler),
):
    try:
        deleted = crud.delete_appointment(db, appointment_id)
    except SQLAlchemyError as e:
        logger.error(f"Error deleting appointment {appointment_id}: {e}", exc_info=True)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to delete appointment")
    if not deleted:
        return _error(status.HTTP_404_NOT_FOUND, "Appointment not found")
    logger.info(f"User {current_user.id} deleted appointment {appointment_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{appointment_id}/status", response_model=schemas.AppointmentStatusResponse)
def read_appointment_status(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_reader),
):
    db_appointment = _load_visible_appointment(db, appointment_id, current_user)
    if db_appointment is None:
        return _error(status.HTTP_404_NOT_FOUND, "Appointment not found")
    return db_appointment


@router.patch("/{appointment_id}/status", response_model=schemas.AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    status_update: schemas.AppointmentStatusUpdate,
    db: Session = Depends(get_db),
    current_user: AuthenticatedUser = Depends(require_scheduler),
):
    try:
        db_appointment = appointment_service.update_appointment_status(db, appointment_id, status_update)
    except NotFoundError as e:
        return _error(status.HTTP_404_NOT_FOUND, str(e))
    except SQLAlchemyError as e:
        logger.error(f"Error updating status of appointment {appointment_id}: {e}", exc_info=True)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to update appointment status")
    logger.info(f"User {current_user.id} set appointment {appointment_id} to {status_update.status.value}")
    return db_appointment
