# clinicgate/services/appointment_service.py
# Scheduling rules applied before appointment writes are committed.

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from .. import crud, models, schemas
from ..errors import InvalidScheduleError, NotFoundError, SchedulingConflictError
from ..utils import as_utc

logger = logging.getLogger(__name__)

# Changing any of these fields can introduce an overlap
SCHEDULE_FIELDS = ("start_time", "end_time", "patient_id")
NULLABLE_FIELDS = ("description", "location", "notes")


async def check_appointment_conflict(
    db: Session,
    patient_id: int,
    start_time: datetime,
    end_time: datetime,
    exclude_appointment_id: Optional[int] = None,
) -> bool:
    """True if the patient already has an active appointment overlapping ``[start_time, end_time)``.

    Cancelled, completed and no-show appointments never conflict. Pass
    ``exclude_appointment_id`` when checking an appointment against the
    schedule it already belongs to.
    """
    start = as_utc(start_time)
    end = as_utc(end_time)
    Appointment = models.Appointment

    query = db.query(Appointment.id).filter(
        Appointment.patient_id == patient_id,
        Appointment.status.notin_(list(models.TERMINAL_APPOINTMENT_STATUSES)),
        or_(
            # Existing appointment starts during the candidate
            and_(Appointment.start_time >= start, Appointment.start_time < end),
            # Existing appointment ends during the candidate
            and_(Appointment.end_time > start, Appointment.end_time <= end),
            # Candidate sits inside the existing appointment
            and_(Appointment.start_time <= start, Appointment.end_time >= end),
        ),
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)

    return query.first() is not None


async def schedule_appointment(
    db: Session,
    appointment: schemas.AppointmentCreate,
    created_by: Optional[int] = None,
) -> models.Appointment:
    """Create an appointment unless it overlaps another one for the same patient."""
    if crud.get_patient(db, appointment.patient_id) is None:
        raise NotFoundError("Patient not found")

    if await check_appointment_conflict(db, appointment.patient_id, appointment.start_time, appointment.end_time):
        logger.info(
            f"Scheduling conflict for patient {appointment.patient_id} "
            f"between {appointment.start_time} and {appointment.end_time}"
        )
        raise SchedulingConflictError()

    return crud.create_appointment(db, appointment, created_by=created_by)


async def reschedule_appointment(
    db: Session,
    appointment_id: int,
    appointment_update: schemas.AppointmentUpdate,
) -> models.Appointment:
    """Apply a partial update, re-checking conflicts when the schedule moves."""
    db_appointment = crud.get_appointment(db, appointment_id)
    if db_appointment is None:
        raise NotFoundError("Appointment not found")

    # Explicit nulls only clear the optional free-text fields
    update_data = {
        key: value for key, value in appointment_update.model_dump(exclude_unset=True).items()
        if value is not None or key in NULLABLE_FIELDS
    }

    if any(field in update_data for field in SCHEDULE_FIELDS):
        patient_id = update_data.get("patient_id") or db_appointment.patient_id
        start = as_utc(update_data.get("start_time") or db_appointment.start_time)
        end = as_utc(update_data.get("end_time") or db_appointment.end_time)

        if end <= start:
            raise InvalidScheduleError("end_time must be after start_time.")
        if "patient_id" in update_data and crud.get_patient(db, patient_id) is None:
            raise NotFoundError("Patient not found")

        if await check_appointment_conflict(db, patient_id, start, end, exclude_appointment_id=appointment_id):
            logger.info(f"Scheduling conflict while rescheduling appointment {appointment_id}")
            raise SchedulingConflictError()

    return crud.update_appointment(db, db_appointment, update_data)


def update_appointment_status(
    db: Session,
    appointment_id: int,
    status_update: schemas.AppointmentStatusUpdate,
) -> models.Appointment:
    db_appointment = crud.get_appointment(db, appointment_id)
    if db_appointment is None:
        raise NotFoundError("Appointment not found")

    update_data = {"status": status_update.status}
    if status_update.notes:
        update_data["notes"] = status_update.notes
    return crud.update_appointment(db, db_appointment, update_data)
