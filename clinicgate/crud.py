# clinicgate/crud.py
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from . import models, schemas
from .errors import ClinicGateError
from .roles import Role

logger = logging.getLogger(__name__)


class CRUDError(ClinicGateError):
    pass


# ==================== USER CRUD OPERATIONS ====================

def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email.lower().strip()).first()


def get_user_by_verification_token(db: Session, token_hash: str, now: datetime) -> Optional[models.User]:
    return db.query(models.User).filter(
        models.User.email_verification_token == token_hash,
        models.User.email_verification_expires > now,
    ).first()


def create_user(
    db: Session,
    name: str,
    email: str,
    hashed_password: str,
    role: Role = Role.PATIENT,
    verification_token_hash: Optional[str] = None,
    verification_expires: Optional[datetime] = None,
) -> models.User:
    db_user = models.User(
        name=name,
        email=email.lower().strip(),
        hashed_password=hashed_password,
        role=role,
        email_verification_token=verification_token_hash,
        email_verification_expires=verification_expires,
        is_active=False,
    )
    try:
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Integrity error creating user {email}: {e}")
        raise CRUDError("A user with this email already exists.")
    logger.info(f"Created user {db_user.id} with role {db_user.role.value}")
    return db_user


def mark_email_verified(db: Session, user: models.User, verified_at: datetime) -> models.User:
    user.email_verified = verified_at
    user.email_verification_token = None
    user.email_verification_expires = None
    user.is_active = True
    db.commit()
    db.refresh(user)
    return user


# ==================== PATIENT CRUD OPERATIONS ====================

def get_patient(db: Session, patient_id: int) -> Optional[models.Patient]:
    return db.query(models.Patient).filter(models.Patient.id == patient_id).first()


def get_patient_for_user(db: Session, user_id: int) -> Optional[models.Patient]:
    return db.query(models.Patient).filter(models.Patient.user_id == user_id).first()


# ==================== APPOINTMENT CRUD OPERATIONS ====================

def get_appointment(db: Session, appointment_id: int) -> Optional[models.Appointment]:
    return db.query(models.Appointment).options(
        joinedload(models.Appointment.patient)
    ).filter(models.Appointment.id == appointment_id).first()


def get_appointments(
    db: Session,
    patient_id: Optional[int] = None,
    status: Optional[models.AppointmentStatus] = None,
    appointment_type: Optional[models.AppointmentType] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    """Filtered, paginated appointment listing ordered by start time."""
    query = db.query(models.Appointment)

    if patient_id:
        query = query.filter(models.Appointment.patient_id == patient_id)
    if status:
        query = query.filter(models.Appointment.status == status)
    if appointment_type:
        query = query.filter(models.Appointment.type == appointment_type)
    if start_date:
        query = query.filter(models.Appointment.start_time >= start_date)
    if end_date:
        query = query.filter(models.Appointment.end_time <= end_date)
    if search:
        term = f"%{search}%"
        query = query.join(models.Patient).filter(or_(
            models.Appointment.title.ilike(term),
            models.Appointment.description.ilike(term),
            models.Appointment.notes.ilike(term),
            models.Patient.first_name.ilike(term),
            models.Patient.last_name.ilike(term),
            models.Patient.phone.ilike(term),
        ))

    page = max(page, 1)
    limit = max(limit, 1)
    total = query.count()
    data = query.options(joinedload(models.Appointment.patient)) \
        .order_by(models.Appointment.start_time.asc()) \
        .offset((page - 1) * limit).limit(limit).all()

    return {
        "data": data,
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit),
        },
    }


def create_appointment(db: Session, appointment: schemas.AppointmentCreate, created_by: Optional[int] = None) -> models.Appointment:
    db_appointment = models.Appointment(**appointment.model_dump(), created_by=created_by)
    try:
        db.add(db_appointment)
        db.commit()
        db.refresh(db_appointment)
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info(f"Created appointment {db_appointment.id} for patient {db_appointment.patient_id}")
    return db_appointment


def update_appointment(db: Session, db_appointment: models.Appointment, update_data: Dict[str, Any]) -> models.Appointment:
    for key, value in update_data.items():
        setattr(db_appointment, key, value)
    try:
        db.commit()
        db.refresh(db_appointment)
    except SQLAlchemyError:
        db.rollback()
        raise
    return db_appointment


def delete_appointment(db: Session, appointment_id: int) -> bool:
    db_appointment = db.query(models.Appointment).filter(models.Appointment.id == appointment_id).first()
    if not db_appointment:
        return False
    try:
        db.delete(db_appointment)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    logger.info(f"Deleted appointment {appointment_id}")
    return True
