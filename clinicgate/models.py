# clinicgate/models.py
import enum

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text,
    Enum as SQLAlchemyEnum, Boolean, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .roles import Role


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class AppointmentType(str, enum.Enum):
    CONSULTATION = "CONSULTATION"
    FOLLOW_UP = "FOLLOW_UP"
    LAB_TEST = "LAB_TEST"
    ULTRASOUND = "ULTRASOUND"
    VACCINATION = "VACCINATION"
    OTHER = "OTHER"


# Appointments in these statuses never block a new booking
TERMINAL_APPOINTMENT_STATUSES = frozenset({
    AppointmentStatus.CANCELLED,
    AppointmentStatus.COMPLETED,
    AppointmentStatus.NO_SHOW,
})


class User(Base):
    """Login account. Email verification and role drive route authorization."""
    __tablename__ = "users"
    __table_args__ = (
        Index('idx_users_role_active', 'role', 'is_active'),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(SQLAlchemyEnum(Role, name='user_role'), default=Role.PATIENT, nullable=False)

    # Email verification
    email_verified = Column(DateTime(timezone=True), nullable=True)
    email_verification_token = Column(String(64), nullable=True, index=True)
    email_verification_expires = Column(DateTime(timezone=True), nullable=True)

    is_active = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    patient_profile = relationship("Patient", back_populates="user", uselist=False)
    created_appointments = relationship("Appointment", back_populates="creator")


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(30), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="patient_profile")
    appointments = relationship("Appointment", back_populates="patient", cascade="all, delete-orphan")


class Appointment(Base):
    """Appointment interval owned by a patient."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index('idx_appointments_patient_date', 'patient_id', 'start_time'),
        Index('idx_appointments_status_date', 'status', 'start_time'),
        Index('idx_appointments_date_range', 'start_time', 'end_time'),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(SQLAlchemyEnum(AppointmentStatus, name='appointment_status'), default=AppointmentStatus.SCHEDULED, nullable=False, index=True)
    type = Column(SQLAlchemyEnum(AppointmentType, name='appointment_type'), default=AppointmentType.CONSULTATION, nullable=False)
    location = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    patient = relationship("Patient", back_populates="appointments")
    creator = relationship("User", back_populates="created_appointments")
