# clinicgate/schemas.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from .models import AppointmentStatus, AppointmentType
from .roles import Role
from .utils import as_utc


# --- Base Schemas ---
class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- User Schemas ---
class UserRegister(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserResponse(BaseSchema):
    id: int
    name: Optional[str] = None
    email: EmailStr
    role: Role
    email_verified: Optional[datetime] = None
    is_active: bool = False
    created_at: Optional[datetime] = None


class RegisterResponse(BaseSchema):
    user: UserResponse
    message: str


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class CurrentUserResponse(BaseSchema):
    id: int
    email: str
    role: Optional[Role] = None
    name: Optional[str] = None


# --- Patient Schemas ---
class PatientSummary(BaseSchema):
    id: int
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None


# --- Appointment Schemas ---
class AppointmentBase(BaseSchema):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    type: AppointmentType = AppointmentType.CONSULTATION
    location: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_timezone(cls, v):
        return as_utc(v)


class AppointmentCreate(AppointmentBase):
    patient_id: int

    @model_validator(mode='after')
    def check_interval(self):
        if self.end_time <= self.start_time:
            raise ValueError('end_time must be after start_time.')
        return self


class AppointmentUpdate(BaseSchema):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    type: Optional[AppointmentType] = None
    location: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = None
    patient_id: Optional[int] = None
    status: Optional[AppointmentStatus] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_timezone(cls, v):
        return as_utc(v)

    @model_validator(mode='after')
    def check_interval(self):
        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValueError('end_time must be after start_time.')
        return self


class AppointmentStatusUpdate(BaseSchema):
    status: AppointmentStatus
    notes: Optional[str] = None


class AppointmentResponse(AppointmentBase):
    id: int
    patient_id: int
    status: AppointmentStatus
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    patient: Optional[PatientSummary] = None


class AppointmentStatusResponse(BaseSchema):
    id: int
    status: AppointmentStatus
    start_time: datetime
    end_time: datetime
    notes: Optional[str] = None
    patient: Optional[PatientSummary] = None


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int = Field(..., serialization_alias="totalPages")


class PaginatedAppointments(BaseModel):
    data: List[AppointmentResponse]
    pagination: Pagination


# --- Error Schemas ---
class ErrorResponse(BaseModel):
    error: str


class RateLimitErrorResponse(ErrorResponse):
    retry_after: int = Field(..., serialization_alias="retryAfter")
