# clinicgate/roles.py
import enum


class Role(str, enum.Enum):
    """User roles. No hierarchy: access checks are plain set membership."""
    ADMIN = "ADMIN"
    HEALTHCARE_PROVIDER = "HEALTHCARE_PROVIDER"
    PATIENT = "PATIENT"
    RECEPTIONIST = "RECEPTIONIST"
