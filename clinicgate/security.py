# clinicgate/security.py
import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import Request
from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import get_settings
from .errors import ApiAuthError
from .rbac import has_required_role
from .roles import Role

security_logger = logging.getLogger("clinicgate.security")

ACCESS_TOKEN_COOKIE = "access_token"

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


class PasswordPolicy:
    MIN_LENGTH = 8
    MAX_LENGTH = 128
    REQUIRE_UPPERCASE = True
    REQUIRE_LOWERCASE = True
    REQUIRE_DIGITS = True
    MAX_REPEATED_CHARS = 3
    COMMON_PASSWORDS = (
        'password', 'password123', '123456', 'qwerty', 'admin', '123456789',
        'abcdef', 'password1', 'welcome', 'admin123', 'root', 'guest',
        'pass', 'letmein', 'test123', 'demo',
    )


@dataclass(frozen=True)
class AuthToken:
    """Identity claims carried by a verified access token."""
    user_id: int
    role: Optional[Role]
    email: str
    email_verified: Optional[datetime] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity forwarded to route handlers."""
    id: int
    email: str
    role: Optional[Role]
    name: Optional[str] = None

    @classmethod
    def from_token(cls, token: AuthToken) -> "AuthenticatedUser":
        return cls(id=token.user_id, email=token.email, role=token.role, name=token.name)


# Password utilities
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        # Unknown hash formats are a non-match, not a crash
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def validate_password_strength(password: str) -> List[str]:
    """Return the list of policy violations; empty means the password is acceptable."""
    errors = []
    if len(password) < PasswordPolicy.MIN_LENGTH:
        errors.append(f"Password must be at least {PasswordPolicy.MIN_LENGTH} characters long")
    elif len(password) > PasswordPolicy.MAX_LENGTH:
        errors.append(f"Password must be less than {PasswordPolicy.MAX_LENGTH} characters long")

    if PasswordPolicy.REQUIRE_UPPERCASE and not any(c.isupper() for c in password):
        errors.append("Password must contain at least one uppercase letter")
    if PasswordPolicy.REQUIRE_LOWERCASE and not any(c.islower() for c in password):
        errors.append("Password must contain at least one lowercase letter")
    if PasswordPolicy.REQUIRE_DIGITS and not any(c.isdigit() for c in password):
        errors.append("Password must contain at least one number")

    if re.search(r"(.)\1{%d,}" % PasswordPolicy.MAX_REPEATED_CHARS, password):
        errors.append(
            f"Password cannot contain more than {PasswordPolicy.MAX_REPEATED_CHARS} consecutive identical characters"
        )

    lowered = password.lower()
    if any(common in lowered for common in PasswordPolicy.COMMON_PASSWORDS):
        errors.append("Password is too common. Please choose a more unique password")
    return errors


# Verification tokens are mailed in clear and stored hashed
def generate_secure_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


# JWT utilities
def create_access_token(user, expires_delta: Optional[timedelta] = None, settings=None) -> str:
    """Create a signed access token for a ``models.User``."""
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    role = user.role.value if isinstance(user.role, Role) else user.role

    to_encode = {
        "sub": str(user.id),
        "role": role,
        "email": user.email,
        "name": user.name,
        "email_verified": user.email_verified.isoformat() if user.email_verified else None,
        "type": "access",
        "exp": expire,
        "iat": now,
        "jti": secrets.token_urlsafe(16),
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str, settings=None) -> Optional[AuthToken]:
    """Decode and verify a JWT. Any invalid, expired or malformed token yields None."""
    settings = settings or get_settings()
    try:
        payload: Dict[str, Any] = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        security_logger.info(f"Rejected access token: {e}")
        return None

    if payload.get("type") != "access" or not payload.get("sub"):
        return None

    try:
        user_id = int(payload["sub"])
        role = Role(payload["role"]) if payload.get("role") else None
        email_verified = payload.get("email_verified")
        if email_verified:
            email_verified = datetime.fromisoformat(email_verified)
    except (TypeError, ValueError) as e:
        security_logger.warning(f"Malformed access token claims: {e}")
        return None

    return AuthToken(
        user_id=user_id,
        role=role,
        email=payload.get("email") or "",
        email_verified=email_verified or None,
        name=payload.get("name"),
    )


def extract_token(request: Request) -> Optional[str]:
    """Bearer header first, then the session cookie."""
    authorization = request.headers.get("authorization")
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    return request.cookies.get(ACCESS_TOKEN_COOKIE)


def get_request_settings(request: Request):
    """Settings of the app serving ``request``; falls back to the process-wide ones."""
    return getattr(request.app.state, "settings", None) or get_settings()


def read_auth_token(request: Request, settings=None) -> Optional[AuthToken]:
    raw = extract_token(request)
    if not raw:
        return None
    return decode_access_token(raw, settings or get_request_settings(request))


# Dependencies for API routes
def require_user(*roles: Role, require_email_verification: bool = False):
    """Dependency factory guarding an API route; failures become JSON 401/403 responses."""
    allowed = frozenset(roles) if roles else None

    def dependency(request: Request) -> AuthenticatedUser:
        token = read_auth_token(request)
        if token is None:
            raise ApiAuthError(401, "Unauthorized - Please sign in")
        if require_email_verification and not token.email_verified:
            raise ApiAuthError(403, "Email verification required")
        if not has_required_role(token.role, allowed):
            security_logger.warning(
                f"User {token.user_id} with role {token.role} denied access to {request.url.path}"
            )
            raise ApiAuthError(403, "Forbidden - Insufficient permissions")
        return AuthenticatedUser.from_token(token)

    return dependency


get_current_user = require_user()


def can_access_patient(user: AuthenticatedUser, patient_user_id: Optional[int]) -> bool:
    """Staff see every patient; a patient sees only their own record."""
    if user.role in (Role.ADMIN, Role.HEALTHCARE_PROVIDER, Role.RECEPTIONIST):
        return True
    if user.role == Role.PATIENT and patient_user_id:
        return user.id == patient_user_id
    return False
