# clinicgate/routers/auth.py
import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from .. import crud, schemas, security
from ..database import get_db
from ..limiter import RateLimiterRegistry, check_rate_limit, get_client_identifier, get_rate_limiters
from ..services.email_service import send_verification_email

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/auth",
    tags=["Authentication"],
)

RATE_LIMITED = {429: {"model": schemas.RateLimitErrorResponse}}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post(
    "/register",
    response_model=schemas.RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": schemas.ErrorResponse}, **RATE_LIMITED},
)
def register(
    payload: schemas.UserRegister,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    limiters: RateLimiterRegistry = Depends(get_rate_limiters),
):
    """Create a patient account pending email verification."""
    limited = check_rate_limit(limiters.general, f"{get_client_identifier(request)}:register")
    if limited is not None:
        return limited

    name = payload.name.strip()
    if not name:
        return _error(status.HTTP_400_BAD_REQUEST, "Name, email, and password are required")

    password_errors = security.validate_password_strength(payload.password)
    if password_errors:
        return _error(status.HTTP_400_BAD_REQUEST, ", ".join(password_errors))

    if crud.get_user_by_email(db, payload.email):
        return _error(status.HTTP_400_BAD_REQUEST, "User with this email already exists")

    settings = security.get_request_settings(request)
    verification_token = security.generate_secure_token()
    try:
        user = crud.create_user(
            db,
            name=name,
            email=payload.email,
            hashed_password=security.get_password_hash(payload.password),
            verification_token_hash=security.hash_token(verification_token),
            verification_expires=datetime.now(timezone.utc) + timedelta(hours=settings.email_verification_expire_hours),
        )
    except crud.CRUDError:
        # Lost a race with a concurrent registration for the same address
        return _error(status.HTTP_400_BAD_REQUEST, "User with this email already exists")

    background_tasks.add_task(send_verification_email, user.email, name, verification_token, settings)

    return {
        "user": user,
        "message": "Registration successful! Please check your email to verify your account.",
    }


@router.post("/token", response_model=schemas.TokenResponse, responses={401: {"model": schemas.ErrorResponse}, **RATE_LIMITED})
def login_for_access_token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    limiters: RateLimiterRegistry = Depends(get_rate_limiters),
):
    limited = check_rate_limit(limiters.auth, get_client_identifier(request))
    if limited is not None:
        return limited

    user = crud.get_user_by_email(db, form_data.username)
    if not user or not security.verify_password(form_data.password, user.hashed_password):
        logger.warning(f"Failed login attempt for: {form_data.username}")
        response = _error(status.HTTP_401_UNAUTHORIZED, "Incorrect email or password")
        response.headers["WWW-Authenticate"] = "Bearer"
        return response

    settings = security.get_request_settings(request)
    access_token = security.create_access_token(user, settings=settings)
    logger.info(f"User {user.id} successfully authenticated.")

    body = schemas.TokenResponse(
        access_token=access_token,
        expires_in=settings.access_token_expire_minutes * 60,
        user=schemas.UserResponse.model_validate(user),
    )
    response = JSONResponse(content=body.model_dump(mode="json"))
    response.set_cookie(
        security.ACCESS_TOKEN_COOKIE,
        access_token,
        max_age=settings.access_token_expire_minutes * 60,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )
    return response


@router.get("/verify-email", include_in_schema=False)
def verify_email(token: str = "", db: Session = Depends(get_db)):
    if not token:
        return RedirectResponse("/auth/error?error=invalid-token", status_code=status.HTTP_307_TEMPORARY_REDIRECT)

    now = datetime.now(timezone.utc)
    user = crud.get_user_by_verification_token(db, security.hash_token(token), now)
    if not user:
        return RedirectResponse("/auth/error?error=invalid-or-expired-token", status_code=status.HTTP_307_TEMPORARY_REDIRECT)

    crud.mark_email_verified(db, user, now)
    logger.info(f"User {user.id} verified their email address.")
    return RedirectResponse("/auth/signin?verified=true", status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@router.get("/me", response_model=schemas.CurrentUserResponse)
def read_current_user(current_user: security.AuthenticatedUser = Depends(security.get_current_user)):
    """Identity carried by the caller's access token."""
    return current_user
