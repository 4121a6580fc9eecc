"""
Registration, login and the current-user lookup.

Accounts always start as STUDENT; promotion goes through
POST /user/request-instructor or an admin. Login counts failures per email
(known or not) and locks the address out after MAX_FAILED_ATTEMPTS.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core import account_security
from core.auth import get_current_user
from core.database import get_db
from core.exceptions import AuthenticationError, ConflictError, ValidationError
from core.password_policy import validate_password
from core.security import ACCESS_TOKEN_EXPIRE_MINUTES, create_access_token, get_password_hash, verify_password
from models import Role, User
from schemas import LoginRequest, RegisterRequest, TokenResponse, UserResponse
from services.submission_review import validate_timezone

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _issue_token(user: User) -> TokenResponse:
    token = create_access_token({"sub": str(user.id), "role": Role(user.role).value})
    return TokenResponse(
        access_token=token,
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


def _email_taken(db: Session, email: str) -> bool:
    return db.query(User.id).filter(User.email == email).first() is not None


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, db: Session = Depends(get_db)):
    email = body.email.lower()
    if _email_taken(db, email):
        raise ConflictError("Email already registered")

    ok, problems = validate_password(body.password)
    if not ok:
        raise ValidationError("; ".join(problems), field="password")
    if body.timezone:
        validate_timezone(body.timezone)

    user = User(
        email=email,
        name=body.name or email.split("@")[0],
        password_hash=get_password_hash(body.password),
        role=Role.STUDENT,
        timezone=body.timezone,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration for the same address
        db.rollback()
        raise ConflictError("Email already registered")

    logger.info("User registered", extra={"extra_fields": {"user_id": str(user.id)}})
    return _issue_token(user)


@router.post("/login", response_model=TokenResponse)
def login(body: LoginRequest, db: Session = Depends(get_db)):
    email = body.email.lower()

    locked, seconds_left = account_security.is_account_locked(email)
    if locked:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Account temporarily locked. Try again in {(seconds_left or 0) // 60 + 1} minutes.",
            headers={"Retry-After": str(seconds_left)},
        )

    user = db.query(User).filter(User.email == email).first()
    if user is None or not user.password_hash or not verify_password(body.password, user.password_hash):
        account_security.record_login_attempt(email, success=False)
        remaining = account_security.get_remaining_attempts(email)
        if remaining == 0:
            raise AuthenticationError("Account temporarily locked due to too many failed attempts")
        if remaining <= 2:
            raise AuthenticationError(f"Invalid email or password ({remaining} attempts remaining)")
        raise AuthenticationError("Invalid email or password")

    account_security.record_login_attempt(email, success=True)
    return _issue_token(user)


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user
