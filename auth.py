"""
Authentication: registration, login, password reset and the bootstrap admin.
"""

import hashlib
import secrets
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

import structlog
from bson import ObjectId
from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import settings
from database import as_utc, create_document, get_db, utcnow
from errors import AuthError, ValidationError
from schemas import PasswordReset, TokenResponse, User, UserProfile
from security import create_access_token, hash_password, verify_password
from users import find_by_email, get_current_user, user_profile, username_taken

logger = structlog.get_logger(__name__)

MIN_PASSWORD_LENGTH = 6


def _normalize_email(email: str) -> str:
    try:
        return validate_email((email or "").strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError:
        raise ValidationError("Invalid email address")


def _check_password(password: str):
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def register(db: Database, email: str, password: str, username: Optional[str] = None,
             name: Optional[str] = None) -> Dict[str, Any]:
    email = _normalize_email(email)
    _check_password(password)
    if find_by_email(db, email):
        raise ValidationError("Email already registered")
    username = (username or "").strip() or None
    if username and username_taken(db, username):
        raise ValidationError("Username already taken")

    user = User(
        email=email,
        password_hash=hash_password(password),
        name=(name or "").strip() or username,
        username=username,
        role="user",
    )
    data = user.model_dump()
    if username is None:
        data.pop("username")
    try:
        user_id = create_document(db, "user", data)
    except DuplicateKeyError:
        if find_by_email(db, email):
            raise ValidationError("Email already registered")
        raise ValidationError("Username already taken")
    logger.info("user_registered", user_id=user_id)
    return user_profile(db["user"].find_one({"email": email}))


def login(db: Database, email: str, password: str) -> Dict[str, Any]:
    user = find_by_email(db, email)
    if not user or not verify_password(password or "", user.get("password_hash", "")):
        logger.info("login_failed")
        raise AuthError("Invalid email or password")
    user_id = str(user["_id"])
    token = create_access_token({"sub": user_id, "email": user["email"]})
    logger.info("login_succeeded", user_id=user_id)
    return {"token": token, "token_type": "bearer", "user": user_profile(user)}


# Password reset

def _token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _log_reset_mailer(email: str, token: str):
    # Delivery is handled outside this service; record only that it happened.
    logger.info("password_reset_email_queued", email=email)


reset_mailer: Callable[[str, str], None] = _log_reset_mailer


def request_reset(db: Database, email: str) -> Optional[str]:
    """Issue a single-use reset token and hand it to the mailer.

    Returns the token, or None when no account has that email. Callers facing
    the public must not reveal which of the two happened.
    """
    user = find_by_email(db, email)
    if not user:
        logger.info("password_reset_unknown_email")
        return None
    user_id = str(user["_id"])
    db["passwordreset"].update_many({"user_id": user_id, "used": False}, {"$set": {"used": True}})
    token = secrets.token_urlsafe(32)
    reset = PasswordReset(
        user_id=user_id,
        token_hash=_token_digest(token),
        expires_at=utcnow() + timedelta(minutes=settings.RESET_TOKEN_EXPIRE_MINUTES),
    )
    create_document(db, "passwordreset", reset)
    reset_mailer(user["email"], token)
    return token


def reset_password(db: Database, token: str, new_password: str):
    _check_password(new_password)
    record = db["passwordreset"].find_one({"token_hash": _token_digest(token or "")})
    if not record or record.get("used"):
        raise AuthError("Invalid or expired reset token")
    if as_utc(record["expires_at"]) < utcnow():
        raise AuthError("Invalid or expired reset token")
    claimed = db["passwordreset"].find_one_and_update(
        {"_id": record["_id"], "used": False},
        {"$set": {"used": True, "used_at": utcnow()}},
    )
    if claimed is None:
        raise AuthError("Invalid or expired reset token")
    db["user"].update_one(
        {"_id": ObjectId(record["user_id"])},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": utcnow()}},
    )
    logger.info("password_reset_completed", user_id=record["user_id"])


def ensure_admin(db: Database, email: str, password: str) -> Dict[str, Any]:
    """Create the admin account, or promote an existing one and reset its password."""
    email = _normalize_email(email)
    _check_password(password)
    existing = find_by_email(db, email)
    if existing:
        db["user"].update_one(
            {"_id": existing["_id"]},
            {"$set": {"role": "admin", "password_hash": hash_password(password), "updated_at": utcnow()}},
        )
        logger.info("admin_promoted", user_id=str(existing["_id"]))
    else:
        admin = User(
            email=email,
            password_hash=hash_password(password),
            name="Admin User",
            username=email.split("@")[0],
            role="admin",
        )
        user_id = create_document(db, "user", admin)
        logger.info("admin_created", user_id=user_id)
    return user_profile(find_by_email(db, email))


# Routes

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterInput(BaseModel):
    email: EmailStr
    password: str
    username: Optional[str] = None
    name: Optional[str] = None


class LoginInput(BaseModel):
    email: str
    password: str


class ForgotPasswordInput(BaseModel):
    email: str


class ResetPasswordInput(BaseModel):
    token: str
    new_password: str


@router.post("/register", status_code=201)
def register_route(payload: RegisterInput, db: Database = Depends(get_db)):
    user = register(db, payload.email, payload.password, payload.username, payload.name)
    return {"message": "User created successfully", "user": user}


@router.post("/login", response_model=TokenResponse)
def login_route(payload: LoginInput, db: Database = Depends(get_db)):
    return login(db, payload.email, payload.password)


@router.get("/profile", response_model=UserProfile)
def profile(current_user: dict = Depends(get_current_user)):
    return current_user


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordInput, db: Database = Depends(get_db)):
    request_reset(db, payload.email)
    return {"message": "If the email exists, a reset link has been sent"}


@router.post("/reset-password")
def reset_password_route(payload: ResetPasswordInput, db: Database = Depends(get_db)):
    reset_password(db, payload.token, payload.new_password)
    return {"message": "Password updated successfully"}
