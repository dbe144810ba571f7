"""
Authentication

bcrypt password hashing, HS256 JWTs carrying the user id, the FastAPI
dependencies guarding routes, and the /api/auth endpoints.
"""

from datetime import datetime, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import APIRouter, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import EmailStr, Field, field_validator
from pymongo.database import Database

from config import Settings
from database import create_document, get_db, is_object_id, oid, update_document
from errors import AuthError, AuthorizationError, ConflictError, NotFoundError
from logging_config import get_logger
from schemas import PASSWORD_RE, ApiModel, ProfileAddress, User as UserSchema, ok

log = get_logger("auth")

BCRYPT_ROUNDS = 12

bearer = HTTPBearer(auto_error=False)
router = APIRouter(prefix="/api/auth", tags=["auth"])


# Passwords and tokens


def _password_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_token(user_id: str, settings: Settings, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    payload = {"userId": str(user_id), "iat": now, "exp": now + settings.token_lifetime}
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token has expired", code="TOKEN_EXPIRED")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token", code="INVALID_TOKEN")


def user_payload(user: dict, detailed: bool = False) -> dict:
    """Public view of a user document. Never includes the password hash."""
    first, last = user.get("first_name"), user.get("last_name")
    data = {
        "id": str(user["_id"]),
        "email": user["email"],
        "firstName": first,
        "lastName": last,
        "fullName": f"{first} {last}" if first and last else (first or last or ""),
        "isAdmin": bool(user.get("is_admin")),
        "createdAt": user.get("created_at"),
    }
    if detailed:
        address = user.get("shipping_address")
        data["shippingAddress"] = ProfileAddress.model_validate(address).model_dump(by_alias=True) if address else None
        data["wishlist"] = [str(alien_id) for alien_id in user.get("wishlist", [])]
        data["updatedAt"] = user.get("updated_at")
    return data


# Dependencies


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise AuthError("Access token is required", code="NO_TOKEN")
    claims = decode_token(credentials.credentials, settings)
    user_id = claims.get("userId")
    if not user_id or not is_object_id(user_id):
        raise AuthError("Invalid token", code="INVALID_TOKEN")
    user = db["user"].find_one({"_id": oid(user_id)})
    if not user:
        raise AuthError("Invalid token - user not found", code="INVALID_TOKEN")
    return user


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Optional[dict]:
    try:
        return get_current_user(credentials, db, settings)
    except AuthError:
        return None


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not user.get("is_admin"):
        raise AuthorizationError("Admin access required", code="ADMIN_REQUIRED")
    return user


def check_admin_change(actor: dict, target_id: str, is_admin: bool) -> None:
    """An admin may not strip their own admin flag."""
    if str(actor["_id"]) == str(target_id) and not is_admin:
        raise AuthorizationError("Cannot remove your own admin privileges", code="CANNOT_REMOVE_OWN_ADMIN")


# Request models


def _check_password(value: str) -> str:
    if not PASSWORD_RE.match(value):
        raise ValueError("Password must contain at least one lowercase letter, one uppercase letter, and one number")
    return value


class RegisterRequest(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    first_name: Optional[str] = Field(None, alias="firstName", max_length=50)
    last_name: Optional[str] = Field(None, alias="lastName", max_length=50)

    @field_validator("password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_password(value)


class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(ApiModel):
    first_name: Optional[str] = Field(None, alias="firstName", max_length=50)
    last_name: Optional[str] = Field(None, alias="lastName", max_length=50)
    shipping_address: Optional[ProfileAddress] = Field(None, alias="shippingAddress")


class ChangePasswordRequest(ApiModel):
    current_password: str = Field(..., alias="currentPassword", min_length=1)
    new_password: str = Field(..., alias="newPassword", min_length=6, max_length=128)

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_password(value)


# Routes


@router.post("/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise ConflictError("User with this email already exists", code="USER_EXISTS")
    user = UserSchema(
        email=email,
        password_hash=hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    user_id = create_document(db, "user", user)
    log.info("User registered: %s (%s)", user_id, email)
    created = db["user"].find_one({"_id": oid(user_id)})
    return ok({"user": user_payload(created), "token": create_token(user_id, settings)}, "User registered successfully")


@router.post("/login")
def login(payload: LoginRequest, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    email = payload.email.lower()
    user = db["user"].find_one({"email": email})
    if not user or not verify_password(payload.password, user.get("password_hash")):
        log.info("Login failed for %s", email)
        raise AuthError("Invalid email or password", code="INVALID_CREDENTIALS")
    log.info("User logged in: %s", user["_id"])
    return ok({"user": user_payload(user), "token": create_token(str(user["_id"]), settings)}, "Login successful")


@router.get("/profile")
def get_profile(user: dict = Depends(get_current_user)):
    return ok(user_payload(user, detailed=True))


@router.put("/profile")
def update_profile(payload: ProfileUpdate, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    changes = payload.model_dump(exclude_unset=True)
    updated = update_document(db, "user", user["_id"], changes)
    if not updated:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    log.info("Profile updated: %s", user["_id"])
    return ok(user_payload(updated, detailed=True), "Profile updated successfully")


@router.put("/change-password")
def change_password(payload: ChangePasswordRequest, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    if not verify_password(payload.current_password, user.get("password_hash")):
        log.info("Password change failed for %s: invalid current password", user["_id"])
        raise AuthError("Current password is incorrect", code="INVALID_CURRENT_PASSWORD")
    update_document(db, "user", user["_id"], {"password_hash": hash_password(payload.new_password)})
    log.info("Password changed: %s", user["_id"])
    return ok(message="Password changed successfully")
