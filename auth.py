"""
Authentication

Bearer JWTs signed with the shared secret; passwords hashed with bcrypt.
``get_current_user`` fails closed: anything short of a valid token for an
active user is Unauthorized.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import create_document, get_db, utcnow
from errors import Conflict, Forbidden, Unauthorized, ValidationFailed
from schemas import PasswordChange, ProfileUpdate, UserRegister

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: str = "user"
    phone: Optional[str] = None
    avatar: Optional[str] = None


class AuthResponse(Token):
    user: UserOut


def user_out(user: dict) -> UserOut:
    return UserOut(
        id=str(user["_id"]),
        name=user.get("name"),
        email=user.get("email"),
        role=user.get("role", "user"),
        phone=user.get("phone"),
        avatar=user.get("avatar"),
    )


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> UserOut:
    if not token:
        raise Unauthorized("Access denied. Please login.")
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        user_id = ObjectId(payload.get("sub"))
    except (JWTError, InvalidId, TypeError):
        raise Unauthorized("Invalid or expired token.")

    user = db["user"].find_one({"_id": user_id}, {"password_hash": 0})
    if not user:
        raise Unauthorized("User no longer exists.")
    if not user.get("is_active", True):
        raise Unauthorized("Your account has been deactivated.")
    return user_out(user)


def require_admin(current: UserOut = Depends(get_current_user)) -> UserOut:
    if current.role != "admin":
        raise Forbidden("Access denied. Admins only.")
    return current


def issue_token(user: UserOut) -> AuthResponse:
    return AuthResponse(access_token=create_access_token({"sub": user.id}), user=user)


def register_user(db: Database, data: UserRegister) -> UserOut:
    email = data.email.lower()
    if db["user"].find_one({"email": email}, {"_id": 1}):
        raise Conflict("Email already registered")
    try:
        user = create_document(db, "user", {
            "name": data.name,
            "email": email,
            "password_hash": get_password_hash(data.password),
            "phone": data.phone,
            "avatar": None,
            "role": "user",
            "is_active": True,
            "last_login": None,
        })
    except DuplicateKeyError:
        raise Conflict("Email already registered")
    logger.info("User %s registered", user["_id"])
    return user_out(user)


def authenticate(db: Database, email: str, password: str) -> UserOut:
    user = db["user"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise Unauthorized("Invalid email or password")
    if not user.get("is_active", True):
        raise Unauthorized("Account has been deactivated")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login": utcnow()}})
    return user_out(user)


def update_profile(db: Database, current: UserOut, data: ProfileUpdate) -> UserOut:
    changes = data.model_dump(exclude_none=True)
    changes["updated_at"] = utcnow()
    user = db["user"].find_one_and_update(
        {"_id": ObjectId(current.id)}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    return user_out(user)


def change_password(db: Database, current: UserOut, data: PasswordChange) -> None:
    user = db["user"].find_one({"_id": ObjectId(current.id)}, {"password_hash": 1})
    if not verify_password(data.current_password, user.get("password_hash", "")):
        raise ValidationFailed("Current password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": get_password_hash(data.new_password), "updated_at": utcnow()}},
    )
    logger.info("User %s changed password", current.id)
