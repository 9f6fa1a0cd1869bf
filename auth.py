import logging
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from pymongo.database import Database

from config import Settings, get_settings
from database import USERS, get_db, to_object_id
from errors import InvalidData, TokenExpired

logger = logging.getLogger(__name__)

# Use a hash algorithm that does not require external C extensions
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class Caller(BaseModel):
    """Identity resolved from an access token."""
    id: str
    first_name: str
    last_name: str
    role: Literal["user", "admin"] = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# ------------------- Auth Utils -------------------

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(user: dict, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.token_expire_minutes))
    to_encode = {
        "sub": str(user["_id"]),
        "first_name": user.get("first_name"),
        "last_name": user.get("last_name"),
        "role": user.get("role", "user"),
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.jwt_key, algorithm=settings.jwt_algorithm)


def resolve_caller(token: str, db: Database, settings: Settings) -> Caller:
    """Verify a token and load the user it names.

    Shared by the HTTP gate and the WebSocket handshake.
    """
    try:
        payload = jwt.decode(token, settings.jwt_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise TokenExpired("Token has expired. Please log in again.")

    user_id = payload.get("sub")
    if not user_id:
        raise TokenExpired("Token is invalid, authorization denied.")
    try:
        doc = db[USERS].find_one({"_id": to_object_id(user_id)})
    except InvalidData:
        doc = None
    if not doc:
        raise TokenExpired("Token is invalid, authorization denied.")

    return Caller(
        id=str(doc["_id"]),
        first_name=doc["first_name"],
        last_name=doc["last_name"],
        role=doc.get("role", "user"),
    )


def extract_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    token = authorization.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    return token or None


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Caller:
    token = extract_token(authorization)
    if token is None:
        raise TokenExpired("You are not logged in, authentication required.")
    return resolve_caller(token, db, settings)
