from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel
from passlib.hash import bcrypt
from datetime import datetime, timedelta, UTC

from config import settings
from database import Database, get_db
from models import User

# OAuth2 scheme
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/users/login")


class TokenData(BaseModel):
    email: str
    type: str


def _create_token(data: dict, token_type: str, expires: timedelta) -> str:
    to_encode = data.copy()
    to_encode.update({"exp": datetime.now(UTC) + expires, "type": token_type})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_access_token(data: dict):
    """Create a JWT access token."""
    return _create_token(data, "access", timedelta(minutes=settings.access_token_expire_minutes))


def create_refresh_token(data: dict):
    """Create a JWT refresh token."""
    return _create_token(data, "refresh", timedelta(days=settings.refresh_token_expire_days))


def hash_password(password: str) -> str:
    return bcrypt.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.verify(password, hashed)


def decode_token(token: str, expected_type: str) -> TokenData:
    """Decode a JWT and check its type; raises 401 on any failure."""
    credentials_exception = HTTPException(
        status_code=401,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        raise credentials_exception
    email = payload.get("sub")
    if email is None or payload.get("type") != expected_type:
        raise credentials_exception
    return TokenData(email=email, type=expected_type)


def authenticate_user(db: Database, email: str, password: str) -> User | None:
    """Return the user if the credentials match."""
    row = db.get_user_by_email(email)
    if row is None or not verify_password(password, row["password"]):
        return None
    return User.from_row(row)


def get_current_user(token: str = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> User:
    """Retrieve the current authenticated user from a JWT access token."""
    token_data = decode_token(token, "access")
    row = db.get_user_by_email(token_data.email)
    if row is None:
        raise HTTPException(status_code=401, detail="User not found")
    return User.from_row(row)
