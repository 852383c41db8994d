from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi.security import HTTPBearer
from core.config import settings
import logging

logger = logging.getLogger(__name__)

# Operator routes (aggregation trigger, realtime check) take a bearer token
bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_ROLE = "admin"

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt

def verify_token(token: str) -> Optional[dict]:
    """Verify and decode JWT token"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        subject: str = payload.get("sub")
        if subject is None:
            return None
        return payload
    except JWTError as e:
        logger.warning(f"JWT decode failed: {e}")
        return None

def is_admin(payload: Optional[dict]) -> bool:
    return bool(payload) and payload.get("role") == ADMIN_ROLE
